"""
Utility package: structured logging, metrics, prompts and text parsing.
"""

from src.utils.logger import get_logger, configure_logging, turn_context
from src.utils.metrics import TurnMetrics
from src.utils.prompts import load_prompts, render_prompt

__all__ = [
    "get_logger",
    "configure_logging",
    "turn_context",
    "TurnMetrics",
    "load_prompts",
    "render_prompt",
]
