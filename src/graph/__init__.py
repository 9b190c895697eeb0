"""
Graph package for the per-turn LangGraph workflow.
"""

from src.graph.builder import build_chat_service, build_conversation_graph
from src.graph.nodes import TurnNodes
from src.graph.edges import route_after_classifier

__all__ = [
    "build_chat_service",
    "build_conversation_graph",
    "TurnNodes",
    "route_after_classifier",
]
