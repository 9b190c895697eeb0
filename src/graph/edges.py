"""
Graph edge conditions for routing between nodes.
"""

from src.models.domain import IntentType, TurnState
from src.utils.logger import get_logger

logger = get_logger(__name__)


def route_after_classifier(state: TurnState) -> str:
    """
    Routes based on the classified intent.
    Fails gracefully with default routing if state is invalid.

    Args:
        state: Current turn state

    Returns:
        Next node name: "reset" or "flow"
    """
    intent = state.get("intent")
    if intent is None:
        logger.warning("no_intent_in_state", fallback="flow")
        return "flow"

    if intent.type == IntentType.RESET:
        return "reset"
    return "flow"
