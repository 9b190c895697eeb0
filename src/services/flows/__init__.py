"""
Flow controllers: one per kind of conversation.
"""

from src.services.flows.base import BaseFlowController
from src.services.flows.factory import FlowFactory
from src.services.flows.general import GeneralFlow
from src.services.flows.poll_creation import PollCreationFlow
from src.services.flows.poll_list import PollListFlow
from src.services.flows.poll_update import PollUpdateFlow

__all__ = [
    "BaseFlowController",
    "FlowFactory",
    "GeneralFlow",
    "PollCreationFlow",
    "PollListFlow",
    "PollUpdateFlow",
]
