"""
Maps intents to the flow controller that handles them.
"""

from src.models.domain import LIST_INTENTS, Intent, IntentType
from src.services.flows.base import BaseFlowController
from src.services.flows.general import GeneralFlow
from src.services.flows.poll_creation import PollCreationFlow
from src.services.flows.poll_list import PollListFlow
from src.services.flows.poll_update import PollUpdateFlow


class FlowFactory:
    """Builds every controller once and hands out the one an intent needs."""

    def __init__(self, repository, request_queue=None, settings=None):
        """
        Args:
            repository: PollRepository or InMemoryRepository
            request_queue: RequestQueue for LLM calls (None disables them)
            settings: Optional Settings overriding the flow defaults
        """
        options = {}
        if settings is not None:
            options = {
                "creation": {
                    "min_topic_length": settings.min_topic_length,
                    "max_title_length": settings.max_title_length,
                    "poll_duration_days": settings.end_date_extension_days,
                },
                "update": {
                    "min_title_length": settings.min_topic_length,
                    "max_title_length": settings.max_title_length,
                    "extension_days": settings.end_date_extension_days,
                },
                "list": {
                    "recent_default": settings.recent_polls_default,
                    "voted_default": settings.voted_polls_default,
                },
            }

        self.creation = PollCreationFlow(repository, request_queue, **options.get("creation", {}))
        self.update = PollUpdateFlow(repository, request_queue, **options.get("update", {}))
        self.listing = PollListFlow(repository, request_queue, **options.get("list", {}))
        self.general = GeneralFlow(repository, request_queue)

    def for_intent(self, intent: Intent) -> BaseFlowController:
        if intent.type == IntentType.CREATE_POLL:
            return self.creation
        if intent.type == IntentType.UPDATE_POLL:
            return self.update
        if intent.type in LIST_INTENTS:
            return self.listing
        return self.general
