"""
General flow: greetings, help, reset acknowledgements, delete requests and free chat.
Always terminal and never touches stored data.
"""

from src.models.domain import ConversationContext, FlowResult, Intent, IntentType
from src.services.flows.base import BaseFlowController
from src.utils.prompts import response_text


class GeneralFlow(BaseFlowController):
    name = "general"

    async def handle_intent(self, intent: Intent, context: ConversationContext) -> FlowResult:
        role = context.user_profile.role

        if intent.type == IntentType.GREETING:
            return self.end(response_text(f"greeting_{role}"), "greeting")

        if intent.type == IntentType.HELP:
            return self.end(response_text(f"help_{role}"), "help")

        if intent.type == IntentType.RESET:
            return self._reset(intent, role)

        if intent.type == IntentType.DELETE_POLL:
            if not context.user_profile.is_admin:
                return self.end(response_text("admin_only_delete"), "permission_denied", success=False)
            return self.end(response_text("delete_unavailable"), "delete_unavailable")

        if intent.entities.get("confirmation"):
            return self.end(response_text("no_pending_action"), "no_pending_action")

        return self.end(
            response_text("general_fallback"),
            "general_chat",
            user_message=intent.raw_text,
        )

    def _reset(self, intent: Intent, role: str) -> FlowResult:
        had_state = bool((intent.notes or {}).get("had_state"))
        if intent.entities.get("keyword") == "help":
            prefix = response_text("reset") + "\n\n" if had_state else ""
            return self.end(prefix + response_text(f"help_{role}"), "help")
        key = "reset" if had_state else "reset_idle"
        return self.end(response_text(key), "reset")
