"""
Console entry point for manual PollBot sessions.

    python -m src.app --user-id alice --admin
"""

import argparse
import asyncio
import uuid

from src import config
from src.database.memory import InMemoryRepository
from src.graph.builder import build_chat_service
from src.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with PollBot from the terminal.")
    parser.add_argument("--user-id", help="User id for the session (random when omitted)")
    parser.add_argument(
        "--anonymous", action="store_true", help="Chat without a user id"
    )
    parser.add_argument(
        "--admin",
        action="store_true",
        help="Grant the admin role (only with the in-memory repository)",
    )
    return parser.parse_args(argv)


async def run_console_chat(args: argparse.Namespace) -> None:
    """Async main loop for console chat interaction."""
    settings = config.get_settings()
    user_id = None if args.anonymous else (args.user_id or f"console-{uuid.uuid4().hex[:8]}")

    repository = None
    if not (settings.supabase_url and settings.supabase_service_key):
        roles = {user_id: "admin"} if args.admin and user_id else {}
        repository = InMemoryRepository(roles=roles)

    chat_service = build_chat_service(settings, repository=repository)
    logger.info("console_mode_started", user_id=user_id)

    print("\n" + "=" * 60)
    print("PollBot - Type 'exit' or 'quit' to stop")
    print("=" * 60 + "\n")

    try:
        while True:
            try:
                text = input("\nYou: ")
            except (EOFError, KeyboardInterrupt):
                logger.info("conversation_interrupted_by_user")
                break
            if text.strip().lower() in ["exit", "quit"]:
                break
            if not text.strip():
                continue

            response = await chat_service.process_message(user_id, text)
            if response.intent is not None:
                print(f"-> Intent: {response.intent.type.value}")
            print(f"\nPollBot:\n{response.message.content}")
    finally:
        await chat_service.aclose()

    logger.info("conversation_ended", user_id=user_id)
    print("\nGoodbye!")


def main(argv: list[str] | None = None) -> None:
    settings = config.get_settings()
    configure_logging(level=settings.log_level, use_structured=settings.structured_logging)
    asyncio.run(run_console_chat(parse_args(argv)))


if __name__ == "__main__":
    main()
