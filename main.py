"""Simple CLI entry point for the sponsorship advisor."""

import asyncio

from sponsor_advisor import AdvisorSessions
from sponsor_advisor.config import CLI_USER_ID
from sponsor_advisor.errors import AdvisorError
from sponsor_advisor.logging_config import configure_logging
from sponsor_advisor.utils import format_money


def print_recommendations(recommendations) -> None:
    for i, c in enumerate(recommendations, start=1):
        print(
            f"  {i}. {c.team_name} ({c.sport or 'sport n/a'}) - {c.package_name}\n"
            f"     {format_money(c.price)} | {c.distance_km:.1f}km away | reach {c.total_reach}\n"
            f"     {c.marketplace_url}"
        )


async def main() -> None:
    configure_logging()
    advisor = AdvisorSessions.from_config().for_user(CLI_USER_ID)
    conversation_id = None
    print("Sponsorship advisor is ready. Type 'new' for a fresh conversation, 'exit' or 'quit' to stop.")

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\nExiting.")
            break

        if not user_input:
            continue
        if user_input.lower() in {"exit", "quit"}:
            print("Goodbye.")
            break
        if user_input.lower() == "new":
            conversation_id = None
            print("Started a new conversation.\n")
            continue

        try:
            result = await advisor.handle_turn(conversation_id, user_input)
        except AdvisorError as e:
            print(f"Advisor: {e.user_message}\n")
            continue

        conversation_id = result.conversation_id
        print(f"Advisor: {result.assistant_text}")
        if result.recommendations:
            print_recommendations(result.recommendations)
        print()

    print("Session ended.")


if __name__ == "__main__":
    asyncio.run(main())
