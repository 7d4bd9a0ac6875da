"""Minimal demonstration of a two-phase advisor conversation."""

import asyncio

from advisor_core.api.service import get_shortcuts, send_message


async def main() -> None:
    first = await send_message("demo-user", "I earn 60k a month and want to start saving")
    print("User:", first["user_text"])
    print("Advisor:", first["assistant_text"])

    final = await send_message(
        "demo-user",
        "Generate a report for my savings plan",
        conversation_id=first["conversation_id"],
    )
    print("Advisor (%s):" % final["mode"], final["assistant_text"])

    shortcuts = await get_shortcuts("demo-user", conversation_id=first["conversation_id"])
    print("Shortcuts:", ", ".join(shortcuts["shortcuts"]))


if __name__ == "__main__":
    asyncio.run(main())
