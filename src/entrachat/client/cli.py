"""Interactive console session for entrachat."""

from __future__ import annotations

import logging
import signal
import threading
from typing import (
    Callable,
    Protocol,
    Tuple,
)

from entrachat.common import (
    RULE,
    AnsiColors,
    colored_print,
)
from entrachat.core.schema import TurnResult

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"exit", "quit"}

EXAMPLE_QUERIES = (
    "How many users do we have in our tenant?",
    "List all users who didn't sign in last month",
    "Show me all guest users",
    "Is MFA enabled for all administrators?",
)


class TurnHandler(Protocol):
    async def handle_user_turn(self, text: str) -> TurnResult:
        ...


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def is_exit_command(text: str) -> bool:
    """True for 'exit' or 'quit' in any letter case."""
    return text.strip().lower() in EXIT_COMMANDS


def prompt(read_line: Callable[[], Tuple[str, bool]]) -> Tuple[str, bool]:
    """
    Show the "You: " prompt and read one line on the calling thread.

    While waiting, Ctrl+C raises :class:`KeyboardInterrupt` inside the read (which
    :func:`get_user_message` reports as end of input) instead of going through the asyncio
    runner, whose handler only cancels the main task and would leave the read blocked.
    """
    on_main_thread = threading.current_thread() is threading.main_thread()
    previous = signal.signal(signal.SIGINT, signal.default_int_handler) if on_main_thread else None
    try:
        colored_print("You: ", AnsiColors.CYAN, end="", flush=True)
        return read_line()
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def print_welcome() -> None:
    print(RULE)
    print("Interactive Mode - Ask questions about your Microsoft Entra tenant")
    print("Examples:")
    for example in EXAMPLE_QUERIES:
        print(f"  • {example}")
    print("Type 'exit' or 'quit' to end the session")
    print(f"{RULE}\n")


# ---------------------------------------------------------------------------
# Session loop
# ---------------------------------------------------------------------------
async def run_session(
    conversation: TurnHandler,
    read_line: Callable[[], Tuple[str, bool]] = get_user_message,
) -> None:
    """Read one line at a time and hand each question to *conversation* until the user leaves."""
    print_welcome()

    while True:
        user_msg, ok = prompt(read_line)
        if not ok:
            print()
            break  # Ctrl+C / EOF
        if not user_msg:
            continue
        if is_exit_command(user_msg):
            print("\nGoodbye!")
            break

        result = await conversation.handle_user_turn(user_msg)
        logger.info("Turn finished: state=%s iterations=%d", result.state.value, result.iterations)
