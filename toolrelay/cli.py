"""Interactive terminal loop over one process-wide conversation."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable

from toolrelay.api.models import Conversation
from toolrelay.api.runner import AgentRunner

logger = logging.getLogger(__name__)

PROMPT = "What would you like to do? "
QUIT_WORDS = ("quit", "exit")

ReadLine = Callable[[str], Awaitable[str]]
Write = Callable[[str], None]


async def read_line(prompt: str) -> str:
    """Read one line from stdin without blocking the event loop.

    input() runs on a daemon thread so an abandoned read never holds up
    interpreter shutdown. EOFError is re-raised in the caller.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def _resolve(result: str | None, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result or "")

    def _worker() -> None:
        try:
            line = input(prompt)
        except (EOFError, KeyboardInterrupt) as e:
            result, error = None, e
        else:
            result, error = line, None
        try:
            loop.call_soon_threadsafe(_resolve, result, error)
        except RuntimeError:
            # Loop already closed; nobody is waiting for this line.
            pass

    threading.Thread(target=_worker, name="cli-input", daemon=True).start()
    return await future


async def run_cli(
    runner: AgentRunner,
    conversation: Conversation,
    read: ReadLine = read_line,
    write: Write = print,
) -> None:
    """Prompt, run a turn, print the reply; until quit/exit or EOF.

    Turn failures are reported and the loop continues. The runner rolls
    the conversation back, so a failed prompt leaves no trace in history.
    """
    while True:
        try:
            raw = await read(PROMPT)
        except (EOFError, KeyboardInterrupt):
            write("Ok, bye!")
            return

        user_input = raw.strip()
        if user_input.lower() in QUIT_WORDS:
            write("Ok, bye!")
            return
        if not user_input:
            write("Please enter a message.")
            continue

        try:
            outcome = await runner.run_turn(conversation, user_input)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug("CLI turn failed", exc_info=True)
            write(f"Error communicating with Claude: {e}")
            continue

        if outcome.text:
            write(outcome.text)
