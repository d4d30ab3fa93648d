"""Tests for the interactive session loop."""

import os
import select
import signal
import subprocess
import sys
import textwrap
import time
from pathlib import Path
from typing import (
    Iterator,
    List,
    Tuple,
)

import pytest

from entrachat.client.cli import (
    is_exit_command,
    prompt,
    run_session,
)
from entrachat.core.schema import (
    TurnResult,
    TurnState,
)


class RecordingConversation:
    def __init__(self, fail_on: str | None = None) -> None:
        self.turns: List[str] = []
        self.fail_on = fail_on

    async def handle_user_turn(self, text: str) -> TurnResult:
        self.turns.append(text)
        if text == self.fail_on:
            return TurnResult(state=TurnState.FAILED, iterations=1, error="boom")
        return TurnResult(state=TurnState.DONE, reply="ok", iterations=1)


def _lines(*lines: Tuple[str, bool]):
    feed: Iterator[Tuple[str, bool]] = iter(lines)
    return lambda: next(feed)


@pytest.mark.parametrize("text", ["exit", "QUIT", "Exit", " quit "])
def test_exit_commands(text: str) -> None:
    assert is_exit_command(text)


@pytest.mark.parametrize("text", ["exit now", "q", "", "How do I exit?"])
def test_not_exit_commands(text: str) -> None:
    assert not is_exit_command(text)


@pytest.mark.asyncio
async def test_session_forwards_questions_until_exit(capsys: pytest.CaptureFixture[str]) -> None:
    """Blank lines are skipped and exit commands never reach the conversation."""

    convo = RecordingConversation(fail_on="broken")
    reader = _lines(
        ("How many users?", True),
        ("", True),
        ("broken", True),
        ("Show guests", True),
        ("QUIT", True),
        ("never read", True),
    )

    await run_session(convo, read_line=reader)

    assert convo.turns == ["How many users?", "broken", "Show guests"]
    assert "Goodbye!" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_session_ends_on_eof() -> None:
    convo = RecordingConversation()

    await run_session(convo, read_line=_lines(("Show guests", True), ("", False)))

    assert convo.turns == ["Show guests"]


def test_prompt_restores_interrupt_handler() -> None:
    before = signal.getsignal(signal.SIGINT)

    assert prompt(lambda: ("hello", True)) == ("hello", True)
    assert signal.getsignal(signal.SIGINT) is before


SESSION_SCRIPT = textwrap.dedent(
    """
    import asyncio

    from entrachat.client.cli import run_session


    class Idle:
        async def handle_user_turn(self, text):
            raise AssertionError(text)


    asyncio.run(run_session(Idle()))
    print("session closed", flush=True)
    """
)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_ctrl_c_at_prompt_ends_the_process() -> None:
    """SIGINT while waiting for input closes the session instead of hanging on the read."""

    src = Path(__file__).resolve().parents[1] / "src"
    env = dict(os.environ, PYTHONPATH=os.pathsep.join([str(src), os.environ.get("PYTHONPATH", "")]))
    proc = subprocess.Popen(
        [sys.executable, "-u", "-c", SESSION_SCRIPT],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        env=env,
    )
    try:
        output = b""
        deadline = time.monotonic() + 15
        while b"You: " not in output and time.monotonic() < deadline:
            ready, _, _ = select.select([proc.stdout], [], [], 0.5)
            if ready:
                chunk = os.read(proc.stdout.fileno(), 4096)
                if not chunk:
                    break
                output += chunk
        assert b"You: " in output, output.decode(errors="replace")

        # stdin stays open, so only the interrupt can end the read
        proc.send_signal(signal.SIGINT)
        proc.wait(timeout=8)
        rest = proc.stdout.read()
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        proc.stdin.close()
        proc.stdout.close()

    assert proc.returncode == 0, (output + rest).decode(errors="replace")
    assert b"session closed" in rest
