"""Child-process execution shared by the shell tool and subprocess-backed tools."""
from __future__ import annotations

import asyncio
import os
import signal as signal_module
from dataclasses import dataclass

from agent_runtime.cancellation import CancellationToken
from agent_runtime.errors import CancellationError, ToolExecutionError
from agent_runtime.logging import get_logger

logger = get_logger("tools.process")

# Maximum output size in characters before truncation
MAX_OUTPUT = 100_000


@dataclass
class ProcessResult:
    stdout: str
    stderr: str
    exit_code: int | None
    signal: int | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def describe(self) -> str:
        """Stdout, stderr and exit status as one text block."""
        signal_name = "(none)"
        if self.signal is not None:
            try:
                signal_name = signal_module.Signals(self.signal).name
            except ValueError:
                signal_name = str(self.signal)
        return "\n".join([
            f"Stdout: {self.stdout.rstrip() or '(empty)'}",
            f"Stderr: {self.stderr.rstrip() or '(empty)'}",
            f"Exit Code: {self.exit_code if self.exit_code is not None else '(none)'}",
            f"Signal: {signal_name}",
        ])


def decode_output(data: bytes | None) -> str:
    """Decode subprocess output bytes to string. Whitespace is kept as the child wrote it."""
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


def truncate_output(text: str, limit: int = MAX_OUTPUT) -> str:
    """Keep the head and tail of oversized output."""
    if len(text) <= limit:
        return text
    half = limit // 2
    return (
        text[:half]
        + f"\n\n... ({len(text) - limit} characters truncated) ...\n\n"
        + text[-half:]
    )


def _kill(process: asyncio.subprocess.Process) -> None:
    # The child leads its own session; grandchildren holding the pipes die with the group
    try:
        os.killpg(process.pid, signal_module.SIGKILL)
    except ProcessLookupError:
        pass


async def run_process(
    argv: list[str] | None = None,
    *,
    shell_command: str | None = None,
    input: bytes | None = None,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    cancel: CancellationToken | None = None,
    timeout: float | None = None,
) -> ProcessResult:
    """
    Run a child process to completion and capture its output.

    Exactly one of ``argv`` (exec, no shell) or ``shell_command`` must be
    given. The child is killed if ``cancel`` fires (raising
    :class:`CancellationError`), if ``timeout`` elapses (raising
    :class:`ToolExecutionError`), or if the awaiting task is itself cancelled.
    """
    if (argv is None) == (shell_command is None):
        raise ValueError("Pass exactly one of argv or shell_command")
    if cancel is not None:
        cancel.raise_if_cancelled("Command cancelled before it started.")

    try:
        if shell_command is not None:
            process = await asyncio.create_subprocess_shell(
                shell_command,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
                start_new_session=True,
            )
        else:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
                start_new_session=True,
            )
    except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
        target = shell_command if shell_command is not None else argv[0]
        raise ToolExecutionError(f"Failed to start {target}: {e}") from e

    communicate = asyncio.ensure_future(process.communicate(input))
    waiters: set[asyncio.Future] = {communicate}
    cancel_waiter = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
    if cancel_waiter is not None:
        waiters.add(cancel_waiter)

    try:
        await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        if not communicate.done():
            _kill(process)
            await asyncio.gather(communicate, return_exceptions=True)
            if cancel is not None and cancel.cancelled:
                logger.debug("Killed pid %s on cancellation", process.pid)
                raise CancellationError("Command was cancelled.")
            raise ToolExecutionError(f"Command timed out after {timeout}s")
        stdout, stderr = communicate.result()
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()
        if not communicate.done():
            _kill(process)
            communicate.cancel()

    code = process.returncode
    return ProcessResult(
        stdout=decode_output(stdout),
        stderr=decode_output(stderr),
        exit_code=code if code is None or code >= 0 else None,
        signal=-code if code is not None and code < 0 else None,
    )
