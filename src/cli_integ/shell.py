"""Asynchronous CLI subprocess execution.

Commands run in their own session so that a timeout or cancellation can
take down the whole process tree (``sam local`` spawns containers and
helper processes of its own).
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shlex
import signal
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .exceptions import CommandFailedError, CommandTimeoutError
from .output import OutputSink

logger = logging.getLogger(__name__)

STREAM_LIMIT = 1024 * 1024
"""Maximum line length read from a subprocess stream."""

TERMINATE_GRACE_SECONDS = 10.0


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a finished CLI invocation."""

    argv: list[str]
    exit_code: int
    stdout: str
    stderr: str
    elapsed: float

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


def _merged_env(env: Mapping[str, str] | None) -> dict[str, str]:
    merged = dict(os.environ)
    if env:
        merged.update(env)
    return merged


async def _pump(
    stream: asyncio.StreamReader | None,
    parts: list[str],
    output: OutputSink | None,
) -> None:
    if stream is None:
        return
    while True:
        try:
            line = await stream.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            # Trailing output without a newline, or b"" at EOF
            line = e.partial
        except asyncio.LimitOverrunError as e:
            # Line longer than STREAM_LIMIT: take it in chunks
            line = await stream.read(e.consumed or STREAM_LIMIT)
        if not line:
            break
        text = line.decode("utf-8", errors="replace")
        parts.append(text)
        if output is not None:
            output.write(text)


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
    except ProcessLookupError:
        pass


async def _terminate(proc: asyncio.subprocess.Process, grace: float) -> None:
    """Stop a process: SIGTERM first, SIGKILL once the grace period runs out."""
    if proc.returncode is not None:
        return
    _signal_group(proc, signal.SIGTERM)
    try:
        await asyncio.wait_for(proc.wait(), grace)
    except asyncio.TimeoutError:
        logger.warning("Process %d ignored SIGTERM, killing", proc.pid)
        _signal_group(proc, signal.SIGKILL)
        await proc.wait()


async def _spawn(
    argv: list[str], cwd: Path | str | None, env: Mapping[str, str] | None
) -> asyncio.subprocess.Process:
    try:
        return await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd is not None else None,
            env=_merged_env(env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
            limit=STREAM_LIMIT,
        )
    except FileNotFoundError as e:
        # Mirror the shell's "command not found" status
        raise CommandFailedError(argv, 127, stderr=str(e)) from e


async def run_command(
    argv: Sequence[str],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    output: OutputSink | None = None,
    check: bool = True,
    timeout: float | None = None,
) -> CommandResult:
    """
    Run a command to completion, teeing its output into ``output``.

    Args:
        argv: Command line
        cwd: Working directory
        env: Extra environment variables layered over ``os.environ``
        output: Sink that receives the command line and every output line
        check: Raise if the command exits non-zero
        timeout: Seconds before the process tree is killed

    Returns:
        CommandResult with captured stdout/stderr

    Raises:
        CommandFailedError: If ``check`` and the exit code is non-zero
        CommandTimeoutError: If the command does not finish within ``timeout``
    """
    argv = list(argv)
    if output is not None:
        output.writeline(f"$ {shlex.join(argv)}")
    logger.debug("Running %s (cwd=%s)", shlex.join(argv), cwd)

    start = time.monotonic()
    proc = await _spawn(argv, cwd, env)
    stdout_parts: list[str] = []
    stderr_parts: list[str] = []

    async def communicate() -> int:
        await asyncio.gather(
            _pump(proc.stdout, stdout_parts, output),
            _pump(proc.stderr, stderr_parts, output),
        )
        return await proc.wait()

    try:
        exit_code = await asyncio.wait_for(communicate(), timeout)
    except asyncio.TimeoutError:
        await _terminate(proc, TERMINATE_GRACE_SECONDS)
        raise CommandTimeoutError(argv, timeout or 0.0) from None
    except BaseException:
        # Cancellation, or a failure reading the pipes: never leave the child running
        await _terminate(proc, TERMINATE_GRACE_SECONDS)
        raise

    result = CommandResult(
        argv=argv,
        exit_code=exit_code,
        stdout="".join(stdout_parts),
        stderr="".join(stderr_parts),
        elapsed=time.monotonic() - start,
    )
    logger.debug("%s exited with %d after %.1fs", argv[0], exit_code, result.elapsed)

    if check and exit_code != 0:
        raise CommandFailedError(argv, exit_code, result.stdout, result.stderr)
    return result


@dataclass
class RunningProcess:
    """A long-running subprocess whose output is collected in the background."""

    argv: list[str]
    proc: asyncio.subprocess.Process
    output: OutputSink | None = None
    lines: list[str] = field(default_factory=list)
    _pumps: asyncio.Future[list[None]] | None = None

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def returncode(self) -> int | None:
        return self.proc.returncode

    def captured(self) -> str:
        return "".join(self.lines)

    async def wait_for_output(self, pattern: str, timeout: float, interval: float = 0.2) -> bool:
        """Wait until ``pattern`` (a regex) appears in the process output.

        Returns False if the process exits or the timeout elapses first.
        """
        regex = re.compile(pattern)
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if regex.search(self.captured()):
                return True
            if self.proc.returncode is not None:
                return bool(regex.search(self.captured()))
            await asyncio.sleep(interval)
        return False


async def start_process(
    argv: Sequence[str],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    output: OutputSink | None = None,
) -> RunningProcess:
    """Start a background process; stop it with :func:`stop_process`."""
    argv = list(argv)
    if output is not None:
        output.writeline(f"$ {shlex.join(argv)} &")
    logger.debug("Starting %s (cwd=%s)", shlex.join(argv), cwd)

    proc = await _spawn(argv, cwd, env)
    running = RunningProcess(argv=argv, proc=proc, output=output)
    running._pumps = asyncio.gather(
        _pump(proc.stdout, running.lines, output),
        _pump(proc.stderr, running.lines, output),
    )
    return running


async def stop_process(running: RunningProcess, grace: float = TERMINATE_GRACE_SECONDS) -> int:
    """Terminate a background process tree and drain its output.

    Returns:
        The process exit code
    """
    await _terminate(running.proc, grace)
    if running._pumps is not None:
        try:
            await asyncio.wait_for(running._pumps, grace)
        except asyncio.TimeoutError:
            # Grandchildren may still hold the pipes open
            running._pumps.cancel()
    logger.debug("%s stopped with %s", running.argv[0], running.proc.returncode)
    return running.proc.returncode if running.proc.returncode is not None else -1
