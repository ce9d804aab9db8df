"""Tests for the CLI subprocess runner."""

import asyncio
import sys
import time
from unittest.mock import AsyncMock, patch

import pytest

from cli_integ import shell
from cli_integ.exceptions import CommandFailedError, CommandTimeoutError
from cli_integ.output import OutputSink
from cli_integ.shell import STREAM_LIMIT, run_command, start_process, stop_process

PY = sys.executable


class TestRunCommand:
    """Test run_command."""

    async def test_captures_stdout_and_stderr(self) -> None:
        """Both streams are captured separately."""
        result = await run_command(
            [PY, "-c", "import sys; print('out'); print('err', file=sys.stderr)"]
        )
        assert result.succeeded
        assert result.exit_code == 0
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
        assert result.elapsed >= 0

    async def test_tees_into_output_sink(self) -> None:
        """Command line and output lines are written to the sink."""
        sink = OutputSink("shell")
        await run_command([PY, "-c", "print('hello')"], output=sink)
        captured = sink.getvalue()
        assert captured.startswith("$ ")
        assert "hello\n" in captured

    async def test_env_and_cwd(self, tmp_path) -> None:
        """Extra environment is layered over os.environ and cwd is honoured."""
        result = await run_command(
            [PY, "-c", "import os; print(os.environ['CLI_INTEG_X'], os.getcwd())"],
            cwd=tmp_path,
            env={"CLI_INTEG_X": "42"},
        )
        value, cwd = result.stdout.split()
        assert value == "42"
        assert cwd == str(tmp_path.resolve())

    async def test_nonzero_exit_raises(self) -> None:
        """check=True turns a failure into CommandFailedError."""
        with pytest.raises(CommandFailedError) as exc_info:
            await run_command([PY, "-c", "import sys; print('boom', file=sys.stderr); sys.exit(3)"])
        assert exc_info.value.exit_code == 3
        assert "boom" in exc_info.value.stderr
        assert "boom" in str(exc_info.value)

    async def test_nonzero_exit_without_check(self) -> None:
        """check=False returns the failed result."""
        result = await run_command([PY, "-c", "raise SystemExit(5)"], check=False)
        assert not result.succeeded
        assert result.exit_code == 5

    async def test_missing_executable(self) -> None:
        """A missing binary is reported like a shell 'command not found'."""
        with pytest.raises(CommandFailedError) as exc_info:
            await run_command(["cli-integ-no-such-binary"])
        assert exc_info.value.exit_code == 127

    async def test_timeout_kills_process(self) -> None:
        """A command that outlives its timeout is killed and reported."""
        started = time.monotonic()
        with pytest.raises(CommandTimeoutError) as exc_info:
            await run_command([PY, "-c", "import time; time.sleep(30)"], timeout=0.5)
        assert exc_info.value.timeout == 0.5
        assert time.monotonic() - started < 15

    async def test_cancellation_kills_process(self) -> None:
        """Cancelling the caller also stops the subprocess."""
        task = asyncio.ensure_future(run_command([PY, "-c", "import time; time.sleep(30)"]))
        await asyncio.sleep(0.5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    async def test_line_longer_than_stream_limit(self) -> None:
        """Output lines over the stream limit are captured whole, in order."""
        script = (
            "import sys\n"
            f"sys.stdout.write('x' * {2 * STREAM_LIMIT})\n"
            "sys.stdout.write('\\nend\\n')\n"
        )
        result = await run_command([PY, "-c", script])
        assert result.succeeded
        assert len(result.stdout) == 2 * STREAM_LIMIT + len("\nend\n")
        assert result.stdout.endswith("x\nend\n")

    async def test_long_line_then_hang_still_times_out(self) -> None:
        """A child that floods one line and hangs is killed at the timeout."""
        script = (
            "import sys, time\n"
            f"sys.stdout.write('x' * {2 * STREAM_LIMIT})\n"
            "sys.stdout.flush()\n"
            "time.sleep(30)\n"
        )
        started = time.monotonic()
        with pytest.raises(CommandTimeoutError):
            await run_command([PY, "-c", script], timeout=2)
        assert time.monotonic() - started < 15

    async def test_reader_failure_stops_process(self) -> None:
        """If reading the pipes fails, the child is terminated before the error escapes."""
        spawned = []
        real_spawn = shell._spawn

        async def recording_spawn(*args):
            proc = await real_spawn(*args)
            spawned.append(proc)
            return proc

        with (
            patch("cli_integ.shell._spawn", new=recording_spawn),
            patch("cli_integ.shell._pump", new=AsyncMock(side_effect=RuntimeError("pipe broke"))),
        ):
            with pytest.raises(RuntimeError, match="pipe broke"):
                await run_command([PY, "-c", "import time; time.sleep(30)"])

        assert len(spawned) == 1
        assert spawned[0].returncode is not None


class TestBackgroundProcess:
    """Test start_process / stop_process."""

    async def test_wait_for_output_and_stop(self) -> None:
        """Output is collected in the background until the process is stopped."""
        sink = OutputSink("bg")
        running = await start_process(
            [
                PY,
                "-u",
                "-c",
                "import time\nprint('ready')\nwhile True: time.sleep(0.1)",
            ],
            output=sink,
        )
        try:
            assert await running.wait_for_output(r"^ready", timeout=10)
            assert running.returncode is None
        finally:
            code = await stop_process(running, grace=5)
        assert code != 0
        assert running.returncode is not None
        assert "ready" in running.captured()
        assert "ready" in sink.getvalue()

    async def test_wait_for_output_returns_false_when_process_exits(self) -> None:
        """An exited process that never printed the pattern is not waited on."""
        running = await start_process([PY, "-c", "print('bye')"])
        try:
            assert not await running.wait_for_output(r"never", timeout=10)
        finally:
            await stop_process(running)

    async def test_stop_escalates_to_kill(self) -> None:
        """A process that ignores SIGTERM is killed after the grace period."""
        running = await start_process(
            [
                PY,
                "-u",
                "-c",
                "import signal, time\n"
                "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
                "print('armed')\n"
                "while True: time.sleep(0.1)",
            ]
        )
        assert await running.wait_for_output("armed", timeout=10)
        code = await stop_process(running, grace=0.5)
        assert code == -9
