"""Tests for the integration test wrapper."""

import asyncio
import inspect
import logging
from dataclasses import replace

import pytest
from filelock import FileLock

from cli_integ.exceptions import IntegTestTimeoutError, LockTimeoutError
from cli_integ.integ import IntegContext, IntegTestOptions, integ_test, run_integ_test


class TestRunIntegTest:
    """Test run_integ_test."""

    async def test_body_receives_context(self, harness_config) -> None:
        """The body gets a context carrying name, config and output."""
        seen = {}

        async def body(context: IntegContext) -> None:
            seen["context"] = context
            context.output.writeline("inside")

        await run_integ_test("receives context", body, IntegTestOptions(config=harness_config))
        context = seen["context"]
        assert context.name == "receives context"
        assert context.config is harness_config
        assert "inside" in context.output.getvalue()
        assert 0 < context.remaining() <= harness_config.timeout_seconds

    async def test_failure_propagates_after_cleanup(self, harness_config, caplog) -> None:
        """The body's exception escapes; cleanup ran first and output was dumped."""
        order = []

        async def body(context: IntegContext) -> None:
            context.add_cleanup(lambda ctx: order.append("cleanup"))
            context.output.writeline("diagnostic output")
            raise RuntimeError("assertion went wrong")

        with pytest.raises(RuntimeError, match="assertion went wrong"):
            await run_integ_test("fails", body, IntegTestOptions(config=harness_config))

        assert order == ["cleanup"]
        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("FAILED fails") for m in messages)
        assert any("diagnostic output" in m for m in messages)

    async def test_passing_test_does_not_dump_output(self, harness_config, caplog) -> None:
        """Output of passing tests stays quiet."""

        async def body(context: IntegContext) -> None:
            context.output.writeline("noise")

        await run_integ_test("passes", body, IntegTestOptions(config=harness_config))
        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("PASSED passes") for m in messages)
        assert not any("noise" in m for m in messages)

    async def test_timeout_raises_and_runs_cleanup(self, harness_config) -> None:
        """An overrunning body is cancelled and cleanup still completes."""
        cleaned = []

        async def slow_cleanup(context: IntegContext) -> None:
            # Cleanup runs outside the expired timeout scope
            await asyncio.sleep(0.05)
            cleaned.append(context.name)

        async def body(context: IntegContext) -> None:
            context.add_cleanup(slow_cleanup)
            await asyncio.sleep(30)

        options = IntegTestOptions(timeout=0.2, config=harness_config)
        with pytest.raises(IntegTestTimeoutError) as exc_info:
            await run_integ_test("too slow", body, options)
        assert exc_info.value.timeout == 0.2
        assert cleaned == ["too slow"]

    async def test_body_timeout_error_is_not_rewritten(self, harness_config) -> None:
        """A TimeoutError raised by the body itself is passed through."""

        async def body(context: IntegContext) -> None:
            raise TimeoutError("from the body")

        with pytest.raises(TimeoutError, match="from the body"):
            await run_integ_test("own timeout", body, IntegTestOptions(config=harness_config))

    async def test_cleanup_hooks_run_lifo_and_failures_are_swallowed(
        self, harness_config, caplog
    ) -> None:
        """Hooks run last-in first-out; a failing hook does not stop the rest."""
        order = []

        def failing(context: IntegContext) -> None:
            order.append("failing")
            raise OSError("disk gone")

        async def body(context: IntegContext) -> None:
            context.add_cleanup(lambda ctx: order.append("body-first"))
            context.add_cleanup(failing)

        options = IntegTestOptions(
            cleanup_hooks=(lambda ctx: order.append("option"),), config=harness_config
        )
        await run_integ_test("hooks", body, options)
        assert order == ["failing", "body-first", "option"]
        assert any(
            r.levelno == logging.WARNING and "Cleanup hook" in r.getMessage()
            for r in caplog.records
        )

    async def test_locks_held_during_body_and_released(
        self, harness_config, unique_lock_name
    ) -> None:
        """Requested locks are held while the body runs."""
        lock_path = harness_config.lock_dir / f"{unique_lock_name}.lock"
        probe_results = []

        async def body(context: IntegContext) -> None:
            probe = FileLock(str(lock_path), thread_local=False)
            try:
                probe.acquire(timeout=0)
                probe_results.append("free")
                probe.release()
            except Exception:
                probe_results.append("held")

        options = IntegTestOptions(locks=(unique_lock_name,), config=harness_config)
        await run_integ_test("locked", body, options)
        assert probe_results == ["held"]

        probe = FileLock(str(lock_path), thread_local=False)
        probe.acquire(timeout=0)
        probe.release()

    async def test_lock_wait_counts_against_timeout(
        self, harness_config, unique_lock_name
    ) -> None:
        """A lock that never frees up fails the test within its timeout."""
        harness_config.lock_dir.mkdir(parents=True)
        holder = FileLock(str(harness_config.lock_dir / f"{unique_lock_name}.lock"))
        holder.acquire()
        ran = []

        async def body(context: IntegContext) -> None:
            ran.append(True)

        try:
            options = IntegTestOptions(
                timeout=0.3, locks=(unique_lock_name,), config=harness_config
            )
            with pytest.raises((LockTimeoutError, IntegTestTimeoutError)):
                await run_integ_test("starved", body, options)
        finally:
            holder.release()
        assert ran == []

    async def test_output_saved_when_configured(self, harness_config, tmp_path) -> None:
        """With an output directory, every test's output is saved."""
        config = replace(harness_config, output_dir=tmp_path / "logs")

        async def body(context: IntegContext) -> None:
            context.output.writeline("kept")

        await run_integ_test("Saved Output", body, IntegTestOptions(config=config))
        assert (tmp_path / "logs" / "saved-output.log").read_text() == "kept\n"


class TestIntegTestDecorator:
    """Test integ_test registration."""

    def test_registered_function_shape(self, harness_config) -> None:
        """The registered test keeps its name, takes no parameters, and is marked."""

        @integ_test("shape", options=IntegTestOptions(config=harness_config))
        async def test_shape(context: IntegContext) -> None:
            """Docstring survives."""

        assert test_shape.__name__ == "test_shape"
        assert test_shape.__doc__ == "Docstring survives."
        assert inspect.iscoroutinefunction(test_shape)
        assert list(inspect.signature(test_shape).parameters) == []
        assert not hasattr(test_shape, "__wrapped__")
        assert [m.name for m in test_shape.pytestmark] == ["integ"]
        assert test_shape.integ_name == "shape"

    def test_name_derived_when_body_is_not_a_test(self) -> None:
        """Bodies without a test_ name get one derived from the test name."""

        @integ_test("CDK synth: metadata")
        async def body(context: IntegContext) -> None:
            pass

        assert body.__name__ == "test_cdk_synth_metadata"
        assert body.__doc__ == "CDK synth: metadata"

    async def test_calling_runs_the_body(self, harness_config) -> None:
        """Awaiting the registered function runs the body once."""
        calls = []

        @integ_test("runs", options=IntegTestOptions(config=harness_config))
        async def test_runs(context: IntegContext) -> None:
            calls.append(context.name)

        await test_runs()
        assert calls == ["runs"]
