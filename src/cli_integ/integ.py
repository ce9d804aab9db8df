"""Integration test registration with timeout, locks and output capture.

Usage:
    @integ_test("CDK synth bundles functions", options=IntegTestOptions(locks=("docker",)))
    @with_sam_integration_fixture
    async def test_synth_bundles(fixture: SamIntegrationFixture) -> None:
        await fixture.cdk_synth()
        ...

The decorated function is collected by pytest like any other async test.
Everything a test needs is passed in explicitly through
:class:`IntegTestOptions`; nothing is configured through ambient state.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from .config import HarnessConfig
from .exceptions import IntegTestTimeoutError
from .locks import LockSet
from .output import OutputSink, slugify

logger = logging.getLogger(__name__)

CleanupHook = Callable[["IntegContext"], "Awaitable[None] | None"]
IntegBody = Callable[["IntegContext"], Awaitable[None]]


@dataclass(frozen=True)
class IntegTestOptions:
    """Per-test execution settings.

    Attributes:
        timeout: Wall-clock budget in seconds, including lock waits
            (default: ``HarnessConfig.timeout_seconds``)
        locks: Names of exclusive locks to hold while the body runs
        cleanup_hooks: Callables run after the body on every exit path
        config: Harness configuration (default: from the environment)
    """

    timeout: float | None = None
    locks: tuple[str, ...] = ()
    cleanup_hooks: tuple[CleanupHook, ...] = ()
    config: HarnessConfig | None = None


@dataclass
class IntegContext:
    """State owned by one integration test invocation."""

    name: str
    config: HarnessConfig
    output: OutputSink
    deadline: float
    live_fixture: Any = None
    _cleanup_hooks: list[CleanupHook] = field(default_factory=list)

    def add_cleanup(self, hook: CleanupHook) -> None:
        """Register a hook; hooks run last-in, first-out."""
        self._cleanup_hooks.append(hook)

    def remaining(self) -> float:
        """Seconds left before the test's deadline (never negative)."""
        return max(0.0, self.deadline - time.monotonic())

    async def run_cleanup(self) -> None:
        """Run cleanup hooks; failures are logged, never raised."""
        while self._cleanup_hooks:
            hook = self._cleanup_hooks.pop()
            try:
                result = hook(self)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Cleanup hook %r for %s failed", hook, self.name, exc_info=True)


async def run_integ_test(name: str, body: IntegBody, options: IntegTestOptions) -> None:
    """
    Run one integration test body under its options.

    Order of events: acquire locks, run body (both bounded by the timeout),
    run cleanup hooks, release locks, flush captured output.

    Raises:
        IntegTestTimeoutError: If the timeout elapses
        LockTimeoutError: If a lock cannot be acquired within the timeout
        Exception: Whatever the body raised
    """
    config = options.config or HarnessConfig.from_environment()
    timeout = options.timeout if options.timeout is not None else config.timeout_seconds
    context = IntegContext(
        name=name,
        config=config,
        output=OutputSink(name),
        deadline=time.monotonic() + timeout,
    )
    for hook in options.cleanup_hooks:
        context.add_cleanup(hook)
    locks = LockSet(options.locks, config.lock_dir, timeout=timeout)

    logger.info("Starting %s", name)
    started = time.monotonic()
    failed = True
    try:
        scope = asyncio.timeout(timeout)
        try:
            async with scope:
                await locks.acquire()
                await body(context)
        except TimeoutError:
            if scope.expired():
                context.output.writeline(f"Test timed out after {timeout:.0f}s")
                raise IntegTestTimeoutError(name, timeout) from None
            raise
        failed = False
    finally:
        await context.run_cleanup()
        locks.release()
        elapsed = time.monotonic() - started
        if failed:
            logger.error("FAILED %s (%.1fs)", name, elapsed)
            context.output.dump_to_log()
        else:
            logger.info("PASSED %s (%.1fs)", name, elapsed)
        if config.output_dir is not None:
            try:
                context.output.save(config.output_dir)
            except OSError:
                logger.warning("Could not save output of %s", name, exc_info=True)


def integ_test(name: str, *, options: IntegTestOptions | None = None) -> Callable[[IntegBody], Any]:
    """
    Register an async body as a pytest integration test.

    The returned test function takes no pytest fixtures (the body receives
    an :class:`IntegContext` instead), carries the ``integ`` marker, and
    keeps the body's name when it starts with ``test``.

    Args:
        name: Human-readable test name, used in logs and output file names
        options: Timeout, locks and cleanup hooks for this test
    """
    resolved = options or IntegTestOptions()

    def decorator(body: IntegBody) -> Any:
        async def test_function() -> None:
            await run_integ_test(name, body, resolved)

        # Copy identity by hand: functools.wraps would expose the body's
        # signature to pytest, which would then try to inject its parameters.
        func_name = getattr(body, "__name__", "")
        if not func_name.startswith("test"):
            func_name = "test_" + slugify(name).replace("-", "_")
        test_function.__name__ = func_name
        test_function.__qualname__ = func_name
        test_function.__module__ = getattr(body, "__module__", __name__)
        test_function.__doc__ = getattr(body, "__doc__", None) or name
        test_function.integ_name = name  # type: ignore[attr-defined]
        test_function.integ_options = resolved  # type: ignore[attr-defined]
        return pytest.mark.integ(test_function)

    return decorator
