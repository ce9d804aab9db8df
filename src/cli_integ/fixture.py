"""Per-test fixture provisioning and teardown.

A fixture is a private copy of a CDK test application plus a stack-name
prefix nobody else holds. Synth-only tests never touch the cloud; tests
that deploy get their stacks deleted afterwards, whether they passed or
not.
"""

from __future__ import annotations

import functools
import json
import logging
import shutil
import tempfile
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any, TypeVar

from .config import HarnessConfig
from .exceptions import ProvisioningError, TemplateNotFoundError
from .infra.stack_manager import StackManager
from .integ import IntegBody, IntegContext
from .naming import full_stack_name, generate_stack_name_prefix
from .output import OutputSink
from .shell import CommandResult, run_command

logger = logging.getLogger(__name__)

CDK_APPS_DIR = Path(__file__).parent / "resources" / "cdk-apps"

DEFAULT_APP = "sam_cdk_integ_app"

CLOUD_ASSEMBLY_DIR = "cdk.out"

_COPY_IGNORE = shutil.ignore_patterns(
    CLOUD_ASSEMBLY_DIR, "__pycache__", "node_modules", ".aws-sam", "*.pyc"
)

FixtureT = TypeVar("FixtureT", bound="IntegrationFixture")


def resolve_app_dir(app: str | Path) -> Path:
    """Return the source directory of a bundled app name or an explicit path."""
    candidate = Path(app)
    if candidate.is_absolute():
        return candidate
    return CDK_APPS_DIR / app


class IntegrationFixture:
    """
    Isolated execution context for one integration test.

    Attributes:
        context: The owning test invocation
        integ_test_dir: Working directory holding the copied app
        stack_name_prefix: Unique prefix for every stack this test creates
    """

    def __init__(self, context: IntegContext, integ_test_dir: Path, stack_name_prefix: str) -> None:
        self.context = context
        self.integ_test_dir = integ_test_dir
        self.stack_name_prefix = stack_name_prefix
        self._deployed: set[str] = set()
        self._disposed = False

    @property
    def config(self) -> HarnessConfig:
        return self.context.config

    @property
    def output(self) -> OutputSink:
        return self.context.output

    @property
    def cloud_assembly_dir(self) -> Path:
        return self.integ_test_dir / CLOUD_ASSEMBLY_DIR

    @property
    def deployed_stacks(self) -> list[str]:
        return sorted(self._deployed)

    def full_stack_name(self, name: str) -> str:
        return full_stack_name(self.stack_name_prefix, name)

    def full_stack_names(self, names: Sequence[str]) -> list[str]:
        return [self.full_stack_name(n) for n in names]

    def cdk_env(self) -> dict[str, str]:
        """Environment for every CDK CLI call made by this fixture."""
        env = self.config.aws_env()
        env.update(
            {
                "STACK_NAME_PREFIX": self.stack_name_prefix,
                "CDK_DISABLE_VERSION_CHECK": "1",
                "CI": "true",
            }
        )
        return env

    async def cdk(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run the CDK CLI in the working directory."""
        merged = self.cdk_env()
        if env:
            merged.update(env)
        return await run_command(
            [*self.config.cdk_command, *args],
            cwd=self.integ_test_dir,
            env=merged,
            output=self.output,
            check=check,
            timeout=timeout if timeout is not None else self.context.remaining(),
        )

    async def cdk_synth(
        self, stack_names: Sequence[str] = (), options: Sequence[str] = ()
    ) -> CommandResult:
        """Synthesize the app (all stacks unless names are given) into ``cdk.out``."""
        return await self.cdk(["synth", *options, *self.full_stack_names(stack_names)])

    async def cdk_deploy(
        self, stack_names: Sequence[str], options: Sequence[str] = ()
    ) -> CommandResult:
        """Deploy stacks; they are deleted when the fixture is disposed."""
        full_names = self.full_stack_names(stack_names)
        # Track before deploying: a failed deploy can still leave a stack behind
        self._deployed.update(full_names)
        return await self.cdk(
            ["deploy", "--require-approval=never", "--progress", "events", *options, *full_names]
        )

    async def cdk_destroy(
        self, stack_names: Sequence[str], options: Sequence[str] = ()
    ) -> CommandResult:
        full_names = self.full_stack_names(stack_names)
        result = await self.cdk(["destroy", "--force", *options, *full_names])
        self._deployed.difference_update(full_names)
        return result

    def template_path(self, stack_name: str) -> Path:
        return self.cloud_assembly_dir / f"{self.full_stack_name(stack_name)}.template.json"

    def template(self, stack_name: str) -> dict[str, Any]:
        """
        Read back a synthesized template by logical stack name.

        Raises:
            TemplateNotFoundError: If the stack has not been synthesized
        """
        path = self.template_path(stack_name)
        if not path.is_file():
            raise TemplateNotFoundError(self.full_stack_name(stack_name), str(path))
        with path.open() as f:
            template: dict[str, Any] = json.load(f)
        return template

    def asset_dir(self, asset_path: str) -> Path:
        """Absolute location of an asset recorded in template metadata."""
        return self.cloud_assembly_dir / asset_path

    async def dispose(self, _context: IntegContext | None = None) -> None:
        """
        Tear the fixture down: delete deployed stacks, remove the working dir.

        Failures are logged and swallowed so they never mask the test outcome.
        """
        if self._disposed:
            return
        self._disposed = True
        try:
            if self._deployed:
                await self._delete_stacks()
        finally:
            self._remove_work_dir()
            if self.context.live_fixture is self:
                self.context.live_fixture = None

    async def _delete_stacks(self) -> None:
        try:
            async with StackManager(
                region=self.config.region, endpoint_url=self.config.endpoint_url
            ) as manager:
                deleted = await manager.delete_stacks_with_prefix(f"{self.stack_name_prefix}-")
            self.output.writeline(f"Deleted stacks: {', '.join(deleted) or '(none)'}")
        except Exception:
            logger.warning(
                "Failed to delete stacks with prefix %s", self.stack_name_prefix, exc_info=True
            )

    def _remove_work_dir(self) -> None:
        if self.config.keep_work_dirs:
            logger.info("Keeping working directory %s", self.integ_test_dir)
            return
        try:
            shutil.rmtree(self.integ_test_dir)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Failed to remove %s", self.integ_test_dir, exc_info=True)


async def provision_fixture(
    context: IntegContext,
    *,
    app: str | Path = DEFAULT_APP,
    fixture_cls: type[FixtureT] = IntegrationFixture,  # type: ignore[assignment]
) -> FixtureT:
    """
    Create a fixture for ``context`` and register its teardown.

    Raises:
        ProvisioningError: If a fixture is already live for this test, or
            the working directory cannot be prepared
    """
    if context.live_fixture is not None:
        raise ProvisioningError(context.name, "a fixture is already live for this test")

    config = context.config
    source = resolve_app_dir(app)
    if not source.is_dir():
        raise ProvisioningError(context.name, f"test app not found at {source}")

    prefix = generate_stack_name_prefix(config.run_id)
    try:
        config.work_root.mkdir(parents=True, exist_ok=True)
        integ_test_dir = Path(tempfile.mkdtemp(prefix=f"{prefix}-", dir=config.work_root))
    except OSError as e:
        raise ProvisioningError(context.name, f"could not prepare working directory: {e}") from e
    try:
        shutil.copytree(source, integ_test_dir, dirs_exist_ok=True, ignore=_COPY_IGNORE)
    except OSError as e:
        # No cleanup hook is registered yet
        shutil.rmtree(integ_test_dir, ignore_errors=True)
        raise ProvisioningError(context.name, f"could not copy test app: {e}") from e

    fixture = fixture_cls(context, integ_test_dir, prefix)
    context.live_fixture = fixture
    context.add_cleanup(fixture.dispose)
    context.output.writeline(f"Fixture {prefix} in {integ_test_dir}")
    logger.debug("Provisioned fixture %s for %s", prefix, context.name)
    return fixture


def fixture_decorator(
    fixture_cls: type[FixtureT],
    block: Callable[[FixtureT], Awaitable[None]] | None,
    app: str | Path,
) -> Any:
    def adapt(body: Callable[[FixtureT], Awaitable[None]]) -> IntegBody:
        @functools.wraps(body)
        async def run(context: IntegContext) -> None:
            fixture = await provision_fixture(context, app=app, fixture_cls=fixture_cls)
            await body(fixture)

        return run

    return adapt(block) if block is not None else adapt


def with_integration_fixture(
    block: Callable[[IntegrationFixture], Awaitable[None]] | None = None,
    *,
    app: str | Path = DEFAULT_APP,
) -> Any:
    """
    Adapt a body that takes a fixture into one that takes an IntegContext.

    Usable bare (``@with_integration_fixture``) or with arguments
    (``@with_integration_fixture(app="my-app")``).
    """
    return fixture_decorator(IntegrationFixture, block, app)
