"""
cli-integ: integration-test harness for the CDK and SAM command-line tools.

Each test gets a private copy of a CDK app and a stack-name prefix nobody
else holds, runs under an explicit timeout with optional exclusive locks,
and is cleaned up whatever its outcome.

Example:
    from cli_integ import SamIntegrationFixture, integ_test, with_sam_integration_fixture

    @integ_test("CDK synth adds the metadata properties expected by sam")
    @with_sam_integration_fixture
    async def test_synth_metadata(fixture: SamIntegrationFixture) -> None:
        await fixture.cdk_synth()
        template = fixture.template("TestStack")
        assert "PythonFunction0BCF77FD" in template["Resources"]
"""

from importlib.metadata import PackageNotFoundError, version

from .assertions import (
    ANY,
    ASSET_PATH_PATTERN,
    BundledAsset,
    ExpectedResource,
    StringMatching,
    bundling_flag,
    expected_asset_metadata,
    matches_partial,
    missing_bundled_files,
    nested_template_pattern,
    random_integer,
    random_string,
    resource_metadata_mismatches,
    shape_mismatches,
)
from .config import HarnessConfig
from .exceptions import (
    CliIntegError,
    CommandFailedError,
    CommandTimeoutError,
    IntegTestTimeoutError,
    LockTimeoutError,
    ProvisioningError,
    StackDeletionError,
    TemplateNotFoundError,
    ValidationError,
)
from .fixture import IntegrationFixture, provision_fixture, with_integration_fixture
from .integ import IntegContext, IntegTestOptions, integ_test, run_integ_test
from .locks import LockSet
from .naming import full_stack_name, generate_stack_name_prefix
from .sam import ActionOutput, SamIntegrationFixture, with_sam_integration_fixture
from .shell import CommandResult, run_command

try:
    __version__ = version("cli-integ")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Wrapper
    "integ_test",
    "run_integ_test",
    "IntegTestOptions",
    "IntegContext",
    # Fixtures
    "IntegrationFixture",
    "SamIntegrationFixture",
    "ActionOutput",
    "provision_fixture",
    "with_integration_fixture",
    "with_sam_integration_fixture",
    # Configuration
    "HarnessConfig",
    # Building blocks
    "LockSet",
    "CommandResult",
    "run_command",
    "generate_stack_name_prefix",
    "full_stack_name",
    # Assertions
    "ANY",
    "ASSET_PATH_PATTERN",
    "BundledAsset",
    "ExpectedResource",
    "StringMatching",
    "bundling_flag",
    "expected_asset_metadata",
    "matches_partial",
    "missing_bundled_files",
    "nested_template_pattern",
    "random_integer",
    "random_string",
    "resource_metadata_mismatches",
    "shape_mismatches",
    # Exceptions
    "CliIntegError",
    "CommandFailedError",
    "CommandTimeoutError",
    "IntegTestTimeoutError",
    "LockTimeoutError",
    "ProvisioningError",
    "StackDeletionError",
    "TemplateNotFoundError",
    "ValidationError",
]
