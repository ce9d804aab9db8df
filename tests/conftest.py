"""Pytest fixtures for cli-integ tests."""

import logging

import pytest

from cli_integ import HarnessConfig

# Pytest hooks for --run-integ flag


def pytest_addoption(parser):
    """Add --run-integ pytest option."""
    parser.addoption(
        "--run-integ",
        action="store_true",
        default=False,
        help="Run integration tests that drive the real CDK/SAM CLIs",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integ flag is provided."""
    if not config.getoption("--run-integ"):
        skip_integ = pytest.mark.skip(reason="Need --run-integ option to run")
        for item in items:
            if "integ" in item.keywords:
                item.add_marker(skip_integ)


@pytest.fixture
def harness_config(tmp_path):
    """Harness configuration confined to the test's temporary directory."""
    return HarnessConfig(
        region="us-east-1",
        work_root=tmp_path / "work",
        lock_dir=tmp_path / "locks",
        timeout_seconds=30,
    )


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable the harness reads."""
    for var in (
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
        "AWS_ENDPOINT_URL",
        "CLI_INTEG_CDK",
        "CLI_INTEG_SAM",
        "CLI_INTEG_OUTPUT_DIR",
        "CLI_INTEG_WORK_DIR",
        "CLI_INTEG_LOCK_DIR",
        "CLI_INTEG_TIMEOUT",
        "CLI_INTEG_RUN_ID",
        "CLI_INTEG_KEEP_WORK_DIRS",
        "GITHUB_RUN_ID",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _harness_logging(caplog):
    """Capture harness logs at DEBUG so tests can assert on them."""
    caplog.set_level(logging.DEBUG, logger="cli_integ")
