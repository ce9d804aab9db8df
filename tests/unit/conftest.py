"""Unit test fixtures."""

import pytest

from tests.fixtures.harness import with_fake_clis
from tests.fixtures.names import unique_lock_name, unique_name

__all__ = ["unique_lock_name", "unique_name", "fake_cli_config"]


@pytest.fixture
def fake_cli_config(harness_config):
    """Harness config whose cdk/sam commands are the fake scripts."""
    return with_fake_clis(harness_config)
