"""Shared fixtures for integration tests."""

import pytest

from vmbox import SandboxDefaults


@pytest.fixture(scope="module")
def sandbox_defaults() -> SandboxDefaults:
    """Module-scoped defaults for creating test sandboxes"""
    return SandboxDefaults(
        sandbox_timeout_seconds=300,
        command_timeout_seconds=60,
    )
