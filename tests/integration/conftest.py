"""Integration test configuration.

These tests talk to the hosted sandbox service. Put VMBOX_API_KEY (and
optionally VMBOX_API_URL / VMBOX_DOMAIN) in the environment or in a .env file
at the project root; without a key every integration test is skipped.
"""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env from project root, but don't override existing env vars
_project_root = Path(__file__).parent.parent.parent
load_dotenv(_project_root / ".env", override=False)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if os.environ.get("VMBOX_API_KEY"):
        return
    skip = pytest.mark.skip(reason="VMBOX_API_KEY not set")
    integration_root = Path(__file__).parent
    for item in items:
        if integration_root in item.path.parents:
            item.add_marker(skip)
