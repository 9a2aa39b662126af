"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for cosmos_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from provisioner.config import ConnectionSettings  # noqa: E402

TEST_ENDPOINT = "https://test-account.documents.azure.com:443/"
TEST_KEY = "dGVzdC1hY2NvdW50LWtleS1ub3QtYS1yZWFsLXNlY3JldA=="
TEST_CONNECTION_STRING = f"AccountEndpoint={TEST_ENDPOINT};AccountKey={TEST_KEY};"


@pytest.fixture
def connection_settings() -> ConnectionSettings:
    """Connection settings for the mock account."""
    return ConnectionSettings(endpoint=TEST_ENDPOINT, key=TEST_KEY, retry_count=3)
