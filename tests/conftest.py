"""
Global pytest configuration and fixtures for the pickbridge test suite.
"""

import os

# Set test environment variables before settings are loaded
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-32-chars")
os.environ.setdefault("QBO_CLIENT_ID", "test-qbo-client-id")
os.environ.setdefault("QBO_CLIENT_SECRET", "test-qbo-client-secret")
os.environ.setdefault("QBO_REDIRECT_URI", "http://localhost:8001/api/v1/integrations/callback/quickbooks")
os.environ.setdefault("XERO_CLIENT_ID", "test-xero-client-id")
os.environ.setdefault("XERO_CLIENT_SECRET", "test-xero-client-secret")
os.environ.setdefault("XERO_REDIRECT_URI", "http://localhost:8001/api/v1/integrations/callback/xero")

from unittest.mock import AsyncMock, MagicMock, Mock  # noqa: E402

import pytest  # noqa: E402

# Import fixtures from fixture modules
from tests.fixtures.app_fixtures import *  # noqa: F403, F401, E402
from tests.fixtures.http_fixtures import *  # noqa: F403, F401, E402
from tests.fixtures.provider_fixtures import *  # noqa: F403, F401, E402
from tests.fixtures.store_fixtures import *  # noqa: F403, F401, E402


@pytest.fixture
def mock_prisma() -> Mock:
    """
    Mock Prisma client for unit tests that don't need a real database.
    """
    mock_db = Mock()
    for model in ("company", "providertoken", "product", "customer", "conversionrecord"):
        delegate = getattr(mock_db, model)
        for method in (
            "find_unique",
            "find_first",
            "find_many",
            "create",
            "update",
            "update_many",
            "upsert",
            "delete_many",
        ):
            setattr(delegate, method, AsyncMock())

    # db.tx() is an async context manager yielding the same delegates
    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=mock_db)
    transaction.__aexit__ = AsyncMock(return_value=False)
    mock_db.tx = Mock(return_value=transaction)

    return mock_db


@pytest.fixture
def mock_settings() -> Mock:
    """Mock settings for OAuth configuration."""
    settings_mock = Mock()
    settings_mock.jwt_secret = "test-jwt-secret-for-state-tokens"
    settings_mock.FRONTEND_URL = None
    return settings_mock
