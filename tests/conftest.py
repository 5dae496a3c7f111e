"""
Global pytest configuration and fixtures.

Environment defaults are set before anything from kaspa_curator is imported,
so the module-level settings never point at a real data dir or log file.
"""

import os
import tempfile

os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="kaspa-curator-tests-"))
os.environ.setdefault("CONVERSATION_MEMORY", "off")
os.environ.setdefault("QUICK_FILTER_ENABLED", "false")
os.environ.setdefault("JUDGE_CALL_DELAY_SECONDS", "0")
os.environ["ADMIN_PASSWORD"] = ""

import pytest
import pytest_asyncio
from kaspa_curator.errors import TransientProviderError
from kaspa_curator.services.database import Database
from helpers import RecordingSleep


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def database(db_path):
    """A freshly migrated store in a temp directory."""
    store = Database(db_path)
    await store.init()
    return store


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def rate_limited():
    return lambda retry_after=None: TransientProviderError("Rate limit reached", retry_after=retry_after)
