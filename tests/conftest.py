"""
Pytest configuration and shared fixtures.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
PROJ_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJ_ROOT / "src"
for path in (SRC_DIR, PROJ_ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from mailclean.cache.bounded import BoundedCache
from mailclean.gmail.client import GmailClient
from mailclean.gmail.fetcher import PagedFetcher
from mailclean.gmail.mutator import BatchMutator
from mailclean.gmail.requester import ResilientRequester
from mailclean.storage.local_state import InMemoryStorage
from tests.mocks.gmail_mock import FakeGmailService
from tests.mocks.timing import FakeClock, SleepRecorder


@pytest.fixture
def fake_gmail():
    """Empty scripted Gmail service."""
    return FakeGmailService()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def requester(sleeps):
    """Requester with 3 attempts and a recorded, non-waiting sleep."""
    return ResilientRequester(max_attempts=3, base_delay=0.1, sleep=sleeps)


@pytest.fixture
def fetcher(requester):
    return PagedFetcher(requester, page_size=2)


@pytest.fixture
def mutator(requester, sleeps):
    return BatchMutator(requester, chunk_size=3, sleep=sleeps)


@pytest.fixture
def gmail_client(requester):
    return GmailClient(requester, max_concurrent=4)


@pytest.fixture
def cache(storage, clock):
    return BoundedCache(storage, cache_key="testCache", ttl=60, max_size=10, clock=clock)


@pytest.fixture
def sample_config(tmp_path):
    """Validated configuration pointing at a throwaway token file."""
    token = tmp_path / "token.json"
    token.write_text("{}")
    return {
        "GMAIL_TOKEN": str(token),
        "GMAIL_SCOPES": ["https://mail.google.com/"],
        "CLIENT_SECRETS": str(tmp_path / "client_secret.json"),
        "AUTO_REAUTHORIZE": False,
        "REQUEST_MAX_ATTEMPTS": 3,
        "REQUEST_BASE_DELAY": 0.1,
        "REQUEST_RETRY_STATUSES": [429],
        "GMAIL_PAGE_SIZE": 2,
        "GMAIL_QUOTA_UNITS_PER_SECOND": 10000,
        "DELETE_CHUNK_SIZE": 3,
        "DELETE_CHUNK_DELAY": 0.0,
        "DISCOVERY_MAX_CONCURRENT": 2,
        "CACHE_TTL_SECONDS": 900,
        "CACHE_MAX_SIZE": 100,
        "CACHE_DIR": str(tmp_path / "cache"),
        "USE_REDIS": False,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 0,
        "REDIS_NAMESPACE": "mailclean:",
        "LOG_LEVEL": "INFO",
        "LOG_FILE": None,
        "LOG_JSON": False,
    }
