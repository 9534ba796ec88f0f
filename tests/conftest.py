"""
Shared test fixtures and configuration for pytest
"""
import os
import tempfile

# Keep config, logs and the mirror out of the real home directory.
os.environ.setdefault("MAILMIRROR_HOME", tempfile.mkdtemp(prefix="mailmirror-tests-"))

import pytest

from mailmirror.core.highlight import HighlightTracker
from mailmirror.core.reconciler import Reconciler
from mailmirror.core.storage import MirrorStore
from mailmirror.security.rate_limit import RateLimiter

from .helpers import FakeClock, FakeServer, MessageTestHelper


@pytest.fixture
def store(tmp_path):
    """Mirror store rooted in a temporary directory"""
    return MirrorStore(tmp_path / "mirror")


@pytest.fixture
def reconciler(store):
    return Reconciler(store)


@pytest.fixture
def clock():
    return FakeClock(start=1_000.0)


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(max_attempts=3, base_delay=5, max_delay=300, clock=clock)


@pytest.fixture
def tracker():
    return HighlightTracker()


@pytest.fixture
def account():
    return MessageTestHelper.create_account()


@pytest.fixture
def server():
    """Empty in-memory IMAP server with the canonical INBOX"""
    return FakeServer(["INBOX"])
