"""Shared fixtures for contract_feed tests."""

from __future__ import annotations

import pytest
from pytest_metadata.plugin import metadata_key

from contract_feed.models.config import FeedConfig, FeedMode, ReconnectConfig
from contract_feed.storage.sqlite import SQLiteProgressStore

from tests.mocks import FakeStreamService, MockFetcher, RecordingConsumer

TEST_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
TEST_BASE_URL = "http://127.0.0.1:8080"


# ── Report metadata ──────────────────────────────────────────────


def pytest_configure(config):
    """Add feed info to the HTML report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Event API"] = TEST_BASE_URL
    meta["Contract Address"] = TEST_ADDRESS


def pytest_html_results_summary(prefix, summary, postfix):
    """Describe the local servers the integration tests start."""
    prefix.append(
        '<div style="margin:8px 0;padding:10px;background:#f8f9fa;border:1px solid #dee2e6;'
        'border-radius:4px;font-family:monospace;font-size:13px;">'
        "<strong>Local test servers</strong><br/>"
        "HTTP event API and WebSocket stream run on 127.0.0.1, unused ports"
        "</div>"
    )


def make_test_config(**overrides) -> FeedConfig:
    """Build a FeedConfig suitable for testing."""
    defaults = dict(
        mode=FeedMode.POLL,
        base_url=TEST_BASE_URL,
        request_timeout=2.0,
        poll_interval=0.01,
        page_size=100,
        window_span=10,
        max_attempts=3,
        retry_backoff=0.0,
        flow_control=False,
        from_block=100,
        address=TEST_ADDRESS,
        event_names=["Transfer"],
        ping_interval=30.0,
        handshake_timeout=5.0,
        buffer_size=100,
        reconnect=ReconnectConfig(enabled=False),
        db_path=":memory:",
    )
    defaults.update(overrides)
    return FeedConfig(**defaults)


@pytest.fixture
def test_config():
    """Default FeedConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteProgressStore."""
    s = SQLiteProgressStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def mock_fetcher():
    return MockFetcher(head=1_000_000)


@pytest.fixture
def consumer():
    return RecordingConsumer()


@pytest.fixture
async def stream_service():
    """Local WebSocket event stream; configure ``script`` before connecting."""
    service = FakeStreamService()
    await service.start()
    yield service
    await service.stop()
