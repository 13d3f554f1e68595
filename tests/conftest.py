# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import webdigest  # noqa: F401
except ImportError:
    raise ImportError("webdigest is not installed. Run: pip install -e '.[test]'") from None

from unittest.mock import AsyncMock, MagicMock

import pytest

from tests._fakes import FakeBrowser, FakeClock, FakePage
from webdigest.browser_session import RemoteBrowserConfig
from webdigest.fetcher import PageFetcher

# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _block_real_browser(monkeypatch):
    """Safety net: prevent real remote browser connections in unit tests.

    Tests that need a session pass ``playwright_factory=`` explicitly or
    patch ``webdigest.server._get_fetcher``.
    """

    def _no_real_playwright():
        raise RuntimeError(
            "Test tried to start real Playwright. Pass playwright_factory= or patch 'webdigest.server._get_fetcher'."
        )

    monkeypatch.setattr("webdigest.browser_session.async_playwright", _no_real_playwright)


@pytest.fixture(autouse=True)
def _reset_server_state():
    import webdigest.server as srv

    old_sessions, old_fetcher = srv._state.sessions, srv._state.fetcher
    old_transport_mode = srv._transport_mode
    srv._state.sessions = None
    srv._state.fetcher = None
    yield
    srv._state.sessions, srv._state.fetcher = old_sessions, old_fetcher
    srv._transport_mode = old_transport_mode


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def browser(page):
    return FakeBrowser(page)


@pytest.fixture
def sessions(browser):
    manager = MagicMock()
    manager.config = RemoteBrowserConfig(api_key="test-key")
    manager.acquire = AsyncMock(return_value=browser)
    return manager


@pytest.fixture
def fetcher(sessions, clock):
    return PageFetcher(sessions, clock=clock, sleep=clock.sleep)
