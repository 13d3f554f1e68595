# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for NetworkIdleWatcher."""

from __future__ import annotations

import pytest

from webdigest.network_idle import NetworkIdleWatcher


@pytest.fixture
def watcher(clock, page):
    w = NetworkIdleWatcher(clock=clock, sleep=clock.sleep)
    w.attach(page)
    yield w
    w.detach()


class TestTracking:
    def test_counts_inflight_requests(self, watcher, page):
        a, b = object(), object()
        page.emit("request", a)
        page.emit("request", b)
        assert watcher.inflight == 2

        page.emit("requestfinished", a)
        page.emit("requestfailed", b)
        assert watcher.inflight == 0

    def test_unknown_completion_is_ignored(self, watcher, page):
        page.emit("requestfinished", object())
        assert watcher.inflight == 0

    def test_detach_removes_listeners(self, clock, page):
        w = NetworkIdleWatcher(clock=clock, sleep=clock.sleep)
        w.attach(page)
        assert len(page.listeners["request"]) == 1

        w.detach()
        w.detach()  # idempotent

        assert all(not handlers for handlers in page.listeners.values())


class TestWaitForIdle:
    async def test_quiet_page(self, watcher, clock):
        waited = await watcher.wait_for_idle(idle_ms=500, timeout_ms=5000)

        assert waited == 500.0
        assert clock.sleeps_ms == [100] * 5

    async def test_zero_window_returns_immediately(self, watcher, clock):
        assert await watcher.wait_for_idle(idle_ms=0) == 0.0
        assert clock.sleeps_ms == []

    async def test_waits_for_inflight_request(self, watcher, page, clock):
        req = object()
        page.emit("request", req)
        clock.schedule(1000, lambda: page.emit("requestfinished", req))

        waited = await watcher.wait_for_idle(idle_ms=500, timeout_ms=5000)

        assert waited == 1500.0

    async def test_late_request_restarts_window(self, watcher, page, clock):
        req = object()
        clock.schedule(200, lambda: page.emit("request", req))
        clock.schedule(500, lambda: page.emit("requestfailed", req))

        assert await watcher.wait_for_idle(idle_ms=500, timeout_ms=5000) == 1000.0

    async def test_timeout(self, watcher, page, clock):
        page.emit("request", object())

        with pytest.raises(TimeoutError, match="1 requests in flight"):
            await watcher.wait_for_idle(idle_ms=500, timeout_ms=2000)

        assert clock.total_slept_ms == 2000
