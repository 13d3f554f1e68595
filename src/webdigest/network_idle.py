# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""In-flight request tracking for network-idle waits.

Playwright's ``networkidle`` load state fires once per navigation, so it
cannot tell whether scrolling started new requests. The watcher counts
requests itself and waits for a trailing quiet window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

_DONE_EVENTS = ("requestfinished", "requestfailed")


class NetworkIdleWatcher:
    """Count in-flight requests of a single page."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        poll_interval_ms: int = 100,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._poll_interval_ms = poll_interval_ms
        self._inflight: set = set()
        self._last_activity = clock()
        self._page = None

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def attach(self, page) -> None:
        page.on("request", self._on_request)
        for event in _DONE_EVENTS:
            page.on(event, self._on_done)
        self._page = page

    def detach(self) -> None:
        page, self._page = self._page, None
        if page is None:
            return
        try:
            page.remove_listener("request", self._on_request)
            for event in _DONE_EVENTS:
                page.remove_listener(event, self._on_done)
        except Exception:
            logger.debug("Network listener removal failed", exc_info=True)

    def _on_request(self, request) -> None:
        self._inflight.add(request)
        self._last_activity = self._clock()

    def _on_done(self, request) -> None:
        self._inflight.discard(request)
        self._last_activity = self._clock()

    async def wait_for_idle(self, *, idle_ms: int = 500, timeout_ms: int = 5000) -> float:
        """Wait until no request has been in flight for ``idle_ms``.

        The quiet window starts no earlier than the call itself.

        Returns:
            Milliseconds waited.

        Raises:
            TimeoutError: still busy after ``timeout_ms``.
        """
        start = self._clock()
        while True:
            now = self._clock()
            quiet_since = max(start, self._last_activity)
            if not self._inflight and (now - quiet_since) * 1000 >= idle_ms:
                return round((now - start) * 1000, 1)
            if (now - start) * 1000 >= timeout_ms:
                raise TimeoutError(f"Network not idle after {timeout_ms}ms ({len(self._inflight)} requests in flight)")
            await self._sleep(self._poll_interval_ms / 1000)
