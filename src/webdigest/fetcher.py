# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page acquisition pipeline: navigate, wait, scroll, settle, extract.

One ``PageFetcher.fetch()`` call owns exactly one page from open to close.
Stages run strictly in order:

1. connect       shared remote browser (lazy)
2. page_open     new page for this request
3. navigation    goto(domcontentloaded) + short stabilization pause
4. initial_wait  fixed delay for bootstrap scripts
5. scroll        scroll-to-bottom loop with height-growth detection
6. scroll_settle fixed delay after the last scroll
7. network_idle  trailing quiet window, bounded; timeout is not an error
8. render_wait   fixed delay for late DOM mutations
9. extraction    outer HTML, falling back to page source
10. teardown     close the page (always, errors only logged)

Only connection, page-open, navigation and extraction failures are fatal.
Everything that goes wrong inside the scroll loop or the idle wait is
logged and absorbed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from playwright.async_api import Browser, Page

from . import FetchRequest, FetchResult, ScrollProbe
from .browser_session import DEFAULT_DETACH_MARKERS, BrowserSessionManager, is_page_unavailable
from .errors import NavigationError, PageSessionError, PageUnavailableError, WebDigestError
from .extraction import DEFAULT_STRATEGIES, ExtractionStrategy, extract_content
from .network_idle import NetworkIdleWatcher
from .pipeline_timer import PipelineTimer

logger = logging.getLogger(__name__)

SCROLL_HEIGHT_JS = "() => document.documentElement.scrollHeight"
SCROLL_TO_BOTTOM_JS = """() => window.scrollTo({
    top: document.documentElement.scrollHeight,
    behavior: 'smooth'
})"""


@dataclass(frozen=True, slots=True)
class FetchTimings:
    """Fixed waits and timeouts of the pipeline, in milliseconds."""

    navigation_timeout_ms: int = 30000
    stabilize_ms: int = 1000  # after navigation
    scroll_settle_ms: int = 500  # after each scroll command
    poll_interval_ms: int = 500  # height polling
    content_settle_ms: int = 1000  # after growth is detected
    network_idle_ms: int = 500  # quiet window
    network_idle_timeout_ms: int = 5000
    final_render_ms: int = 1000


class PageFetcher:
    """Runs the page acquisition pipeline against a shared remote browser.

    ``clock`` and ``sleep`` are injectable so the timing behaviour can be
    exercised without real delays.
    """

    def __init__(
        self,
        sessions: BrowserSessionManager,
        *,
        timings: FetchTimings | None = None,
        strategies: Sequence[ExtractionStrategy] = DEFAULT_STRATEGIES,
        detach_markers: Sequence[str] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ) -> None:
        self._sessions = sessions
        self.timings = timings or FetchTimings()
        self._strategies = tuple(strategies)
        if detach_markers is None:
            config = getattr(sessions, "config", None)
            detach_markers = getattr(config, "detach_markers", DEFAULT_DETACH_MARKERS)
        self._detach_markers = tuple(detach_markers)
        self._clock = clock
        self._sleep = sleep

    async def fetch(self, request: FetchRequest) -> FetchResult:
        """Fetch the fully rendered markup of ``request.url``.

        Raises:
            BrowserConnectionError: the remote browser is unreachable.
            PageSessionError: the browser refused to open a page.
            NavigationError: the URL failed to load within the timeout.
            ExtractionError: no extraction strategy produced content.
            PageUnavailableError: the page was closed before extraction.
        """
        logger.info(
            "Fetching %s (initial_wait=%dms, scrolls=%d, scroll_wait=%dms)",
            request.url,
            request.initial_wait_ms,
            request.scroll_count,
            request.scroll_wait_ms,
        )
        timer = PipelineTimer()
        page: Page | None = None
        watcher: NetworkIdleWatcher | None = None
        try:
            timer.stage("connect")
            browser = await self._sessions.acquire()

            timer.stage("page_open")
            page = await self._open_page(browser)
            watcher = NetworkIdleWatcher(clock=self._clock, sleep=self._sleep)
            watcher.attach(page)

            timer.stage("navigation")
            await self._navigate(page, request.url)

            if request.initial_wait_ms > 0:
                timer.stage("initial_wait")
                logger.info("Waiting %dms after page load", request.initial_wait_ms)
                await self._pause(request.initial_wait_ms)

            if request.scroll_count > 0:
                timer.stage("scroll")
                await self._scroll_and_detect(page, request.scroll_count, request.scroll_wait_ms)
                if request.scroll_wait_ms > 0:
                    timer.stage("scroll_settle")
                    logger.info("Final wait after scrolling (%dms)", request.scroll_wait_ms)
                    await self._pause(request.scroll_wait_ms)

            timer.stage("network_idle")
            await self._wait_for_network_idle(watcher)

            timer.stage("render_wait")
            await self._pause(self.timings.final_render_ms)

            timer.stage("extraction")
            if page.is_closed():
                raise PageUnavailableError("Failed to extract page content: page was closed before extraction")
            content = await extract_content(page, self._strategies)
        except WebDigestError:
            timer.finalize()
            logger.error("Fetch failed: url=%s report=%s", request.url, timer.failure_report())
            raise
        finally:
            timer.finalize()
            if watcher is not None:
                watcher.detach()
            if page is not None:
                await self._close_page(page)

        logger.info(
            "Fetched %s: %d characters in %.1fms stages=%s",
            request.url,
            len(content),
            timer.total_ms(),
            timer.elapsed_per_stage(),
        )
        return FetchResult(content=content)

    # ── stages ────────────────────────────────────────────────────────

    async def _open_page(self, browser: Browser) -> Page:
        try:
            page = await browser.new_page()
        except Exception as exc:
            raise PageSessionError(f"Failed to open a new page: {exc}") from exc
        logger.debug("Page created")
        return page

    async def _navigate(self, page: Page, url: str) -> None:
        logger.info("Loading page: %s", url)
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.timings.navigation_timeout_ms)
        except Exception as exc:
            raise NavigationError(f"Failed to load URL {url}: {exc}", url=url) from exc
        logger.info("Page loaded: %s", url)
        await self._pause(self.timings.stabilize_ms)

    async def _scroll_and_detect(self, page: Page, scroll_count: int, scroll_wait_ms: int) -> None:
        for i in range(1, scroll_count + 1):
            if page.is_closed():
                logger.warning("Page was closed, stopping scrolling at %d/%d", i, scroll_count)
                break
            logger.info("Scrolling down (%d/%d)", i, scroll_count)
            try:
                probe = await self._scroll_once(page, scroll_wait_ms)
            except Exception as exc:
                if is_page_unavailable(exc, self._detach_markers):
                    logger.warning("Page/frame unavailable during scroll %d/%d, stopping early: %s", i, scroll_count, exc)
                    break
                logger.warning("Scroll error (%d/%d): %s", i, scroll_count, exc)
                continue
            if probe is not None and probe.grew:
                logger.info("New content detected (height: %d -> %d)", probe.previous_height, probe.current_height)
            else:
                logger.info("No new content detected after scroll %d/%d", i, scroll_count)

    async def _scroll_once(self, page: Page, scroll_wait_ms: int) -> ScrollProbe | None:
        """One scroll iteration. Returns the last probe, or None if none was taken."""
        previous = await self._read_height(page)
        if previous is None:
            logger.debug("Could not read scroll height, assuming 0")
            previous = 0

        try:
            await page.evaluate(SCROLL_TO_BOTTOM_JS)
        except Exception as exc:
            logger.debug("scrollTo failed (%s), pressing End instead", exc)
            await page.keyboard.press("End")

        await self._pause(self.timings.scroll_settle_ms)

        if scroll_wait_ms <= 0:
            return None
        return await self._wait_for_growth(page, previous, scroll_wait_ms)

    async def _wait_for_growth(self, page: Page, previous: int, budget_ms: int) -> ScrollProbe | None:
        """Poll the document height until it exceeds ``previous`` or the budget runs out.

        A failed read ends the wait for this iteration (treated as no growth).
        """
        start = self._clock()
        probe: ScrollProbe | None = None
        while (self._clock() - start) * 1000 < budget_ms:
            current = await self._read_height(page)
            if current is None:
                logger.debug("Height read failed mid-poll, abandoning detection wait")
                return probe
            probe = ScrollProbe(previous_height=previous, current_height=current)
            if probe.grew:
                await self._pause(self.timings.content_settle_ms)
                return probe
            await self._pause(self.timings.poll_interval_ms)
        return probe

    async def _read_height(self, page: Page) -> int | None:
        try:
            return int(await page.evaluate(SCROLL_HEIGHT_JS))
        except Exception:
            return None

    async def _wait_for_network_idle(self, watcher: NetworkIdleWatcher) -> None:
        logger.info("Waiting for network to idle...")
        try:
            waited = await watcher.wait_for_idle(
                idle_ms=self.timings.network_idle_ms,
                timeout_ms=self.timings.network_idle_timeout_ms,
            )
        except TimeoutError as exc:
            logger.info("Network idle timeout (continuing anyway): %s", exc)
            return
        logger.info("Network idle after %.0fms", waited)

    async def _close_page(self, page: Page) -> None:
        try:
            await page.close()
        except Exception as exc:
            logger.warning("Error closing page (non-fatal): %s", exc)
            return
        logger.debug("Page closed")

    async def _pause(self, ms: int) -> None:
        if ms > 0:
            await self._sleep(ms / 1000)
