# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Remote browser session management for webdigest.

A single Chromium hosted by browserless.io is reached over CDP and shared by
every fetch in the process. The session is created lazily on first use and
torn down on process exit; pages are opened per request by the fetcher.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterable, Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from urllib.parse import urlencode

from playwright.async_api import Browser, Playwright, async_playwright

from .errors import BrowserConnectionError, PageUnavailableError
from .problem_details import redact_secrets

logger = logging.getLogger(__name__)

DEFAULT_BROWSERLESS_HOST = "production-sfo.browserless.io"
DEFAULT_BROWSERLESS_PATH = "/stealth"
DEFAULT_CONNECT_TIMEOUT_MS = 30000

# Lower-cased substrings that mark a page/frame as gone in Playwright and
# CDP error messages. Override with WEBDIGEST_DETACH_MARKERS (comma separated).
DEFAULT_DETACH_MARKERS = (
    "detached",
    "closed",
    "target closed",
)


def build_endpoint(api_key: str, *, host: str = DEFAULT_BROWSERLESS_HOST, path: str = DEFAULT_BROWSERLESS_PATH) -> str:
    """Return the credential-bearing CDP websocket URL for browserless."""
    if not path.startswith("/"):
        path = "/" + path
    return f"wss://{host}{path}?{urlencode({'token': api_key})}"


def parse_detach_markers(raw: str | None) -> tuple[str, ...]:
    """Parse a comma-separated marker list; empty input yields the defaults."""
    if not raw:
        return DEFAULT_DETACH_MARKERS
    markers = tuple(m.strip().lower() for m in raw.split(",") if m.strip())
    return markers or DEFAULT_DETACH_MARKERS


def is_page_unavailable(exc: BaseException, markers: Iterable[str] = DEFAULT_DETACH_MARKERS) -> bool:
    """Detect errors meaning the page or its frame disappeared.

    PageUnavailableError is checked first, then substring matching on the
    message. Playwright reports a gone target as "Target page, context or
    browser has been closed", which the ``closed`` marker covers.
    """
    if isinstance(exc, PageUnavailableError):
        return True
    msg = str(exc).lower()
    return any(m.lower() in msg for m in markers)


@dataclass(frozen=True)
class RemoteBrowserConfig:
    """Remote browser connection configuration."""

    api_key: str = field(repr=False)
    host: str = DEFAULT_BROWSERLESS_HOST
    path: str = DEFAULT_BROWSERLESS_PATH
    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    detach_markers: tuple[str, ...] = DEFAULT_DETACH_MARKERS

    @property
    def endpoint(self) -> str:
        return build_endpoint(self.api_key, host=self.host, path=self.path)

    @property
    def redacted_endpoint(self) -> str:
        """Endpoint safe for logs."""
        return redact_secrets(self.endpoint)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RemoteBrowserConfig | None:
        """Build config from BROWSERLESS_* / WEBDIGEST_* variables.

        Returns None when BROWSERLESS_API_KEY is unset or blank.
        """
        env = os.environ if environ is None else environ
        api_key = env.get("BROWSERLESS_API_KEY", "").strip()
        if not api_key:
            return None
        timeout_ms = DEFAULT_CONNECT_TIMEOUT_MS
        raw_timeout = env.get("WEBDIGEST_CONNECT_TIMEOUT_MS", "").strip()
        if raw_timeout:
            with suppress(ValueError):
                timeout_ms = max(int(raw_timeout), 0)
        return cls(
            api_key=api_key,
            host=env.get("BROWSERLESS_HOST", "").strip() or DEFAULT_BROWSERLESS_HOST,
            path=env.get("BROWSERLESS_PATH", "").strip() or DEFAULT_BROWSERLESS_PATH,
            connect_timeout_ms=timeout_ms,
            detach_markers=parse_detach_markers(env.get("WEBDIGEST_DETACH_MARKERS")),
        )


class BrowserSessionManager:
    """Owns the process-wide remote browser connection.

    ``acquire()`` connects on first use and returns the shared Browser;
    ``release()`` disconnects. A failed connection leaves no reference
    behind, so the next ``acquire()`` starts from scratch.
    """

    def __init__(
        self,
        config: RemoteBrowserConfig,
        *,
        playwright_factory: Callable | None = None,
    ) -> None:
        self.config = config
        self._playwright_factory = playwright_factory or async_playwright
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    @property
    def has_session(self) -> bool:
        return self._browser is not None

    async def acquire(self) -> Browser:
        """Return the shared browser, connecting if there is none.

        Raises:
            BrowserConnectionError: the remote endpoint could not be reached.
        """
        async with self._lock:
            if self._browser is not None and not self._browser.is_connected():
                logger.warning("Remote browser disconnected, dropping session reference")
                await self._discard()
            if self._browser is None:
                self._browser = await self._connect()
            return self._browser

    async def release(self) -> None:
        """Disconnect from the remote browser. Safe to call repeatedly."""
        async with self._lock:
            had_session = self._browser is not None
            await self._discard()
        if had_session:
            logger.info("Remote browser session released")

    async def _connect(self) -> Browser:
        logger.info("Connecting to remote browser at %s", self.config.redacted_endpoint)
        try:
            if self._playwright is None:
                self._playwright = await self._playwright_factory().start()
            browser = await self._playwright.chromium.connect_over_cdp(
                self.config.endpoint,
                timeout=self.config.connect_timeout_ms,
            )
        except Exception as exc:
            detail = redact_secrets(str(exc))
            logger.error("Remote browser connection failed: %s", detail)
            await self._stop_playwright()
            raise BrowserConnectionError(f"Failed to connect to remote browser: {detail}") from exc
        logger.info("Connected to remote browser")
        return browser

    async def _discard(self) -> None:
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:
                logger.warning("Error disconnecting remote browser: %s", redact_secrets(str(exc)))
        await self._stop_playwright()

    async def _stop_playwright(self) -> None:
        playwright, self._playwright = self._playwright, None
        if playwright is not None:
            with suppress(Exception):
                await playwright.stop()
