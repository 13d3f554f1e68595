# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Content extraction strategies, tried in priority order."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from playwright.async_api import Page

from .errors import ExtractionError

logger = logging.getLogger(__name__)

OUTER_HTML_JS = "() => document.documentElement.outerHTML"


@runtime_checkable
class ExtractionStrategy(Protocol):
    """Reads the page's markup one way."""

    name: str

    async def extract(self, page: Page) -> str: ...


@dataclass(frozen=True, slots=True)
class OuterHtmlStrategy:
    """Script-evaluated outer HTML of ``<html>``, including DOM mutations."""

    name: str = "outer_html"

    async def extract(self, page: Page) -> str:
        content = await page.evaluate(OUTER_HTML_JS)
        if not isinstance(content, str):
            raise TypeError(f"outerHTML evaluated to {type(content).__name__}, expected str")
        return content


@dataclass(frozen=True, slots=True)
class RenderedSourceStrategy:
    """Playwright's serialized page source (coarser, but survives broken evaluate)."""

    name: str = "page_content"

    async def extract(self, page: Page) -> str:
        return await page.content()


DEFAULT_STRATEGIES: tuple[ExtractionStrategy, ...] = (OuterHtmlStrategy(), RenderedSourceStrategy())


async def extract_content(page: Page, strategies: Sequence[ExtractionStrategy] = DEFAULT_STRATEGIES) -> str:
    """Return the first strategy's successful result.

    Raises:
        ExtractionError: the page is closed, or every strategy failed. The
            message carries the first (primary) strategy's failure.
    """
    if page.is_closed():
        raise ExtractionError("Page was closed before content extraction")
    if not strategies:
        raise ExtractionError("No content extraction strategies configured")

    primary: Exception | None = None
    for strategy in strategies:
        try:
            content = await strategy.extract(page)
        except Exception as exc:
            logger.warning("Extraction via %s failed: %s", strategy.name, exc)
            if primary is None:
                primary = exc
            continue
        if primary is not None:
            logger.info("Fell back to %s after primary extraction failed", strategy.name)
        logger.info("Extracted %d characters via %s", len(content), strategy.name)
        return content

    raise ExtractionError(f"Failed to extract page content: {primary}") from primary
