# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""webdigest: fully rendered DOM fetching for AI agents.

Fetches a page through a remote Chromium (browserless.io) and returns the
outer HTML of the document after client-side scripts, async loading and
infinite-scroll loading have settled.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

DEFAULT_INITIAL_WAIT_MS = 3000
DEFAULT_SCROLL_COUNT = 0
DEFAULT_SCROLL_WAIT_MS = 3000

ALLOWED_URL_SCHEMES = frozenset({"http", "https"})


def validate_url(url: str) -> str | None:
    """Return an error message for an unusable URL, or None."""
    if not url or not url.strip():
        return "URL is required"
    parsed = urlparse(url.strip())
    if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES:
        return f"Unsupported URL scheme '{parsed.scheme}'. Only http and https are allowed."
    if not parsed.netloc:
        return f"URL has no host: {url}"
    return None


@dataclass(frozen=True, slots=True)
class FetchRequest:
    """A single fetch request, validated by the tool endpoint."""

    url: str
    initial_wait_ms: int = DEFAULT_INITIAL_WAIT_MS  # fixed delay after navigation
    scroll_count: int = DEFAULT_SCROLL_COUNT  # scroll-to-bottom iterations
    scroll_wait_ms: int = DEFAULT_SCROLL_WAIT_MS  # per-scroll detection budget

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise ValueError("URL is required")
        for name in ("initial_wait_ms", "scroll_count", "scroll_wait_ms"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Rendered outer markup of the root document element."""

    content: str

    def __len__(self) -> int:
        return len(self.content)


@dataclass(frozen=True, slots=True)
class ScrollProbe:
    """Document height before a scroll and at the last poll."""

    previous_height: int
    current_height: int

    @property
    def grew(self) -> bool:
        return self.current_height > self.previous_height


__all__ = [
    "ALLOWED_URL_SCHEMES",
    "DEFAULT_INITIAL_WAIT_MS",
    "DEFAULT_SCROLL_COUNT",
    "DEFAULT_SCROLL_WAIT_MS",
    "FetchRequest",
    "FetchResult",
    "ScrollProbe",
    "validate_url",
]
