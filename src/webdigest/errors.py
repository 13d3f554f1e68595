# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""webdigest exception hierarchy.

All webdigest-specific errors inherit from WebDigestError, allowing callers
to catch the base class for any fetch failure or specific subclasses
for targeted handling. PageUnavailableError doubles as the detachment
signal inside the scroll loop; it reaches the caller only when the page
is already closed at extraction time.
"""

from __future__ import annotations


class WebDigestError(Exception):
    """Base exception for all webdigest errors."""


class BrowserConnectionError(WebDigestError):
    """Connecting to the remote browser endpoint failed."""


class PageSessionError(WebDigestError):
    """Opening a page on an established browser session failed."""


class NavigationError(WebDigestError):
    """Loading the target URL failed or timed out."""

    def __init__(self, message: str, *, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class ExtractionError(WebDigestError):
    """Every content extraction strategy failed."""


class PageUnavailableError(WebDigestError):
    """The page or its frame was closed or detached."""
