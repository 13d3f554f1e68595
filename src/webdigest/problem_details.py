# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""RFC 9457-style problem details for webdigest failures.

Maps the exception taxonomy in ``errors.py`` to structured problem objects
that render as MCP tool error text or CLI output. The module is a leaf
(stdlib only; errors.py imported lazily) so any layer can use the
redaction helpers.

Key public API:

- ``ProblemType``: error taxonomy.
- ``ProblemDetail``: frozen dataclass (→ dict / MCP text / CLI text).
- ``redact_secrets()``: scrub credentials (browserless ``token=`` included).
- ``sanitize_detail()``: redact + strip paths + truncate.
- ``from_exception()`` / ``from_validation()``: factories.

Type URI namespace: ``https://webdigest.dev/errors/{slug}``
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

_ERROR_BASE = "https://webdigest.dev/errors"

MAX_DETAIL_LENGTH = 500

MCP_ERROR_PREFIX = "Failed to fetch web content"


class ProblemType(StrEnum):
    """Error taxonomy for the web_content tool."""

    BROWSER_UNAVAILABLE = "browser-unavailable"
    SESSION_FAILED = "session-failed"
    NAVIGATION_FAILED = "navigation-failed"
    PAGE_TIMEOUT = "page-timeout"
    DNS_RESOLUTION_FAILED = "dns-resolution-failed"
    EXTRACTION_FAILED = "extraction-failed"
    VALIDATION_ERROR = "validation-error"
    INTERNAL_ERROR = "internal-error"

    @property
    def uri(self) -> str:
        return f"{_ERROR_BASE}/{self.value}"


# (status, title, hint)
_TYPE_METADATA: dict[ProblemType, tuple[int, str, str]] = {
    ProblemType.BROWSER_UNAVAILABLE: (
        503,
        "Browser Unavailable",
        "Check BROWSERLESS_API_KEY and that the browserless endpoint is reachable.",
    ),
    ProblemType.SESSION_FAILED: (503, "Page Creation Failed", "Retry in a moment."),
    ProblemType.NAVIGATION_FAILED: (502, "Navigation Failed", "Check that the URL is reachable."),
    ProblemType.PAGE_TIMEOUT: (504, "Page Timed Out", "The page took too long to load. Try again."),
    ProblemType.DNS_RESOLUTION_FAILED: (502, "DNS Resolution Failed", "Check the URL spelling."),
    ProblemType.EXTRACTION_FAILED: (500, "Extraction Failed", "The page closed before its content was read. Retry."),
    ProblemType.VALIDATION_ERROR: (422, "Validation Error", "Provide a valid http:// or https:// URL."),
    ProblemType.INTERNAL_ERROR: (500, "Internal Error", ""),
}

# ── Secret redaction ─────────────────────────────────────────────────

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"([?&]token=)[^&\s\"']+", re.IGNORECASE), r"\1<redacted>"),
    (re.compile(r"Bearer\s+\S+"), "Bearer <redacted>"),
    (
        re.compile(r"(?:API_KEY|SECRET|TOKEN|PASSWORD|CREDENTIAL)\s*[=:]\s*(?!<redacted>)\S+", re.IGNORECASE),
        "<redacted>",
    ),
    (re.compile(r"://[^@/\s]+@"), "://<redacted>@"),
]

_PATH_PATTERN = re.compile(r"(/(?:Users|home|tmp|var|etc|opt|root|srv|usr|private|mnt)/[\w./-]+|[A-Z]:\\[\w.\\-]+)")

# ── Chromium net::ERR_* classification ───────────────────────────────

_NET_ERR_RE = re.compile(r"net::ERR_(\w+)")

_DNS_CODES = {"NAME_NOT_RESOLVED"}
_TIMEOUT_CODES = {"CONNECTION_TIMED_OUT", "TIMED_OUT"}


def redact_secrets(text: str) -> str:
    """Replace credentials in *text*; does not truncate."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_detail(text: str) -> str:
    """Redact secrets and filesystem paths, then truncate to MAX_DETAIL_LENGTH."""
    text = _PATH_PATTERN.sub("<path>", redact_secrets(text))
    if len(text) > MAX_DETAIL_LENGTH:
        text = text[:MAX_DETAIL_LENGTH] + "..."
    return text


def classify_network_error(message: str) -> ProblemType | None:
    """Classify a Chromium ``net::ERR_*`` navigation failure, if present."""
    m = _NET_ERR_RE.search(message)
    if m is None:
        return None
    code = m.group(1)
    if code in _DNS_CODES:
        return ProblemType.DNS_RESOLUTION_FAILED
    if code in _TIMEOUT_CODES:
        return ProblemType.PAGE_TIMEOUT
    return ProblemType.NAVIGATION_FAILED


@dataclass(frozen=True, slots=True)
class ProblemDetail:
    """Immutable structured error."""

    type: str = "about:blank"
    title: str = ""
    status: int = 500
    detail: str = ""
    extensions: dict[str, Any] = field(default_factory=dict)

    @property
    def hint(self) -> str:
        for problem_type, (_, _, hint) in _TYPE_METADATA.items():
            if problem_type.uri == self.type:
                return hint
        return ""

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type, "status": self.status}
        if self.title:
            d["title"] = self.title
        if self.detail:
            d["detail"] = self.detail
        for k, v in self.extensions.items():
            d.setdefault(k, v)
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def to_mcp_text(self) -> str:
        """Text for the MCP error envelope: ``Failed to fetch web content: <detail>``."""
        return f"{MCP_ERROR_PREFIX}: {self.detail}"

    def to_cli_text(self) -> str:
        lines = [f"Error: {self.detail}"]
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        return "\n".join(lines)


def _build(problem_type: ProblemType, detail: str, extensions: dict[str, Any] | None = None) -> ProblemDetail:
    status, title, _ = _TYPE_METADATA[problem_type]
    ext = {k: sanitize_detail(v) if isinstance(v, str) else v for k, v in (extensions or {}).items()}
    return ProblemDetail(
        type=problem_type.uri,
        title=title,
        status=status,
        detail=sanitize_detail(detail),
        extensions=ext,
    )


def _exception_type_map() -> dict[type, ProblemType]:
    from .errors import (
        BrowserConnectionError,
        ExtractionError,
        NavigationError,
        PageSessionError,
        PageUnavailableError,
    )

    return {
        BrowserConnectionError: ProblemType.BROWSER_UNAVAILABLE,
        PageSessionError: ProblemType.SESSION_FAILED,
        NavigationError: ProblemType.NAVIGATION_FAILED,
        ExtractionError: ProblemType.EXTRACTION_FAILED,
        PageUnavailableError: ProblemType.EXTRACTION_FAILED,
    }


def from_exception(exc: BaseException, *, extensions: dict[str, Any] | None = None) -> ProblemDetail:
    """Build a ProblemDetail from a fetch failure.

    Navigation errors are refined by their ``net::ERR_*`` code; unknown
    exceptions become ``internal-error`` with a redacted message.
    """
    from .errors import NavigationError

    ext = dict(extensions) if extensions else {}
    problem_type = _exception_type_map().get(type(exc))

    if isinstance(exc, NavigationError):
        problem_type = classify_network_error(str(exc)) or problem_type
        if exc.url:
            ext.setdefault("url", exc.url)
    elif problem_type is None and isinstance(exc, TimeoutError):
        problem_type = ProblemType.PAGE_TIMEOUT

    return _build(problem_type or ProblemType.INTERNAL_ERROR, str(exc) or type(exc).__name__, ext)


def from_validation(detail: str, *, field_name: str = "") -> ProblemDetail:
    """Build a 422 ProblemDetail for rejected tool input."""
    return _build(ProblemType.VALIDATION_ERROR, detail, {"field": field_name} if field_name else None)
