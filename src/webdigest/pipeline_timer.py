# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Stage timer for the page acquisition pipeline.

Records how long each stage of a fetch took so that successful fetches can
log a latency breakdown and failed ones can report where they stopped.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

_STAGE_HINTS = {
    "connect": "Remote browser endpoint is unreachable. Check BROWSERLESS_API_KEY and network access.",
    "page_open": "Remote browser refused a new page. The session may be at its page limit.",
    "navigation": "Page may be slow to load or unreachable within 30s.",
    "scroll": "Infinite-scroll loading is slow. Lower scrollCount or scrollWaitTime.",
    "network_idle": "Page keeps long-polling connections open.",
    "extraction": "Page was closed or detached before its content could be read.",
}


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0

    @property
    def elapsed_ms(self) -> float:
        return round((self.end_ns - self.start_ns) / 1e6, 1)


class PipelineTimer:
    """Track fetch stage transitions for latency reporting."""

    __slots__ = ("_stages", "_current", "_start_ns")

    def __init__(self) -> None:
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = time.monotonic_ns()

    def stage(self, name: str) -> None:
        """End previous stage + start new stage."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        """End current stage. Safe to call more than once."""
        if self._current is not None:
            self._current.end_ns = time.monotonic_ns()
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    @property
    def last_stage(self) -> str | None:
        """Current stage, or the last finished one after finalize()."""
        if self._current is not None:
            return self._current.name
        return self._stages[-1].name if self._stages else None

    def elapsed_per_stage(self) -> dict[str, float]:
        """Return {stage_name: elapsed_ms}; repeated stage names are summed."""
        now = time.monotonic_ns()
        result: dict[str, float] = {}
        for s in self._stages:
            result[s.name] = round(result.get(s.name, 0.0) + s.elapsed_ms, 1)
        if self._current is not None:
            running = round((now - self._current.start_ns) / 1e6, 1)
            result[self._current.name] = round(result.get(self._current.name, 0.0) + running, 1)
        return result

    def total_ms(self) -> float:
        return round((time.monotonic_ns() - self._start_ns) / 1e6, 1)

    def failure_report(self) -> dict:
        """Structured diagnostic for a failed fetch."""
        failed_at = self.last_stage or "unknown"
        return {
            "failed_at": failed_at,
            "stages": self.elapsed_per_stage(),
            "total_ms": self.total_ms(),
            "hint": self.hint_for_stage(failed_at),
        }

    @staticmethod
    def hint_for_stage(stage: str) -> str:
        return _STAGE_HINTS.get(stage, f"Failed during '{stage}' stage.")
