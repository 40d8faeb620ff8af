"""Manual clock shared by the in-memory stream substrate and scheduler."""

from __future__ import annotations


class ManualClock:
    """Integer-second clock advanced explicitly by the caller."""

    def __init__(self, start: int = 0) -> None:
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"Clock cannot run backwards: {seconds}")
        self._now += seconds
        return self._now
