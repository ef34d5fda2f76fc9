"""
Per-request timing records.

A ``Timer`` is created for every top-level tile request. Nested steps open
markers for a category (``fetch``, ``decode``, ``isoline``) and close them
when done; ``finish``/``error`` turn the collected marks into a ``Timing``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from shared.constants import (
    OUTCOME_ERROR,
    OUTCOME_OK,
    TIMING_DECODE,
    TIMING_FETCH,
    TIMING_ISOLINE,
    TIMING_MAIN,
)

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass
class Timing:
    """Timing summary of one top-level request (all durations in ms)."""

    url: str
    tiles_used: int
    origin: float
    marks: dict[str, list[tuple[float, float]]]
    duration: float
    fetch: float | None = None
    decode: float | None = None
    isoline: float | None = None
    process: float | None = None
    wait: float = 0.0
    outcome: str = OUTCOME_OK
    error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            'url': self.url,
            'tiles_used': self.tiles_used,
            'origin': self.origin,
            'marks': {k: [list(m) for m in v] for k, v in self.marks.items()},
            'duration': self.duration,
            'fetch': self.fetch,
            'decode': self.decode,
            'isoline': self.isoline,
            'process': self.process,
            'wait': self.wait,
            'outcome': self.outcome,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Timing:
        marks = {k: [(float(a), float(b)) for a, b in v] for k, v in data['marks'].items()}
        return cls(**{**data, 'marks': marks})


def _span(marks: list[tuple[float, float]] | None) -> float | None:
    if not marks:
        return None
    start = min(m[0] for m in marks)
    end = max(m[1] for m in marks)
    return end - start


class Timer:
    """Collects timing marks for a single request."""

    def __init__(self, name: str = TIMING_MAIN) -> None:
        self.origin = time.time() * 1000.0
        self._t0 = time.perf_counter()
        self.marks: dict[str, list[tuple[float, float]]] = {}
        self.urls: list[str] = []
        self.fetched: list[str] = []
        self._finish_main = self.marker(name)

    def _now(self) -> float:
        return (time.perf_counter() - self._t0) * 1000.0

    def marker(self, category: str) -> Callable[[], None]:
        """Open a mark for ``category``; the returned callable closes it."""
        start = self._now()
        closed = False

        def end() -> None:
            nonlocal closed
            if closed:
                return
            closed = True
            self.marks.setdefault(category, []).append((start, self._now()))

        return end

    def use_tile(self, url: str) -> None:
        if url not in self.urls:
            self.urls.append(url)

    def fetch_tile(self, url: str) -> None:
        if url not in self.fetched:
            self.fetched.append(url)

    def add_all(self, timing: Timing) -> None:
        """Merge a timing produced elsewhere (e.g. in the worker process)."""
        shift = timing.origin - self.origin
        for category, marks in timing.marks.items():
            if category == TIMING_MAIN:
                continue
            self.marks.setdefault(category, []).extend(
                (a + shift, b + shift) for a, b in marks
            )
        self.urls.extend(u for u in [timing.url] if u and u not in self.urls)

    def finish(self, url: str, outcome: str = OUTCOME_OK) -> Timing:
        self._finish_main()
        main = self.marks.get(TIMING_MAIN, [(0.0, self._now())])
        duration = main[-1][1] - main[-1][0]
        fetch = _span(self.marks.get(TIMING_FETCH))
        decode = _span(self.marks.get(TIMING_DECODE))
        isoline = _span(self.marks.get(TIMING_ISOLINE))
        spent = sum(v for v in (fetch, decode, isoline) if v is not None)
        return Timing(
            url=url,
            tiles_used=len(self.urls),
            origin=self.origin,
            marks=dict(self.marks),
            duration=duration,
            fetch=fetch,
            decode=decode,
            isoline=isoline,
            process=decode + isoline if decode is not None and isoline is not None else None,
            wait=max(0.0, duration - spent),
            outcome=outcome,
            error=outcome != OUTCOME_OK,
        )

    def error(self, url: str, outcome: str = OUTCOME_ERROR) -> Timing:
        return self.finish(url, outcome)
