# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Per-stage timing and count counters with read-and-reset semantics."""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Dict, Iterator, List

import numpy as np

from .models import STAT_FIELDS, DetectionStat


class Stopwatch:
    """Elapsed time holder filled in by :func:`timed`."""

    __slots__ = ("start", "elapsed_ms")

    def __init__(self) -> None:
        self.start = time.perf_counter()
        self.elapsed_ms = 0.0

    @property
    def elapsed_s(self) -> float:
        return self.elapsed_ms / 1000.0


@contextmanager
def timed() -> Iterator[Stopwatch]:
    watch = Stopwatch()
    try:
        yield watch
    finally:
        watch.elapsed_ms = (time.perf_counter() - watch.start) * 1000.0


class StatAccumulator:
    """Eleven cumulative counters, zeroed only by :meth:`read_and_reset`.

    Callers must not interleave a read with a running pipeline stage; there
    is no locking.
    """

    def __init__(self) -> None:
        self._counters: Dict[str, float] = dict.fromkeys(STAT_FIELDS, 0.0)

    def add(self, **counters: float) -> None:
        for name, value in counters.items():
            if name not in self._counters:
                raise KeyError(f"unknown detection counter {name!r}")
            self._counters[name] += float(value)

    def snapshot(self) -> DetectionStat:
        return DetectionStat(**self._counters)

    def read_and_reset(self) -> DetectionStat:
        stat = self.snapshot()
        self._counters = dict.fromkeys(STAT_FIELDS, 0.0)
        return stat

    def read_and_reset_array(self) -> np.ndarray:
        return self.read_and_reset().as_array()

    def as_list(self) -> List[float]:
        return [self._counters[name] for name in STAT_FIELDS]


__all__ = ["StatAccumulator", "Stopwatch", "timed"]
