# SPDX-License-Identifier: GPL-3.0-or-later
"""Completed/total counter with ETA, shared by all worker threads."""

from __future__ import annotations

import threading
import time
from typing import Optional

from tqdm import tqdm

BAR_WIDTH = 30


class ProgressReporter:
    def __init__(self, total: int = 0, desc: str = "Processing", enabled: bool = True,
                 clock=time.monotonic):
        self.total = total
        self.completed = 0
        self.desc = desc
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self.started_at = clock()
        self._bar: Optional[tqdm] = None
        if enabled and total > 0:
            self._open_bar()

    def _open_bar(self):
        self._bar = tqdm(total=self.total, desc=self.desc, unit="file", dynamic_ncols=True)

    def add_total(self, n: int = 1) -> int:
        """Discovery runs alongside the workers, so the total grows as items are found."""
        with self._lock:
            self.total += n
            if self._bar is not None:
                self._bar.total = self.total
            elif self.enabled and self.total > 0:
                self._open_bar()
            return self.total

    def advance(self, n: int = 1) -> int:
        with self._lock:
            self.completed += n
            if self._bar is not None:
                self._bar.update(n)
            return self.completed

    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def remaining(self) -> Optional[float]:
        """Linear extrapolation from the average time per completed item."""
        with self._lock:
            completed = self.completed
        if completed <= 0:
            return None
        return self.elapsed() * (self.total - completed) / completed

    def render(self) -> str:
        with self._lock:
            completed = self.completed
        if self.total <= 0:
            return f"{self.desc}: nothing to do"
        elapsed = self.elapsed()
        line = tqdm.format_meter(
            completed, self.total, elapsed,
            ncols=BAR_WIDTH + 60, prefix=self.desc, unit="file",
            bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} | Elapsed: {elapsed}",
        )
        remaining = self.remaining()
        if completed >= self.total:
            return f"{line} | Complete!"
        if remaining is None:
            return f"{line} | ETA: calculating..."
        return f"{line} | ETA: {tqdm.format_interval(remaining)}"

    def close(self):
        with self._lock:
            if self._bar is not None:
                self._bar.close()
                self._bar = None
