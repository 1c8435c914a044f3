# solver/instrumentation.py
"""Optional timing hooks handed to an engine instance.

Nothing here is process-wide: each engine gets its own object (or the
no-op default).
"""
from __future__ import annotations

import logging
import math
import statistics
from abc import ABC, abstractmethod
from contextlib import contextmanager
from time import perf_counter
from typing import Dict, Iterator, List, Optional

log = logging.getLogger(__name__)


class Instrumentation(ABC):
    @abstractmethod
    def start(self, name: str) -> None:
        ...

    @abstractmethod
    def stop(self, name: str) -> None:
        ...

    @contextmanager
    def measure(self, name: str) -> Iterator[None]:
        self.start(name)
        try:
            yield
        finally:
            self.stop(name)


class NullInstrumentation(Instrumentation):
    def start(self, name: str) -> None:
        pass

    def stop(self, name: str) -> None:
        pass

    @contextmanager
    def measure(self, name: str) -> Iterator[None]:
        yield


class PerformanceMeasurement(Instrumentation):
    """Collects wall-clock spans (milliseconds) per name."""

    def __init__(self) -> None:
        self.measurements: Dict[str, List[float]] = {}
        self._open: Dict[str, float] = {}

    def start(self, name: str) -> None:
        self._open[name] = perf_counter()

    def stop(self, name: str) -> None:
        t0 = self._open.pop(name, None)
        if t0 is None:
            return
        elapsed_ms = (perf_counter() - t0) * 1000.0
        self.measurements.setdefault(name, []).append(elapsed_ms)

    def summary(self, name: str) -> Optional[Dict[str, float]]:
        values = self.measurements.get(name)
        if not values:
            return None
        mean = statistics.fmean(values)
        return {
            "count": len(values),
            "total": math.fsum(values),
            "mean": mean,
            "min": min(values),
            "max": max(values),
            "median": statistics.median(values),
            "stddev": statistics.pstdev(values, mu=mean),
        }

    def report(self) -> str:
        """Render every span as one row of a fixed-width table."""
        header = ("Measurement", "Count", "Total", "Mean", "Min", "Max", "Median", "StdDev")
        rows = []
        for name in sorted(self.measurements):
            s = self.summary(name)
            if s is None:
                continue
            rows.append((
                name,
                str(s["count"]),
                *(f"{s[k]:.5g} ms" for k in ("total", "mean", "min", "max", "median", "stddev")),
            ))
        widths = [max(len(header[i]), *(len(r[i]) for r in rows)) if rows else len(header[i])
                  for i in range(len(header))]
        lines = [" | ".join(h.ljust(w) if i == 0 else h.rjust(w)
                            for i, (h, w) in enumerate(zip(header, widths))) + " |"]
        for r in rows:
            lines.append(" | ".join(c.ljust(w) if i == 0 else c.rjust(w)
                                    for i, (c, w) in enumerate(zip(r, widths))) + " |")
        text = "\n".join(lines)
        log.info("Performance analysis\n%s", text)
        return text


__all__ = ["Instrumentation", "NullInstrumentation", "PerformanceMeasurement"]
