"""Bounded history of aggregated CPU/RAM totals."""

from collections import deque
from collections.abc import Iterator

from sshtop.models import AggregatePoint

MAX_HISTORY = 100

# Axis floors so an idle host still gets a readable chart.
CPU_AXIS_FLOOR = 10.0
RAM_AXIS_FLOOR = 100.0
AXIS_HEADROOM = 1.1


class HistoryBuffer:
    """
    Fixed-capacity, insertion-ordered series of AggregatePoints.

    Once full, each push evicts the oldest point.
    """

    def __init__(self, capacity: int = MAX_HISTORY) -> None:
        if capacity < 1:
            raise ValueError(f"history capacity must be positive, got {capacity}")
        self._points: deque[AggregatePoint] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        """Maximum number of points kept."""
        return self._points.maxlen  # type: ignore[return-value]

    def push(self, point: AggregatePoint) -> None:
        """Append a point, evicting the oldest when over capacity."""
        self._points.append(point)

    def clear(self) -> None:
        """Drop every point."""
        self._points.clear()

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[AggregatePoint]:
        return iter(self._points)

    def points(self) -> tuple[AggregatePoint, ...]:
        """Return an immutable copy of the series, oldest first."""
        return tuple(self._points)

    def cpu_series(self) -> list[tuple[float, float]]:
        """(index, cpu_total) pairs for charting."""
        return [(float(i), p.cpu_total) for i, p in enumerate(self._points)]

    def ram_series(self) -> list[tuple[float, float]]:
        """(index, ram_total) pairs for charting."""
        return [(float(i), p.ram_total) for i, p in enumerate(self._points)]

    def cpu_upper_bound(self) -> float:
        """Upper bound of the CPU chart axis."""
        observed = max((p.cpu_total for p in self._points), default=0.0)
        return AXIS_HEADROOM * max(observed, CPU_AXIS_FLOOR)

    def ram_upper_bound(self, total_memory_mb: float = 0.0) -> float:
        """
        Upper bound of the RAM chart axis.

        Uses the remote host's installed memory when known, otherwise the
        largest observed total (at least RAM_AXIS_FLOOR).
        """
        if total_memory_mb > 0:
            return AXIS_HEADROOM * total_memory_mb
        observed = max((p.ram_total for p in self._points), default=0.0)
        return AXIS_HEADROOM * max(observed, RAM_AXIS_FLOOR)
