"""Shared problem definition and contract for the visiting-order solvers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from ....models.domain import TimeWindow
from ..models import Quality
from ..timing import Schedule, simulate_path


@dataclass(slots=True)
class RoutingProblem:
    """Matrix-indexed view of one optimize request.

    ``nodes`` are the matrix indices of the stops to order. ``start``/``end``
    are fixed anchor indices (``end`` may equal ``start`` for a round trip).
    ``closed`` marks an anchorless round trip that returns to the first stop.
    ``windows``, ``service``, ``priorities`` and ``labels`` are indexed by node.
    """

    cost: List[List[float]]
    durations: List[List[float]]
    nodes: List[int]
    start: Optional[int] = None
    end: Optional[int] = None
    closed: bool = False
    windows: List[Optional[TimeWindow]] = field(default_factory=list)
    service: List[float] = field(default_factory=list)
    priorities: List[int] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)
    departure: float = 0.0

    @property
    def node_count(self) -> int:
        anchors = {index for index in (self.start, self.end) if index is not None}
        return len(self.nodes) + len(anchors)

    @property
    def has_time_windows(self) -> bool:
        return any(self.windows[node] is not None for node in self.nodes)

    def path(self, order: Sequence[int]) -> List[int]:
        path: List[int] = []
        if self.start is not None:
            path.append(self.start)
        path.extend(order)
        if self.end is not None:
            path.append(self.end)
        elif self.closed and order:
            path.append(order[0])
        return path

    def cost_of(self, order: Sequence[int]) -> float:
        path = self.path(order)
        cost = self.cost
        return sum(cost[a][b] for a, b in zip(path, path[1:]))

    def schedule(self, order: Sequence[int]) -> Schedule:
        return simulate_path(
            self.path(order),
            self.durations,
            departure=self.departure,
            service=self.service,
            windows=self.windows,
            closing_visit=self.closed and self.end is None,
        )

    def late_nodes(self, order: Sequence[int]) -> List[int]:
        if not self.has_time_windows:
            return []
        path = self.path(order)
        return [path[position] for position in self.schedule(order).late_positions]


@dataclass(slots=True)
class SolverOutcome:
    order: List[int]
    quality: Quality
    cost: float
    late_nodes: List[int] = field(default_factory=list)
    stats: dict = field(default_factory=dict)


class RouteSolver(Protocol):
    """One tier of the visiting-order search."""

    name: str

    def solve(self, problem: RoutingProblem, *, deadline: float | None = None) -> SolverOutcome:
        ...


def deadline_passed(deadline: float | None) -> bool:
    return deadline is not None and time.monotonic() >= deadline


def nearest_neighbour(problem: RoutingProblem) -> List[int]:
    """Greedy construction; ties go to higher priority, then the lower stop id."""
    remaining = list(problem.nodes)
    if not remaining:
        return []
    order: List[int] = []
    if problem.start is not None:
        current = problem.start
    else:
        current = remaining.pop(0)
        order.append(current)

    cost = problem.cost
    while remaining:
        row = cost[current]
        chosen = min(remaining, key=lambda node: (row[node], -problem.priorities[node], problem.labels[node]))
        remaining.remove(chosen)
        order.append(chosen)
        current = chosen
    return order
