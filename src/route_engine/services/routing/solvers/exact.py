"""Branch-and-bound solver for small instances."""

from __future__ import annotations

import logging
import math
import time
from typing import List, Optional

from ..models import Quality
from .base import RoutingProblem, SolverOutcome, deadline_passed, nearest_neighbour

logger = logging.getLogger(__name__)

EPSILON = 1e-9


class _BranchAndBound:
    """Depth-first search over stop permutations with anchors held in place."""

    def __init__(self, problem: RoutingProblem, *, enforce_windows: bool, deadline: float | None) -> None:
        self.problem = problem
        self.enforce_windows = enforce_windows
        self.deadline = deadline
        self.best_cost = math.inf
        self.best_order: Optional[List[int]] = None
        self.expansions = 0
        self.timed_out = False
        self.open_end = problem.end is None and not problem.closed

        cost = problem.cost
        targets = list(problem.nodes)
        if problem.end is not None:
            targets.append(problem.end)
        self.min_out = {
            node: min((cost[node][target] for target in targets if target != node), default=0.0)
            for node in problem.nodes
        }

    def seed(self, order: List[int]) -> None:
        """Use a known complete ordering as the initial upper bound."""
        if self.enforce_windows and self.problem.late_nodes(order):
            return
        self.best_cost = self.problem.cost_of(order)
        self.best_order = list(order)

    def run(self) -> None:
        problem = self.problem
        nodes = problem.nodes
        if problem.start is not None:
            self._expand(problem.start, [], set(nodes), 0.0, float(problem.departure), first=None)
            return

        # Rotations of a closed tour cost the same; without windows one first stop suffices.
        firsts = nodes[:1] if problem.closed and not self.enforce_windows else list(nodes)
        for first in firsts:
            if self.timed_out:
                return
            arrival = float(problem.departure)
            departure = self._service_departure(first, arrival)
            if departure is None:
                continue
            unvisited = set(nodes)
            unvisited.discard(first)
            self._expand(first, [first], unvisited, 0.0, departure, first=first)

    def _service_departure(self, node: int, arrival: float) -> Optional[float]:
        problem = self.problem
        window = problem.windows[node]
        start_service = arrival
        if self.enforce_windows and window is not None:
            if window.latest is not None and arrival > window.latest:
                return None
            if window.earliest is not None and arrival < window.earliest:
                start_service = window.earliest
        return start_service + problem.service[node]

    def _closing_cost(self, current: int, first: Optional[int]) -> float:
        problem = self.problem
        if problem.end is not None:
            return problem.cost[current][problem.end]
        if problem.closed and first is not None:
            return problem.cost[current][first]
        return 0.0

    def _lower_bound(self, current: int, unvisited: set[int], cost_so_far: float) -> float:
        row = self.problem.cost[current]
        entry = min(row[node] for node in unvisited)
        outgoing = [self.min_out[node] for node in unvisited]
        bound = cost_so_far + entry + sum(outgoing)
        if self.open_end:
            bound -= max(outgoing)
        return bound

    def _expand(
        self,
        current: int,
        order: List[int],
        unvisited: set[int],
        cost_so_far: float,
        clock: float,
        *,
        first: Optional[int],
    ) -> None:
        if self.timed_out:
            return
        self.expansions += 1
        if deadline_passed(self.deadline):
            self.timed_out = True
            return

        if not unvisited:
            total = cost_so_far + self._closing_cost(current, first)
            if total < self.best_cost - EPSILON:
                self.best_cost = total
                self.best_order = list(order)
            return

        if self._lower_bound(current, unvisited, cost_so_far) >= self.best_cost - EPSILON:
            return

        problem = self.problem
        row = problem.cost[current]
        for node in sorted(unvisited, key=lambda candidate: (row[candidate], problem.labels[candidate])):
            departure = self._service_departure(node, clock + problem.durations[current][node])
            if departure is None:
                continue
            unvisited.remove(node)
            order.append(node)
            self._expand(node, order, unvisited, cost_so_far + row[node], departure, first=first)
            order.pop()
            unvisited.add(node)
            if self.timed_out:
                return


class ExactSolver:
    """Exhaustive search with pruning; proves optimality when it finishes in time."""

    name = "exact"

    def solve(self, problem: RoutingProblem, *, deadline: float | None = None) -> SolverOutcome:
        if not problem.nodes:
            return SolverOutcome(order=[], quality=Quality.OPTIMAL, cost=problem.cost_of([]))

        started = time.monotonic()
        baseline = nearest_neighbour(problem)
        enforce = problem.has_time_windows
        search = _BranchAndBound(problem, enforce_windows=enforce, deadline=deadline)
        search.seed(baseline)
        search.run()

        if enforce and search.best_order is None and not search.timed_out:
            logger.info("No ordering honours every time window; searching again without windows")
            search = _BranchAndBound(problem, enforce_windows=False, deadline=deadline)
            search.seed(baseline)
            search.run()

        order = search.best_order if search.best_order is not None else baseline
        quality = Quality.APPROXIMATE if search.timed_out else Quality.OPTIMAL
        if search.timed_out:
            logger.warning(
                f"Exact search hit its deadline after {search.expansions} expansions; returning best found"
            )
        return SolverOutcome(
            order=list(order),
            quality=quality,
            cost=problem.cost_of(order),
            late_nodes=problem.late_nodes(order),
            stats={
                "expansions": search.expansions,
                "elapsed_seconds": time.monotonic() - started,
                "windows_enforced": enforce and search.enforce_windows,
            },
        )
