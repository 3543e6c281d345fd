"""Nearest-neighbour construction followed by 2-opt improvement."""

from __future__ import annotations

import logging
from typing import List, Optional

from ....config import settings
from ..models import Quality
from .base import RoutingProblem, SolverOutcome, deadline_passed, nearest_neighbour

logger = logging.getLogger(__name__)

EPSILON = 1e-9


def two_opt_pass(problem: RoutingProblem, order: List[int], current_cost: float) -> tuple[Optional[List[int]], float]:
    """Return the best improving segment reversal, or (None, current_cost) at a local optimum.

    Costs are recomputed over the whole path because legs may be asymmetric.
    """
    best_order: Optional[List[int]] = None
    best_cost = current_cost
    size = len(order)
    for i in range(size - 1):
        for k in range(i + 2, size + 1):
            candidate = order[:i] + order[i:k][::-1] + order[k:]
            candidate_cost = problem.cost_of(candidate)
            if candidate_cost < best_cost - EPSILON:
                best_order = candidate
                best_cost = candidate_cost
    return best_order, best_cost


class LocalSearchSolver:
    name = "local_search"

    def __init__(self, pass_factor: int | None = None) -> None:
        self.pass_factor = pass_factor or settings.local_search_pass_factor

    def solve(self, problem: RoutingProblem, *, deadline: float | None = None) -> SolverOutcome:
        order = nearest_neighbour(problem)
        construction_cost = problem.cost_of(order)
        cost = construction_cost
        max_passes = self.pass_factor * problem.node_count
        passes = 0
        converged = False
        timed_out = False

        while passes < max_passes:
            if deadline_passed(deadline):
                timed_out = True
                break
            candidate, candidate_cost = two_opt_pass(problem, order, cost)
            passes += 1
            if candidate is None:
                converged = True
                break
            order, cost = candidate, candidate_cost

        if timed_out:
            logger.warning(f"2-opt stopped on deadline after {passes} passes")
        elif not converged:
            logger.info(f"2-opt reached its pass cap ({max_passes}) before converging")

        return SolverOutcome(
            order=order,
            quality=Quality.APPROXIMATE if timed_out else Quality.IMPROVED,
            cost=cost,
            late_nodes=problem.late_nodes(order),
            stats={
                "passes": passes,
                "converged": converged,
                "construction_cost": construction_cost,
            },
        )
