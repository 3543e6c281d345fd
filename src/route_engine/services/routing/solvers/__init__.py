"""Visiting-order solvers, selected by instance size."""

from ....config import settings
from .base import RouteSolver, RoutingProblem, SolverOutcome, nearest_neighbour
from .exact import ExactSolver
from .genetic import GeneticSolver
from .local_search import LocalSearchSolver


def select_solver(node_count: int, *, seed: int | None = None) -> RouteSolver:
    """Pick the solver tier for ``node_count`` positions (stops plus anchors)."""
    if node_count <= settings.exact_max_nodes:
        return ExactSolver()
    if node_count <= settings.local_search_max_nodes:
        return LocalSearchSolver()
    return GeneticSolver(seed=seed)


__all__ = [
    "ExactSolver",
    "GeneticSolver",
    "LocalSearchSolver",
    "RouteSolver",
    "RoutingProblem",
    "SolverOutcome",
    "nearest_neighbour",
    "select_solver",
]
