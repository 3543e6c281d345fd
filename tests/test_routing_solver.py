import itertools
import math
import random

import pytest

from src.route_engine.models.domain import TimeWindow
from src.route_engine.services.routing.models import Quality
from src.route_engine.services.routing.solvers import (
    ExactSolver,
    GeneticSolver,
    LocalSearchSolver,
    RoutingProblem,
    nearest_neighbour,
    select_solver,
)
from src.route_engine.services.routing.solvers.genetic import order_crossover, swap_mutation
from src.route_engine.services.routing.solvers.local_search import two_opt_pass


def _problem(cost, *, start=None, end=None, closed=False, windows=None, service=None, departure=0.0):
    size = len(cost)
    anchors = {index for index in (start, end) if index is not None}
    return RoutingProblem(
        cost=cost,
        durations=cost,
        nodes=[index for index in range(size) if index not in anchors],
        start=start,
        end=end,
        closed=closed,
        windows=windows or [None] * size,
        service=service or [0.0] * size,
        priorities=[5] * size,
        labels=[f"S{index:02d}" for index in range(size)],
        departure=departure,
    )


def _random_points(count: int, seed: int) -> list[tuple[float, float]]:
    rng = random.Random(seed)
    return [(rng.uniform(0, 100), rng.uniform(0, 100)) for _ in range(count)]


def _euclidean(points) -> list[list[float]]:
    return [[math.dist(a, b) for b in points] for a in points]


def _random_asymmetric(size: int, seed: int) -> list[list[float]]:
    rng = random.Random(seed)
    return [[0.0 if i == j else float(rng.randint(1, 50)) for j in range(size)] for i in range(size)]


def _brute_force(problem: RoutingProblem) -> float:
    return min(problem.cost_of(list(order)) for order in itertools.permutations(problem.nodes))


def test_exact_solves_closed_triangle():
    problem = _problem(_euclidean([(0, 0), (1, 0), (0, 1)]), closed=True)

    outcome = ExactSolver().solve(problem)

    assert outcome.quality is Quality.OPTIMAL
    assert outcome.cost == pytest.approx(2 + math.sqrt(2))
    assert sorted(outcome.order) == [0, 1, 2]


@pytest.mark.parametrize(
    "anchors",
    [
        {"start": 0},
        {"start": 0, "end": 0},
        {"start": 0, "end": 1},
        {"closed": True},
        {},
    ],
)
def test_exact_matches_brute_force(anchors):
    problem = _problem(_random_asymmetric(7, seed=11), **anchors)

    outcome = ExactSolver().solve(problem)

    assert outcome.quality is Quality.OPTIMAL
    assert outcome.cost == pytest.approx(_brute_force(problem))
    assert sorted(outcome.order) == sorted(problem.nodes)


def test_exact_finds_known_optimum_on_symmetric_hexagon():
    # Six points on a unit circle; the best closed tour is the hexagon itself.
    angles = [0, 3, 1, 5, 2, 4]
    points = [(math.cos(step * math.pi / 3), math.sin(step * math.pi / 3)) for step in angles]
    problem = _problem(_euclidean(points), closed=True)

    outcome = ExactSolver().solve(problem)

    assert outcome.quality is Quality.OPTIMAL
    assert outcome.cost == pytest.approx(6.0)
    assert outcome.cost == pytest.approx(_brute_force(problem))
    ring = [angles[node] for node in outcome.order]
    steps = {(b - a) % 6 for a, b in zip(ring, ring[1:] + ring[:1])}
    assert steps in ({1}, {5})


def test_exact_honours_time_windows_when_possible():
    # 0 is the start; visiting 1 first is cheaper but reaches 2 too late.
    cost = [
        [0.0, 10.0, 12.0],
        [10.0, 0.0, 10.0],
        [12.0, 10.0, 0.0],
    ]
    windows = [None, None, TimeWindow(latest=15)]
    problem = _problem(cost, start=0, windows=windows)

    outcome = ExactSolver().solve(problem)

    assert outcome.order == [2, 1]
    assert outcome.late_nodes == []
    assert outcome.stats["windows_enforced"] is True


def test_exact_reports_late_stops_when_no_order_fits():
    cost = [
        [0.0, 10.0, 20.0],
        [10.0, 0.0, 10.0],
        [20.0, 10.0, 0.0],
    ]
    windows = [None, TimeWindow(latest=5), TimeWindow(latest=5)]
    problem = _problem(cost, start=0, windows=windows)

    outcome = ExactSolver().solve(problem)

    assert outcome.order == [1, 2]
    assert set(outcome.late_nodes) == {1, 2}


def test_exact_returns_approximate_when_deadline_already_passed():
    problem = _problem(_random_asymmetric(8, seed=3), start=0)

    outcome = ExactSolver().solve(problem, deadline=0.0)

    assert outcome.quality is Quality.APPROXIMATE
    assert sorted(outcome.order) == sorted(problem.nodes)


def test_nearest_neighbour_breaks_ties_by_priority_then_label():
    cost = [
        [0.0, 5.0, 5.0, 5.0],
        [5.0, 0.0, 1.0, 1.0],
        [5.0, 1.0, 0.0, 1.0],
        [5.0, 1.0, 1.0, 0.0],
    ]
    problem = _problem(cost, start=0)
    problem.priorities[3] = 9

    assert nearest_neighbour(problem) == [3, 1, 2]


def test_two_opt_pass_removes_crossing():
    points = [(0, 0), (1, 1), (1, 0), (0, 1)]
    problem = _problem(_euclidean(points), closed=True)
    crossed = [0, 1, 2, 3]

    improved, cost = two_opt_pass(problem, crossed, problem.cost_of(crossed))

    assert improved is not None
    assert cost == pytest.approx(4.0)


def test_local_search_never_worse_than_nearest_neighbour():
    problem = _problem(_euclidean(_random_points(20, seed=5)), start=0, end=0)

    outcome = LocalSearchSolver().solve(problem)

    assert outcome.quality is Quality.IMPROVED
    assert outcome.cost <= problem.cost_of(nearest_neighbour(problem)) + 1e-9
    assert outcome.cost == pytest.approx(problem.cost_of(outcome.order))
    assert sorted(outcome.order) == sorted(problem.nodes)


def test_local_search_on_deadline_is_approximate():
    problem = _problem(_euclidean(_random_points(15, seed=2)), start=0)

    outcome = LocalSearchSolver().solve(problem, deadline=0.0)

    assert outcome.quality is Quality.APPROXIMATE
    assert outcome.order == nearest_neighbour(problem)


def test_genetic_never_worse_than_nearest_neighbour():
    problem = _problem(_euclidean(_random_points(30, seed=9)), start=0, end=0)

    outcome = GeneticSolver(seed=42, max_generations=25).solve(problem)

    assert outcome.quality is Quality.APPROXIMATE
    assert outcome.cost <= problem.cost_of(nearest_neighbour(problem)) + 1e-9
    assert sorted(outcome.order) == sorted(problem.nodes)
    assert outcome.stats["generations"] == 25
    assert outcome.stats["population"] == 200


def test_genetic_is_deterministic_for_a_seed():
    problem = _problem(_euclidean(_random_points(30, seed=4)), start=0)

    first = GeneticSolver(seed=123, max_generations=15).solve(problem)
    second = GeneticSolver(seed=123, max_generations=15).solve(problem)

    assert first.order == second.order
    assert first.cost == second.cost


def test_genetic_prefers_fewer_window_violations():
    cost = [
        [0.0, 10.0, 12.0],
        [10.0, 0.0, 10.0],
        [12.0, 10.0, 0.0],
    ]
    windows = [None, None, TimeWindow(latest=15)]
    problem = _problem(cost, start=0, windows=windows)

    outcome = GeneticSolver(seed=1, max_generations=10).solve(problem)

    assert outcome.order == [2, 1]
    assert outcome.late_nodes == []
    # The on-time order wins even though the late nearest-neighbour order is shorter.
    assert outcome.cost == pytest.approx(22.0)
    assert outcome.stats["baseline_cost"] == pytest.approx(20.0)


def test_order_crossover_yields_permutation():
    rng = random.Random(0)
    parent_a = list(range(10))
    parent_b = list(reversed(parent_a))

    for _ in range(20):
        child = order_crossover(parent_a, parent_b, rng)
        assert sorted(child) == parent_a


def test_swap_mutation_keeps_permutation():
    rng = random.Random(0)
    individual = list(range(12))

    swap_mutation(individual, rate=1.0, rng=rng)

    assert sorted(individual) == list(range(12))


@pytest.mark.parametrize(
    ("node_count", "expected"),
    [(1, "exact"), (10, "exact"), (11, "local_search"), (25, "local_search"), (26, "genetic"), (100, "genetic")],
)
def test_select_solver_tiers(node_count, expected):
    assert select_solver(node_count).name == expected
