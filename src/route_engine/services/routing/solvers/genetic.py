"""Time-boxed genetic algorithm for large instances."""

from __future__ import annotations

import logging
import random
import time
from typing import List, Sequence

from ....config import settings
from ..models import Quality
from .base import RoutingProblem, SolverOutcome, deadline_passed, nearest_neighbour

logger = logging.getLogger(__name__)


def order_crossover(parent_a: Sequence[int], parent_b: Sequence[int], rng: random.Random) -> List[int]:
    """OX: keep a slice of ``parent_a`` and fill the rest in ``parent_b``'s order."""
    size = len(parent_a)
    if size < 2:
        return list(parent_a)
    left, right = sorted(rng.sample(range(size), 2))
    child: List[int | None] = [None] * size
    child[left : right + 1] = parent_a[left : right + 1]
    kept = set(parent_a[left : right + 1])
    fill = [gene for gene in parent_b if gene not in kept]
    position = 0
    for index in range(size):
        if child[index] is None:
            child[index] = fill[position]
            position += 1
    return child  # type: ignore[return-value]


def swap_mutation(individual: List[int], rate: float, rng: random.Random) -> None:
    size = len(individual)
    if size < 2:
        return
    for index in range(size):
        if rng.random() < rate:
            other = rng.randrange(size)
            individual[index], individual[other] = individual[other], individual[index]


class GeneticSolver:
    """Permutation GA with elitism; penalised fitness prefers feasible tours."""

    name = "genetic"

    def __init__(
        self,
        *,
        seed: int | None = None,
        max_generations: int | None = None,
        population_cap: int | None = None,
        population_factor: int | None = None,
        elite_fraction: float | None = None,
        tournament_size: int | None = None,
    ) -> None:
        self.seed = seed
        self.max_generations = max_generations or settings.genetic_max_generations
        self.population_cap = population_cap or settings.genetic_population_cap
        self.population_factor = population_factor or settings.genetic_population_factor
        self.elite_fraction = settings.genetic_elite_fraction if elite_fraction is None else elite_fraction
        self.tournament_size = tournament_size or settings.genetic_tournament_size

    def _penalty(self, problem: RoutingProblem) -> float:
        # Larger than any complete tour, so one fewer violation always wins.
        largest = max((max(row) for row in problem.cost), default=0.0)
        return largest * (problem.node_count + 1) + 1.0

    def solve(self, problem: RoutingProblem, *, deadline: float | None = None) -> SolverOutcome:
        seed = self.seed if self.seed is not None else time.time_ns()
        rng = random.Random(seed)
        baseline = nearest_neighbour(problem)
        size = len(baseline)
        if size < 2:
            return SolverOutcome(
                order=baseline,
                quality=Quality.APPROXIMATE,
                cost=problem.cost_of(baseline),
                late_nodes=problem.late_nodes(baseline),
                stats={"generations": 0, "seed": seed},
            )

        penalty = self._penalty(problem)
        check_windows = problem.has_time_windows

        def objective(order: Sequence[int]) -> float:
            value = problem.cost_of(order)
            if check_windows:
                value += penalty * len(problem.late_nodes(order))
            return value

        population_size = max(2, min(self.population_cap, self.population_factor * problem.node_count))
        elite_count = max(1, int(population_size * self.elite_fraction))
        mutation_rate = 1.0 / size

        population: List[List[int]] = [list(baseline)]
        while len(population) < population_size:
            individual = list(baseline)
            rng.shuffle(individual)
            population.append(individual)
        scored = sorted(((objective(ind), ind) for ind in population), key=lambda item: item[0])

        generations = 0
        timed_out = False
        while generations < self.max_generations:
            if deadline_passed(deadline):
                timed_out = True
                break
            next_generation = [(value, list(ind)) for value, ind in scored[:elite_count]]
            while len(next_generation) < population_size:
                parent_a = self._tournament(scored, rng)
                parent_b = self._tournament(scored, rng)
                child = order_crossover(parent_a, parent_b, rng)
                swap_mutation(child, mutation_rate, rng)
                next_generation.append((objective(child), child))
            scored = sorted(next_generation, key=lambda item: item[0])
            generations += 1

        best_value, best_order = scored[0]
        baseline_value = objective(baseline)
        if baseline_value < best_value:
            best_value, best_order = baseline_value, list(baseline)

        logger.info(
            f"Genetic search finished after {generations} generations "
            f"({'deadline' if timed_out else 'generation cap'}), best objective {best_value:.2f}"
        )
        return SolverOutcome(
            order=list(best_order),
            quality=Quality.APPROXIMATE,
            cost=problem.cost_of(best_order),
            late_nodes=problem.late_nodes(best_order),
            stats={
                "generations": generations,
                "population": population_size,
                "seed": seed,
                "baseline_cost": problem.cost_of(baseline),
                "timed_out": timed_out,
            },
        )

    def _tournament(self, scored: Sequence[tuple[float, List[int]]], rng: random.Random) -> List[int]:
        contenders = [scored[rng.randrange(len(scored))] for _ in range(self.tournament_size)]
        return min(contenders, key=lambda item: item[0])[1]
