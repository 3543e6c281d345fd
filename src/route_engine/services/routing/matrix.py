"""Distance/duration matrix construction over a distance oracle."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Sequence

from ...config import settings
from ...models.domain import Coordinate, OptimizationMode
from .errors import OracleUnavailable, RouteEngineError
from .oracle import DistanceOracle, LegCache

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DistanceMatrix:
    """Square matrix over ``positions``; cell (i, j) is the directed leg i -> j."""

    positions: List[Coordinate]
    distances: List[List[float]]
    durations: List[List[float]]

    @property
    def size(self) -> int:
        return len(self.positions)

    def cost_matrix(self, mode: OptimizationMode, distance_weight: float | None = None) -> List[List[float]]:
        """Matrix the solvers minimise for the given optimization mode."""
        if mode is OptimizationMode.FASTEST:
            return [list(row) for row in self.durations]
        if mode is OptimizationMode.SHORTEST:
            return [list(row) for row in self.distances]

        weight = settings.balanced_distance_weight if distance_weight is None else distance_weight
        mean_distance = _off_diagonal_mean(self.distances)
        mean_duration = _off_diagonal_mean(self.durations)
        size = self.size
        return [
            [
                0.0
                if i == j
                else weight * self.distances[i][j] / mean_distance
                + (1.0 - weight) * self.durations[i][j] / mean_duration
                for j in range(size)
            ]
            for i in range(size)
        ]


def _off_diagonal_mean(matrix: Sequence[Sequence[float]]) -> float:
    size = len(matrix)
    values = [matrix[i][j] for i in range(size) for j in range(size) if i != j]
    mean = sum(values) / len(values) if values else 0.0
    # A matrix of zeros normalises to zeros rather than dividing by zero.
    return mean if mean > 0 else 1.0


def build_distance_matrix(
    positions: Sequence[Coordinate],
    oracle: DistanceOracle,
    *,
    cache: LegCache | None = None,
) -> DistanceMatrix:
    """Query the oracle for every ordered pair and return a complete matrix.

    Each distinct ordered coordinate pair is looked up at most once per build.
    Any failure aborts the build with ``OracleUnavailable``.
    """
    size = len(positions)
    distances = [[0.0] * size for _ in range(size)]
    durations = [[0.0] * size for _ in range(size)]
    memo: dict[tuple[Coordinate, Coordinate], tuple[float, float]] = {}
    oracle_calls = 0

    for i, origin in enumerate(positions):
        for j, destination in enumerate(positions):
            if i == j:
                continue
            key = (origin, destination)
            value = memo.get(key)
            if value is None and cache is not None:
                value = cache.get(origin, destination)
            if value is None:
                try:
                    value = oracle.lookup(origin, destination)
                except RouteEngineError:
                    raise
                except Exception as exc:
                    raise OracleUnavailable(
                        f"Distance oracle failed for {origin} -> {destination}: {exc}",
                        origin=origin,
                        destination=destination,
                    ) from exc
                oracle_calls += 1
                value = _checked(value, origin, destination)
                if cache is not None:
                    cache.set(origin, destination, value)
            memo[key] = value
            distances[i][j], durations[i][j] = value

    logger.debug(f"Built {size}x{size} distance matrix with {oracle_calls} oracle calls")
    return DistanceMatrix(positions=list(positions), distances=distances, durations=durations)


def _checked(value: tuple[float, float], origin: Coordinate, destination: Coordinate) -> tuple[float, float]:
    distance, duration = float(value[0]), float(value[1])
    if not (math.isfinite(distance) and math.isfinite(duration)) or distance < 0 or duration < 0:
        raise OracleUnavailable(
            f"Distance oracle returned an unusable leg ({distance}, {duration}) for {origin} -> {destination}",
            origin=origin,
            destination=destination,
        )
    return distance, duration
