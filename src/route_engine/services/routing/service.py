"""Routing orchestration service."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache
from typing import Hashable, Optional, Sequence

from ...config import settings
from ...models.domain import Anchors, Coordinate, OptimizationMode, Stop
from .errors import ConcurrentOptimizationInProgress
from .matrix import DistanceMatrix, build_distance_matrix
from .models import END_ANCHOR_ID, START_ANCHOR_ID, Leg, OptimizationResult, Quality
from .oracle import DistanceOracle, LegCache, get_distance_oracle
from .solvers import RoutingProblem, SolverOutcome, nearest_neighbour, select_solver
from .validation import validate_route_input

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Positions:
    coordinates: list[Coordinate]
    labels: list[str]
    start: Optional[int]
    end: Optional[int]
    closed: bool
    stop_offset: int


def _build_positions(stops: Sequence[Stop], anchors: Anchors) -> _Positions:
    """Lay out matrix positions: anchors first, then stops in input order."""
    coordinates: list[Coordinate] = []
    labels: list[str] = []
    start = end = None
    if anchors.start is not None:
        start = len(coordinates)
        coordinates.append(anchors.start)
        labels.append(START_ANCHOR_ID)
    if anchors.end is not None:
        end = len(coordinates)
        coordinates.append(anchors.end)
        labels.append(END_ANCHOR_ID)
    elif anchors.return_to_start and start is not None:
        end = start
    closed = anchors.return_to_start and start is None and anchors.end is None

    stop_offset = len(coordinates)
    for stop in stops:
        coordinates.append(stop.coordinate)
        labels.append(stop.stop_id)
    return _Positions(coordinates, labels, start, end, closed, stop_offset)


def _build_problem(
    stops: Sequence[Stop],
    positions: _Positions,
    matrix: DistanceMatrix,
    mode: OptimizationMode,
    departure: float,
) -> RoutingProblem:
    size = matrix.size
    windows = [None] * size
    service = [0.0] * size
    priorities = [0] * size
    for offset, stop in enumerate(stops):
        node = positions.stop_offset + offset
        windows[node] = stop.time_window
        service[node] = float(stop.service_duration_seconds)
        priorities[node] = stop.priority
    return RoutingProblem(
        cost=matrix.cost_matrix(mode),
        durations=matrix.durations,
        nodes=list(range(positions.stop_offset, size)),
        start=positions.start,
        end=positions.end,
        closed=positions.closed,
        windows=windows,
        service=service,
        priorities=priorities,
        labels=list(positions.labels),
        departure=departure,
    )


def _assemble_result(
    route_id: str,
    problem: RoutingProblem,
    matrix: DistanceMatrix,
    outcome: SolverOutcome,
    solver_name: str,
) -> OptimizationResult:
    labels = problem.labels
    path = problem.path(outcome.order)
    schedule = problem.schedule(outcome.order)

    legs: list[Leg] = []
    for step, (origin, destination) in enumerate(zip(path, path[1:]), start=1):
        legs.append(
            Leg(
                from_id=labels[origin],
                to_id=labels[destination],
                distance_meters=matrix.distances[origin][destination],
                duration_seconds=matrix.durations[origin][destination],
                arrival_seconds=schedule.arrivals[step],
                wait_seconds=schedule.waits[step],
                departure_seconds=schedule.departures[step],
            )
        )

    infeasible: list[str] = []
    for node in outcome.late_nodes:
        if labels[node] not in infeasible:
            infeasible.append(labels[node])

    return OptimizationResult(
        route_id=route_id,
        order=[labels[node] for node in outcome.order],
        total_distance_meters=sum(leg.distance_meters for leg in legs),
        total_duration_seconds=schedule.finish - problem.departure if path else 0.0,
        total_cost=outcome.cost,
        legs=legs,
        infeasible_stop_ids=infeasible,
        quality=outcome.quality,
        solver=solver_name,
        path=[matrix.positions[node] for node in path],
    )


def _request_signature(
    stops: Sequence[Stop],
    anchors: Anchors,
    mode: OptimizationMode,
    departure: float,
    seed: int | None,
) -> Hashable:
    return (
        tuple((stop.stop_id, stop.coordinate, stop.time_window, stop.priority, stop.service_duration_seconds) for stop in stops),
        anchors,
        mode,
        departure,
        seed,
    )


class RouteOptimizer:
    """Runs optimize requests on worker threads, one computation per route at a time.

    A second request for a route whose identical computation is in flight joins
    it and receives the same outcome. A different request for a busy route, or
    any overlap when coalescing is disabled, is rejected.
    """

    def __init__(
        self,
        oracle: DistanceOracle | None = None,
        *,
        max_workers: int | None = None,
        coalesce: bool | None = None,
    ) -> None:
        self.oracle = oracle or get_distance_oracle()
        self.coalesce = settings.coalesce_concurrent_optimizations if coalesce is None else coalesce
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.optimizer_max_workers,
            thread_name_prefix="route-optimizer",
        )
        self._inflight: dict[str, tuple[Hashable, Future]] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        route_id: str,
        stops: Sequence[Stop],
        anchors: Anchors,
        mode: OptimizationMode,
        *,
        deadline: float | None = None,
        time_budget_seconds: float | None = None,
        departure_seconds: float | None = None,
        seed: int | None = None,
        cache: LegCache | None = None,
    ) -> "Future[OptimizationResult]":
        """Schedule an optimization and return its future without blocking."""
        if deadline is None:
            budget = time_budget_seconds or settings.optimize_time_budget_seconds
            deadline = time.monotonic() + budget
        departure = settings.default_route_start_seconds if departure_seconds is None else departure_seconds
        stops = list(stops)
        signature = _request_signature(stops, anchors, mode, departure, seed)

        with self._lock:
            inflight = self._inflight.get(route_id)
            if inflight is not None:
                inflight_signature, inflight_future = inflight
                if self.coalesce and inflight_signature == signature:
                    logger.info(f"Joining in-flight optimization for route {route_id}")
                    return inflight_future
                raise ConcurrentOptimizationInProgress(route_id)
            future = self._executor.submit(
                self._run_and_release, route_id, signature, stops, anchors, mode, deadline, departure, seed, cache
            )
            self._inflight[route_id] = (signature, future)
        return future

    def optimize(
        self,
        route_id: str,
        stops: Sequence[Stop],
        anchors: Anchors,
        mode: OptimizationMode,
        **kwargs,
    ) -> OptimizationResult:
        """Optimize and wait for the result. Raises ValidationFailed or OracleUnavailable."""
        return self.submit(route_id, stops, anchors, mode, **kwargs).result()

    def is_running(self, route_id: str) -> bool:
        with self._lock:
            return route_id in self._inflight

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _run_and_release(self, route_id: str, signature: Hashable, *args) -> OptimizationResult:
        # The slot is freed before the future resolves, so a waiter may resubmit at once.
        try:
            return self._run(route_id, *args)
        finally:
            with self._lock:
                inflight = self._inflight.get(route_id)
                if inflight is not None and inflight[0] is signature:
                    del self._inflight[route_id]

    def _run(
        self,
        route_id: str,
        stops: list[Stop],
        anchors: Anchors,
        mode: OptimizationMode,
        deadline: float,
        departure: float,
        seed: int | None,
        cache: LegCache | None,
    ) -> OptimizationResult:
        if not stops:
            logger.info(f"Route {route_id} has no stops, returning an empty plan")
            return OptimizationResult(
                route_id=route_id,
                order=[],
                total_distance_meters=0.0,
                total_duration_seconds=0.0,
                total_cost=0.0,
                legs=[],
                infeasible_stop_ids=[],
                quality=Quality.OPTIMAL,
                solver="none",
            )

        report = validate_route_input(stops, anchors, mode)
        report.raise_for_violations()

        positions = _build_positions(stops, anchors)
        matrix = build_distance_matrix(positions.coordinates, self.oracle, cache=cache)
        problem = _build_problem(stops, positions, matrix, mode, departure)

        solver = select_solver(report.node_count, seed=seed)
        logger.info(
            f"Optimizing route {route_id}: {len(stops)} stops, {report.node_count} positions, "
            f"solver={solver.name}, mode={mode.value}"
        )
        try:
            outcome = solver.solve(problem, deadline=deadline)
            solver_name = solver.name
        except Exception:
            logger.exception(f"Solver {solver.name} failed for route {route_id}; using nearest-neighbour order")
            order = nearest_neighbour(problem)
            outcome = SolverOutcome(
                order=order,
                quality=Quality.APPROXIMATE,
                cost=problem.cost_of(order),
                late_nodes=problem.late_nodes(order),
            )
            solver_name = "nearest_neighbour"

        result = _assemble_result(route_id, problem, matrix, outcome, solver_name)
        logger.info(
            f"Route {route_id} optimized: quality={result.quality.value}, "
            f"distance={result.total_distance_meters / 1000:.2f}km, "
            f"duration={result.total_duration_seconds / 60:.1f}min, "
            f"infeasible={len(result.infeasible_stop_ids)}"
        )
        return result


@lru_cache(maxsize=1)
def get_optimizer() -> RouteOptimizer:
    return RouteOptimizer()


def optimize(
    route_id: str,
    stops: Sequence[Stop],
    anchors: Anchors,
    mode: OptimizationMode,
    deadline: float | None = None,
    **kwargs,
) -> OptimizationResult:
    """Optimize a stop set with the process-wide optimizer."""
    return get_optimizer().optimize(route_id, stops, anchors, mode, deadline=deadline, **kwargs)
