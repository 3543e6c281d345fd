"""Route and stop lifecycle, progress counters and partial re-optimization."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from ...config import settings
from ...models.domain import (
    Anchors,
    Coordinate,
    FailureReason,
    OptimizationMode,
    Route,
    RouteStatus,
    Stop,
    StopStatus,
)
from .errors import (
    RouteEngineError,
    RouteNotFound,
    StopNotFound,
    TransitionError,
)
from .models import OptimizationResult, RouteProgressSnapshot
from .oracle import LegCache
from .service import RouteOptimizer, get_optimizer

logger = logging.getLogger(__name__)

STOP_TRANSITIONS: dict[StopStatus, frozenset[StopStatus]] = {
    StopStatus.PENDING: frozenset({StopStatus.IN_TRANSIT, StopStatus.SKIPPED}),
    StopStatus.IN_TRANSIT: frozenset({StopStatus.ARRIVED}),
    StopStatus.ARRIVED: frozenset({StopStatus.COMPLETED, StopStatus.FAILED, StopStatus.SKIPPED}),
    StopStatus.COMPLETED: frozenset(),
    StopStatus.FAILED: frozenset(),
    StopStatus.SKIPPED: frozenset(),
}

ROUTE_TRANSITIONS: dict[RouteStatus, frozenset[RouteStatus]] = {
    RouteStatus.PLANNED: frozenset({RouteStatus.IN_PROGRESS, RouteStatus.CANCELED}),
    RouteStatus.IN_PROGRESS: frozenset({RouteStatus.COMPLETED, RouteStatus.CANCELED}),
    RouteStatus.COMPLETED: frozenset(),
    RouteStatus.CANCELED: frozenset(),
}

REOPTIMIZE_TRIGGERS = frozenset({StopStatus.FAILED, StopStatus.SKIPPED})
MIN_PENDING_FOR_REOPTIMIZATION = 2


def can_transition_stop(current: StopStatus, requested: StopStatus) -> bool:
    return requested in STOP_TRANSITIONS[current]


def can_transition_route(current: RouteStatus, requested: RouteStatus) -> bool:
    return requested in ROUTE_TRANSITIONS[current]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RouteSession:
    """A route plus the lock that serialises every mutation of it."""

    route: Route
    lock: threading.Lock = field(default_factory=threading.Lock)
    cache: LegCache = field(default_factory=LegCache)
    last_position_stop_id: Optional[str] = None

    def current_position(self) -> Optional[Coordinate]:
        """Coordinate of the last arrived/completed stop, else the original start anchor."""
        if self.last_position_stop_id is not None:
            index = self.route.stop_index(self.last_position_stop_id)
            if index is not None:
                return self.route.stops[index].coordinate
        return self.route.anchors.start


class RouteRegistry:
    """In-memory owner of route sessions; the single entry point for route mutations."""

    def __init__(self, optimizer: RouteOptimizer | None = None) -> None:
        self._optimizer = optimizer
        self._sessions: dict[str, RouteSession] = {}
        self._lock = threading.Lock()

    @property
    def optimizer(self) -> RouteOptimizer:
        if self._optimizer is None:
            self._optimizer = get_optimizer()
        return self._optimizer

    def register_route(self, route: Route) -> Route:
        with self._lock:
            if route.route_id in self._sessions:
                raise TransitionError(f"Route '{route.route_id}' is already registered.")
            route.total_stops = len(route.stops)
            self._sessions[route.route_id] = RouteSession(route=route)
        logger.info(f"Route registered: {route.route_id} with {route.total_stops} stops")
        return route

    def get_route(self, route_id: str) -> Route:
        return self._session(route_id).route

    def list_routes(self, status: RouteStatus | None = None) -> list[Route]:
        """Registered routes in registration order, optionally filtered by status."""
        with self._lock:
            routes = [session.route for session in self._sessions.values()]
        if status is None:
            return routes
        return [route for route in routes if route.status is status]

    def update_route(
        self,
        route_id: str,
        *,
        mode: OptimizationMode | None = None,
        scheduled_start_seconds: int | None = None,
    ) -> Route:
        """Change the mode or planned departure of a route that has not started.

        A changed route loses its previous plan.
        """
        session = self._session(route_id)
        with session.lock:
            route = session.route
            if route.status is not RouteStatus.PLANNED:
                raise TransitionError(
                    f"Route '{route_id}' is {route.status.value}; only planned routes can be edited.",
                    current=route.status.value,
                )
            changed = False
            if mode is not None and mode is not route.mode:
                route.mode = mode
                changed = True
            if scheduled_start_seconds is not None and scheduled_start_seconds != route.scheduled_start_seconds:
                route.scheduled_start_seconds = scheduled_start_seconds
                changed = True
            if changed and route.optimization_result is not None:
                route.optimization_result = None
                for stop in route.stops:
                    stop.sequence_optimized = None
                    stop.estimated_arrival_seconds = None
                    stop.distance_from_previous_meters = None
        logger.info(f"Route updated: {route_id} (mode={route.mode.value})")
        return route

    def remove_route(self, route_id: str) -> None:
        with self._lock:
            if self._sessions.pop(route_id, None) is None:
                raise RouteNotFound(route_id)
        logger.info(f"Route deleted: {route_id}")

    def _session(self, route_id: str) -> RouteSession:
        with self._lock:
            session = self._sessions.get(route_id)
        if session is None:
            raise RouteNotFound(route_id)
        return session

    # Route lifecycle

    def optimize_route(
        self,
        route_id: str,
        *,
        time_budget_seconds: float | None = None,
        seed: int | None = None,
    ) -> OptimizationResult:
        """Optimize a planned route in full, or the pending remainder of a route in progress."""
        session = self._session(route_id)
        with session.lock:
            route = session.route
            if route.status is RouteStatus.PLANNED:
                result = self.optimizer.optimize(
                    route.route_id,
                    route.stops,
                    route.anchors,
                    route.mode,
                    time_budget_seconds=time_budget_seconds,
                    departure_seconds=route.scheduled_start_seconds,
                    seed=seed,
                    cache=session.cache,
                )
                self._apply_result(route, result, offset=0)
                return result
            if route.status is RouteStatus.IN_PROGRESS:
                return self._optimize_remaining(session, time_budget_seconds=time_budget_seconds, seed=seed)
            raise TransitionError(
                f"Route '{route_id}' is {route.status.value} and can no longer be optimized.",
                current=route.status.value,
            )

    def start_route(self, route_id: str) -> Route:
        session = self._session(route_id)
        with session.lock:
            route = session.route
            self._set_route_status(route, RouteStatus.IN_PROGRESS)
            route.actual_start_time = _now()
        logger.info(f"Route started: {route_id}")
        return route

    def cancel_route(self, route_id: str) -> Route:
        session = self._session(route_id)
        with session.lock:
            route = session.route
            self._set_route_status(route, RouteStatus.CANCELED)
            self._close_route(route)
        logger.info(f"Route canceled: {route_id}")
        return route

    def complete_route(self, route_id: str) -> Route:
        session = self._session(route_id)
        with session.lock:
            route = session.route
            if not route.all_stops_terminal():
                open_stops = [stop.stop_id for stop in route.stops if not stop.status.is_terminal]
                raise TransitionError(
                    f"Route '{route_id}' still has unfinished stops: {', '.join(open_stops)}",
                    current=route.status.value,
                    requested=RouteStatus.COMPLETED.value,
                )
            self._set_route_status(route, RouteStatus.COMPLETED)
            self._close_route(route)
        logger.info(f"Route completed: {route_id}")
        return route

    # Stop lifecycle

    def transition_stop(
        self,
        route_id: str,
        stop_id: str,
        new_status: StopStatus,
        failure_reason: FailureReason | None = None,
        failure_notes: str | None = None,
    ) -> RouteProgressSnapshot:
        """Apply one stop status change atomically and report route progress."""
        session = self._session(route_id)
        with session.lock:
            route = session.route
            index = route.stop_index(stop_id)
            if index is None:
                raise StopNotFound(route_id, stop_id)
            stop = route.stops[index]

            if route.status is not RouteStatus.IN_PROGRESS:
                raise TransitionError(
                    f"Stops can only change status while the route is in progress (route is {route.status.value}).",
                    current=stop.status.value,
                    requested=new_status.value,
                )
            if not can_transition_stop(stop.status, new_status):
                raise TransitionError(current=stop.status.value, requested=new_status.value)
            if failure_reason is not None and new_status not in REOPTIMIZE_TRIGGERS:
                raise TransitionError(
                    "A failure reason can only accompany a failed or skipped stop.",
                    current=stop.status.value,
                    requested=new_status.value,
                )

            self._apply_stop_status(session, stop, new_status, failure_reason, failure_notes)

            reoptimization: Optional[OptimizationResult] = None
            reoptimization_error: Optional[str] = None
            if new_status in REOPTIMIZE_TRIGGERS and len(route.pending_stops()) >= MIN_PENDING_FOR_REOPTIMIZATION:
                try:
                    reoptimization = self._optimize_remaining(
                        session, time_budget_seconds=settings.reoptimize_time_budget_seconds
                    )
                except RouteEngineError as exc:
                    # The status change stands; the caller can retry optimize_route later.
                    logger.warning(f"Re-optimization of route {route_id} after {stop_id} {new_status.value} failed: {exc}")
                    reoptimization_error = str(exc)

            if route.all_stops_terminal() and route.status is RouteStatus.IN_PROGRESS:
                self._set_route_status(route, RouteStatus.COMPLETED)
                self._close_route(route)
                logger.info(f"Route {route_id} completed: every stop reached a terminal status")

            snapshot = RouteProgressSnapshot(
                route_id=route.route_id,
                route_status=route.status,
                stop_id=stop.stop_id,
                stop_status=stop.status,
                completed_stops=route.completed_stops,
                failed_stops=route.failed_stops,
                skipped_stops=route.skipped_stops,
                total_stops=route.total_stops,
                reoptimization=reoptimization,
                reoptimization_error=reoptimization_error,
            )
        logger.info(f"Stop updated: route={route_id} stop={stop_id} status={new_status.value}")
        return snapshot

    # Internals; callers hold the session lock.

    @staticmethod
    def _set_route_status(route: Route, requested: RouteStatus) -> None:
        if not can_transition_route(route.status, requested):
            raise TransitionError(current=route.status.value, requested=requested.value)
        route.status = requested

    @staticmethod
    def _close_route(route: Route) -> None:
        route.actual_end_time = _now()
        if route.actual_start_time is not None:
            route.actual_duration_seconds = int((route.actual_end_time - route.actual_start_time).total_seconds())

    @staticmethod
    def _apply_stop_status(
        session: RouteSession,
        stop: Stop,
        new_status: StopStatus,
        failure_reason: FailureReason | None,
        failure_notes: str | None,
    ) -> None:
        route = session.route
        now = _now()
        stop.status = new_status
        if new_status is StopStatus.ARRIVED:
            stop.actual_arrival = now
            session.last_position_stop_id = stop.stop_id
        elif new_status.is_terminal:
            stop.departure_time = now
            if stop.actual_arrival is not None:
                stop.actual_service_duration_seconds = int((now - stop.actual_arrival).total_seconds())
            if new_status is StopStatus.COMPLETED:
                route.completed_stops += 1
                session.last_position_stop_id = stop.stop_id
            elif new_status is StopStatus.FAILED:
                route.failed_stops += 1
            else:
                route.skipped_stops += 1
            if new_status in REOPTIMIZE_TRIGGERS:
                stop.failure_reason = failure_reason
                stop.failure_notes = failure_notes

    def _optimize_remaining(
        self,
        session: RouteSession,
        *,
        time_budget_seconds: float | None = None,
        seed: int | None = None,
    ) -> OptimizationResult:
        route = session.route
        pending = route.pending_stops()
        anchors = Anchors(
            start=session.current_position(),
            end=route.anchors.resolved_end(),
            return_to_start=False,
        )
        result = self.optimizer.optimize(
            route.route_id,
            pending,
            anchors,
            route.mode,
            time_budget_seconds=time_budget_seconds,
            departure_seconds=_clock_now_seconds(),
            seed=seed,
            cache=session.cache,
        )
        visited = [stop for stop in route.stops if stop.status is not StopStatus.PENDING]
        offset = max([stop.sequence_optimized or 0 for stop in visited] + [len(visited)])
        self._apply_result(route, result, offset=offset)
        logger.info(
            f"Re-optimized {len(pending)} pending stops of route {route.route_id} "
            f"(quality={result.quality.value})"
        )
        return result

    @staticmethod
    def _apply_result(route: Route, result: OptimizationResult, *, offset: int) -> None:
        """Record ``result`` on the route; only stops still pending are renumbered."""
        arrivals = {leg.to_id: leg for leg in result.legs}
        by_id = {stop.stop_id: stop for stop in route.stops}
        for position, stop_id in enumerate(result.order, start=1):
            stop = by_id.get(stop_id)
            if stop is None or stop.status is not StopStatus.PENDING:
                continue
            stop.sequence_optimized = offset + position
            leg = arrivals.get(stop_id)
            if leg is not None:
                stop.estimated_arrival_seconds = leg.arrival_seconds
                stop.distance_from_previous_meters = leg.distance_meters
        route.optimization_result = result


def _clock_now_seconds() -> int:
    now = datetime.now().astimezone()
    return now.hour * 3600 + now.minute * 60 + now.second


@lru_cache(maxsize=1)
def get_registry() -> RouteRegistry:
    return RouteRegistry()
