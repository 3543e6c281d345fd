"""Routing request/response schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..config import settings
from ..models.domain import (
    Anchors,
    Coordinate,
    FailureReason,
    OptimizationMode,
    Route,
    RouteStatus,
    Stop,
    StopStatus,
    TimeWindow,
)
from ..services.routing.models import OptimizationResult, RouteProgressSnapshot
from ..services.routing.timing import format_clock, parse_clock


def _clock_or_none(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    parse_clock(value)
    return value


class CoordinateModel(BaseModel):
    latitude: float
    longitude: float

    def to_domain(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class StopInput(BaseModel):
    # Range checks live in the route validator so every bad stop is reported at once.
    stop_id: str = Field(..., min_length=1)
    latitude: float
    longitude: float
    time_window_start: Optional[str] = Field(default=None, description="Earliest arrival, 'HH:MM' local time.")
    time_window_end: Optional[str] = Field(default=None, description="Latest arrival, 'HH:MM' local time.")
    priority: int = Field(default_factory=lambda: settings.default_stop_priority, description="1 (low) to 10 (high).")
    service_duration_seconds: int = Field(default_factory=lambda: settings.default_service_duration_seconds)

    check_clock = field_validator("time_window_start", "time_window_end")(_clock_or_none)

    def to_domain(self) -> Stop:
        window = None
        if self.time_window_start is not None or self.time_window_end is not None:
            window = TimeWindow(
                earliest=parse_clock(self.time_window_start) if self.time_window_start else None,
                latest=parse_clock(self.time_window_end) if self.time_window_end else None,
            )
        return Stop(
            stop_id=self.stop_id,
            coordinate=Coordinate(self.latitude, self.longitude),
            time_window=window,
            priority=self.priority,
            service_duration_seconds=self.service_duration_seconds,
        )


class AnchorsModel(BaseModel):
    start: Optional[CoordinateModel] = None
    end: Optional[CoordinateModel] = None
    return_to_start: bool = Field(
        default=True,
        description="Without an explicit end the route returns to its start (or closes the loop when there is none).",
    )

    def to_domain(self) -> Anchors:
        return Anchors(
            start=self.start.to_domain() if self.start else None,
            end=self.end.to_domain() if self.end else None,
            return_to_start=self.return_to_start,
        )


class OptimizeRequest(BaseModel):
    """Stateless optimization of a stop set."""

    route_id: str = Field(default_factory=lambda: f"adhoc-{uuid4().hex}", min_length=1)
    stops: List[StopInput] = Field(..., max_length=settings.max_stops_per_route)
    anchors: AnchorsModel = Field(default_factory=AnchorsModel)
    mode: OptimizationMode = OptimizationMode.FASTEST
    departure_time: Optional[str] = Field(default=None, description="Route departure, 'HH:MM'. Defaults to 08:00.")
    time_budget_seconds: Optional[float] = Field(default=None, gt=0)
    seed: Optional[int] = Field(default=None, description="Seed for the genetic search on large routes.")

    check_clock = field_validator("departure_time")(_clock_or_none)

    def departure_seconds(self) -> Optional[int]:
        return parse_clock(self.departure_time) if self.departure_time else None


class RouteCreateRequest(BaseModel):
    route_id: str = Field(..., min_length=1)
    stops: List[StopInput] = Field(..., min_length=1, max_length=settings.max_stops_per_route)
    anchors: AnchorsModel = Field(default_factory=AnchorsModel)
    mode: OptimizationMode = OptimizationMode.FASTEST
    scheduled_start: Optional[str] = Field(default=None, description="Planned departure, 'HH:MM'.")

    check_clock = field_validator("scheduled_start")(_clock_or_none)

    def to_domain(self) -> Route:
        return Route(
            route_id=self.route_id,
            stops=[stop.to_domain() for stop in self.stops],
            anchors=self.anchors.to_domain(),
            mode=self.mode,
            scheduled_start_seconds=parse_clock(self.scheduled_start) if self.scheduled_start else None,
        )


class RouteUpdateRequest(BaseModel):
    mode: Optional[OptimizationMode] = None
    scheduled_start: Optional[str] = Field(default=None, description="Planned departure, 'HH:MM'.")

    check_clock = field_validator("scheduled_start")(_clock_or_none)

    def scheduled_start_seconds(self) -> Optional[int]:
        return parse_clock(self.scheduled_start) if self.scheduled_start else None


class RouteOptimizeRequest(BaseModel):
    time_budget_seconds: Optional[float] = Field(default=None, gt=0)
    seed: Optional[int] = None


class StopTransitionRequest(BaseModel):
    status: StopStatus
    failure_reason: Optional[FailureReason] = None
    failure_notes: Optional[str] = Field(default=None, max_length=2000)


class LegModel(BaseModel):
    from_id: str
    to_id: str
    distance_meters: float
    duration_seconds: float
    arrival: str
    wait_seconds: float


class OptimizationResponse(BaseModel):
    route_id: str
    order: List[str]
    total_distance_km: float
    total_duration_min: float
    total_cost: float
    quality: str
    solver: str
    feasible: bool
    infeasible_stop_ids: List[str]
    legs: List[LegModel]
    path: List[CoordinateModel]
    computed_at: datetime

    @classmethod
    def from_result(cls, result: OptimizationResult) -> "OptimizationResponse":
        return cls(
            route_id=result.route_id,
            order=list(result.order),
            total_distance_km=round(result.total_distance_meters / 1000, 3),
            total_duration_min=round(result.total_duration_seconds / 60, 2),
            total_cost=result.total_cost,
            quality=result.quality.value,
            solver=result.solver,
            feasible=result.is_feasible,
            infeasible_stop_ids=list(result.infeasible_stop_ids),
            legs=[
                LegModel(
                    from_id=leg.from_id,
                    to_id=leg.to_id,
                    distance_meters=leg.distance_meters,
                    duration_seconds=leg.duration_seconds,
                    arrival=format_clock(leg.arrival_seconds),
                    wait_seconds=leg.wait_seconds,
                )
                for leg in result.legs
            ],
            path=[CoordinateModel(latitude=point.latitude, longitude=point.longitude) for point in result.path],
            computed_at=result.computed_at,
        )


class StopModel(BaseModel):
    stop_id: str
    latitude: float
    longitude: float
    status: StopStatus
    priority: int
    service_duration_seconds: int
    sequence_original: int
    sequence_optimized: Optional[int] = None
    estimated_arrival: Optional[str] = None
    distance_from_previous_meters: Optional[float] = None
    actual_arrival: Optional[datetime] = None
    departure_time: Optional[datetime] = None
    actual_service_duration_seconds: Optional[int] = None
    failure_reason: Optional[FailureReason] = None
    failure_notes: Optional[str] = None

    @classmethod
    def from_domain(cls, stop: Stop) -> "StopModel":
        return cls(
            stop_id=stop.stop_id,
            latitude=stop.coordinate.latitude,
            longitude=stop.coordinate.longitude,
            status=stop.status,
            priority=stop.priority,
            service_duration_seconds=stop.service_duration_seconds,
            sequence_original=stop.sequence_original,
            sequence_optimized=stop.sequence_optimized,
            estimated_arrival=(
                format_clock(stop.estimated_arrival_seconds) if stop.estimated_arrival_seconds is not None else None
            ),
            distance_from_previous_meters=stop.distance_from_previous_meters,
            actual_arrival=stop.actual_arrival,
            departure_time=stop.departure_time,
            actual_service_duration_seconds=stop.actual_service_duration_seconds,
            failure_reason=stop.failure_reason,
            failure_notes=stop.failure_notes,
        )


class RouteModel(BaseModel):
    route_id: str
    status: RouteStatus
    mode: OptimizationMode
    total_stops: int
    completed_stops: int
    failed_stops: int
    skipped_stops: int
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    actual_duration_seconds: Optional[int] = None
    stops: List[StopModel]
    optimization: Optional[OptimizationResponse] = None

    @classmethod
    def from_domain(cls, route: Route) -> "RouteModel":
        ordered = sorted(
            route.stops,
            key=lambda stop: (
                stop.sequence_optimized if stop.sequence_optimized is not None else len(route.stops) + stop.sequence_original,
                stop.sequence_original,
            ),
        )
        return cls(
            route_id=route.route_id,
            status=route.status,
            mode=route.mode,
            total_stops=route.total_stops,
            completed_stops=route.completed_stops,
            failed_stops=route.failed_stops,
            skipped_stops=route.skipped_stops,
            actual_start_time=route.actual_start_time,
            actual_end_time=route.actual_end_time,
            actual_duration_seconds=route.actual_duration_seconds,
            stops=[StopModel.from_domain(stop) for stop in ordered],
            optimization=(
                OptimizationResponse.from_result(route.optimization_result) if route.optimization_result else None
            ),
        )


class StopTransitionResponse(BaseModel):
    route_id: str
    route_status: RouteStatus
    stop_id: str
    stop_status: StopStatus
    completed_stops: int
    failed_stops: int
    skipped_stops: int
    total_stops: int
    reoptimization: Optional[OptimizationResponse] = None
    reoptimization_error: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot: RouteProgressSnapshot) -> "StopTransitionResponse":
        return cls(
            route_id=snapshot.route_id,
            route_status=snapshot.route_status,
            stop_id=snapshot.stop_id,
            stop_status=snapshot.stop_status,
            completed_stops=snapshot.completed_stops,
            failed_stops=snapshot.failed_stops,
            skipped_stops=snapshot.skipped_stops,
            total_stops=snapshot.total_stops,
            reoptimization=(
                OptimizationResponse.from_result(snapshot.reoptimization) if snapshot.reoptimization else None
            ),
            reoptimization_error=snapshot.reoptimization_error,
        )
