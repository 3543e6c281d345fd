"""Domain models for routes, stops and their anchors."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..services.routing.models import OptimizationResult


class OptimizationMode(str, Enum):
    FASTEST = "fastest"
    SHORTEST = "shortest"
    BALANCED = "balanced"


class StopStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STOP_STATUSES


TERMINAL_STOP_STATUSES = frozenset({StopStatus.COMPLETED, StopStatus.FAILED, StopStatus.SKIPPED})


class RouteStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"


class FailureReason(str, Enum):
    NOT_HOME = "not_home"
    WRONG_ADDRESS = "wrong_address"
    REFUSED = "refused"
    DAMAGED = "damaged"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class Coordinate:
    """WGS84 position in decimal degrees."""

    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Arrival window in seconds since local midnight; either bound may be open."""

    earliest: Optional[int] = None
    latest: Optional[int] = None

    def is_inverted(self) -> bool:
        return self.earliest is not None and self.latest is not None and self.earliest > self.latest


@dataclass(slots=True)
class Stop:
    """A single location to visit, enriched with execution metadata."""

    stop_id: str
    coordinate: Coordinate
    time_window: Optional[TimeWindow] = None
    priority: int = 5
    service_duration_seconds: int = 300
    status: StopStatus = StopStatus.PENDING
    sequence_original: int = 0
    sequence_optimized: Optional[int] = None
    estimated_arrival_seconds: Optional[float] = None
    distance_from_previous_meters: Optional[float] = None
    actual_arrival: Optional[datetime] = None
    departure_time: Optional[datetime] = None
    actual_service_duration_seconds: Optional[int] = None
    failure_reason: Optional[FailureReason] = None
    failure_notes: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Anchors:
    """Optional fixed start/end positions of a route. Anchors are not stops."""

    start: Optional[Coordinate] = None
    end: Optional[Coordinate] = None
    return_to_start: bool = True

    def resolved_end(self) -> Optional[Coordinate]:
        if self.end is not None:
            return self.end
        if self.return_to_start:
            return self.start
        return None


@dataclass(slots=True)
class Route:
    """A single-vehicle route that exclusively owns its stops."""

    route_id: str
    stops: List[Stop]
    anchors: Anchors = field(default_factory=Anchors)
    mode: OptimizationMode = OptimizationMode.FASTEST
    status: RouteStatus = RouteStatus.PLANNED
    scheduled_start_seconds: Optional[int] = None
    optimization_result: Optional["OptimizationResult"] = None
    total_stops: int = 0
    completed_stops: int = 0
    failed_stops: int = 0
    skipped_stops: int = 0
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    actual_duration_seconds: Optional[int] = None

    def __post_init__(self) -> None:
        self.total_stops = len(self.stops)
        for index, stop in enumerate(self.stops, start=1):
            if not stop.sequence_original:
                stop.sequence_original = index

    def stop_index(self, stop_id: str) -> Optional[int]:
        for index, stop in enumerate(self.stops):
            if stop.stop_id == stop_id:
                return index
        return None

    def pending_stops(self) -> list[Stop]:
        return [stop for stop in self.stops if stop.status is StopStatus.PENDING]

    def all_stops_terminal(self) -> bool:
        return all(stop.status.is_terminal for stop in self.stops)
