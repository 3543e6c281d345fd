"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from ...models.domain import Coordinate, RouteStatus, StopStatus


class Quality(str, Enum):
    OPTIMAL = "optimal"
    IMPROVED = "improved"
    APPROXIMATE = "approximate"


START_ANCHOR_ID = "__start__"
END_ANCHOR_ID = "__end__"


@dataclass(slots=True)
class Leg:
    from_id: str
    to_id: str
    distance_meters: float
    duration_seconds: float
    arrival_seconds: float
    wait_seconds: float = 0.0
    departure_seconds: float = 0.0


@dataclass(slots=True)
class OptimizationResult:
    route_id: str
    order: List[str]
    total_distance_meters: float
    total_duration_seconds: float
    total_cost: float
    legs: List[Leg]
    infeasible_stop_ids: List[str]
    quality: Quality
    solver: str
    path: List[Coordinate] = field(default_factory=list)
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_feasible(self) -> bool:
        return not self.infeasible_stop_ids


@dataclass(slots=True)
class RouteProgressSnapshot:
    route_id: str
    route_status: RouteStatus
    stop_id: str
    stop_status: StopStatus
    completed_stops: int
    failed_stops: int
    skipped_stops: int
    total_stops: int
    reoptimization: Optional[OptimizationResult] = None
    reoptimization_error: Optional[str] = None
