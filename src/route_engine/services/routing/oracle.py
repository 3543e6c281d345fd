"""Distance oracle abstraction and the in-memory implementations."""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from ...config import settings
from ...models.domain import Coordinate
from ..geospatial import haversine_meters

logger = logging.getLogger(__name__)


class DistanceOracle(Protocol):
    """Supplies travel distance (meters) and duration (seconds) between two coordinates."""

    def lookup(self, origin: Coordinate, destination: Coordinate) -> tuple[float, float]:
        ...


class HaversineOracle:
    """Deterministic great-circle oracle with a constant average speed."""

    def __init__(self, speed_mps: float | None = None) -> None:
        self.speed_mps = speed_mps or settings.haversine_speed_mps

    def lookup(self, origin: Coordinate, destination: Coordinate) -> tuple[float, float]:
        distance = haversine_meters(origin.latitude, origin.longitude, destination.latitude, destination.longitude)
        return distance, distance / self.speed_mps


class LegCache:
    """Thread-safe memo of oracle answers keyed by the ordered coordinate pair.

    One instance belongs to one route; it is never shared across routes.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[Coordinate, Coordinate], tuple[float, float]] = {}
        self._lock = threading.Lock()

    def get(self, origin: Coordinate, destination: Coordinate) -> tuple[float, float] | None:
        with self._lock:
            return self._entries.get((origin, destination))

    def set(self, origin: Coordinate, destination: Coordinate, value: tuple[float, float]) -> None:
        with self._lock:
            self._entries[(origin, destination)] = value

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def get_distance_oracle() -> DistanceOracle:
    """Return the configured oracle: OSRM when a base URL is set, haversine otherwise."""
    if settings.osrm_base_url:
        from .osrm_client import OSRMClient

        return OSRMClient()
    logger.info("OSRM base URL not configured, using haversine distance oracle")
    return HaversineOracle()
