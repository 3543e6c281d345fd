"""Structural validation of a route's stop set before any search runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence

from ...config import settings
from ...models.domain import Anchors, OptimizationMode, Stop
from .errors import ValidationFailed

MIN_PRIORITY = 1
MAX_PRIORITY = 10


class ViolationReason(str, Enum):
    DUPLICATE_ID = "DuplicateId"
    INVALID_COORDINATE = "InvalidCoordinate"
    INVERTED_TIME_WINDOW = "InvertedTimeWindow"
    PRIORITY_OUT_OF_RANGE = "PriorityOutOfRange"
    INVALID_SERVICE_DURATION = "InvalidServiceDuration"


@dataclass(frozen=True, slots=True)
class ValidationViolation:
    stop_id: str
    reason: ViolationReason
    detail: str = ""


@dataclass(slots=True)
class ValidationReport:
    node_count: int
    violations: List[ValidationViolation] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    def raise_for_violations(self) -> None:
        if self.violations:
            raise ValidationFailed(self.violations)


def count_nodes(stops: Sequence[Stop], anchors: Anchors) -> int:
    """Stops plus the distinct anchors that occupy matrix positions."""
    # A round trip without an explicit end reuses the start position.
    count = len(stops)
    if anchors.start is not None:
        count += 1
    if anchors.end is not None:
        count += 1
    return count


def _stop_violation(stop: Stop) -> ValidationViolation | None:
    if not stop.coordinate.is_valid():
        return ValidationViolation(
            stop.stop_id,
            ViolationReason.INVALID_COORDINATE,
            f"({stop.coordinate.latitude}, {stop.coordinate.longitude}) is outside WGS84 bounds",
        )
    if stop.time_window is not None and stop.time_window.is_inverted():
        return ValidationViolation(
            stop.stop_id,
            ViolationReason.INVERTED_TIME_WINDOW,
            f"earliest {stop.time_window.earliest} is after latest {stop.time_window.latest}",
        )
    if not MIN_PRIORITY <= stop.priority <= MAX_PRIORITY:
        return ValidationViolation(
            stop.stop_id,
            ViolationReason.PRIORITY_OUT_OF_RANGE,
            f"priority {stop.priority} is outside [{MIN_PRIORITY}, {MAX_PRIORITY}]",
        )
    if not 0 <= stop.service_duration_seconds <= settings.max_service_duration_seconds:
        return ValidationViolation(
            stop.stop_id,
            ViolationReason.INVALID_SERVICE_DURATION,
            f"service duration {stop.service_duration_seconds}s is outside [0, {settings.max_service_duration_seconds}]",
        )
    return None


def validate_route_input(
    stops: Sequence[Stop],
    anchors: Anchors,
    mode: OptimizationMode,
) -> ValidationReport:
    """Check the stop set and anchors; report one violation per offending stop."""
    if not isinstance(mode, OptimizationMode):
        raise ValueError(f"Unknown optimization mode '{mode}'.")

    violations: list[ValidationViolation] = []
    seen: set[str] = set()
    for stop in stops:
        if stop.stop_id in seen:
            violations.append(
                ValidationViolation(stop.stop_id, ViolationReason.DUPLICATE_ID, "identifier appears more than once")
            )
            continue
        seen.add(stop.stop_id)
        violation = _stop_violation(stop)
        if violation is not None:
            violations.append(violation)

    for label, anchor in (("start", anchors.start), ("end", anchors.end)):
        if anchor is not None and not anchor.is_valid():
            violations.append(
                ValidationViolation(
                    label,
                    ViolationReason.INVALID_COORDINATE,
                    f"{label} anchor ({anchor.latitude}, {anchor.longitude}) is outside WGS84 bounds",
                )
            )

    return ValidationReport(node_count=count_nodes(stops, anchors), violations=violations)
