"""Exceptions raised by the routing engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .validation import ValidationViolation


class RouteEngineError(Exception):
    """Base exception for the routing engine."""

    def __init__(self, message: str | None = None):
        self.message = message
        super().__init__(self.message)


class ValidationFailed(RouteEngineError):
    """Raised when the stop set fails validation. The caller must fix the input."""

    def __init__(self, violations: Sequence["ValidationViolation"], message: str | None = None):
        self.violations = list(violations)
        super().__init__(message or f"Route input failed validation with {len(self.violations)} violation(s).")


class OracleUnavailable(RouteEngineError):
    """Raised when the distance oracle cannot answer a required pair. Retryable."""

    def __init__(self, message: str | None = None, origin=None, destination=None):
        self.origin = origin
        self.destination = destination
        super().__init__(message or f"Distance oracle unavailable for {origin} -> {destination}")


class ConcurrentOptimizationInProgress(RouteEngineError):
    """Raised when an optimization for the same route is already running and coalescing is off."""

    def __init__(self, route_id: str, message: str | None = None):
        self.route_id = route_id
        super().__init__(message or f"An optimization for route '{route_id}' is already in progress.")


class TransitionError(RouteEngineError):
    """Raised for route or stop status changes not permitted by the state machine."""

    def __init__(self, message: str | None = None, current: str | None = None, requested: str | None = None):
        self.current = current
        self.requested = requested
        super().__init__(message or f"Transition {current} -> {requested} is not allowed.")


class RouteNotFound(RouteEngineError):
    def __init__(self, route_id: str):
        self.route_id = route_id
        super().__init__(f"Route '{route_id}' not found.")


class StopNotFound(RouteEngineError):
    def __init__(self, route_id: str, stop_id: str):
        self.route_id = route_id
        self.stop_id = stop_id
        super().__init__(f"Stop '{stop_id}' not found in route '{route_id}'.")
