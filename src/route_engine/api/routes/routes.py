"""Routing endpoints."""

from __future__ import annotations

import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query, status

from ...models.domain import RouteStatus
from ...schemas.routing import (
    OptimizationResponse,
    OptimizeRequest,
    RouteCreateRequest,
    RouteModel,
    RouteOptimizeRequest,
    RouteUpdateRequest,
    StopTransitionRequest,
    StopTransitionResponse,
)
from ...services.routing.errors import (
    ConcurrentOptimizationInProgress,
    OracleUnavailable,
    RouteEngineError,
    RouteNotFound,
    StopNotFound,
    TransitionError,
    ValidationFailed,
)
from ...services.routing.service import get_optimizer
from ...services.routing.state_machine import get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/routes", tags=["routes"])


def _raise_http(exc: RouteEngineError) -> NoReturn:
    if isinstance(exc, ValidationFailed):
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(exc),
                "violations": [
                    {"stop_id": v.stop_id, "reason": v.reason.value, "detail": v.detail} for v in exc.violations
                ],
            },
        ) from exc
    if isinstance(exc, OracleUnavailable):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if isinstance(exc, (RouteNotFound, StopNotFound)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (ConcurrentOptimizationInProgress, TransitionError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    logger.exception(f"Unhandled routing error: {exc}")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


@router.post("/optimize", response_model=OptimizationResponse, status_code=status.HTTP_200_OK)
def optimize(payload: OptimizeRequest) -> OptimizationResponse:
    """Optimize a stop set without registering a route."""
    try:
        result = get_optimizer().optimize(
            payload.route_id,
            [stop.to_domain() for stop in payload.stops],
            payload.anchors.to_domain(),
            payload.mode,
            time_budget_seconds=payload.time_budget_seconds,
            departure_seconds=payload.departure_seconds(),
            seed=payload.seed,
        )
    except RouteEngineError as exc:
        _raise_http(exc)
    return OptimizationResponse.from_result(result)


@router.post("", response_model=RouteModel, status_code=status.HTTP_201_CREATED)
def create_route(payload: RouteCreateRequest) -> RouteModel:
    try:
        route = get_registry().register_route(payload.to_domain())
    except RouteEngineError as exc:
        _raise_http(exc)
    return RouteModel.from_domain(route)


@router.get("", response_model=List[RouteModel], status_code=status.HTTP_200_OK)
def list_routes(route_status: Optional[RouteStatus] = Query(default=None, alias="status")) -> List[RouteModel]:
    return [RouteModel.from_domain(route) for route in get_registry().list_routes(route_status)]


@router.get("/{route_id}", response_model=RouteModel, status_code=status.HTTP_200_OK)
def get_route(route_id: str) -> RouteModel:
    try:
        route = get_registry().get_route(route_id)
    except RouteEngineError as exc:
        _raise_http(exc)
    return RouteModel.from_domain(route)


@router.patch("/{route_id}", response_model=RouteModel, status_code=status.HTTP_200_OK)
def update_route(route_id: str, payload: RouteUpdateRequest) -> RouteModel:
    """Edit the mode or planned departure of a route that has not started."""
    try:
        route = get_registry().update_route(
            route_id,
            mode=payload.mode,
            scheduled_start_seconds=payload.scheduled_start_seconds(),
        )
    except RouteEngineError as exc:
        _raise_http(exc)
    return RouteModel.from_domain(route)


@router.delete("/{route_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_route(route_id: str) -> None:
    try:
        get_registry().remove_route(route_id)
    except RouteEngineError as exc:
        _raise_http(exc)


@router.post("/{route_id}/optimize", response_model=RouteModel, status_code=status.HTTP_200_OK)
def optimize_route(route_id: str, payload: RouteOptimizeRequest | None = None) -> RouteModel:
    """Optimize a planned route, or re-sequence the pending stops of a route in progress."""
    payload = payload or RouteOptimizeRequest()
    registry = get_registry()
    try:
        registry.optimize_route(route_id, time_budget_seconds=payload.time_budget_seconds, seed=payload.seed)
        route = registry.get_route(route_id)
    except RouteEngineError as exc:
        _raise_http(exc)
    return RouteModel.from_domain(route)


@router.post("/{route_id}/start", response_model=RouteModel, status_code=status.HTTP_200_OK)
def start_route(route_id: str) -> RouteModel:
    try:
        route = get_registry().start_route(route_id)
    except RouteEngineError as exc:
        _raise_http(exc)
    return RouteModel.from_domain(route)


@router.post("/{route_id}/cancel", response_model=RouteModel, status_code=status.HTTP_200_OK)
def cancel_route(route_id: str) -> RouteModel:
    try:
        route = get_registry().cancel_route(route_id)
    except RouteEngineError as exc:
        _raise_http(exc)
    return RouteModel.from_domain(route)


@router.post("/{route_id}/complete", response_model=RouteModel, status_code=status.HTTP_200_OK)
def complete_route(route_id: str) -> RouteModel:
    try:
        route = get_registry().complete_route(route_id)
    except RouteEngineError as exc:
        _raise_http(exc)
    return RouteModel.from_domain(route)


@router.patch("/{route_id}/stops/{stop_id}", response_model=StopTransitionResponse, status_code=status.HTTP_200_OK)
def update_stop(route_id: str, stop_id: str, payload: StopTransitionRequest) -> StopTransitionResponse:
    """Move a stop to a new status; failed or skipped stops re-sequence what is left."""
    try:
        snapshot = get_registry().transition_stop(
            route_id,
            stop_id,
            payload.status,
            failure_reason=payload.failure_reason,
            failure_notes=payload.failure_notes,
        )
    except RouteEngineError as exc:
        _raise_http(exc)
    return StopTransitionResponse.from_snapshot(snapshot)
