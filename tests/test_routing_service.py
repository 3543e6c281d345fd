import math
import random
import threading

import pytest

from src.route_engine.models.domain import Anchors, Coordinate, OptimizationMode, Stop, TimeWindow
from src.route_engine.services.routing import service as routing_service
from src.route_engine.services.routing.errors import (
    ConcurrentOptimizationInProgress,
    OracleUnavailable,
    ValidationFailed,
)
from src.route_engine.services.routing.models import START_ANCHOR_ID, Quality
from src.route_engine.services.routing.service import RouteOptimizer


class EuclideanOracle:
    """Straight-line legs in coordinate units, scaled for both distance and time."""

    def __init__(self, scale: float = 1.0):
        self.scale = scale

    def lookup(self, origin, destination):
        d = math.dist(origin.as_tuple(), destination.as_tuple()) * self.scale
        return d, d


class BlockingOracle(EuclideanOracle):
    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def lookup(self, origin, destination):
        self.release.wait(timeout=5)
        return super().lookup(origin, destination)


def _stop(sid: str, lat: float, lon: float, **kwargs) -> Stop:
    kwargs.setdefault("service_duration_seconds", 0)
    return Stop(stop_id=sid, coordinate=Coordinate(lat, lon), **kwargs)


def _scattered(count: int, seed: int) -> list[Stop]:
    rng = random.Random(seed)
    return [_stop(f"S{index:02d}", rng.uniform(20, 21), rng.uniform(39, 40)) for index in range(count)]


@pytest.fixture
def optimizer():
    opt = RouteOptimizer(EuclideanOracle(), max_workers=2)
    yield opt
    opt.shutdown()


def test_anchorless_round_trip_closes_the_loop(optimizer):
    stops = [_stop("A", 0, 0), _stop("B", 1, 0), _stop("C", 0, 1)]

    result = optimizer.optimize("triangle", stops, Anchors(), OptimizationMode.SHORTEST)

    assert result.quality is Quality.OPTIMAL
    assert result.solver == "exact"
    assert sorted(result.order) == ["A", "B", "C"]
    assert result.total_distance_meters == pytest.approx(2 + math.sqrt(2))
    assert len(result.legs) == 3
    assert result.path[0] == result.path[-1]


def test_round_trip_from_start_anchor(optimizer):
    depot = Coordinate(0, 0)
    stops = [_stop("A", 0, 2), _stop("B", 0, 1), _stop("C", 0, 3)]

    result = optimizer.optimize("loop", stops, Anchors(start=depot), OptimizationMode.FASTEST)

    assert result.order in (["B", "A", "C"], ["C", "A", "B"])
    assert result.total_distance_meters == pytest.approx(6.0)
    assert result.path[0] == depot
    assert result.path[-1] == depot
    assert result.legs[0].from_id == START_ANCHOR_ID
    assert result.legs[-1].to_id == START_ANCHOR_ID


def test_open_path_to_explicit_end(optimizer):
    start, end = Coordinate(0, 0), Coordinate(0, 4)
    stops = [_stop("C", 0, 3), _stop("A", 0, 1), _stop("B", 0, 2)]

    result = optimizer.optimize("line", stops, Anchors(start=start, end=end), OptimizationMode.SHORTEST)

    assert result.order == ["A", "B", "C"]
    assert result.total_distance_meters == pytest.approx(4.0)
    assert result.path[-1] == end


def test_empty_stop_set_is_trivially_optimal(optimizer):
    result = optimizer.optimize("empty", [], Anchors(start=Coordinate(0, 0)), OptimizationMode.FASTEST)

    assert result.order == []
    assert result.legs == []
    assert result.quality is Quality.OPTIMAL


def test_invalid_input_raises_before_any_lookup():
    class ExplodingOracle:
        def lookup(self, origin, destination):
            raise AssertionError("oracle must not be called")

    optimizer = RouteOptimizer(ExplodingOracle(), max_workers=1)
    try:
        with pytest.raises(ValidationFailed) as excinfo:
            optimizer.optimize(
                "bad", [_stop("A", 0, 0), _stop("A", 0, 1)], Anchors(), OptimizationMode.FASTEST
            )
    finally:
        optimizer.shutdown()

    assert [v.stop_id for v in excinfo.value.violations] == ["A"]


def test_oracle_failure_propagates():
    class DownOracle:
        def lookup(self, origin, destination):
            raise OracleUnavailable("osrm down", origin, destination)

    optimizer = RouteOptimizer(DownOracle(), max_workers=1)
    try:
        with pytest.raises(OracleUnavailable):
            optimizer.optimize("down", [_stop("A", 0, 0), _stop("B", 0, 1)], Anchors(), OptimizationMode.FASTEST)
    finally:
        optimizer.shutdown()


def test_unreachable_window_is_reported_not_dropped():
    optimizer = RouteOptimizer(EuclideanOracle(scale=3600), max_workers=1)
    stops = [
        _stop("A", 0, 1, time_window=TimeWindow(latest=8 * 3600 + 1800)),
        _stop("B", 0, 2),
    ]
    try:
        result = optimizer.optimize(
            "late", stops, Anchors(start=Coordinate(0, 0)), OptimizationMode.FASTEST, departure_seconds=8 * 3600
        )
    finally:
        optimizer.shutdown()

    assert sorted(result.order) == ["A", "B"]
    assert result.infeasible_stop_ids == ["A"]
    assert not result.is_feasible


def test_time_window_changes_the_order():
    optimizer = RouteOptimizer(EuclideanOracle(scale=3600), max_workers=1)
    departure = 8 * 3600
    stops = [
        _stop("B", 0, 1, service_duration_seconds=300),
        _stop("A", 0, 2, time_window=TimeWindow(latest=departure + 7300)),
    ]
    anchors = Anchors(start=Coordinate(0, 0), return_to_start=False)
    try:
        result = optimizer.optimize(
            "windowed", stops, anchors, OptimizationMode.FASTEST, departure_seconds=departure
        )
    finally:
        optimizer.shutdown()

    assert result.order == ["A", "B"]
    assert result.infeasible_stop_ids == []
    assert result.legs[0].arrival_seconds == pytest.approx(departure + 7200)


def test_mid_sized_route_uses_local_search(optimizer):
    stops = _scattered(15, seed=1)

    result = optimizer.optimize("medium", stops, Anchors(), OptimizationMode.FASTEST)

    assert result.solver == "local_search"
    assert result.quality is Quality.IMPROVED
    assert sorted(result.order) == sorted(stop.stop_id for stop in stops)


def test_large_route_uses_genetic_search(optimizer):
    stops = _scattered(30, seed=2)

    result = optimizer.optimize(
        "large", stops, Anchors(start=Coordinate(20.5, 39.5)), OptimizationMode.BALANCED,
        time_budget_seconds=0.5, seed=7,
    )

    assert result.solver == "genetic"
    assert result.quality is Quality.APPROXIMATE
    assert sorted(result.order) == sorted(stop.stop_id for stop in stops)
    assert len(result.legs) == 31


def test_solver_failure_falls_back_to_nearest_neighbour(monkeypatch, optimizer):
    class BrokenSolver:
        name = "broken"

        def solve(self, problem, *, deadline=None):
            raise RuntimeError("boom")

    monkeypatch.setattr(routing_service, "select_solver", lambda node_count, seed=None: BrokenSolver())

    result = optimizer.optimize("fallback", [_stop("A", 0, 0), _stop("B", 0, 1)], Anchors(), OptimizationMode.FASTEST)

    assert result.solver == "nearest_neighbour"
    assert result.quality is Quality.APPROXIMATE
    assert result.order == ["A", "B"]


def test_identical_concurrent_request_joins_in_flight_run():
    oracle = BlockingOracle()
    optimizer = RouteOptimizer(oracle, max_workers=2, coalesce=True)
    stops = [_stop("A", 0, 0), _stop("B", 0, 1)]
    try:
        first = optimizer.submit("busy", stops, Anchors(), OptimizationMode.FASTEST)
        second = optimizer.submit("busy", list(stops), Anchors(), OptimizationMode.FASTEST)
        assert second is first
        assert optimizer.is_running("busy")

        with pytest.raises(ConcurrentOptimizationInProgress):
            optimizer.submit("busy", stops[:1], Anchors(), OptimizationMode.FASTEST)

        other = optimizer.submit("other", stops, Anchors(), OptimizationMode.FASTEST)
        assert other is not first

        oracle.release.set()
        assert first.result(timeout=10).order == second.result(timeout=10).order
        assert other.result(timeout=10).route_id == "other"
    finally:
        oracle.release.set()
        optimizer.shutdown()


def test_different_departure_does_not_join_in_flight_request():
    oracle = BlockingOracle()
    optimizer = RouteOptimizer(oracle, max_workers=2, coalesce=True)
    stops = [_stop("A", 0, 0), _stop("B", 0, 1)]
    try:
        morning = optimizer.submit("busy", stops, Anchors(), OptimizationMode.FASTEST, departure_seconds=8 * 3600)
        with pytest.raises(ConcurrentOptimizationInProgress):
            optimizer.submit("busy", stops, Anchors(), OptimizationMode.FASTEST, departure_seconds=14 * 3600)
        with pytest.raises(ConcurrentOptimizationInProgress):
            optimizer.submit("busy", stops, Anchors(), OptimizationMode.FASTEST, departure_seconds=8 * 3600, seed=7)

        oracle.release.set()
        assert morning.result(timeout=10).legs[0].arrival_seconds < 14 * 3600

        afternoon = optimizer.optimize("busy", stops, Anchors(), OptimizationMode.FASTEST, departure_seconds=14 * 3600)
        assert afternoon.legs[0].arrival_seconds >= 14 * 3600
    finally:
        oracle.release.set()
        optimizer.shutdown()


def test_concurrent_request_rejected_when_coalescing_disabled():
    oracle = BlockingOracle()
    optimizer = RouteOptimizer(oracle, max_workers=2, coalesce=False)
    stops = [_stop("A", 0, 0), _stop("B", 0, 1)]
    try:
        first = optimizer.submit("busy", stops, Anchors(), OptimizationMode.FASTEST)
        with pytest.raises(ConcurrentOptimizationInProgress):
            optimizer.submit("busy", stops, Anchors(), OptimizationMode.FASTEST)
        oracle.release.set()
        first.result(timeout=10)
    finally:
        oracle.release.set()
        optimizer.shutdown()


def test_module_level_optimize_uses_shared_optimizer(monkeypatch, optimizer):
    monkeypatch.setattr(routing_service, "get_optimizer", lambda: optimizer)

    result = routing_service.optimize("shared", [_stop("A", 0, 0), _stop("B", 0, 1)], Anchors(), OptimizationMode.SHORTEST)

    assert sorted(result.order) == ["A", "B"]
