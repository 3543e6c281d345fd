import pytest

from src.route_engine.models.domain import TimeWindow
from src.route_engine.services.routing.timing import format_clock, parse_clock, simulate_path


@pytest.mark.parametrize(
    ("value", "expected"),
    [("08:00", 28_800), ("8:05:09", 29_109), ("00:00", 0), ("23:59:59", 86_399)],
)
def test_parse_clock(value, expected):
    assert parse_clock(value) == expected


@pytest.mark.parametrize("value", ["25:00", "12:60", "noon", "12", "1:2:3:4"])
def test_parse_clock_rejects_bad_values(value):
    with pytest.raises(ValueError):
        parse_clock(value)


def test_format_clock_rolls_over_midnight():
    assert format_clock(30_600) == "08:30:00"
    assert format_clock(86_400 + 3_600) == "01:00:00+1d"


def test_simulate_path_waits_for_window_and_flags_late_arrival():
    durations = [
        [0, 100, 0],
        [0, 0, 100],
        [0, 0, 0],
    ]
    windows = [None, TimeWindow(earliest=500), TimeWindow(latest=600)]

    schedule = simulate_path([0, 1, 2], durations, departure=0, service=[0, 50, 0], windows=windows)

    assert schedule.arrivals == [0, 100, 650]
    assert schedule.waits == [0, 400, 0]
    assert schedule.departures == [0, 550, 650]
    assert schedule.late_positions == [2]
    assert schedule.finish == 650


def test_simulate_closing_visit_is_not_serviced():
    durations = [[0, 10], [10, 0]]
    windows = [TimeWindow(latest=0), None]

    schedule = simulate_path([0, 1, 0], durations, departure=0, service=[5, 5], windows=windows, closing_visit=True)

    assert schedule.late_positions == []
    assert schedule.departures == [5, 20, 30]
