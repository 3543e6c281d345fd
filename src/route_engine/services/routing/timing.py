"""Wall-clock helpers and schedule simulation along a visiting path."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ...models.domain import TimeWindow

SECONDS_PER_DAY = 24 * 3600


def parse_clock(value: str) -> int:
    """Convert 'HH:MM' or 'HH:MM:SS' into seconds since midnight."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid clock time '{value}', expected HH:MM or HH:MM:SS.")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as exc:
        raise ValueError(f"Invalid clock time '{value}', expected HH:MM or HH:MM:SS.") from exc
    if not (0 <= hours < 24 and 0 <= minutes < 60 and 0 <= seconds < 60):
        raise ValueError(f"Clock time '{value}' is out of range.")
    return hours * 3600 + minutes * 60 + seconds


def format_clock(seconds: float) -> str:
    """Render seconds since midnight as 'HH:MM:SS'; values past midnight carry a '+Nd' suffix."""
    total = int(round(seconds))
    days, remainder = divmod(total, SECONDS_PER_DAY)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)
    clock = f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{clock}+{days}d" if days else clock


@dataclass(slots=True)
class Schedule:
    arrivals: List[float] = field(default_factory=list)
    waits: List[float] = field(default_factory=list)
    departures: List[float] = field(default_factory=list)
    late_positions: List[int] = field(default_factory=list)

    @property
    def finish(self) -> float:
        return self.departures[-1] if self.departures else 0.0


def simulate_path(
    path: Sequence[int],
    durations: Sequence[Sequence[float]],
    *,
    departure: float,
    service: Sequence[float],
    windows: Sequence[Optional[TimeWindow]],
    closing_visit: bool = False,
) -> Schedule:
    """Walk ``path`` from ``departure``, waiting for early arrivals.

    ``service`` and ``windows`` are indexed by node. When ``closing_visit`` is
    set the last element returns to an already-served node and is neither
    serviced nor checked against its window.
    """
    schedule = Schedule()
    last = len(path) - 1
    for position, node in enumerate(path):
        if position == 0:
            arrival = float(departure)
        else:
            arrival = schedule.departures[-1] + durations[path[position - 1]][node]

        wait = 0.0
        service_time = 0.0
        if not (closing_visit and position == last):
            window = windows[node]
            if window is not None:
                if window.earliest is not None and arrival < window.earliest:
                    wait = window.earliest - arrival
                if window.latest is not None and arrival > window.latest:
                    schedule.late_positions.append(position)
            service_time = service[node]

        schedule.arrivals.append(arrival)
        schedule.waits.append(wait)
        schedule.departures.append(arrival + wait + service_time)
    return schedule
