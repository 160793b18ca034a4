from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Iterator, List, Sequence, Tuple, Union
import numpy as np
from .util.time import measures_to_ms, ms_to_measures

DEFAULT_BPM = 130.0
DEFAULT_LENGTH = 1.0

# --- Timing commands (only live inside the TimelineBuilder) ---

@dataclass(frozen=True)
class TempoChange:
    measure: float
    bpm: float

@dataclass(frozen=True)
class Stop:
    measure: float
    units: float           # 192 units = one measure at the stop's tempo

TimingCommand = Union[TempoChange, Stop]

# --- Built timeline ---

@dataclass(frozen=True)
class TimelineEvent:
    time: int              # ms
    measure: float
    pos: float             # render position (prefix sum of measure * bpm * length)
    bpm: float
    length: float


class Timeline:
    """
    Piecewise-linear mapping measure <-> ms, built once by the TimelineBuilder.

    Events are sorted by measure and by time. Two consecutive events on the
    same measure encode a stop: the score position stays frozen while time
    advances from the first to the second.
    """

    __slots__ = ("_events", "_measures", "_times")

    def __init__(self, events: Sequence[TimelineEvent]):
        events = tuple(events)
        if not events:
            raise ValueError("a timeline needs at least one event")
        self._events: Tuple[TimelineEvent, ...] = events
        self._measures = np.array([e.measure for e in events], dtype=np.float64)
        self._times = np.array([e.time for e in events], dtype=np.int64)
        self._measures.setflags(write=False)
        self._times.setflags(write=False)

    # --- container protocol ---

    @property
    def events(self) -> Tuple[TimelineEvent, ...]:
        return self._events

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[TimelineEvent]:
        return iter(self._events)

    def __getitem__(self, i: int) -> TimelineEvent:
        return self._events[i]

    def __eq__(self, other) -> bool:
        if not isinstance(other, Timeline):
            return NotImplemented
        return self._events == other._events

    def __hash__(self) -> int:
        return hash(self._events)

    def __repr__(self) -> str:
        return f"Timeline(events={len(self._events)})"

    def last_event(self) -> TimelineEvent:
        return self._events[-1]

    # --- segment lookup ---

    def _index_for_measure(self, measure: float) -> int:
        # side="right" lands behind a run of equal measures -> last event of a stop
        i = int(np.searchsorted(self._measures, measure, side="right")) - 1
        return max(i, 0)

    def _index_for_time(self, time: float) -> int:
        i = int(np.searchsorted(self._times, time, side="right")) - 1
        return max(i, 0)

    # --- queries ---

    def time_from_measure(self, measure: float) -> int:
        """Measure -> ms. On a stop measure this is the time the stop ends."""
        ev = self._events[self._index_for_measure(measure)]
        return ev.time + measures_to_ms(measure - ev.measure, ev.bpm, ev.length)

    def measure_from_time(self, time: float) -> float:
        """ms -> measure. Inside a stop the measure is frozen at the stop's position."""
        i = self._index_for_time(time)
        ev = self._events[i]
        if i + 1 < len(self._events) and self._events[i + 1].measure == ev.measure:
            return ev.measure
        return ev.measure + ms_to_measures(time - ev.time, ev.bpm, ev.length)

    def pos_from_measure(self, measure: float, speed: float = 1.0) -> float:
        ev = self._events[self._index_for_measure(measure)]
        return ev.pos * speed + (measure - ev.measure) * speed * ev.bpm * ev.length

    def bpm_at(self, measure: float) -> float:
        return self._events[self._index_for_measure(measure)].bpm

    def length_at(self, measure: float) -> float:
        return self._events[self._index_for_measure(measure)].length

    def stops(self) -> List[Tuple[float, int, int]]:
        """(measure, start_ms, end_ms) for every pause in the timeline."""
        out = []
        for a, b in zip(self._events, self._events[1:]):
            if a.measure == b.measure and b.time > a.time:
                out.append((a.measure, a.time, b.time))
        return out

    def to_dicts(self) -> List[Dict[str, float]]:
        return [asdict(e) for e in self._events]
