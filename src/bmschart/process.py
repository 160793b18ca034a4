from __future__ import annotations
from typing import Dict, List, Tuple
import logging
from .errors import BuilderConsumedError, ChartLoadError
from .timeline import (
    Timeline, TimelineEvent, TimingCommand, TempoChange, Stop,
    DEFAULT_BPM, DEFAULT_LENGTH,
)
from .util.time import measures_to_ms, stop_to_ms

logger = logging.getLogger(__name__)

DEFAULT_MAX_MEASURES = 1000

# --- Measure lengths ---

class LengthTable:
    """
    Sparse measure-index -> length multiplier. Unset measures have length 1.0.
    Indices are bounded by `capacity`; writing outside is a load error.
    """

    def __init__(self, capacity: int = DEFAULT_MAX_MEASURES):
        self.capacity = int(capacity)
        self._lengths: Dict[int, float] = {}

    def __getitem__(self, index: int) -> float:
        return self._lengths.get(index, DEFAULT_LENGTH)

    def __setitem__(self, index: int, length: float):
        if not 0 <= index < self.capacity:
            raise ChartLoadError(
                "LENGTH", f"measure {index} outside of length table (capacity {self.capacity})"
            )
        self._lengths[index] = float(length)

    def __len__(self) -> int:
        return len(self._lengths)

    def change_points(self) -> List[Tuple[int, float]]:
        """
        Run-length compressed view: (0, length of measure 0) followed by every
        measure whose length differs from the previous measure.
        """
        out = [(0, self[0])]
        # a value can only change on an overridden measure or right behind one
        candidates = set(self._lengths) | {i + 1 for i in self._lengths}
        for i in sorted(candidates):
            if i <= 0 or i >= self.capacity:
                continue
            if self[i] != self[i - 1]:
                out.append((i, self[i]))
        return out


# --- Event list under construction ---

class _EventDraft:
    """Mutable event list used by build(); frozen into TimelineEvents at the end."""

    def __init__(self):
        # (time, measure, bpm, length)
        self.rows: List[Tuple[int, float, float, float]] = []

    def add_event(self, measure: float, bpm: float, length: float):
        if not self.rows:
            self.rows.append((0, measure, bpm, length))
            return
        time, old_measure, old_bpm, old_length = self.rows[-1]
        # only real updates, keeps the timeline O(#changes)
        if old_bpm != bpm or old_length != length:
            time += measures_to_ms(measure - old_measure, old_bpm, old_length)
            self.rows.append((time, measure, bpm, length))

    def add_stop(self, measure: float, units: float, seed_bpm: float, seed_length: float):
        # the pause runs at the tempo/length of the previous event;
        # seed_* only matter when the stop is the very first event
        if not self.rows:
            self.rows.append((0, measure, seed_bpm, seed_length))
        time, old_measure, bpm, length = self.rows[-1]
        if old_measure != measure:
            # snapshot: the instant the pause begins
            time += measures_to_ms(measure - old_measure, bpm, length)
            self.rows.append((time, measure, bpm, length))
        time += stop_to_ms(units, bpm)
        self.rows.append((time, measure, bpm, length))

    def freeze(self) -> List[TimelineEvent]:
        out: List[TimelineEvent] = []
        pos = 0.0
        prev = None
        for time, measure, bpm, length in self.rows:
            if prev is not None:
                pos += (measure - prev[1]) * prev[2] * prev[3]
            out.append(TimelineEvent(time=time, measure=measure, pos=pos, bpm=bpm, length=length))
            prev = (time, measure, bpm, length)
        return out


# --- Builder ---

class TimelineBuilder:
    """
    Collects everything timing related while the chart is parsed:
    base tempo, the named tempo/stop tables, measure lengths and the raw
    TempoChange/Stop commands. build() reconciles them once into a Timeline;
    afterwards the builder refuses further use.
    """

    def __init__(self, base_bpm: float = DEFAULT_BPM, max_measures: int = DEFAULT_MAX_MEASURES):
        self.base_bpm = float(base_bpm)
        self.bpms: Dict[int, float] = {}     # #BPMxx, used by channel 08
        self.stops: Dict[int, float] = {}    # #STOPxx, used by channel 09
        self.lengths = LengthTable(max_measures)
        self.commands: List[TimingCommand] = []
        self._consumed = False

    def _check_open(self):
        if self._consumed:
            raise BuilderConsumedError("TimelineBuilder was already built")

    def with_base_bpm(self, bpm: float) -> "TimelineBuilder":
        self._check_open()
        self.base_bpm = float(bpm)
        return self

    def with_bpm(self, key: int, bpm: float) -> "TimelineBuilder":
        self._check_open()
        self.bpms[key] = float(bpm)
        return self

    def with_stop(self, key: int, units: float) -> "TimelineBuilder":
        self._check_open()
        self.stops[key] = float(units)
        return self

    def with_command(self, command: TimingCommand) -> "TimelineBuilder":
        self._check_open()
        self.commands.append(command)
        return self

    def with_measure_len(self, measure: int, length: float) -> "TimelineBuilder":
        self._check_open()
        self.lengths[measure] = length
        return self

    def find_bpm(self, key: int) -> float:
        """Named tempo for `key`, 0.0 if undefined."""
        return self.bpms.get(key, 0.0)

    def find_stop(self, key: int) -> float:
        return self.stops.get(key, 0.0)

    def build(self) -> Timeline:
        self._check_open()
        self._consumed = True

        # later commands on the same measure win
        tempo_at: Dict[float, float] = {}
        stop_at: Dict[float, float] = {}
        for cmd in self.commands:
            if isinstance(cmd, TempoChange):
                tempo_at[float(cmd.measure)] = cmd.bpm
            elif isinstance(cmd, Stop):
                stop_at[float(cmd.measure)] = cmd.units
        length_at: Dict[int, float] = dict(self.lengths.change_points())

        breakpoints = sorted(set(tempo_at) | set(stop_at) | {float(m) for m in length_at})

        bpm = tempo_at.get(0.0, self.base_bpm)
        length = length_at[0]

        draft = _EventDraft()
        for measure in breakpoints:
            if measure in tempo_at:
                bpm = tempo_at[measure]
            if measure.is_integer() and int(measure) in length_at:
                length = length_at[int(measure)]
            if measure in stop_at:
                # stop pair first, so a tempo change on the same measure applies after the pause
                draft.add_stop(measure, stop_at[measure], bpm, length)
            draft.add_event(measure, bpm, length)

        timeline = Timeline(draft.freeze())
        logger.debug(
            "timeline: %d events from %d commands, %d length overrides",
            len(timeline), len(self.commands), len(self.lengths),
        )
        # hand the buffers over; nothing may touch them afterwards
        self.commands = []
        return timeline
