from __future__ import annotations
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import ClassVar, Dict, List, Mapping, Optional, Tuple, Union
import logging
from .errors import BuilderConsumedError
from .process import TimelineBuilder, DEFAULT_MAX_MEASURES
from .timeline import Timeline, DEFAULT_BPM
from .util.keys import encode_key

logger = logging.getLogger(__name__)

MISSING_TITLE = "MISSING TITLE"
MISSING_ARTIST = "MISSING ARTIST"

# --- Object payloads ---

@dataclass(frozen=True)
class AutoplayKeysound:
    key: int
    kind: ClassVar[str] = "auto"

@dataclass(frozen=True)
class Note:
    key: int
    kind: ClassVar[str] = "note"

@dataclass(frozen=True)
class BackgroundAnimation:
    key: int
    kind: ClassVar[str] = "bga"

@dataclass(frozen=True)
class LongNoteEnd:
    """Placed on the head of a long note; `measure` is where the note is released."""
    measure: float
    kind: ClassVar[str] = "ln_end"

Payload = Union[AutoplayKeysound, Note, BackgroundAnimation, LongNoteEnd]


@dataclass(frozen=True)
class PlacedObject:
    measure: float
    channel: int
    payload: Payload
    time: Optional[int] = None     # ms, None until resolved against the timeline

    @property
    def resolved(self) -> bool:
        return self.time is not None

    def describe(self) -> Dict[str, object]:
        d: Dict[str, object] = {
            "time": self.time,
            "measure": self.measure,
            "channel": f"{self.channel:02d}",
            "kind": self.payload.kind,
        }
        if isinstance(self.payload, LongNoteEnd):
            d["end"] = self.payload.measure
        else:
            d["key"] = encode_key(self.payload.key)
        return d


# identity semantics: the read-only mappings are not hashable
@dataclass(frozen=True, eq=False)
class Chart:
    title: str
    artist: str
    metadata: Mapping[str, str]
    objects: Tuple[PlacedObject, ...]
    timeline: Timeline
    keysounds: Mapping[int, str]
    bga_layers: Mapping[int, str]

    @property
    def duration_ms(self) -> int:
        """Time of the last object or long-note release (last timeline event if the chart is empty)."""
        last = self.timeline.last_event().time
        if self.objects:
            last = max(last, self.objects[-1].time)
        for _, release in self.long_notes():
            last = max(last, release)
        return last

    def objects_of(self, kind: str) -> List[PlacedObject]:
        return [o for o in self.objects if o.payload.kind == kind]

    def long_notes(self) -> List[Tuple[PlacedObject, int]]:
        """(head marker, release time in ms) for every paired long note."""
        return [
            (o, self.timeline.time_from_measure(o.payload.measure))
            for o in self.objects_of(LongNoteEnd.kind)
        ]

    def keysound_path(self, key: int) -> Optional[str]:
        return self.keysounds.get(key)


# --- Builder ---

class ChartBuilder:
    """
    Mutable side of the parse: metadata, path tables and unresolved objects.
    Timing data goes into `timeline_builder`. build() sorts the objects,
    builds the timeline, resolves every object time and returns a frozen Chart.
    """

    def __init__(
        self,
        base_bpm: float = DEFAULT_BPM,
        max_measures: int = DEFAULT_MAX_MEASURES,
        missing_title: str = MISSING_TITLE,
        missing_artist: str = MISSING_ARTIST,
    ):
        self.metadata: Dict[str, str] = {}
        self.objects: List[PlacedObject] = []
        self.keysounds: Dict[int, str] = {}
        self.bga_layers: Dict[int, str] = {}
        self.timeline_builder = TimelineBuilder(base_bpm=base_bpm, max_measures=max_measures)
        self.missing_title = missing_title
        self.missing_artist = missing_artist
        # long note slots per channel: (measure, key), paired at build time
        self._long_slots: Dict[int, List[Tuple[float, int]]] = {}
        self._consumed = False

    def _check_open(self):
        if self._consumed:
            raise BuilderConsumedError("ChartBuilder was already built")

    def with_metadata(self, header: str, value: str) -> "ChartBuilder":
        self._check_open()
        self.metadata[header] = value
        return self

    def with_keysound(self, key: int, path: str) -> "ChartBuilder":
        self._check_open()
        self.keysounds[key] = path
        return self

    def with_bga_layer(self, key: int, path: str) -> "ChartBuilder":
        self._check_open()
        self.bga_layers[key] = path
        return self

    def add_object(self, obj: PlacedObject) -> "ChartBuilder":
        self._check_open()
        self.objects.append(obj)
        return self

    def add_long_note_slot(self, channel: int, measure: float, key: int) -> "ChartBuilder":
        self._check_open()
        self._long_slots.setdefault(channel, []).append((measure, key))
        return self

    def _pair_long_notes(self):
        # heads and tails alternate along the score, independent of line order
        for channel, slots in self._long_slots.items():
            slots.sort(key=lambda s: s[0])
            for i in range(0, len(slots), 2):
                head_measure, head_key = slots[i]
                self.objects.append(PlacedObject(head_measure, channel, Note(head_key)))
                if i + 1 < len(slots):
                    tail_measure, _ = slots[i + 1]
                    # the marker sits on the head and carries the release position
                    self.objects.append(PlacedObject(head_measure, channel, LongNoteEnd(tail_measure)))
                else:
                    logger.debug("unpaired long note head at %.3f (channel %02d)", head_measure, channel)
        self._long_slots = {}

    def build(self) -> Chart:
        self._check_open()
        self._pair_long_notes()
        self._consumed = True

        title = self.metadata.get("TITLE", self.missing_title)
        artist = self.metadata.get("ARTIST", self.missing_artist)

        timeline = self.timeline_builder.build()
        # stable: objects on the same measure keep their input order
        ordered = sorted(self.objects, key=lambda o: o.measure)
        objects = tuple(replace(o, time=timeline.time_from_measure(o.measure)) for o in ordered)

        chart = Chart(
            title=title,
            artist=artist,
            metadata=MappingProxyType(dict(self.metadata)),
            objects=objects,
            timeline=timeline,
            keysounds=MappingProxyType(dict(self.keysounds)),
            bga_layers=MappingProxyType(dict(self.bga_layers)),
        )
        self.objects = []
        return chart
