# src/bmschart/analyze.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
import logging
import math
import re
from .chart import (
    Chart, ChartBuilder, PlacedObject,
    AutoplayKeysound, Note, BackgroundAnimation,
)
from .config import load_config, get_default_bpm, get_max_measures
from .errors import ChartLoadError
from .timeline import TempoChange, Stop
from .util.keys import decode_key

logger = logging.getLogger(__name__)

METADATA_HEADERS = (
    "PLAYER", "GENRE", "TITLE", "ARTIST", "PLAYLEVEL", "RANK", "TOTAL", "STAGEFILE",
    "SUBTITLE", "SUBARTIST", "DIFFICULTY", "BANNER", "BACKBMP", "LNTYPE", "VOLWAV", "COMMENT",
)
# longest first, so no keyword can shadow a longer one sharing its prefix
_HEADERS_BY_LENGTH = tuple(sorted(METADATA_HEADERS, key=len, reverse=True))

# --- Channels ---
CH_AUTOPLAY = 1
CH_LENGTH = 2
CH_BPM_HEX = 3
CH_BGA = 4
CH_BPM_KEY = 8
CH_STOP = 9

BGA_CHANNELS = frozenset({CH_BGA, 6, 7})
NOTE_CHANNELS = frozenset({11, 12, 13, 14, 15, 16, 18, 19, 21, 22, 23, 24, 25, 26, 28, 29})
LONG_NOTE_CHANNELS = frozenset({51, 52, 53, 54, 55, 56, 58, 59, 61, 62, 63, 64, 65, 66, 68, 69})
PLACEMENT_CHANNELS = frozenset({CH_AUTOPLAY}) | BGA_CHANNELS | NOTE_CHANNELS
SLOT_CHANNELS = PLACEMENT_CHANNELS | LONG_NOTE_CHANNELS | {CH_BPM_HEX, CH_BPM_KEY, CH_STOP}
KNOWN_CHANNELS = SLOT_CHANNELS | {CH_LENGTH}

Fields = Dict[str, Any]

# plain decimal literal; float() alone would also take "1_50", "inf", "nan"
_DECIMAL = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_HEX_SLOT = re.compile(r"[0-9A-Fa-f]{2}")

def _number(text: str, category: str) -> float:
    if not _DECIMAL.fullmatch(text):
        raise ChartLoadError(category, f"invalid number {text!r}")
    value = float(text)
    if not math.isfinite(value):
        raise ChartLoadError(category, f"invalid number {text!r}")
    return value

def slots(data: str) -> List[str]:
    """Split a channel payload into its 2-char slots."""
    return [data[i:i + 2] for i in range(0, len(data) - 1, 2)]


# ---------------- Grammars ----------------

class LineGrammar:
    """One single-line shape. match() returns the fields or None; apply() feeds the builder."""

    name = "line"

    def match(self, line: str) -> Optional[Fields]:
        raise NotImplementedError

    def apply(self, fields: Fields, builder: ChartBuilder) -> None:
        raise NotImplementedError


class RegexGrammar(LineGrammar):
    pattern: re.Pattern

    def match(self, line: str) -> Optional[Fields]:
        m = self.pattern.match(line)
        return m.groupdict() if m else None


class MetadataGrammar(LineGrammar):
    name = "metadata"

    def match(self, line: str) -> Optional[Fields]:
        if not line.startswith("#"):
            return None
        entry = line[1:]
        for header in _HEADERS_BY_LENGTH:
            if entry.startswith(header):
                return {"header": header, "value": entry[len(header):].strip()}
        return None

    def apply(self, fields: Fields, builder: ChartBuilder) -> None:
        builder.with_metadata(fields["header"], fields["value"])


class WavGrammar(RegexGrammar):
    name = "WAV"
    pattern = re.compile(r"#WAV(?P<key>[0-9A-Za-z]{2})[ \t]+(?P<data>.*)$")

    def apply(self, fields: Fields, builder: ChartBuilder) -> None:
        builder.with_keysound(decode_key(fields["key"]), fields["data"].strip())


class BmpGrammar(RegexGrammar):
    name = "BMP"
    pattern = re.compile(r"#BMP(?P<key>[0-9A-Za-z]{2})[ \t]+(?P<data>.*)$")

    def apply(self, fields: Fields, builder: ChartBuilder) -> None:
        builder.with_bga_layer(decode_key(fields["key"]), fields["data"].strip())


class BpmGrammar(RegexGrammar):
    name = "BPM"
    pattern = re.compile(r"#BPM(?P<key>[0-9A-Za-z]{2})?[ \t]+(?P<data>.*)$")

    def apply(self, fields: Fields, builder: ChartBuilder) -> None:
        bpm = _number(fields["data"].strip(), self.name)
        if bpm <= 0:
            raise ChartLoadError(self.name, f"tempo must be positive, got {bpm}")
        key = decode_key(fields["key"])
        if key == 0:
            builder.timeline_builder.with_base_bpm(bpm)
        else:
            builder.timeline_builder.with_bpm(key, bpm)


class StopGrammar(RegexGrammar):
    name = "STOP"
    pattern = re.compile(r"#STOP(?P<key>[0-9A-Za-z]{2})[ \t]+(?P<data>.*)$")

    def apply(self, fields: Fields, builder: ChartBuilder) -> None:
        units = _number(fields["data"].strip(), self.name)
        if units < 0:
            raise ChartLoadError(self.name, f"stop duration must not be negative, got {units}")
        builder.timeline_builder.with_stop(decode_key(fields["key"]), units)


class ChannelGrammar(RegexGrammar):
    """
    #mmmcc:payload. Slot channels split the payload into 2-char slots, slot i of n
    lying at measure + i/n. Channel 02 carries one decimal length multiplier.
    Unknown channels and odd slot payloads do not match.
    """

    name = "channel"
    pattern = re.compile(r"#(?P<measure>[0-9]{3})(?P<channel>[0-9]{2}):(?P<data>.*)$")

    def match(self, line: str) -> Optional[Fields]:
        fields = super().match(line)
        if fields is None:
            return None
        channel = int(fields["channel"])
        data = fields["data"].strip()
        if channel not in KNOWN_CHANNELS:
            return None
        if channel in SLOT_CHANNELS and len(data) % 2:
            return None
        return {"measure": int(fields["measure"]), "channel": channel, "data": data}

    def apply(self, fields: Fields, builder: ChartBuilder) -> None:
        measure, channel, data = fields["measure"], fields["channel"], fields["data"]

        if channel == CH_LENGTH:
            length = _number(data, "LENGTH")
            if length <= 0:
                raise ChartLoadError("LENGTH", f"measure length must be positive, got {length}")
            builder.timeline_builder.with_measure_len(measure, length)
            return

        parts = slots(data)
        n = len(parts)
        tb = builder.timeline_builder
        for i, slot in enumerate(parts):
            at = measure + i / n

            if channel in PLACEMENT_CHANNELS or channel in LONG_NOTE_CHANNELS:
                key = decode_key(slot)
                if key == 0:
                    continue
                if channel in LONG_NOTE_CHANNELS:
                    builder.add_long_note_slot(channel, at, key)
                    continue
                if channel == CH_AUTOPLAY:
                    payload = AutoplayKeysound(key)
                elif channel in BGA_CHANNELS:
                    payload = BackgroundAnimation(key)
                else:
                    payload = Note(key)
                builder.add_object(PlacedObject(at, channel, payload))

            elif channel in (CH_BPM_HEX, CH_BPM_KEY):
                if channel == CH_BPM_HEX:
                    if not _HEX_SLOT.fullmatch(slot):
                        raise ChartLoadError("BPM", f"invalid hex tempo {slot!r}")
                    bpm = float(int(slot, 16))
                else:
                    key = decode_key(slot)
                    bpm = tb.find_bpm(key) if key else 0.0
                # 0 = placeholder or undefined key, never a tempo
                if bpm > 0:
                    tb.with_command(TempoChange(at, bpm))

            elif channel == CH_STOP:
                key = decode_key(slot)
                units = tb.find_stop(key) if key else 0.0
                if units > 0:
                    tb.with_command(Stop(at, units))


# priority order, first match wins
GRAMMARS: Tuple[LineGrammar, ...] = (
    MetadataGrammar(),
    WavGrammar(),
    BmpGrammar(),
    BpmGrammar(),
    StopGrammar(),
    ChannelGrammar(),
)


# ---------------- Entry points ----------------

def parse_lines(lines: Iterable[str], cfg: Optional[Dict[str, Any]] = None) -> Chart:
    cfg = load_config() if cfg is None else cfg
    builder = ChartBuilder(
        base_bpm=get_default_bpm(cfg),
        max_measures=get_max_measures(cfg),
        missing_title=str(cfg.get("missing_title", "MISSING TITLE")),
        missing_artist=str(cfg.get("missing_artist", "MISSING ARTIST")),
    )

    ignored = 0
    for line_no, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line.startswith("#"):
            continue
        for grammar in GRAMMARS:
            fields = grammar.match(line)
            if fields is None:
                continue
            try:
                grammar.apply(fields, builder)
            except ChartLoadError as exc:
                exc.line_no = line_no
                raise
            break
        else:
            ignored += 1
            logger.debug("line %d ignored: %s", line_no, line)

    chart = builder.build()
    logger.info(
        "loaded %r: %d objects, %d timeline events, %d lines ignored",
        chart.title, len(chart.objects), len(chart.timeline), ignored,
    )
    return chart

def parse_chart(text: str, cfg: Optional[Dict[str, Any]] = None) -> Chart:
    return parse_lines(text.splitlines(), cfg)

def _read_text(path: Union[str, Path], cfg: Dict[str, Any]) -> str:
    data = Path(path).read_bytes()
    return data.decode("utf-8", errors=str(cfg.get("encoding_errors", "replace")))

def load_chart(path: Union[str, Path], cfg: Optional[Dict[str, Any]] = None) -> Chart:
    cfg = load_config() if cfg is None else cfg
    return parse_chart(_read_text(path, cfg), cfg)

def read_title(path: Union[str, Path], cfg: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Only the TITLE header of a chart file, without building anything."""
    cfg = load_config() if cfg is None else cfg
    grammar = GRAMMARS[0]
    for raw in _read_text(path, cfg).splitlines():
        fields = grammar.match(raw.strip())
        if fields is not None and fields["header"] == "TITLE":
            return fields["value"]
    return None
