from __future__ import annotations

MS_PER_WHOLE_NOTE = 240_000.0   # one 4/4 measure at 1 BPM
STOP_UNITS_PER_MEASURE = 192.0

def measures_to_ms(measures: float, bpm: float, length: float) -> int:
    """Elapsed measures -> ms at a constant tempo/length (truncated like the event times)."""
    return int(measures * (MS_PER_WHOLE_NOTE / bpm) * length)

def ms_to_measures(ms: float, bpm: float, length: float) -> float:
    return ms * (bpm / MS_PER_WHOLE_NOTE) / length

def stop_to_ms(units: float, bpm: float) -> int:
    # 192 units = one full measure at the stop's tempo, independent of length
    return int(MS_PER_WHOLE_NOTE / bpm * units / STOP_UNITS_PER_MEASURE)
