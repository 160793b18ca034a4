from __future__ import annotations
import os
from typing import Any, Dict
import yaml
from .chart import Chart
from .util.keys import encode_key

# ---------- internal helpers ----------

def _path_table(table) -> Dict[str, str]:
    return {encode_key(k): v for k, v in sorted(table.items())}

def _counts(chart: Chart) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for obj in chart.objects:
        out[obj.payload.kind] = out.get(obj.payload.kind, 0) + 1
    return out

# ---------- public API ----------

def chart_summary(chart: Chart, events: bool = True, objects: bool = False) -> Dict[str, Any]:
    """
    Plain-dict view of a chart (YAML/JSON friendly).
    - events: include the timeline events
    - objects: include every placed object (can be large)
    """
    out: Dict[str, Any] = {
        "title": chart.title,
        "artist": chart.artist,
        "metadata": dict(chart.metadata),
        "duration_ms": chart.duration_ms,
        "counts": _counts(chart),
        "stops": [
            {"measure": m, "start_ms": t0, "end_ms": t1} for m, t0, t1 in chart.timeline.stops()
        ],
        "keysounds": _path_table(chart.keysounds),
        "bga_layers": _path_table(chart.bga_layers),
    }
    if events:
        out["events"] = chart.timeline.to_dicts()
    if objects:
        out["objects"] = [o.describe() for o in chart.objects]
    return out

def write_summary(chart: Chart, out_path: str, events: bool = True, objects: bool = False):
    """Writes chart_summary() as YAML; parent directories are created."""
    parent = os.path.dirname(os.path.abspath(out_path))
    os.makedirs(parent, exist_ok=True)
    data = chart_summary(chart, events=events, objects=objects)
    with open(out_path, "w", encoding="utf-8") as fh:
        yaml.safe_dump(data, fh, allow_unicode=True, sort_keys=False)
