# src/bmschart/config.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional
import copy
import logging
import yaml

logger = logging.getLogger(__name__)

# package root: .../src/bmschart
PKG_ROOT = Path(__file__).resolve().parent
DEFAULT_CFG_PATH = PKG_ROOT / "config.default.yaml"
USER_CFG_PATH = Path.home() / ".config" / "bmschart" / "config.yaml"

def _safe_load(path: Path) -> Dict[str, Any]:
    try:
        if path.exists():
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            if isinstance(data, dict):
                return data
            logger.warning("config %s is not a mapping, ignored", path)
    except (OSError, yaml.YAMLError) as exc:
        # a broken config must not keep a chart from loading
        logger.warning("could not read config %s: %s", path, exc)
    return {}

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(a)
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out

def load_config(
    user_path: Optional[Path] = None,
    default_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Loads the loader configuration (packaged defaults + user overrides) as one merged dict.
    Guaranteed keys: default_bpm, max_measures, missing_title, missing_artist, encoding_errors.
    """
    dpath = Path(default_path) if default_path else DEFAULT_CFG_PATH
    upath = Path(user_path) if user_path else USER_CFG_PATH

    defaults = _safe_load(dpath)
    user = _safe_load(upath)
    cfg = _deep_merge(defaults, user)

    cfg.setdefault("default_bpm", 130.0)
    cfg.setdefault("max_measures", 1000)
    cfg.setdefault("missing_title", "MISSING TITLE")
    cfg.setdefault("missing_artist", "MISSING ARTIST")
    cfg.setdefault("encoding_errors", "replace")

    return cfg

def get_default_bpm(cfg: Dict[str, Any]) -> float:
    try:
        bpm = float(cfg.get("default_bpm", 130.0))
    except (TypeError, ValueError):
        return 130.0
    return bpm if bpm > 0 else 130.0

def get_max_measures(cfg: Dict[str, Any]) -> int:
    try:
        return int(cfg.get("max_measures", 1000))
    except (TypeError, ValueError):
        return 1000
