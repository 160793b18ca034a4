from __future__ import annotations
import pytest
from bmschart.config import load_config


@pytest.fixture
def cfg(tmp_path):
    # packaged defaults only, never the user's ~/.config file
    return load_config(user_path=tmp_path / "no-user-config.yaml")


@pytest.fixture
def chart_file(tmp_path):
    def _write(text: str, name: str = "chart.bms"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write
