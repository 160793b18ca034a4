from __future__ import annotations
from typing import Optional


class ChartError(ValueError):
    """Base error of the chart loader. `category` names the offending command (BPM, STOP, LENGTH)."""

    def __init__(self, category: str, message: str, line_no: Optional[int] = None):
        super().__init__(message)
        self.category = category
        self.message = message
        self.line_no = line_no

    def __str__(self) -> str:
        where = f" (line {self.line_no})" if self.line_no is not None else ""
        return f"{self.category}: {self.message}{where}"


class ChartLoadError(ChartError):
    """Fatal: the whole load is aborted, no partial chart."""


class BuilderConsumedError(RuntimeError):
    """A builder was used again after build()."""
