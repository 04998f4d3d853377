from __future__ import annotations

from snatprobe.metrics.aggregator import (
    Aggregator,
    AttemptCounters,
    Reporter,
    compute_window_stats,
    percentile_index,
)
from snatprobe.metrics.models import (
    CounterSnapshot,
    EmptyWindow,
    ErrorType,
    Sample,
    WindowReport,
    WindowStats,
)
from snatprobe.metrics.report import NO_DATA_MESSAGE, TextReporter, render_report

__all__ = [
    "NO_DATA_MESSAGE",
    "Aggregator",
    "AttemptCounters",
    "CounterSnapshot",
    "EmptyWindow",
    "ErrorType",
    "Reporter",
    "Sample",
    "TextReporter",
    "WindowReport",
    "WindowStats",
    "compute_window_stats",
    "percentile_index",
    "render_report",
]
