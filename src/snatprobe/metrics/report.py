from __future__ import annotations

import sys
from typing import TextIO

from snatprobe.metrics.models import EmptyWindow, WindowReport, WindowStats

NO_DATA_MESSAGE = "No request completed in the current time frame"


def render_report(report: WindowReport) -> str:
    if isinstance(report, EmptyWindow):
        return NO_DATA_MESSAGE
    return _render_stats(report)


def _render_stats(stats: WindowStats) -> str:
    lines = [
        f"Summary of the last {stats.period_sec} seconds:",
        f"{'Max response time':>30}: {stats.max_sec * 1000:5.1f}ms",
        f"{'99 percentile':>30}: {stats.p99_sec * 1000:5.1f}ms",
        f"{'95 percentile':>30}: {stats.p95_sec * 1000:5.1f}ms",
        f"{'median':>30}: {stats.median_sec * 1000:5.1f}ms",
        f"{'Request Rate':>30}: {stats.rate:5d}req/s",
        "",
        f"Requests since start (error/total): {stats.totals.total_errors:5d}/{stats.totals.total_attempts}",
    ]
    return "\n".join(lines)


class TextReporter:
    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def __call__(self, report: WindowReport) -> None:
        stream = self._stream or sys.stdout
        stream.write(render_report(report) + "\n\n")
        stream.flush()
