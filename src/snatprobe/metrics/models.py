from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorType(str, Enum):
    TIMEOUT = "timeout"
    CONNECT = "connect"
    READ = "read"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class Sample:
    elapsed: float
    failed: bool
    error_type: ErrorType | None = None

    def __post_init__(self) -> None:
        if self.elapsed < 0:
            msg = f"Sample elapsed time must be non-negative, got {self.elapsed}"
            raise ValueError(msg)

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed * 1000.0


@dataclass(frozen=True, slots=True)
class CounterSnapshot:
    total_attempts: int
    total_errors: int


@dataclass(frozen=True, slots=True)
class WindowStats:
    period_sec: int
    count: int
    errors: int
    max_sec: float
    p99_sec: float
    p95_sec: float
    median_sec: float
    mean_sec: float
    rate: int
    totals: CounterSnapshot


@dataclass(frozen=True, slots=True)
class EmptyWindow:
    """Marker for a summary period in which no sample arrived."""

    period_sec: int
    totals: CounterSnapshot


WindowReport = WindowStats | EmptyWindow
