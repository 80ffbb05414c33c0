"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

MIN_INTERVAL_SECONDS = 10


@dataclass(frozen=True)
class FeedConfig:
    """Feed retrieval and normalization settings."""

    url: str
    timeout_seconds: float = 30.0
    user_agent: str = "seekwatch/1.0"
    proxy: Optional[str] = None
    summary_chars: int = 200
    memo_chars: int = 500
    max_attempts: int = 3
    backoff_seconds: float = 2.0


@dataclass(frozen=True)
class SchedulerConfig:
    """Cycle timing and delivery pacing for the pipeline."""

    interval_seconds: float = 60.0
    retry_undelivered: bool = False
    delivery_batch_size: int = 5
    delivery_pause_seconds: float = 1.0

    @property
    def effective_interval(self) -> float:
        """Interval with the minimum floor applied."""

        return max(float(self.interval_seconds), float(MIN_INTERVAL_SECONDS))
