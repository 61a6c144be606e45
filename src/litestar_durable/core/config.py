"""Engine-wide configuration."""

from __future__ import annotations

import os
import socket
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from litestar_durable.core.commands import ActivityOptions

__all__ = ["ACTIVITY_LEASE_PADDING_SECONDS", "EngineConfig", "utc_now"]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass
class EngineConfig:
    """Configuration shared by the engine, executor, timer service and scheduler.

    Attributes:
        timeout_seconds: Default per-attempt activity timeout.
        max_retries: Default number of retries after the first activity attempt.
        retry_delay_seconds: Default delay between activity attempts.
        queue_name: Default activity queue.
        lock_timeout_seconds: Lease length of the per-instance execution lock.
        poll_interval_seconds: Sleep between runner iterations when idle.
        batch_size: Maximum timers, instances or tasks handled per poll.
        max_concurrency: Maximum concurrent replays (and activity attempts) per poll.
        worker_id: Identity written into locks and activity leases.
        clock: Source of the current time. Must return timezone-aware datetimes.

    Example:
        >>> config = EngineConfig(max_retries=5, retry_delay_seconds=10)
        >>> config.default_activity_options.max_retries
        5
    """

    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    queue_name: str = "default"
    lock_timeout_seconds: float = 300.0
    poll_interval_seconds: float = 1.0
    batch_size: int = 100
    max_concurrency: int = 10
    worker_id: str = field(default_factory=_default_worker_id)
    clock: Callable[[], datetime] = utc_now

    @property
    def default_activity_options(self) -> ActivityOptions:
        return ActivityOptions(
            timeout_seconds=self.timeout_seconds,
            max_retries=self.max_retries,
            retry_delay_seconds=self.retry_delay_seconds,
            queue_name=self.queue_name,
        )

    def now(self) -> datetime:
        return self.clock()


ACTIVITY_LEASE_PADDING_SECONDS = 30.0
"""Added to an activity's timeout to form the lease of a claimed task."""
