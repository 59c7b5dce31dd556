"""
Simulated per-minute rate schedule.

The schedule only lives in the ``call_counts`` mapping of the checkpoint, which maps
ISO-minute buckets to the number of calls already scheduled into them. Everything
here works on that mapping and an explicit "now", so the schedule can be rebuilt by
any invocation that is handed the checkpoint.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, NamedTuple, Optional

from .types import RateLimit


logger = logging.getLogger(__name__)

BUCKET_FORMAT = "%Y-%m-%dT%H:%M"
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def minute_bucket(dt: datetime) -> str:
    return _aware(dt).strftime(BUCKET_FORMAT)


def bucket_start(bucket: str) -> datetime:
    return datetime.strptime(bucket, BUCKET_FORMAT).replace(tzinfo=timezone.utc)


def next_bucket(bucket: str) -> str:
    return minute_bucket(bucket_start(bucket) + timedelta(minutes=1))


def minute_fraction(now: datetime) -> float:
    """Share of the current wall-clock minute that is still ahead of ``now``."""
    return (60 - _aware(now).second) / 60


def delay_until(bucket: str, now: datetime) -> int:
    """Whole seconds from ``now`` until ``bucket`` opens, zero if it is already open."""
    return max(0, math.ceil((bucket_start(bucket) - _aware(now)).total_seconds()))


def hourly_calls(call_counts: dict[str, int], bucket: str) -> int:
    """Calls in the 60 buckets ending with ``bucket``."""
    # buckets sort chronologically as strings
    start = minute_bucket(bucket_start(bucket) - timedelta(minutes=59))
    return sum(count for b, count in call_counts.items() if start <= b <= bucket)


def has_room(
    rate_limit: RateLimit, call_counts: dict[str, int], bucket: str, fraction: float
) -> bool:
    if call_counts.get(bucket, 0) >= rate_limit.per_minute * fraction:
        return False
    if rate_limit.per_hour is not None:
        return hourly_calls(call_counts, bucket) < rate_limit.per_hour
    return True


class Admission(NamedTuple):
    admitted: bool
    bucket: str
    fraction: float
    delay_seconds: int


def admit(
    rate_limit: RateLimit,
    call_counts: dict[str, int],
    bucket: str,
    fraction: float,
    now: datetime,
    max_delay_seconds: int,
) -> Admission:
    """
    Try to schedule one call into ``bucket``.

    If the bucket is full, scheduling moves on to the following minute(s) with the full
    per-minute budget. A bucket that would open more than ``max_delay_seconds`` after
    ``now`` is never used: the returned admission is then not admitted, carries that
    bucket's delay and ``call_counts`` is left untouched.
    """
    if has_room(rate_limit, call_counts, bucket, fraction):
        call_counts[bucket] = call_counts.get(bucket, 0) + 1
        return Admission(True, bucket, fraction, delay_until(bucket, now))

    candidate = next_bucket(bucket)
    while True:
        delay = delay_until(candidate, now)
        if delay > max_delay_seconds:
            return Admission(False, candidate, 1.0, delay)
        if has_room(rate_limit, call_counts, candidate, 1.0):
            call_counts[candidate] = call_counts.get(candidate, 0) + 1
            return Admission(True, candidate, 1.0, delay)
        candidate = next_bucket(candidate)


class RateSchedule:
    """Schedule of one provider during one Queuer pass."""

    def __init__(
        self,
        rate_limit: RateLimit,
        call_counts: dict[str, int],
        now: datetime,
        max_delay_seconds: int,
    ):
        self.rate_limit = rate_limit
        self.call_counts = call_counts
        self.now = now
        self.max_delay_seconds = max_delay_seconds
        self.exhausted = False

        current = minute_bucket(now)
        latest = next(reversed(call_counts), None)
        if latest is not None and bucket_start(latest) > bucket_start(current):
            # resume filling a bucket scheduled by an earlier pass
            self.bucket, self.fraction = latest, 1.0
        else:
            self.bucket, self.fraction = current, minute_fraction(now)
        self.delay_seconds = delay_until(self.bucket, now)
        logger.debug(
            f"starting at {self.bucket} with fraction {self.fraction:.2f} "
            f"({call_counts.get(self.bucket, 0)} calls scheduled)"
        )

    def next(self) -> Optional[int]:
        """Delay in seconds for one more call, or None if nothing fits this pass."""
        if self.exhausted:
            return None

        admission = admit(
            self.rate_limit,
            self.call_counts,
            self.bucket,
            self.fraction,
            self.now,
            self.max_delay_seconds,
        )
        self.delay_seconds = admission.delay_seconds
        if not admission.admitted:
            logger.debug(
                f"{admission.bucket} opens in {admission.delay_seconds}s, "
                f"beyond {self.max_delay_seconds}s"
            )
            self.exhausted = True
            return None

        self.bucket, self.fraction = admission.bucket, admission.fraction
        return admission.delay_seconds
