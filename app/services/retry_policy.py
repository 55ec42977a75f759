"""Retry timing and stuck-job detection.

Pure functions only: no database access, no clock reads unless `now` is
omitted. Naive datetimes (SQLite hands them back) are read as UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional


@dataclass(frozen=True)
class RetryStrategy:
	max_retries: int = 3
	base_delay_seconds: float = 60.0
	max_delay_seconds: float = 3600.0
	stuck_timeout_minutes: int = 10


DEFAULT_RETRY_STRATEGY = RetryStrategy()


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
	if value is None:
		return None
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


def _now(now: Optional[datetime]) -> datetime:
	return ensure_utc(now) if now is not None else datetime.now(timezone.utc)


def next_retry_delay(
	retry_count: int,
	base_seconds: float = DEFAULT_RETRY_STRATEGY.base_delay_seconds,
	cap_seconds: float = DEFAULT_RETRY_STRATEGY.max_delay_seconds,
) -> float:
	"""Delay in seconds before the next attempt: base_seconds * 2**retry_count, capped.

	The defaults are one minute and one hour (60_000 ms and 3_600_000 ms).
	"""
	count = max(0, int(retry_count))
	# Large exponents overflow float quickly; the cap is reached long before
	if count >= 64:
		return float(cap_seconds)
	return float(min(base_seconds * (2 ** count), cap_seconds))


def next_retry_at(
	retry_count: int,
	now: Optional[datetime] = None,
	strategy: RetryStrategy = DEFAULT_RETRY_STRATEGY,
) -> datetime:
	delay = next_retry_delay(retry_count, strategy.base_delay_seconds, strategy.max_delay_seconds)
	return _now(now) + timedelta(seconds=delay)


def is_stuck(
	processing_started_at: Optional[datetime],
	timeout_minutes: int = DEFAULT_RETRY_STRATEGY.stuck_timeout_minutes,
	now: Optional[datetime] = None,
) -> bool:
	"""True when a job has been processing for strictly longer than the timeout."""
	started = ensure_utc(processing_started_at)
	if started is None:
		return False
	return _now(now) - started > timedelta(minutes=timeout_minutes)


def should_retry(
	retry_count: int,
	max_retries: int = DEFAULT_RETRY_STRATEGY.max_retries,
	next_retry_at: Optional[datetime] = None,
	now: Optional[datetime] = None,
) -> bool:
	"""Retries left, and the scheduled time (if any) has been reached."""
	if retry_count >= max_retries:
		return False
	due = ensure_utc(next_retry_at)
	if due is None:
		return True
	return _now(now) >= due


def cache_key(user_id: str, storage_path: str) -> str:
	return f"{user_id}:{storage_path}"
