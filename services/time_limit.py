"""Server-side deadline authority for timed attempts.

The countdown a client renders is advisory. Whether an attempt still accepts
answers is decided here, against the deadline stored on the attempt at the
moment it was started.
"""
from datetime import datetime, timedelta
from typing import Optional

from core.exceptions import DeadlineExceeded
from models.base import utcnow


def compute_deadline(started_at: datetime, time_limit_minutes: Optional[int]) -> Optional[datetime]:
    """Return ``started_at + time_limit_minutes`` or ``None`` for untimed quizzes."""
    if time_limit_minutes is None:
        return None
    return started_at + timedelta(minutes=time_limit_minutes)


def is_expired(deadline: Optional[datetime], now: datetime) -> bool:
    return deadline is not None and now >= deadline


def seconds_remaining(deadline: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole seconds left before the deadline, floored at zero. Display only."""
    if deadline is None:
        return None
    return max(0, int((deadline - now).total_seconds()))


def ensure_open(deadline: Optional[datetime], now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    if is_expired(deadline, now):
        raise DeadlineExceeded(f"Time limit ended at {deadline.isoformat()}")


__all__ = ["compute_deadline", "is_expired", "seconds_remaining", "ensure_open", "utcnow"]
