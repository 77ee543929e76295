import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from mealimport import db
from mealimport.errors import AiUsageLimitError, SubscriptionRequiredError
from mealimport.models import AiUsage

IMPORT_VIDEO_FEATURE = "ai_import_video_meal"

FEATURE_LIMIT_KEYS = {
    IMPORT_VIDEO_FEATURE: ("AI_IMPORT_VIDEO_MONTHLY_LIMIT", 20),
}


@dataclass(frozen=True)
class UsagePeriod:
    key: str
    starts_at: datetime
    ends_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def require_pro_subscription(user, feature: str, now: datetime | None = None) -> None:
    if user is None:
        raise SubscriptionRequiredError(feature)
    if user.pro_override:
        return
    # Stored timestamps are naive UTC.
    current = (now or _utcnow()).astimezone(timezone.utc).replace(tzinfo=None)
    if user.pro_expires_at is None or user.pro_expires_at <= current:
        raise SubscriptionRequiredError(feature)


def current_usage_period(now: datetime | None = None) -> UsagePeriod:
    current = (now or _utcnow()).astimezone(timezone.utc)
    starts_at = datetime(current.year, current.month, 1, tzinfo=timezone.utc)
    if current.month == 12:
        ends_at = datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        ends_at = datetime(current.year, current.month + 1, 1, tzinfo=timezone.utc)
    return UsagePeriod(key=f"{current.year}-{current.month:02d}", starts_at=starts_at, ends_at=ends_at)


def monthly_limit(feature: str, config) -> int:
    key, default = FEATURE_LIMIT_KEYS.get(feature, (None, 0))
    raw = config.get(key, default) if key else default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value >= 0 else default


def consume_ai_usage(user_id: int, feature: str, limit: int, now: datetime | None = None) -> dict:
    period = current_usage_period(now)
    if limit <= 0:
        raise AiUsageLimitError(feature, limit, 0, period)

    scope = AiUsage.query.filter_by(user_id=user_id, feature=feature, period=period.key)
    updated = scope.filter(AiUsage.used < limit).update(
        {AiUsage.used: AiUsage.used + 1, AiUsage.updated_at: datetime.utcnow()},
        synchronize_session=False,
    )
    if updated:
        db.session.commit()
        return {"used": scope.first().used, "limit": limit, "period": period}

    existing = scope.first()
    if existing is not None:
        used = existing.used
        db.session.rollback()
        raise AiUsageLimitError(feature, limit, used, period)

    db.session.add(AiUsage(user_id=user_id, feature=feature, period=period.key, used=1))
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent request created the row first.
        db.session.rollback()
        return consume_ai_usage(user_id, feature, limit, now=now)
    return {"used": 1, "limit": limit, "period": period}


class RateLimiter:
    """Fixed-window request counter keyed by user."""

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: dict = {}
        self._next_sweep = 0.0
        self._lock = threading.Lock()

    def hit(self, key, now: float | None = None) -> int | None:
        """Count a request; return seconds to wait when over the limit."""
        current = self.clock() if now is None else now
        with self._lock:
            if current >= self._next_sweep:
                self._sweep(current)
            reset_at, count = self._windows.get(key, (0.0, 0))
            if reset_at <= current:
                self._windows[key] = (current + self.window_seconds, 1)
                return None
            if count >= self.max_requests:
                return max(1, math.ceil(reset_at - current))
            self._windows[key] = (reset_at, count + 1)
            return None

    def _sweep(self, current: float) -> None:
        # Expired windows carry no state.
        self._windows = {key: window for key, window in self._windows.items() if window[0] > current}
        self._next_sweep = current + self.window_seconds

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._next_sweep = 0.0
