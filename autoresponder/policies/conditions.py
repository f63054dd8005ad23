"""
Condition gate: time restrictions and per-rule rate limiting.

Both checks are pure functions of (conditions, now, send history). The send
history is derived from the rule's own analytics block: the daily counter
only counts when its date matches today in the configured timezone, and the
cooldown runs from the last successful response.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from autoresponder.clock import localize
from autoresponder.config import Config
from autoresponder.io_models import Conditions, HourRange, RuleAnalytics, TimeRestrictions


@dataclass
class SendHistory:
    """What the rate limiter needs to know about a rule's past responses."""
    responses_today: int = 0
    last_response_at: Optional[datetime] = None


def day_key(now: datetime, timezone: Optional[str] = None) -> str:
    """ISO date used to bucket the daily response counter."""
    return localize(now, timezone or Config.TIMEZONE).date().isoformat()


def send_history(analytics: RuleAnalytics, now: datetime, timezone: Optional[str] = None) -> SendHistory:
    today = day_key(now, timezone)
    responses_today = analytics.responses_today if analytics.responses_today_date == today else 0
    return SendHistory(responses_today=responses_today, last_response_at=analytics.last_responded_at)


def js_weekday(moment: datetime) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def hour_in_range(hour: int, window: HourRange) -> bool:
    if window.start <= window.end:
        return window.start <= hour < window.end
    # Overnight window, e.g. 22 -> 6.
    return hour >= window.start or hour < window.end


def time_denial(restrictions: Optional[TimeRestrictions], now: datetime) -> Optional[str]:
    if restrictions is None:
        return None
    local_now = localize(now, restrictions.timezone or Config.TIMEZONE)
    if restrictions.days_of_week and js_weekday(local_now) not in restrictions.days_of_week:
        return f"day {js_weekday(local_now)} is outside daysOfWeek {sorted(restrictions.days_of_week)}"
    window = restrictions.hours_of_day
    if window is not None and not hour_in_range(local_now.hour, window):
        return f"hour {local_now.hour} is outside hoursOfDay {window.start}-{window.end}"
    return None


def rate_denial(conditions: Conditions, now: datetime, history: SendHistory) -> Optional[str]:
    limits = conditions.rate_limiting
    if limits is None:
        return None
    cap = limits.max_responses_per_day
    if cap is not None and history.responses_today >= cap:
        return f"daily cap reached ({history.responses_today}/{cap})"
    cooldown = limits.cooldown_hours
    if cooldown and history.last_response_at is not None:
        elapsed = now - history.last_response_at
        if elapsed < timedelta(hours=cooldown):
            return f"cooldown active ({elapsed.total_seconds() / 3600:.2f}h of {cooldown}h elapsed)"
    return None


def explain(conditions: Conditions, now: datetime, history: Optional[SendHistory] = None) -> Optional[str]:
    """Return why the gate denies, or None when it allows. Rate limits are checked first."""
    if history is not None:
        reason = rate_denial(conditions, now, history)
        if reason:
            return f"rate limit: {reason}"
    reason = time_denial(conditions.time_restrictions, now)
    if reason:
        return f"time restriction: {reason}"
    return None


def allow(conditions: Conditions, now: datetime, history: Optional[SendHistory] = None) -> bool:
    return explain(conditions, now, history) is None
