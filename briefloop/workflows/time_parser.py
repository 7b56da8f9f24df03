"""
Scheduling reply parser.

``parse`` is total: whatever the contributor types, it returns a future
timestamp and an intent tag. Unrecognized text falls back to +30 minutes and
an internal failure falls back to +5 minutes, so a session is never left
unscheduled.
"""
import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional

from briefloop.specs.common.enums import ScheduleIntent

IMMEDIATE_DELAY = timedelta(minutes=2)
SHORT_DELAY = timedelta(minutes=30)
LONG_DELAY = timedelta(hours=1)
FALLBACK_DELAY = timedelta(minutes=30)
ERROR_FALLBACK_DELAY = timedelta(minutes=5)

_CLOCK_TIME = re.compile(r"(?<!\d)(\d{1,2})\s*([:h])\s*(\d{2})(?:\s*([ap])\.?\s*m\.?)?(?![\d])")
_BARE_HOUR = re.compile(r"(?<!\d)(\d{1,2})\s*([ap])\.?\s*m\b")

_NOW_EN = re.compile(r"\b(now|asap|right away|immediately)\b")
_NOW_FR = re.compile(r"\b(maintenant|tout de suite|immédiatement)\b")
_HALF_HOUR_EN = re.compile(r"\b(30|thirty|half an hour|half hour)\b")
_HALF_HOUR_FR = re.compile(r"\b(trente|demi-heure|demi heure)\b")
_HOUR_EN = re.compile(r"\bhours?\b")
_HOUR_FR = re.compile(r"\bheures?\b")


@dataclass(frozen=True)
class ScheduleParse:
    scheduledTime: datetime
    intent: ScheduleIntent
    label: str
    # Set when the reply was written in a recognizable locale other than the default.
    locale: Optional[str] = None


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _clock_time(text: str, now: datetime, tz: tzinfo) -> Optional[ScheduleParse]:
    match = _CLOCK_TIME.search(text)
    if match:
        hours, separator, minutes, meridiem = int(match.group(1)), match.group(2), int(match.group(3)), match.group(4)
    else:
        match = _BARE_HOUR.search(text)
        if not match:
            return None
        hours, separator, minutes, meridiem = int(match.group(1)), "", 0, match.group(2)

    if meridiem:
        if not 1 <= hours <= 12:
            return None
        if meridiem == "p" and hours != 12:
            hours += 12
        elif meridiem == "a" and hours == 12:
            hours = 0
    if hours > 23 or minutes > 59:
        return None

    local_now = now.astimezone(tz)
    candidate = local_now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    if candidate <= local_now:
        candidate = candidate + timedelta(days=1)
    return ScheduleParse(
        scheduledTime=candidate.astimezone(timezone.utc),
        intent=ScheduleIntent.SPECIFIC_TIME,
        label=f"{hours:02d}:{minutes:02d}",
        locale="fr" if separator == "h" else None,
    )


def _parse(text: str, now: datetime, tz: tzinfo) -> ScheduleParse:
    cleaned = unicodedata.normalize("NFKC", text or "").strip().lower()

    if cleaned == "1" or _NOW_EN.search(cleaned) or _NOW_FR.search(cleaned):
        return ScheduleParse(now + IMMEDIATE_DELAY, ScheduleIntent.IMMEDIATE, "now",
                             "fr" if _NOW_FR.search(cleaned) else None)

    # Explicit times win over the "30" synonym so that "15:30" is a clock time.
    explicit = _clock_time(cleaned, now, tz)
    if explicit is not None:
        return explicit

    if cleaned == "2" or _HALF_HOUR_EN.search(cleaned) or _HALF_HOUR_FR.search(cleaned):
        return ScheduleParse(now + SHORT_DELAY, ScheduleIntent.DELAY_30MIN, "30 minutes",
                             "fr" if _HALF_HOUR_FR.search(cleaned) else None)

    if cleaned == "3" or _HOUR_EN.search(cleaned) or _HOUR_FR.search(cleaned):
        return ScheduleParse(now + LONG_DELAY, ScheduleIntent.DELAY_1HOUR, "1 hour",
                             "fr" if _HOUR_FR.search(cleaned) else None)

    if cleaned == "4":
        return ScheduleParse(now + FALLBACK_DELAY, ScheduleIntent.TIME_REQUESTED, "time requested")

    return ScheduleParse(now + FALLBACK_DELAY, ScheduleIntent.FALLBACK, "default 30 minutes")


def parse(text: Optional[str], now: datetime, tz: Optional[tzinfo] = None) -> ScheduleParse:
    """Turn a scheduling reply into a future call time.

    Explicit clock times are read in ``tz`` (UTC when omitted) and roll over to
    the next day when already past. The returned time is always UTC.
    """
    now = _as_utc(now)
    try:
        return _parse(text or "", now, tz or timezone.utc)
    except Exception:
        return ScheduleParse(now + ERROR_FALLBACK_DELAY, ScheduleIntent.ERROR_FALLBACK, "error - default 5 minutes")
