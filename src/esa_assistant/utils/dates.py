"""Timestamp formatting for prompts and chat annotations."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Tokyo"


def format_local(moment: datetime, tz: str = DEFAULT_TIMEZONE) -> str:
    """Render *moment* in the display timezone, e.g. ``2025/01/02 03:04:05``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz)).strftime("%Y/%m/%d %H:%M:%S")


def from_slack_ts(ts: str) -> datetime:
    """Convert a Slack message ``ts`` (``"1700000000.123456"``) to an aware datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
