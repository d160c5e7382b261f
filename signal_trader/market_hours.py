"""Stock trading-session calendar."""

from __future__ import annotations

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

from signal_trader.config import SessionConfig


class TradingSession:
    """Answers whether the stock market is open at a given instant.

    Windows and weekdays are interpreted in the session timezone; naive
    datetimes are taken as UTC.
    """

    def __init__(self, config: SessionConfig) -> None:
        self.config = config
        self._tz = ZoneInfo(config.timezone)

    def is_open(self, now: datetime) -> bool:
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        local = now.astimezone(self._tz)
        if local.weekday() not in self.config.weekdays:
            return False
        moment = local.time().replace(tzinfo=None)
        return any(start <= moment <= end for start, end in self.config.windows)

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        start = datetime.combine(day, datetime.min.time(), tzinfo=self._tz)
        end = datetime.combine(day, datetime.max.time(), tzinfo=self._tz)
        return start.astimezone(UTC), end.astimezone(UTC)
