from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from college_attendance.config import settings
from college_attendance.errors import ValidationFailed


APP_ZONEINFO = ZoneInfo(settings.app_timezone or 'Asia/Kolkata')


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def naive_now(self) -> datetime:
        # Rows are stored as naive local timestamps.
        return self.now().replace(tzinfo=None)


def parse_day(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or '').strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValidationFailed(f'Invalid date: {value!r}. Expected YYYY-MM-DD', field='date') from exc


def display_day(value: date) -> str:
    return value.strftime('%d/%m/%Y')


default_time_provider = TimeProvider()
