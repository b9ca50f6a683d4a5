"""Local-calendar helpers for the scheduling grid.

Date keys are ``YYYY-MM-DD`` strings and times of day are ``HH:MM`` strings,
both read as wall-clock values in the clinic's time zone. Malformed input never
raises here; callers get ``None``, an empty range or a zeroed time instead.
"""

from datetime import date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

from dentalcare.core import config

# Monday .. Sunday, as printed in the grid header.
WEEKDAY_LABELS_MN = ('Да', 'Мя', 'Лх', 'Пү', 'Ба', 'Бя', 'Ня')


def clinic_zone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or config.CLINIC_TIMEZONE)


def parse_date_key(value: str | None) -> tuple[int, int, int] | None:
    parts = str(value or '').strip().split('-')
    if len(parts) != 3:
        return None

    try:
        year, month, day = (int(part) for part in parts)
        date(year, month, day)
    except ValueError:
        return None

    return year, month, day


def _to_date(date_key: str | None) -> date | None:
    parsed = parse_date_key(date_key)
    if parsed is None:
        return None
    return date(*parsed)


def format_date_key(value: date) -> str:
    return value.strftime('%Y-%m-%d')


def is_weekend(date_key: str | None) -> bool:
    day = _to_date(date_key)
    if day is None:
        return False
    return day.weekday() >= 5


class DateKeyRange:
    """Inclusive run of date keys; can be iterated any number of times."""

    def __init__(self, first: date | None, last: date | None):
        if first is None or last is None or last < first:
            self._first = None
            self._days = 0
        else:
            self._first = first
            self._days = (last - first).days + 1

    def __iter__(self):
        for offset in range(self._days):
            yield format_date_key(self._first + timedelta(days=offset))

    def __len__(self) -> int:
        return self._days

    def __bool__(self) -> bool:
        return self._days > 0


def date_range_inclusive(date_from: str | None, date_to: str | None) -> DateKeyRange:
    return DateKeyRange(_to_date(date_from), _to_date(date_to))


def _parse_time_of_day(value: str | None) -> tuple[int, int]:
    parts = str(value or '').split(':')

    def _component(index: int) -> int:
        try:
            return int(parts[index])
        except (IndexError, ValueError):
            return 0

    return _component(0), _component(1)


def to_local_instant(date_key: str | None, time_of_day: str | None, tz: tzinfo | None = None) -> datetime:
    zone = tz or clinic_zone()
    day = _to_date(date_key) or datetime.now(zone).date()
    hour, minute = _parse_time_of_day(time_of_day)

    try:
        return datetime(day.year, day.month, day.day, hour, minute, tzinfo=zone)
    except ValueError:
        # Out-of-range components such as "25:70" are treated like a missing time.
        return datetime(day.year, day.month, day.day, tzinfo=zone)


def add_minutes(instant: datetime, minutes: int) -> datetime:
    return instant + timedelta(minutes=minutes)


def weekday_label(date_key: str | None) -> str:
    day = _to_date(date_key)
    if day is None:
        return ''
    return WEEKDAY_LABELS_MN[day.weekday()]
