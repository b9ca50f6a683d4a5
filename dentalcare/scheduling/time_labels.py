from typing import NamedTuple

from dentalcare.scheduling.local_date import is_weekend

HEADER_START_MINUTES = 9 * 60
HEADER_END_MINUTES = 21 * 60

WEEKDAY_OPEN = '09:00'
WEEKDAY_CLOSE = '21:00'
WEEKEND_OPEN = '10:00'
WEEKEND_CLOSE = '19:00'


class ClinicWindow(NamedTuple):
    start: str
    end: str


def format_minutes(total_minutes: int) -> str:
    return f'{total_minutes // 60:02d}:{total_minutes % 60:02d}'


def grid_header_labels(slot_minutes: int = 30) -> list[str]:
    """Header labels shared by every day, 09:00 through 21:00 inclusive."""
    if slot_minutes <= 0:
        raise ValueError('slot_minutes must be a positive number of minutes.')

    return [
        format_minutes(minutes)
        for minutes in range(HEADER_START_MINUTES, HEADER_END_MINUTES + 1, slot_minutes)
    ]


def clinic_window(date_key: str) -> ClinicWindow:
    if is_weekend(date_key):
        return ClinicWindow(WEEKEND_OPEN, WEEKEND_CLOSE)
    return ClinicWindow(WEEKDAY_OPEN, WEEKDAY_CLOSE)


def is_within_range(time: str, start: str, end: str) -> bool:
    # Labels are zero-padded, so string order is time order.
    return start <= time < end
