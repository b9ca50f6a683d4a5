"""Follow-up availability grid for one doctor.

The grid has one column per calendar day and one row per header label. Each
cell is ``off`` (no schedule, outside clinic hours or outside every working
window), ``booked`` (at least ``capacity_per_slot`` live appointments overlap
the cell) or ``available``.
"""

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from dentalcare.scheduling.local_date import (
    add_minutes,
    clinic_zone,
    date_range_inclusive,
    to_local_instant,
    weekday_label,
)
from dentalcare.scheduling.time_labels import (
    ClinicWindow,
    clinic_window as default_clinic_window,
    grid_header_labels,
    is_within_range,
)

logger = logging.getLogger(__name__)

DEFAULT_SLOT_MINUTES = 30
DEFAULT_CAPACITY_PER_SLOT = 2
CANCELLED_STATUS = 'cancelled'

SlotStatus = Literal['available', 'booked', 'off']


class WorkingWindow(BaseModel):
    id: int | None = None
    doctor_id: int
    branch_id: int
    date: str
    start_time: str
    end_time: str
    note: str | None = None


class AppointmentRecord(BaseModel):
    id: int
    scheduled_at: str | datetime | None = None
    end_at: str | datetime | None = None
    status: str = 'booked'
    doctor_id: int | None = None
    branch_id: int | None = None
    patient_label: str | None = None
    notes: str | None = None


class Slot(BaseModel):
    start: str
    end: str
    status: SlotStatus
    appointment_ids: list[int] | None = None


class DayColumn(BaseModel):
    date: str
    day_label: str
    has_schedule: bool
    slots: list[Slot]


class Availability(BaseModel):
    time_labels: list[str]
    days: list[DayColumn]


@dataclass(frozen=True)
class NormalizedAppointment:
    id: int
    start: datetime
    end: datetime


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and end_a > start_b


def to_iso_utc(instant: datetime) -> str:
    return instant.astimezone(timezone.utc).isoformat(timespec='seconds').replace('+00:00', 'Z')


def parse_instant(value: str | datetime | None, tz: tzinfo) -> datetime | None:
    """Parse an ISO-8601 value; naive values are wall-clock time in ``tz``."""
    if value is None:
        return None

    if isinstance(value, datetime):
        instant = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            instant = datetime.fromisoformat(text)
        except ValueError:
            return None

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=tz)
    return instant


def coerce_model(model: type[BaseModel], item: Any) -> BaseModel:
    if isinstance(item, model):
        return item
    if isinstance(item, Mapping):
        return model.model_validate(dict(item))
    return model.model_validate(item, from_attributes=True)


def coerce_models(model: type[BaseModel], items: Iterable[Any] | None) -> Iterator[BaseModel]:
    """Yield each item as ``model``, skipping ``None`` and rows that fail validation."""
    for item in items or []:
        if item is None:
            continue
        try:
            yield coerce_model(model, item)
        except ValidationError as exc:
            logger.debug('Skipping malformed %s row: %s', model.__name__, exc)


def is_live_status(status: str | None) -> bool:
    return (status or '').strip().lower() != CANCELLED_STATUS


def normalize_appointments(
    appointments: Iterable[AppointmentRecord | Mapping[str, Any]] | None,
    slot_minutes: int,
    tz: tzinfo,
) -> list[NormalizedAppointment]:
    """Drop cancelled or unparseable appointments and resolve each end time.

    A missing, unparseable or non-increasing ``end_at`` is replaced with
    ``start + slot_minutes``. Input order is preserved.
    """
    normalized: list[NormalizedAppointment] = []

    for appointment in coerce_models(AppointmentRecord, appointments):
        if not is_live_status(appointment.status):
            continue

        start = parse_instant(appointment.scheduled_at, tz)
        if start is None:
            continue

        end = parse_instant(appointment.end_at, tz)
        if end is None or end <= start:
            end = start + timedelta(minutes=slot_minutes)
        if end <= start:
            continue

        normalized.append(NormalizedAppointment(id=appointment.id, start=start, end=end))

    return normalized


def group_windows_by_date(
    working_windows: Iterable[WorkingWindow | Mapping[str, Any]] | None,
) -> dict[str, list[WorkingWindow]]:
    windows_by_date: dict[str, list[WorkingWindow]] = {}
    for window in coerce_models(WorkingWindow, working_windows):
        if not window.date:
            continue
        windows_by_date.setdefault(window.date, []).append(window)
    return windows_by_date


def build_follow_up_availability(
    date_from: str,
    date_to: str,
    working_windows: Iterable[WorkingWindow | Mapping[str, Any]] | None,
    appointments: Iterable[AppointmentRecord | Mapping[str, Any]] | None,
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
    capacity_per_slot: int = DEFAULT_CAPACITY_PER_SLOT,
    clinic_window: Callable[[str], ClinicWindow] = default_clinic_window,
    tz: tzinfo | None = None,
) -> Availability:
    zone = tz or clinic_zone()
    time_labels = grid_header_labels(slot_minutes)
    windows_by_date = group_windows_by_date(working_windows)
    live_appointments = normalize_appointments(appointments, slot_minutes, zone)

    days: list[DayColumn] = []
    for date_key in date_range_inclusive(date_from, date_to):
        day_windows = windows_by_date.get(date_key, [])
        day_clinic_window = clinic_window(date_key)
        slots: list[Slot] = []

        for label in time_labels:
            slot_start = to_local_instant(date_key, label, zone)
            slot_end = add_minutes(slot_start, slot_minutes)
            start_iso = to_iso_utc(slot_start)
            end_iso = to_iso_utc(slot_end)

            if not day_windows:
                slots.append(Slot(start=start_iso, end=end_iso, status='off'))
                continue

            if not is_within_range(label, day_clinic_window.start, day_clinic_window.end):
                slots.append(Slot(start=start_iso, end=end_iso, status='off'))
                continue

            if not any(is_within_range(label, window.start_time, window.end_time) for window in day_windows):
                slots.append(Slot(start=start_iso, end=end_iso, status='off'))
                continue

            overlapping_ids = [
                appointment.id
                for appointment in live_appointments
                if overlaps(appointment.start, appointment.end, slot_start, slot_end)
            ]

            if len(overlapping_ids) >= capacity_per_slot:
                slots.append(
                    Slot(
                        start=start_iso,
                        end=end_iso,
                        status='booked',
                        appointment_ids=overlapping_ids[:capacity_per_slot],
                    )
                )
            else:
                slots.append(Slot(start=start_iso, end=end_iso, status='available'))

        days.append(
            DayColumn(
                date=date_key,
                day_label=weekday_label(date_key),
                has_schedule=bool(day_windows),
                slots=slots,
            )
        )

    return Availability(time_labels=time_labels, days=days)
