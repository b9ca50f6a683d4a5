"""Interactive follow-up booking grid.

Keeps the last confirmed availability snapshot for one doctor together with an
overlay of bookings that were submitted but not yet confirmed. The grid never
recomputes slot status itself; it only rebuilds from the two data feeds and
flips single cells while a booking is in flight.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import tzinfo

from dentalcare.scheduling.follow_up_availability import (
    DEFAULT_CAPACITY_PER_SLOT,
    DEFAULT_SLOT_MINUTES,
    AppointmentRecord,
    Availability,
    Slot,
    WorkingWindow,
    build_follow_up_availability,
    coerce_models,
)
from dentalcare.scheduling.time_labels import ClinicWindow, clinic_window as default_clinic_window

logger = logging.getLogger(__name__)

LOAD_ERROR_MESSAGE = 'Эмчийн цагийн хуваарь ачаалахад алдаа гарлаа.'
BOOKING_ERROR_MESSAGE = 'Цаг захиалахад алдаа гарлаа. Дахин оролдоно уу.'


@dataclass(frozen=True)
class BookingIntent:
    slot_start_iso: str
    duration_minutes: int


@dataclass(frozen=True)
class SelectedSlot:
    date: str
    start: str


ScheduleLoader = Callable[[str, str], Awaitable[Sequence[WorkingWindow]]]
AppointmentLoader = Callable[[str, str], Awaitable[Sequence[AppointmentRecord]]]
BookingSubmitter = Callable[[BookingIntent], Awaitable[object]]


class FollowUpBookingGrid:
    def __init__(
        self,
        load_schedules: ScheduleLoader,
        load_appointments: AppointmentLoader,
        submit_booking: BookingSubmitter,
        *,
        slot_minutes: int = DEFAULT_SLOT_MINUTES,
        capacity_per_slot: int = DEFAULT_CAPACITY_PER_SLOT,
        clinic_window: Callable[[str], ClinicWindow] = default_clinic_window,
        tz: tzinfo | None = None,
    ):
        self._load_schedules = load_schedules
        self._load_appointments = load_appointments
        self._submit_booking = submit_booking
        self.slot_minutes = slot_minutes
        self.capacity_per_slot = capacity_per_slot
        self._clinic_window = clinic_window
        self._tz = tz

        self._generation = 0
        self._snapshot: Availability | None = None
        self._pending: set[tuple[str, str]] = set()
        self._appointments_by_id: dict[int, AppointmentRecord] = {}
        self._range: tuple[str, str] | None = None

        self.selected_slot: SelectedSlot | None = None
        self.error: str | None = None
        self.loading = False

    @property
    def availability(self) -> Availability | None:
        if self._snapshot is None:
            return None

        view = self._snapshot.model_copy(deep=True)
        for day in view.days:
            for slot in day.slots:
                if (day.date, slot.start) in self._pending:
                    slot.status = 'booked'
        return view

    async def load(self, date_from: str, date_to: str) -> bool:
        """Fetch both feeds and rebuild the grid.

        Returns ``False`` when the fetch failed or a newer ``load`` started
        before this one finished; in both cases the current grid is kept.
        """
        self._generation += 1
        generation = self._generation
        self.loading = True

        try:
            schedules, appointments = await asyncio.gather(
                self._load_schedules(date_from, date_to),
                self._load_appointments(date_from, date_to),
            )
        except Exception:
            logger.exception('Failed to load follow-up grid for %s..%s', date_from, date_to)
            if generation == self._generation:
                self.error = LOAD_ERROR_MESSAGE
                self.loading = False
            return False

        if generation != self._generation:
            logger.debug('Discarding superseded follow-up grid load for %s..%s', date_from, date_to)
            return False

        try:
            snapshot = build_follow_up_availability(
                date_from=date_from,
                date_to=date_to,
                working_windows=schedules,
                appointments=appointments,
                slot_minutes=self.slot_minutes,
                capacity_per_slot=self.capacity_per_slot,
                clinic_window=self._clinic_window,
                tz=self._tz,
            )
            records = list(coerce_models(AppointmentRecord, appointments))
        except Exception:
            logger.exception('Failed to build follow-up grid for %s..%s', date_from, date_to)
            self.error = LOAD_ERROR_MESSAGE
            self.loading = False
            return False

        # In-flight bookings keep their overlay until their own submission resolves.
        self._snapshot = snapshot
        self._appointments_by_id = {record.id: record for record in records}
        self._range = (date_from, date_to)
        self.selected_slot = None
        self.error = None
        self.loading = False
        return True

    def find_slot(self, date: str, start: str) -> Slot | None:
        view = self.availability
        if view is None:
            return None
        for day in view.days:
            if day.date != date:
                continue
            for slot in day.slots:
                if slot.start == start:
                    return slot
        return None

    def select_slot(self, date: str, start: str) -> bool:
        slot = self.find_slot(date, start)
        if slot is None or slot.status != 'available':
            return False

        self.selected_slot = SelectedSlot(date=date, start=start)
        return True

    def cancel_selection(self) -> None:
        self.selected_slot = None

    async def confirm_duration(self, duration_minutes: int) -> BookingIntent | None:
        if self.selected_slot is None:
            return None
        if duration_minutes <= 0:
            raise ValueError('duration_minutes must be positive.')

        selected = self.selected_slot
        key = (selected.date, selected.start)
        intent = BookingIntent(slot_start_iso=selected.start, duration_minutes=duration_minutes)

        self.selected_slot = None
        self._pending.add(key)

        try:
            try:
                await self._submit_booking(intent)
            except Exception:
                logger.exception('Follow-up booking failed for %s', selected.start)
                self.error = BOOKING_ERROR_MESSAGE
                return None

            self.error = None
            if self._range is not None:
                await self.load(*self._range)
            return intent
        finally:
            self._pending.discard(key)

    def open_booked_slot(self, date: str, start: str) -> list[AppointmentRecord]:
        slot = self.find_slot(date, start)
        if slot is None or slot.status != 'booked':
            return []

        return [
            self._appointments_by_id[appointment_id]
            for appointment_id in slot.appointment_ids or []
            if appointment_id in self._appointments_by_id
        ]
