import logging
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dentalcare.core import config
from dentalcare.database import (
    SessionLocal,
    booking_lock,
    ensure_follow_up_schema,
)
from dentalcare.models.appointment import Appointment
from dentalcare.models.doctor_schedule import DoctorSchedule
from dentalcare.scheduling.appointment_labels import format_grid_short_label
from dentalcare.scheduling.capacity import exceeds_capacity
from dentalcare.scheduling.follow_up_availability import (
    AppointmentRecord,
    Availability,
    WorkingWindow,
    build_follow_up_availability,
    is_live_status,
    to_iso_utc,
)
from dentalcare.scheduling.local_date import clinic_zone, format_date_key, parse_date_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=['follow-up'])

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'
MAX_APPOINTMENT_NOTES_LENGTH = 600
STATUS_ALIASES = {
    'booked': 'booked',
    'pending': 'booked',
    'confirmed': 'confirmed',
    'online': 'online',
    'ongoing': 'ongoing',
    'imaging': 'imaging',
    'ready_to_pay': 'ready_to_pay',
    'readytopay': 'ready_to_pay',
    'ready-to-pay': 'ready_to_pay',
    'partial_paid': 'partial_paid',
    'partialpaid': 'partial_paid',
    'partial-paid': 'partial_paid',
    'completed': 'completed',
    'cancelled': 'cancelled',
    'canceled': 'cancelled',
    'no_show': 'no_show',
    'noshow': 'no_show',
    'no-show': 'no_show',
    'no show': 'no_show',
    'other': 'other',
    'others': 'other',
}


class CreateFollowUpAppointmentRequest(BaseModel):
    patient_id: int
    doctor_id: int
    branch_id: int
    scheduled_at: datetime
    duration_minutes: int | None = None
    end_at: datetime | None = None
    status: str = 'booked'
    notes: str | None = None
    source: str | None = None
    source_encounter_id: int | None = None

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration_minutes(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError('Duration must be a positive number of minutes.')
        return value

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = STATUS_ALIASES.get(value.strip().lower())
        if normalized is None:
            raise ValueError('Invalid appointment status.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class FollowUpAppointmentResponse(BaseModel):
    id: int
    patient_id: int | None = None
    doctor_id: int | None = None
    branch_id: int | None = None
    scheduled_at: str
    end_at: str | None = None
    status: str
    notes: str | None = None
    source: str | None = None
    source_encounter_id: int | None = None
    patient_label: str | None = None


def ensure_database_ready() -> None:
    try:
        ensure_follow_up_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def to_naive_utc(value: datetime, zone: ZoneInfo) -> datetime:
    """Naive timestamps from clients are clinic wall-clock time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_date_range(date_from: str, date_to: str) -> tuple[date, date] | None:
    """Parsed bounds, ``None`` for an empty range, 400 for an oversized one."""
    parsed_from = parse_date_key(date_from)
    parsed_to = parse_date_key(date_to)
    if parsed_from is None or parsed_to is None:
        return None

    first, last = date(*parsed_from), date(*parsed_to)
    if last < first:
        return None

    if (last - first).days + 1 > config.FOLLOW_UP_MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Date range can cover at most {config.FOLLOW_UP_MAX_RANGE_DAYS} days.',
        )

    return first, last


def effective_end_at(appointment: Appointment, default_minutes: int) -> datetime:
    """Stored ``end_at``, or ``default_minutes`` after the start when missing or not after it."""
    if appointment.end_at is None or appointment.end_at <= appointment.scheduled_at:
        return appointment.scheduled_at + timedelta(minutes=default_minutes)
    return appointment.end_at


def local_day_bounds_utc(first: date, last: date, zone: ZoneInfo) -> tuple[datetime, datetime]:
    range_start = datetime(first.year, first.month, first.day, tzinfo=zone)
    next_day = last + timedelta(days=1)
    range_end = datetime(next_day.year, next_day.month, next_day.day, tzinfo=zone)
    return to_naive_utc(range_start, zone), to_naive_utc(range_end, zone)


def schedule_to_window(schedule: DoctorSchedule) -> WorkingWindow:
    return WorkingWindow(
        id=schedule.id,
        doctor_id=schedule.doctor_id,
        branch_id=schedule.branch_id,
        date=format_date_key(schedule.date),
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        note=schedule.note,
    )


def appointment_to_response(appointment: Appointment) -> FollowUpAppointmentResponse:
    end_at = from_naive_utc(appointment.end_at)
    return FollowUpAppointmentResponse(
        id=appointment.id,
        patient_id=appointment.patient_id,
        doctor_id=appointment.doctor_id,
        branch_id=appointment.branch_id,
        scheduled_at=to_iso_utc(from_naive_utc(appointment.scheduled_at)),
        end_at=to_iso_utc(end_at) if end_at else None,
        status=appointment.status or 'booked',
        notes=appointment.notes,
        source=appointment.source,
        source_encounter_id=appointment.source_encounter_id,
        patient_label=format_grid_short_label(appointment) or None,
    )


def appointment_to_record(appointment: Appointment) -> AppointmentRecord:
    response = appointment_to_response(appointment)
    return AppointmentRecord(
        id=response.id,
        scheduled_at=response.scheduled_at,
        end_at=response.end_at,
        status=response.status,
        doctor_id=response.doctor_id,
        branch_id=response.branch_id,
        patient_label=response.patient_label,
        notes=response.notes,
    )


def query_doctor_schedules(
    db: Session,
    doctor_id: int,
    first: date,
    last: date,
    branch_id: int | None = None,
) -> list[DoctorSchedule]:
    query = db.query(DoctorSchedule).filter(
        DoctorSchedule.doctor_id == doctor_id,
        DoctorSchedule.date >= first,
        DoctorSchedule.date <= last,
    )
    if branch_id is not None:
        query = query.filter(DoctorSchedule.branch_id == branch_id)

    return query.order_by(DoctorSchedule.date.asc(), DoctorSchedule.start_time.asc()).all()


def query_overlapping_appointments(
    db: Session,
    doctor_id: int,
    range_start: datetime,
    range_end: datetime,
    default_minutes: int,
) -> list[Appointment]:
    """Appointments of ``doctor_id`` overlapping ``[range_start, range_end)`` (naive UTC).

    Rows whose ``end_at`` is missing or not after ``scheduled_at`` last ``default_minutes``.
    """
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.scheduled_at < range_end,
        or_(
            and_(
                Appointment.end_at > Appointment.scheduled_at,
                Appointment.end_at > range_start,
            ),
            and_(
                or_(Appointment.end_at.is_(None), Appointment.end_at <= Appointment.scheduled_at),
                Appointment.scheduled_at > range_start - timedelta(minutes=default_minutes),
            ),
        ),
    ).order_by(Appointment.scheduled_at.asc(), Appointment.id.asc()).all()


@router.get('/schedules', response_model=list[WorkingWindow])
def list_doctor_schedules(
    doctor_id: int = Query(...),
    date_from: str = Query(...),
    date_to: str = Query(...),
    branch_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    date_range = resolve_date_range(date_from, date_to)
    if date_range is None:
        return []

    ensure_database_ready()

    try:
        schedules = query_doctor_schedules(db, doctor_id, *date_range, branch_id=branch_id)
        return [schedule_to_window(schedule) for schedule in schedules]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/appointments', response_model=list[FollowUpAppointmentResponse])
def list_doctor_appointments(
    doctor_id: int = Query(...),
    date_from: str = Query(...),
    date_to: str = Query(...),
    db: Session = Depends(get_db),
):
    date_range = resolve_date_range(date_from, date_to)
    if date_range is None:
        return []

    ensure_database_ready()

    try:
        range_start, range_end = local_day_bounds_utc(*date_range, clinic_zone())
        appointments = query_overlapping_appointments(
            db, doctor_id, range_start, range_end, config.FOLLOW_UP_SLOT_MINUTES
        )
        return [appointment_to_response(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/availability', response_model=Availability, response_model_exclude_none=True)
def get_follow_up_availability(
    doctor_id: int = Query(...),
    date_from: str = Query(...),
    date_to: str = Query(...),
    branch_id: int | None = Query(default=None),
    slot_minutes: int = Query(default=config.FOLLOW_UP_SLOT_MINUTES, ge=1, le=240),
    capacity_per_slot: int = Query(default=config.FOLLOW_UP_CAPACITY_PER_SLOT, ge=1),
    db: Session = Depends(get_db),
):
    date_range = resolve_date_range(date_from, date_to)
    if date_range is None:
        return build_follow_up_availability(
            date_from=date_from,
            date_to=date_to,
            working_windows=[],
            appointments=[],
            slot_minutes=slot_minutes,
            capacity_per_slot=capacity_per_slot,
        )

    ensure_database_ready()

    try:
        zone = clinic_zone()
        schedules = query_doctor_schedules(db, doctor_id, *date_range, branch_id=branch_id)
        range_start, range_end = local_day_bounds_utc(*date_range, zone)
        appointments = query_overlapping_appointments(db, doctor_id, range_start, range_end, slot_minutes)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return build_follow_up_availability(
        date_from=date_from,
        date_to=date_to,
        working_windows=[schedule_to_window(schedule) for schedule in schedules],
        appointments=[appointment_to_record(appointment) for appointment in appointments],
        slot_minutes=slot_minutes,
        capacity_per_slot=capacity_per_slot,
        tz=zone,
    )


@router.post('/appointments', response_model=FollowUpAppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_follow_up_appointment(data: CreateFollowUpAppointmentRequest, db: Session = Depends(get_db)):
    zone = clinic_zone()
    default_minutes = config.FOLLOW_UP_SLOT_MINUTES
    scheduled_at = to_naive_utc(data.scheduled_at, zone)

    if data.end_at is not None:
        end_at = to_naive_utc(data.end_at, zone)
        if end_at <= scheduled_at:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='end_at must be later than scheduled_at.',
            )
    else:
        end_at = scheduled_at + timedelta(minutes=data.duration_minutes or default_minutes)

    ensure_database_ready()

    local_day = scheduled_at.replace(tzinfo=timezone.utc).astimezone(zone).date()

    with booking_lock(data.doctor_id, local_day):
        try:
            if is_live_status(data.status):
                existing = query_overlapping_appointments(db, data.doctor_id, scheduled_at, end_at, default_minutes)
                existing_intervals = [
                    (appointment.scheduled_at, effective_end_at(appointment, default_minutes))
                    for appointment in existing
                    if is_live_status(appointment.status)
                ]
                if exceeds_capacity(existing_intervals, (scheduled_at, end_at), config.FOLLOW_UP_CAPACITY_PER_SLOT):
                    logger.info(
                        'Rejected follow-up booking for doctor %s at %s: capacity %s reached',
                        data.doctor_id,
                        scheduled_at,
                        config.FOLLOW_UP_CAPACITY_PER_SLOT,
                    )
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail=(
                            'This time is fully booked for the doctor. At most '
                            f'{config.FOLLOW_UP_CAPACITY_PER_SLOT} appointments may overlap.'
                        ),
                    )

            appointment = Appointment(
                patient_id=data.patient_id,
                doctor_id=data.doctor_id,
                branch_id=data.branch_id,
                scheduled_at=scheduled_at,
                end_at=end_at,
                status=data.status,
                notes=data.notes,
                source=data.source,
                source_encounter_id=data.source_encounter_id,
            )
            db.add(appointment)
            db.commit()
            db.refresh(appointment)

            return appointment_to_response(appointment)
        except SQLAlchemyError as exc:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=DATABASE_UNAVAILABLE_DETAIL,
            ) from exc
