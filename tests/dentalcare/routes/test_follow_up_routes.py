import os
from datetime import date, datetime

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('CLINIC_TIMEZONE', 'Asia/Ulaanbaatar')

from dentalcare.database import Base  # noqa: E402
from dentalcare.models.appointment import Appointment  # noqa: E402
from dentalcare.models.doctor_schedule import DoctorSchedule  # noqa: E402
from dentalcare.models.patient import Patient  # noqa: E402
from dentalcare.routes.follow_up_routes import (  # noqa: E402
    CreateFollowUpAppointmentRequest,
    create_follow_up_appointment,
    get_follow_up_availability,
    list_doctor_appointments,
    list_doctor_schedules,
    resolve_date_range,
)

MONDAY = '2024-06-03'


@pytest.fixture
def clinic_db(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('dentalcare.routes.follow_up_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr('dentalcare.core.config.CLINIC_TIMEZONE', 'Asia/Ulaanbaatar')
    monkeypatch.setattr('dentalcare.core.config.FOLLOW_UP_SLOT_MINUTES', 30)
    monkeypatch.setattr('dentalcare.core.config.FOLLOW_UP_CAPACITY_PER_SLOT', 2)

    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    tables = [Patient.__table__, DoctorSchedule.__table__, Appointment.__table__]
    Base.metadata.create_all(bind=engine, tables=tables)

    db = testing_session_local()
    try:
        db.add(DoctorSchedule(doctor_id=7, branch_id=1, date=date(2024, 6, 3), start_time='09:00', end_time='12:00'))
        db.add(DoctorSchedule(doctor_id=8, branch_id=1, date=date(2024, 6, 3), start_time='14:00', end_time='18:00'))
        db.add(Patient(id=1, name='Бат', ovog='чулуунбаатар', book_number='A-12'))
        db.commit()
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(tables)))


def _add_appointment(db, start_utc: datetime, end_utc: datetime | None = None, status: str = 'booked', doctor_id: int = 7):
    appointment = Appointment(
        patient_id=1,
        doctor_id=doctor_id,
        branch_id=1,
        scheduled_at=start_utc,
        end_at=end_utc,
        status=status,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


def _availability(db, **overrides):
    options = {
        'doctor_id': 7,
        'date_from': MONDAY,
        'date_to': MONDAY,
        'branch_id': None,
        'slot_minutes': 30,
        'capacity_per_slot': 2,
        'db': db,
    }
    options.update(overrides)
    return get_follow_up_availability(**options)


def _slot(availability, label: str):
    return availability.days[0].slots[availability.time_labels.index(label)]


def test_create_request_normalizes_status_and_notes() -> None:
    request = CreateFollowUpAppointmentRequest(
        patient_id=1,
        doctor_id=7,
        branch_id=1,
        scheduled_at=datetime(2024, 6, 3, 9, 0),
        status=' Pending ',
        notes='   ',
    )

    assert request.status == 'booked'
    assert request.notes is None


@pytest.mark.parametrize(
    'overrides',
    [{'status': 'teleported'}, {'duration_minutes': 0}, {'notes': 'x' * 601}],
)
def test_create_request_rejects_invalid_fields(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        CreateFollowUpAppointmentRequest(
            patient_id=1,
            doctor_id=7,
            branch_id=1,
            scheduled_at=datetime(2024, 6, 3, 9, 0),
            **overrides,
        )


def test_resolve_date_range_rejects_oversized_range(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('dentalcare.core.config.FOLLOW_UP_MAX_RANGE_DAYS', 7)

    with pytest.raises(HTTPException) as exception_info:
        resolve_date_range('2024-06-01', '2024-06-08')

    assert exception_info.value.status_code == 400
    assert resolve_date_range('2024-06-01', '2024-06-07') == (date(2024, 6, 1), date(2024, 6, 7))
    assert resolve_date_range('2024-06-08', '2024-06-01') is None
    assert resolve_date_range('junk', '2024-06-01') is None


def test_list_doctor_schedules_returns_working_windows_for_doctor(clinic_db) -> None:
    windows = list_doctor_schedules(doctor_id=7, date_from=MONDAY, date_to='2024-06-09', branch_id=None, db=clinic_db)

    assert [(window.date, window.start_time, window.end_time) for window in windows] == [(MONDAY, '09:00', '12:00')]


def test_list_doctor_schedules_returns_empty_for_invalid_dates(clinic_db) -> None:
    assert list_doctor_schedules(doctor_id=7, date_from='bad', date_to=MONDAY, branch_id=None, db=clinic_db) == []


def test_list_doctor_appointments_includes_patient_label(clinic_db) -> None:
    # 09:30 local in Ulaanbaatar is 01:30 UTC.
    _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30))
    _add_appointment(clinic_db, datetime(2024, 6, 4, 1, 30))

    appointments = list_doctor_appointments(doctor_id=7, date_from=MONDAY, date_to=MONDAY, db=clinic_db)

    assert len(appointments) == 1
    assert appointments[0].scheduled_at == '2024-06-03T01:30:00Z'
    assert appointments[0].end_at is None
    assert appointments[0].patient_label == 'Ч.Бат (A-12)'


def test_availability_marks_slot_booked_at_capacity(clinic_db) -> None:
    first = _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30), datetime(2024, 6, 3, 2, 0))
    availability = _availability(clinic_db)
    assert _slot(availability, '09:30').status == 'available'

    second = _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30))
    availability = _availability(clinic_db)

    assert _slot(availability, '09:30').status == 'booked'
    assert _slot(availability, '09:30').appointment_ids == [first.id, second.id]
    assert _slot(availability, '12:00').status == 'off'


def test_availability_ignores_other_doctors_and_cancelled_visits(clinic_db) -> None:
    _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30), status='cancelled')
    _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30), doctor_id=8)
    _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30))

    assert _slot(_availability(clinic_db), '09:30').status == 'available'


def test_availability_with_reversed_range_has_no_days(clinic_db) -> None:
    availability = _availability(clinic_db, date_from='2024-06-10', date_to='2024-06-08')

    assert availability.days == []


def test_create_follow_up_appointment_stores_utc_and_default_duration(clinic_db) -> None:
    request = CreateFollowUpAppointmentRequest(
        patient_id=1,
        doctor_id=7,
        branch_id=1,
        scheduled_at=datetime(2024, 6, 3, 10, 0),
        source='FOLLOW_UP_ENCOUNTER',
        source_encounter_id=55,
    )

    created = create_follow_up_appointment(request, db=clinic_db)

    assert created.scheduled_at == '2024-06-03T02:00:00Z'
    assert created.end_at == '2024-06-03T02:30:00Z'
    assert created.status == 'booked'
    assert created.patient_label == 'Ч.Бат (A-12)'
    stored = clinic_db.query(Appointment).filter(Appointment.id == created.id).one()
    assert stored.source_encounter_id == 55


def test_create_follow_up_appointment_rejects_end_before_start(clinic_db) -> None:
    request = CreateFollowUpAppointmentRequest(
        patient_id=1,
        doctor_id=7,
        branch_id=1,
        scheduled_at=datetime(2024, 6, 3, 10, 0),
        end_at=datetime(2024, 6, 3, 9, 0),
    )

    with pytest.raises(HTTPException) as exception_info:
        create_follow_up_appointment(request, db=clinic_db)

    assert exception_info.value.status_code == 400


def test_create_follow_up_appointment_rejects_booking_over_capacity(clinic_db) -> None:
    _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30), datetime(2024, 6, 3, 2, 0))
    _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30))

    over_capacity = CreateFollowUpAppointmentRequest(
        patient_id=1,
        doctor_id=7,
        branch_id=1,
        scheduled_at=datetime(2024, 6, 3, 9, 45),
        duration_minutes=30,
    )
    with pytest.raises(HTTPException) as exception_info:
        create_follow_up_appointment(over_capacity, db=clinic_db)

    assert exception_info.value.status_code == 409
    assert clinic_db.query(Appointment).count() == 2

    back_to_back = CreateFollowUpAppointmentRequest(
        patient_id=1,
        doctor_id=7,
        branch_id=1,
        scheduled_at='2024-06-03T10:00:00+08:00',
        duration_minutes=30,
    )
    created = create_follow_up_appointment(back_to_back, db=clinic_db)

    assert created.scheduled_at == '2024-06-03T02:00:00Z'
    assert clinic_db.query(Appointment).count() == 3


def test_cancelled_appointments_free_capacity_for_booking(clinic_db) -> None:
    _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30), status='cancelled')
    _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30))

    request = CreateFollowUpAppointmentRequest(
        patient_id=1,
        doctor_id=7,
        branch_id=1,
        scheduled_at=datetime(2024, 6, 3, 9, 30),
    )

    assert create_follow_up_appointment(request, db=clinic_db).status == 'booked'


def test_stored_end_not_after_start_counts_as_default_duration_when_booking(clinic_db) -> None:
    _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30), datetime(2024, 6, 3, 1, 30))
    _add_appointment(clinic_db, datetime(2024, 6, 3, 1, 30), datetime(2024, 6, 3, 2, 0))

    assert _slot(_availability(clinic_db), '09:30').status == 'booked'

    overlapping = CreateFollowUpAppointmentRequest(
        patient_id=1,
        doctor_id=7,
        branch_id=1,
        scheduled_at=datetime(2024, 6, 3, 9, 45),
        duration_minutes=30,
    )
    with pytest.raises(HTTPException) as exception_info:
        create_follow_up_appointment(overlapping, db=clinic_db)

    assert exception_info.value.status_code == 409
    assert clinic_db.query(Appointment).count() == 2
