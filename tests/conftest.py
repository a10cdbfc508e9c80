import os
from datetime import date, datetime, time, timedelta
from threading import Lock

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from clinic.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from clinic.scheduling.errors import NotFoundError  # noqa: E402
from clinic.scheduling.lifecycle import AppointmentLifecycleManager  # noqa: E402
from clinic.scheduling.locks import DoctorDayLocks  # noqa: E402
from clinic.scheduling.transitions import windows_overlap  # noqa: E402

DOCTOR_ID = 10
OTHER_DOCTOR_ID = 11
PATIENT_ID = 20
OTHER_PATIENT_ID = 21
CLINIC_DAY = date(2030, 1, 7)


class InMemoryAppointmentStore:
    """Dict-backed stand-in for SqlAlchemyAppointmentStore."""

    def __init__(self):
        self._rows: dict[int, Appointment] = {}
        self._next_id = 1
        self._lock = Lock()
        self.update_calls = 0

    def get_appointment(self, appointment_id: int) -> Appointment:
        with self._lock:
            appointment = self._rows.get(appointment_id)
        if appointment is None:
            raise NotFoundError(appointment_id)
        return appointment

    def list_overlapping(self, doctor_id, appointment_date, start_time, end_time, statuses=None):
        status_values = None if statuses is None else {AppointmentStatus(value).value for value in statuses}
        with self._lock:
            rows = list(self._rows.values())
        return [
            row
            for row in sorted(rows, key=lambda row: row.id)
            if row.doctor_id == doctor_id
            and row.date == appointment_date
            and windows_overlap(start_time, end_time, row.start_time, row.end_time)
            and (status_values is None or row.status in status_values)
        ]

    def list_appointments(self, doctor_id=None, patient_id=None, statuses=None):
        status_values = None if statuses is None else {AppointmentStatus(value).value for value in statuses}
        with self._lock:
            rows = list(self._rows.values())
        return [
            row
            for row in sorted(rows, key=lambda row: (row.date, row.start_time, row.id))
            if (doctor_id is None or row.doctor_id == doctor_id)
            and (patient_id is None or row.patient_id == patient_id)
            and (status_values is None or row.status in status_values)
        ]

    def create_appointment(self, values):
        with self._lock:
            now = datetime.now()
            appointment = Appointment(id=self._next_id, created_at=now, updated_at=now, **values)
            self._rows[appointment.id] = appointment
            self._next_id += 1
        return appointment

    def update_appointment(self, appointment_id, patch, expected_status=None):
        with self._lock:
            appointment = self._rows.get(appointment_id)
            if appointment is None:
                return None
            if expected_status is not None and appointment.status != AppointmentStatus(expected_status).value:
                return None

            self.update_calls += 1
            for field, value in {**patch, 'updated_at': datetime.now()}.items():
                setattr(appointment, field, value)
            return appointment


@pytest.fixture
def store() -> InMemoryAppointmentStore:
    return InMemoryAppointmentStore()


@pytest.fixture
def locks() -> DoctorDayLocks:
    return DoctorDayLocks(timeout_seconds=0.2)


@pytest.fixture
def manager(store, locks) -> AppointmentLifecycleManager:
    return AppointmentLifecycleManager(store, locks, default_duration=timedelta(minutes=30))


@pytest.fixture
def book(manager):
    def _book(
        start: time = time(9, 0),
        end: time | None = time(9, 30),
        doctor_id: int = DOCTOR_ID,
        patient_id: int = PATIENT_ID,
        appointment_date: date = CLINIC_DAY,
    ) -> Appointment:
        return manager.book(
            doctor_id=doctor_id,
            patient_id=patient_id,
            appointment_date=appointment_date,
            start_time=start,
            end_time=end,
        ).appointment

    return _book
