"""Persistence interface used by the lifecycle manager."""

from collections.abc import Iterable
from datetime import date, datetime, time
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.models.appointment import Appointment, AppointmentStatus
from clinic.scheduling.errors import NotFoundError


def _status_values(statuses: Iterable[AppointmentStatus | str] | None) -> list[str] | None:
    if statuses is None:
        return None
    return [AppointmentStatus(status).value for status in statuses]


class AppointmentStore(Protocol):
    def get_appointment(self, appointment_id: int) -> Appointment:
        """Return the appointment or raise NotFoundError."""

    def list_overlapping(
        self,
        doctor_id: int,
        appointment_date: date,
        start_time: time,
        end_time: time,
        statuses: Iterable[AppointmentStatus | str] | None = None,
    ) -> list[Appointment]:
        """Appointments of ``doctor_id`` on that date whose window overlaps ``[start_time, end_time)``."""

    def list_appointments(
        self,
        doctor_id: int | None = None,
        patient_id: int | None = None,
        statuses: Iterable[AppointmentStatus | str] | None = None,
    ) -> list[Appointment]:
        ...

    def create_appointment(self, values: dict[str, Any]) -> Appointment:
        ...

    def update_appointment(
        self,
        appointment_id: int,
        patch: dict[str, Any],
        expected_status: str | None = None,
    ) -> Appointment | None:
        """Apply ``patch`` atomically.

        Returns None when nothing matched, either because the appointment is
        gone or because its status is no longer ``expected_status``.
        """


class SqlAlchemyAppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = (
            self.db.query(Appointment)
            .filter(Appointment.id == appointment_id)
            .populate_existing()
            .first()
        )
        if appointment is None:
            raise NotFoundError(appointment_id)
        return appointment

    def list_overlapping(
        self,
        doctor_id: int,
        appointment_date: date,
        start_time: time,
        end_time: time,
        statuses: Iterable[AppointmentStatus | str] | None = None,
    ) -> list[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date == appointment_date,
            Appointment.start_time < end_time,
            Appointment.end_time > start_time,
        )
        status_values = _status_values(statuses)
        if status_values is not None:
            query = query.filter(Appointment.status.in_(status_values))

        return query.order_by(Appointment.id.asc()).all()

    def list_appointments(
        self,
        doctor_id: int | None = None,
        patient_id: int | None = None,
        statuses: Iterable[AppointmentStatus | str] | None = None,
    ) -> list[Appointment]:
        query = self.db.query(Appointment)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        status_values = _status_values(statuses)
        if status_values is not None:
            query = query.filter(Appointment.status.in_(status_values))

        return query.order_by(
            Appointment.date.asc(),
            Appointment.start_time.asc(),
            Appointment.id.asc(),
        ).all()

    def create_appointment(self, values: dict[str, Any]) -> Appointment:
        appointment = Appointment(**values)
        try:
            self.db.add(appointment)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        return appointment

    def update_appointment(
        self,
        appointment_id: int,
        patch: dict[str, Any],
        expected_status: str | None = None,
    ) -> Appointment | None:
        query = self.db.query(Appointment).filter(Appointment.id == appointment_id)
        if expected_status is not None:
            query = query.filter(Appointment.status == AppointmentStatus(expected_status).value)

        try:
            updated_rows = query.update(
                {**patch, 'updated_at': datetime.now()},
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        if not updated_rows:
            return None
        return self.get_appointment(appointment_id)
