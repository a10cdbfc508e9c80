"""Appointment model definitions."""

import enum

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, Text, Time
from sqlalchemy.sql import func

from clinic.database import APPOINTMENT_STATUS_VALUES, STATUS_CHECK_CONSTRAINT, Base


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULE_REQUESTED = "reschedule_requested"


TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})
ACTIVE_STATUSES = frozenset(set(AppointmentStatus) - TERMINAL_STATUSES)


class Appointment(Base):
    """Represents a booked appointment with a doctor.

    There is deliberately no unique constraint on the doctor/date/time window:
    several patients may request the same slot and the first confirmation wins.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint(
            "status IN ({})".format(", ".join(f"'{value}'" for value in APPOINTMENT_STATUS_VALUES)),
            name=STATUS_CHECK_CONSTRAINT,
        ),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    reason = Column(Text)
    reschedule_reason = Column(Text)
    proposed_date = Column(Date)
    proposed_start_time = Column(Time)
    cancellation_reason = Column(Text)
    priority = Column(Integer, default=1)
    conflicting_appointment_id = Column(Integer)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())
