"""Appointment status state machine and slot arithmetic."""

import enum
from datetime import date, datetime, time, timedelta
from typing import NamedTuple

from clinic.models.appointment import AppointmentStatus
from clinic.scheduling.errors import InvalidTransitionError, TransitionValidationError


class ActorRole(str, enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class AppointmentAction(str, enum.Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    COMPLETE = "complete"
    REQUEST_RESCHEDULE = "request_reschedule"
    ACCEPT_RESCHEDULE = "accept_reschedule"
    DECLINE_RESCHEDULE = "decline_reschedule"

    @property
    def label(self) -> str:
        return self.value.replace('_', ' ')


class Transition(NamedTuple):
    target: AppointmentStatus
    roles: frozenset


_DOCTOR = frozenset({ActorRole.DOCTOR})
_PATIENT = frozenset({ActorRole.PATIENT})

TRANSITIONS: dict[tuple[AppointmentStatus, AppointmentAction], Transition] = {
    (AppointmentStatus.PENDING, AppointmentAction.CONFIRM): Transition(AppointmentStatus.CONFIRMED, _DOCTOR),
    (AppointmentStatus.PENDING, AppointmentAction.CANCEL): Transition(
        AppointmentStatus.CANCELLED, _DOCTOR | _PATIENT
    ),
    (AppointmentStatus.CONFIRMED, AppointmentAction.REQUEST_RESCHEDULE): Transition(
        AppointmentStatus.RESCHEDULE_REQUESTED, _DOCTOR
    ),
    (AppointmentStatus.CONFIRMED, AppointmentAction.COMPLETE): Transition(AppointmentStatus.COMPLETED, _DOCTOR),
    (AppointmentStatus.CONFIRMED, AppointmentAction.CANCEL): Transition(AppointmentStatus.CANCELLED, _PATIENT),
    (AppointmentStatus.RESCHEDULE_REQUESTED, AppointmentAction.ACCEPT_RESCHEDULE): Transition(
        AppointmentStatus.CONFIRMED, _PATIENT
    ),
    (AppointmentStatus.RESCHEDULE_REQUESTED, AppointmentAction.DECLINE_RESCHEDULE): Transition(
        AppointmentStatus.CANCELLED, _PATIENT
    ),
}


def resolve_transition(
    current_status: str,
    action: AppointmentAction,
    actor_role: ActorRole,
) -> AppointmentStatus:
    """Return the status ``action`` leads to, or raise InvalidTransitionError.

    Admins may take any action granted to a doctor or a patient.
    """
    status = AppointmentStatus(current_status)
    transition = TRANSITIONS.get((status, action))

    if transition is None:
        raise InvalidTransitionError(status.value, action.label)

    role = ActorRole(actor_role)
    if role is not ActorRole.ADMIN and role not in transition.roles:
        raise InvalidTransitionError(status.value, action.label, role.value)

    return transition.target


def allowed_actions(current_status: str, actor_role: ActorRole) -> list[AppointmentAction]:
    status = AppointmentStatus(current_status)
    role = ActorRole(actor_role)
    return [
        action
        for (from_status, action), transition in TRANSITIONS.items()
        if from_status is status and (role is ActorRole.ADMIN or role in transition.roles)
    ]


def windows_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    # Half-open: [09:00, 09:30) and [09:30, 10:00) do not overlap.
    return start_a < end_b and end_a > start_b


def window_end(day: date, start_time: time, duration: timedelta) -> time:
    start = datetime.combine(day, start_time)
    end = start + duration

    if duration <= timedelta(0):
        raise TransitionValidationError('End time must be after start time.', field='end_time')

    if end.date() != day:
        raise TransitionValidationError('Appointments cannot run past midnight.', field='end_time')

    return end.time()


def slot_duration(day: date, start_time: time, end_time: time) -> timedelta:
    return datetime.combine(day, end_time) - datetime.combine(day, start_time)


def validate_window(start_time: time, end_time: time) -> None:
    if end_time <= start_time:
        raise TransitionValidationError('End time must be after start time.', field='end_time')
