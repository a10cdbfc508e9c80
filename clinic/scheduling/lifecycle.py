"""Appointment lifecycle: status transitions and booking conflict policy.

Storage admits any number of bookings for the same doctor and window. Who
keeps a contested slot is decided when an appointment is confirmed: the first
confirmation wins and later ones fail with SlotConflictError until the doctor
moves them elsewhere.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from typing import Any, NamedTuple

from clinic.core import config
from clinic.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from clinic.scheduling.errors import InvalidTransitionError, SlotConflictError, TransitionValidationError
from clinic.scheduling.locks import DoctorDayLocks
from clinic.scheduling.store import AppointmentStore
from clinic.scheduling.transitions import (
    ActorRole,
    AppointmentAction,
    resolve_transition,
    slot_duration,
    validate_window,
    window_end,
    windows_overlap,
)

logger = logging.getLogger(__name__)


class BookingResult(NamedTuple):
    appointment: Appointment
    conflicting: list[Appointment]

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicting)


class ConflictGroup(NamedTuple):
    date: date
    start_time: time
    end_time: time
    appointments: list[Appointment]

    @property
    def first_requester(self) -> Appointment:
        return self.appointments[0]


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def _require_reason(reason: str | None, field: str = 'cancellation_reason') -> str:
    normalized = _clean_text(reason)
    if normalized is None:
        raise TransitionValidationError('A cancellation reason is required.', field=field)
    return normalized


def _request_order(appointment: Appointment) -> tuple:
    return (appointment.priority or 0, appointment.created_at or datetime.min, appointment.id)


class AppointmentLifecycleManager:
    def __init__(
        self,
        store: AppointmentStore,
        locks: DoctorDayLocks,
        default_duration: timedelta | None = None,
    ):
        self.store = store
        self.locks = locks
        self.default_duration = default_duration or timedelta(minutes=config.DEFAULT_APPOINTMENT_MINUTES)

    def get(self, appointment_id: int) -> Appointment:
        return self.store.get_appointment(appointment_id)

    def list_for_actor(self, actor_role: ActorRole, user_id: int) -> list[Appointment]:
        role = ActorRole(actor_role)
        if role is ActorRole.PATIENT:
            return self.store.list_appointments(patient_id=user_id)
        if role is ActorRole.DOCTOR:
            return self.store.list_appointments(doctor_id=user_id)
        return self.store.list_appointments()

    def book(
        self,
        *,
        doctor_id: int,
        patient_id: int,
        appointment_date: date,
        start_time: time,
        end_time: time | None = None,
        reason: str | None = None,
    ) -> BookingResult:
        if end_time is None:
            end_time = window_end(appointment_date, start_time, self.default_duration)
        else:
            validate_window(start_time, end_time)

        conflicting = self.store.list_overlapping(
            doctor_id, appointment_date, start_time, end_time, ACTIVE_STATUSES
        )
        appointment = self.store.create_appointment({
            'doctor_id': doctor_id,
            'patient_id': patient_id,
            'date': appointment_date,
            'start_time': start_time,
            'end_time': end_time,
            'status': AppointmentStatus.PENDING.value,
            'reason': _clean_text(reason),
            'priority': len(conflicting) + 1,
            'conflicting_appointment_id': conflicting[0].id if conflicting else None,
        })

        if conflicting:
            logger.info(
                'Appointment %s booked with priority %s; overlaps %s',
                appointment.id,
                appointment.priority,
                [other.id for other in conflicting],
            )
        else:
            logger.info('Appointment %s booked for doctor %s', appointment.id, doctor_id)

        return BookingResult(appointment, conflicting)

    def confirm(self, appointment_id: int, actor_role: ActorRole) -> Appointment:
        appointment = self.store.get_appointment(appointment_id)
        resolve_transition(appointment.status, AppointmentAction.CONFIRM, actor_role)

        with self.locks.hold(appointment.doctor_id, appointment.date):
            appointment = self.store.get_appointment(appointment_id)

            def claim_current_slot(current: Appointment) -> dict[str, Any]:
                self._ensure_slot_free(current, current.date, current.start_time, current.end_time)
                return {}

            return self._apply(appointment, AppointmentAction.CONFIRM, actor_role, claim_current_slot)

    def cancel(self, appointment_id: int, actor_role: ActorRole, reason: str | None) -> Appointment:
        appointment = self.store.get_appointment(appointment_id)
        return self._apply(
            appointment,
            AppointmentAction.CANCEL,
            actor_role,
            lambda current: {'cancellation_reason': _require_reason(reason)},
        )

    def complete(self, appointment_id: int, actor_role: ActorRole) -> Appointment:
        appointment = self.store.get_appointment(appointment_id)
        return self._apply(appointment, AppointmentAction.COMPLETE, actor_role)

    def propose_reschedule(
        self,
        appointment_id: int,
        actor_role: ActorRole,
        proposed_date: date | None,
        proposed_start_time: time | None,
        reason: str | None = None,
    ) -> Appointment:
        appointment = self.store.get_appointment(appointment_id)

        def propose(current: Appointment) -> dict[str, Any]:
            if proposed_date is None:
                raise TransitionValidationError('A proposed date is required.', field='proposed_date')
            if proposed_start_time is None:
                raise TransitionValidationError('A proposed start time is required.', field='proposed_start_time')

            duration = slot_duration(current.date, current.start_time, current.end_time)
            window_end(proposed_date, proposed_start_time, duration)

            return {
                'proposed_date': proposed_date,
                'proposed_start_time': proposed_start_time,
                'reschedule_reason': _clean_text(reason),
            }

        return self._apply(appointment, AppointmentAction.REQUEST_RESCHEDULE, actor_role, propose)

    def accept_reschedule(self, appointment_id: int, actor_role: ActorRole) -> Appointment:
        appointment = self.store.get_appointment(appointment_id)
        resolve_transition(appointment.status, AppointmentAction.ACCEPT_RESCHEDULE, actor_role)

        if appointment.proposed_date is None or appointment.proposed_start_time is None:
            raise TransitionValidationError('No proposed reschedule time found.', field='proposed_date')

        locked_day = appointment.proposed_date
        with self.locks.hold(appointment.doctor_id, locked_day):
            appointment = self.store.get_appointment(appointment_id)
            if appointment.proposed_date != locked_day:
                # The proposal moved to another day while this request waited for the lock.
                raise InvalidTransitionError(
                    appointment.status,
                    AppointmentAction.ACCEPT_RESCHEDULE.label,
                    ActorRole(actor_role).value,
                )

            def move_to_proposed_slot(current: Appointment) -> dict[str, Any]:
                duration = slot_duration(current.date, current.start_time, current.end_time)
                new_end_time = window_end(current.proposed_date, current.proposed_start_time, duration)
                self._ensure_slot_free(current, current.proposed_date, current.proposed_start_time, new_end_time)
                return {
                    'date': current.proposed_date,
                    'start_time': current.proposed_start_time,
                    'end_time': new_end_time,
                }

            return self._apply(appointment, AppointmentAction.ACCEPT_RESCHEDULE, actor_role, move_to_proposed_slot)

    def decline_reschedule(self, appointment_id: int, actor_role: ActorRole, reason: str | None) -> Appointment:
        appointment = self.store.get_appointment(appointment_id)
        return self._apply(
            appointment,
            AppointmentAction.DECLINE_RESCHEDULE,
            actor_role,
            lambda current: {'cancellation_reason': _require_reason(reason)},
        )

    def find_conflicts(self, doctor_id: int) -> list[ConflictGroup]:
        """Group the doctor's open appointments into clusters of overlapping windows."""
        appointments = sorted(
            self.store.list_appointments(doctor_id=doctor_id, statuses=ACTIVE_STATUSES),
            key=lambda appointment: (appointment.date, appointment.start_time, _request_order(appointment)),
        )

        groups: list[ConflictGroup] = []
        cluster: list[Appointment] = []
        cluster_end: time | None = None

        def flush() -> None:
            if len(cluster) > 1:
                members = sorted(cluster, key=_request_order)
                groups.append(
                    ConflictGroup(
                        date=cluster[0].date,
                        start_time=cluster[0].start_time,
                        end_time=cluster_end,
                        appointments=members,
                    )
                )

        for appointment in appointments:
            if (
                cluster
                and appointment.date == cluster[0].date
                and windows_overlap(appointment.start_time, appointment.end_time, cluster[0].start_time, cluster_end)
            ):
                cluster.append(appointment)
                cluster_end = max(cluster_end, appointment.end_time)
                continue

            flush()
            cluster = [appointment]
            cluster_end = appointment.end_time

        flush()
        return groups

    def _ensure_slot_free(
        self,
        appointment: Appointment,
        appointment_date: date,
        start_time: time,
        end_time: time,
    ) -> None:
        blocking = [
            other
            for other in self.store.list_overlapping(
                appointment.doctor_id,
                appointment_date,
                start_time,
                end_time,
                [AppointmentStatus.CONFIRMED],
            )
            if other.id != appointment.id
        ]
        if blocking:
            logger.info(
                'Appointment %s blocked by confirmed appointment %s',
                appointment.id,
                blocking[0].id,
            )
            raise SlotConflictError(appointment.id, blocking[0].id)

    def _apply(
        self,
        appointment: Appointment,
        action: AppointmentAction,
        actor_role: ActorRole,
        build_patch: Callable[[Appointment], dict[str, Any]] | None = None,
    ) -> Appointment:
        previous_status = appointment.status
        target = resolve_transition(previous_status, action, actor_role)
        patch = build_patch(appointment) if build_patch else {}
        patch['status'] = target.value

        if target is not AppointmentStatus.RESCHEDULE_REQUESTED:
            patch.update(proposed_date=None, proposed_start_time=None, reschedule_reason=None)
        if target is not AppointmentStatus.CANCELLED:
            patch['cancellation_reason'] = None

        updated = self.store.update_appointment(appointment.id, patch, expected_status=previous_status)
        if updated is None:
            # Lost a race with another transition on the same appointment.
            current = self.store.get_appointment(appointment.id)
            raise InvalidTransitionError(current.status, action.label, ActorRole(actor_role).value)

        logger.info(
            'Appointment %s %s -> %s (%s by %s)',
            appointment.id,
            previous_status,
            target.value,
            action.value,
            ActorRole(actor_role).value,
        )
        return updated
