from datetime import date, time, timedelta

import pytest

from clinic.models.appointment import AppointmentStatus
from clinic.scheduling.errors import InvalidTransitionError, TransitionValidationError
from clinic.scheduling.transitions import (
    ActorRole,
    AppointmentAction,
    allowed_actions,
    resolve_transition,
    slot_duration,
    window_end,
    windows_overlap,
)


@pytest.mark.parametrize(
    ('current_status', 'action', 'actor_role', 'expected'),
    [
        ('pending', AppointmentAction.CONFIRM, ActorRole.DOCTOR, AppointmentStatus.CONFIRMED),
        ('pending', AppointmentAction.CANCEL, ActorRole.DOCTOR, AppointmentStatus.CANCELLED),
        ('pending', AppointmentAction.CANCEL, ActorRole.PATIENT, AppointmentStatus.CANCELLED),
        ('confirmed', AppointmentAction.REQUEST_RESCHEDULE, ActorRole.DOCTOR, AppointmentStatus.RESCHEDULE_REQUESTED),
        ('confirmed', AppointmentAction.COMPLETE, ActorRole.DOCTOR, AppointmentStatus.COMPLETED),
        ('confirmed', AppointmentAction.CANCEL, ActorRole.PATIENT, AppointmentStatus.CANCELLED),
        ('reschedule_requested', AppointmentAction.ACCEPT_RESCHEDULE, ActorRole.PATIENT, AppointmentStatus.CONFIRMED),
        ('reschedule_requested', AppointmentAction.DECLINE_RESCHEDULE, ActorRole.PATIENT, AppointmentStatus.CANCELLED),
    ],
)
def test_resolve_transition_follows_table(current_status, action, actor_role, expected) -> None:
    assert resolve_transition(current_status, action, actor_role) is expected


@pytest.mark.parametrize(
    ('current_status', 'action', 'actor_role'),
    [
        ('pending', AppointmentAction.CONFIRM, ActorRole.PATIENT),
        ('pending', AppointmentAction.COMPLETE, ActorRole.DOCTOR),
        ('confirmed', AppointmentAction.CONFIRM, ActorRole.DOCTOR),
        ('confirmed', AppointmentAction.CANCEL, ActorRole.DOCTOR),
        ('reschedule_requested', AppointmentAction.ACCEPT_RESCHEDULE, ActorRole.DOCTOR),
        ('reschedule_requested', AppointmentAction.CANCEL, ActorRole.PATIENT),
    ],
)
def test_resolve_transition_rejects_unlisted_moves(current_status, action, actor_role) -> None:
    with pytest.raises(InvalidTransitionError) as exception_info:
        resolve_transition(current_status, action, actor_role)

    assert exception_info.value.current_status == current_status
    assert exception_info.value.action == action.label


@pytest.mark.parametrize('terminal_status', ['completed', 'cancelled'])
@pytest.mark.parametrize('action', list(AppointmentAction))
def test_terminal_statuses_reject_every_action(terminal_status: str, action: AppointmentAction) -> None:
    with pytest.raises(InvalidTransitionError):
        resolve_transition(terminal_status, action, ActorRole.ADMIN)


def test_admin_may_act_for_doctor_and_patient() -> None:
    assert resolve_transition('pending', AppointmentAction.CONFIRM, ActorRole.ADMIN) is AppointmentStatus.CONFIRMED
    assert (
        resolve_transition('reschedule_requested', AppointmentAction.ACCEPT_RESCHEDULE, ActorRole.ADMIN)
        is AppointmentStatus.CONFIRMED
    )


def test_invalid_transition_message_names_state_and_action() -> None:
    with pytest.raises(InvalidTransitionError) as exception_info:
        resolve_transition('completed', AppointmentAction.ACCEPT_RESCHEDULE, 'patient')

    assert str(exception_info.value) == 'Cannot accept reschedule an appointment that is completed.'


def test_allowed_actions_depend_on_role() -> None:
    assert allowed_actions('confirmed', ActorRole.PATIENT) == [AppointmentAction.CANCEL]
    assert set(allowed_actions('confirmed', ActorRole.DOCTOR)) == {
        AppointmentAction.REQUEST_RESCHEDULE,
        AppointmentAction.COMPLETE,
    }
    assert allowed_actions('cancelled', ActorRole.ADMIN) == []


def test_windows_touching_at_endpoint_do_not_overlap() -> None:
    assert not windows_overlap(time(9, 0), time(9, 30), time(9, 30), time(10, 0))
    assert not windows_overlap(time(9, 30), time(10, 0), time(9, 0), time(9, 30))


def test_windows_sharing_any_minute_overlap() -> None:
    assert windows_overlap(time(9, 0), time(9, 31), time(9, 30), time(10, 0))
    assert windows_overlap(time(9, 0), time(10, 0), time(9, 15), time(9, 45))
    assert windows_overlap(time(9, 0), time(9, 30), time(9, 0), time(9, 30))


def test_window_end_preserves_duration() -> None:
    duration = slot_duration(date(2030, 1, 7), time(9, 0), time(9, 45))

    assert duration == timedelta(minutes=45)
    assert window_end(date(2030, 1, 8), time(14, 0), duration) == time(14, 45)


def test_window_end_rejects_windows_past_midnight() -> None:
    with pytest.raises(TransitionValidationError):
        window_end(date(2030, 1, 7), time(23, 45), timedelta(minutes=30))

    with pytest.raises(TransitionValidationError):
        window_end(date(2030, 1, 7), time(23, 30), timedelta(minutes=30))
