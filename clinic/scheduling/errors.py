"""Errors raised by the appointment lifecycle manager."""


class SchedulingError(Exception):
    """Base class for appointment scheduling failures."""

    retryable = False


class NotFoundError(SchedulingError):
    def __init__(self, appointment_id: int):
        super().__init__(f'Appointment {appointment_id} not found.')
        self.appointment_id = appointment_id


class InvalidTransitionError(SchedulingError):
    def __init__(self, current_status: str, action: str, actor_role: str | None = None):
        message = f"Cannot {action} an appointment that is {current_status}"
        if actor_role:
            message += f" (as {actor_role})"
        super().__init__(message + '.')
        self.current_status = current_status
        self.action = action
        self.actor_role = actor_role


class SlotConflictError(SchedulingError):
    def __init__(self, appointment_id: int, blocking_appointment_id: int):
        super().__init__(
            f'Appointment {appointment_id} overlaps confirmed appointment {blocking_appointment_id}.'
        )
        self.appointment_id = appointment_id
        self.blocking_appointment_id = blocking_appointment_id


class TransitionValidationError(SchedulingError):
    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class BusyError(SchedulingError):
    """The doctor's schedule for that day is locked by another confirmation."""

    retryable = True

    def __init__(self, doctor_id: int, day):
        super().__init__(f'Schedule for doctor {doctor_id} on {day} is busy, retry shortly.')
        self.doctor_id = doctor_id
        self.day = day
