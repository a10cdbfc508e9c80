import logging
from collections.abc import Callable
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import get_actor_role, get_current_user
from clinic.core import config
from clinic.database import ensure_appointment_schema, get_db
from clinic.models.appointment import Appointment
from clinic.models.user import User
from clinic.scheduling.errors import (
    BusyError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
    SlotConflictError,
    TransitionValidationError,
)
from clinic.scheduling.lifecycle import AppointmentLifecycleManager, BookingResult, ConflictGroup
from clinic.scheduling.locks import DoctorDayLocks
from clinic.scheduling.store import SqlAlchemyAppointmentStore
from clinic.scheduling.transitions import ActorRole, allowed_actions

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 600

doctor_day_locks = DoctorDayLocks(config.CONFIRMATION_LOCK_TIMEOUT_SECONDS)


def _normalize_reason(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_REASON_LENGTH:
        raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')

    return normalized


def _require_local_time(value: time | None) -> time | None:
    # Slots are stored as clinic-local wall-clock times.
    if value is not None and value.tzinfo is not None:
        raise ValueError('Times must not carry a UTC offset.')
    return value


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    date: date
    start_time: time
    end_time: time | None = None
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: time | None) -> time | None:
        return _require_local_time(value)


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)


class RescheduleRequest(BaseModel):
    proposed_date: date
    proposed_start_time: time
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)

    @field_validator('proposed_start_time')
    @classmethod
    def validate_proposed_start_time(cls, value: time) -> time:
        return _require_local_time(value)


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    date: date
    start_time: time
    end_time: time
    status: str
    reason: str | None = None
    reschedule_reason: str | None = None
    proposed_date: date | None = None
    proposed_start_time: time | None = None
    cancellation_reason: str | None = None
    priority: int | None = None
    conflicting_appointment_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class BookingResponse(AppointmentResponse):
    has_conflict: bool
    conflicting_appointment_ids: list[int]


class ConflictGroupResponse(BaseModel):
    date: date
    start_time: time
    end_time: time
    count: int
    first_requester_id: int
    appointments: list[AppointmentResponse]


class AllowedActionsResponse(BaseModel):
    appointment_id: int
    status: str
    actions: list[str]


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def get_lifecycle_manager(db: Session = Depends(get_db)) -> AppointmentLifecycleManager:
    return AppointmentLifecycleManager(SqlAlchemyAppointmentStore(db), doctor_day_locks)


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.exception('Database error: %s', exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail='Database unavailable. Verify DATABASE_URL and Postgres credentials.',
    )


def scheduling_http_exception(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')

    if isinstance(exc, (InvalidTransitionError, SlotConflictError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    if isinstance(exc, TransitionValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    if isinstance(exc, BusyError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={'Retry-After': str(config.BUSY_RETRY_AFTER_SECONDS)},
        )

    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def require_roles(role: ActorRole, allowed: set[ActorRole], detail: str) -> None:
    if role not in allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def authorize_appointment_access(appointment: Appointment, current_user: User, role: ActorRole) -> None:
    if role is ActorRole.ADMIN:
        return
    if role is ActorRole.DOCTOR and appointment.doctor_id == current_user.id:
        return
    if role is ActorRole.PATIENT and appointment.patient_id == current_user.id:
        return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Not authorized to access this appointment.',
    )


def apply_transition(
    appointment_id: int,
    current_user: User,
    manager: AppointmentLifecycleManager,
    allowed_roles: set[ActorRole],
    forbidden_detail: str,
    transition: Callable[[ActorRole], Appointment],
) -> Appointment:
    role = get_actor_role(current_user)
    require_roles(role, allowed_roles, forbidden_detail)

    ensure_database_ready()

    try:
        authorize_appointment_access(manager.get(appointment_id), current_user, role)
        return transition(role)
    except SchedulingError as exc:
        raise scheduling_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def to_booking_response(result: BookingResult) -> BookingResponse:
    appointment = AppointmentResponse.model_validate(result.appointment)
    return BookingResponse(
        **appointment.model_dump(),
        has_conflict=result.has_conflict,
        conflicting_appointment_ids=[other.id for other in result.conflicting],
    )


def to_conflict_group_response(group: ConflictGroup) -> ConflictGroupResponse:
    return ConflictGroupResponse(
        date=group.date,
        start_time=group.start_time,
        end_time=group.end_time,
        count=len(group.appointments),
        first_requester_id=group.first_requester.id,
        appointments=[AppointmentResponse.model_validate(appointment) for appointment in group.appointments],
    )


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    current_user: User = Depends(get_current_user),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    role = get_actor_role(current_user)
    ensure_database_ready()

    try:
        return manager.list_for_actor(role, current_user.id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/conflicts', response_model=list[ConflictGroupResponse])
def list_conflicts(
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    role = get_actor_role(current_user)
    require_roles(role, {ActorRole.DOCTOR, ActorRole.ADMIN}, 'Only doctors can view conflicting appointments.')

    if role is ActorRole.DOCTOR:
        doctor_id = current_user.id
    elif doctor_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='doctor_id is required.',
        )

    ensure_database_ready()

    try:
        return [to_conflict_group_response(group) for group in manager.find_conflicts(doctor_id)]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    role = get_actor_role(current_user)
    ensure_database_ready()

    try:
        appointment = manager.get(appointment_id)
    except SchedulingError as exc:
        raise scheduling_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    authorize_appointment_access(appointment, current_user, role)
    return appointment


@router.get('/{appointment_id}/actions', response_model=AllowedActionsResponse)
def get_allowed_actions(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    appointment = get_appointment(appointment_id, current_user=current_user, manager=manager)
    role = get_actor_role(current_user)

    return AllowedActionsResponse(
        appointment_id=appointment.id,
        status=appointment.status,
        actions=[action.value for action in allowed_actions(appointment.status, role)],
    )


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    role = get_actor_role(current_user)
    require_roles(role, {ActorRole.PATIENT}, 'Only patients can create appointments.')

    if datetime.combine(data.date, data.start_time) <= datetime.now():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Appointments must be scheduled in the future.',
        )

    ensure_database_ready()

    try:
        doctor = db.query(User).filter(User.id == data.doctor_id).first()
        if doctor is None or (doctor.role or '').strip().lower() != ActorRole.DOCTOR.value:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Doctor not found.',
            )

        result = manager.book(
            doctor_id=data.doctor_id,
            patient_id=current_user.id,
            appointment_date=data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason,
        )
        return to_booking_response(result)
    except SchedulingError as exc:
        raise scheduling_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    return apply_transition(
        appointment_id,
        current_user,
        manager,
        {ActorRole.DOCTOR, ActorRole.ADMIN},
        'Only doctors can confirm appointments.',
        lambda role: manager.confirm(appointment_id, role),
    )


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    return apply_transition(
        appointment_id,
        current_user,
        manager,
        {ActorRole.DOCTOR, ActorRole.ADMIN},
        'Only doctors can complete appointments.',
        lambda role: manager.complete(appointment_id, role),
    )


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    current_user: User = Depends(get_current_user),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    return apply_transition(
        appointment_id,
        current_user,
        manager,
        {ActorRole.PATIENT, ActorRole.DOCTOR, ActorRole.ADMIN},
        'Not authorized to cancel this appointment.',
        lambda role: manager.cancel(appointment_id, role, data.reason),
    )


@router.post('/{appointment_id}/request-reschedule', response_model=AppointmentResponse)
def request_reschedule(
    appointment_id: int,
    data: RescheduleRequest,
    current_user: User = Depends(get_current_user),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    return apply_transition(
        appointment_id,
        current_user,
        manager,
        {ActorRole.DOCTOR, ActorRole.ADMIN},
        'Only doctors can request reschedule.',
        lambda role: manager.propose_reschedule(
            appointment_id,
            role,
            data.proposed_date,
            data.proposed_start_time,
            data.reason,
        ),
    )


@router.post('/{appointment_id}/confirm-reschedule', response_model=AppointmentResponse)
def confirm_reschedule(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    return apply_transition(
        appointment_id,
        current_user,
        manager,
        {ActorRole.PATIENT, ActorRole.ADMIN},
        'Only patients can confirm reschedule.',
        lambda role: manager.accept_reschedule(appointment_id, role),
    )


@router.post('/{appointment_id}/decline-reschedule', response_model=AppointmentResponse)
def decline_reschedule(
    appointment_id: int,
    data: CancelAppointmentRequest,
    current_user: User = Depends(get_current_user),
    manager: AppointmentLifecycleManager = Depends(get_lifecycle_manager),
):
    return apply_transition(
        appointment_id,
        current_user,
        manager,
        {ActorRole.PATIENT, ActorRole.ADMIN},
        'Only patients can decline reschedule.',
        lambda role: manager.decline_reschedule(appointment_id, role, data.reason),
    )
