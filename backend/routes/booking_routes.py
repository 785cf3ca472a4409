from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError

from backend.auth.dependencies import get_current_actor
from backend.core import config
from backend.core.enums import BookingStatus
from backend.core.exceptions import (
    BookingEngineError,
    ConflictError,
    NotAuthorized,
    NotFoundError,
    OwnershipMismatchError,
    StoreUnavailable,
)
from backend.database import SessionLocal, ensure_availability_schema, ensure_booking_schema
from backend.services.authorization import Actor
from backend.services.booking_engine import BookingEngine, unit_of_work_factory

router = APIRouter(tags=['bookings'])

ERROR_STATUS_CODES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (NotAuthorized, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (OwnershipMismatchError, status.HTTP_400_BAD_REQUEST),
    (StoreUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _require_identifier(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Identifier is required.')
    return normalized


class CreateBookingRequest(BaseModel):
    therapist_id: str
    availability_id: str
    amount: Decimal
    currency: str
    payment_reference: str | None = None

    @field_validator('therapist_id', 'availability_id')
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        return _require_identifier(value)

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError('Amount must be positive.')
        return value

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, value: str) -> str:
        normalized = value.strip().upper()
        if len(normalized) != 3 or not normalized.isalpha():
            raise ValueError('Currency must be a three-letter code.')
        return normalized

    @field_validator('payment_reference')
    @classmethod
    def validate_payment_reference(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class RescheduleBookingRequest(BaseModel):
    new_availability_id: str

    @field_validator('new_availability_id')
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        return _require_identifier(value)


class BookingResponse(BaseModel):
    id: str
    client_id: str
    therapist_id: str
    availability_id: str | None = None
    start_ts: datetime
    end_ts: datetime
    status: BookingStatus

    class Config:
        from_attributes = True


class BookingActionResponse(BaseModel):
    message: str
    booking: BookingResponse


def to_http_exception(exc: BookingEngineError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.to_dict())
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.to_dict())


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


def get_booking_engine() -> BookingEngine:
    return BookingEngine(unit_of_work_factory(SessionLocal, record_payments=config.PAYMENT_RECORDING_ENABLED))


@router.post('', response_model=BookingActionResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: CreateBookingRequest,
    actor: Actor = Depends(get_current_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    ensure_database_ready()

    try:
        booking = engine.create_booking(
            client_id=actor.id,
            therapist_id=data.therapist_id,
            availability_id=data.availability_id,
            amount=data.amount,
            currency=data.currency,
            payment_reference=data.payment_reference,
        )
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc

    return BookingActionResponse(
        message='Booking created successfully',
        booking=BookingResponse.model_validate(booking),
    )


@router.get('/{booking_id}', response_model=BookingResponse)
def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    ensure_database_ready()

    try:
        booking = engine.get_booking(booking_id, actor)
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc

    return BookingResponse.model_validate(booking)


@router.post('/{booking_id}/cancel', response_model=BookingActionResponse)
def cancel_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    ensure_database_ready()

    try:
        booking = engine.cancel_booking(booking_id, actor)
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc

    return BookingActionResponse(
        message='Booking cancelled successfully',
        booking=BookingResponse.model_validate(booking),
    )


@router.post('/{booking_id}/reschedule', response_model=BookingActionResponse)
def reschedule_booking(
    booking_id: str,
    data: RescheduleBookingRequest,
    actor: Actor = Depends(get_current_actor),
    engine: BookingEngine = Depends(get_booking_engine),
):
    ensure_database_ready()

    try:
        booking = engine.reschedule_booking(booking_id, data.new_availability_id, actor)
    except BookingEngineError as exc:
        raise to_http_exception(exc) from exc

    return BookingActionResponse(
        message='Booking rescheduled successfully',
        booking=BookingResponse.model_validate(booking),
    )
