# app/core/exceptions.py
# Typed failures raised by the services. The HTTP/WebSocket layer maps them to
# {"error": kind, "message": ...} without leaking internals.
from typing import Any, Dict, Optional

from fastapi import status


class AppError(Exception):
    kind = "Error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message, **self.extra}


# --- Taxonomy ---

class NotFoundError(AppError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ForbiddenError(AppError):
    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized to perform this action"


class InvalidStateError(AppError):
    kind = "InvalidState"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Operation not allowed in the current state"


class DuplicateEntityError(AppError):
    kind = "DuplicateEntity"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Entity already exists"


class InsufficientBalanceError(AppError):
    kind = "InsufficientBalance"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Insufficient balance"


class AlreadyResolvedError(AppError):
    kind = "AlreadyResolved"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Request has already been resolved"


class InvalidPaymentAmountError(AppError):
    kind = "InvalidPaymentAmount"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Payment amount must be greater than zero"


class InvalidInputError(AppError):
    kind = "ValidationError"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid input"


class LedgerWriteError(AppError):
    kind = "LedgerInconsistency"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Payment could not be recorded"


# --- Specific kinds ---

class JobNotOpenError(InvalidStateError):
    kind = "JobNotOpen"
    default_message = "This job is no longer accepting applications"


class SuspendedError(ForbiddenError):
    kind = "Suspended"
    default_message = "Your account is suspended"


class SkillNotVerifiedError(ForbiddenError):
    kind = "SkillNotVerified"
    default_message = "You must pass the skill test before applying for this job"


class DuplicateApplicationError(DuplicateEntityError):
    kind = "DuplicateApplication"
    default_message = "You have already applied for this job"


class AlreadyInvitedError(DuplicateEntityError):
    kind = "AlreadyInvited"
    default_message = "This freelancer has already been invited"


class AlreadyAppliedError(DuplicateEntityError):
    kind = "AlreadyApplied"
    default_message = "This freelancer has already applied for this job"


class NotPendingError(InvalidStateError):
    kind = "NotPending"
    default_message = "This invite has already been answered"


class NotAParticipantError(ForbiddenError):
    kind = "NotAParticipant"
    default_message = "You are not a participant of this chat"


class InvalidTypeError(InvalidInputError):
    kind = "InvalidType"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "This is not a withdrawal request"
