"""
Typed failures of the registration flow and the notification worker.

Services raise these instead of HTTPException so that the orchestrator, the
worker and the scheduler can share them; the API maps them to HTTP responses in
one exception handler (see main.py).
"""

from enum import Enum

from fastapi import status


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    DEADLINE_PASSED = "DeadlinePassed"
    CAPACITY_EXCEEDED = "CapacityExceeded"
    ALREADY_REGISTERED = "AlreadyRegistered"
    BUSY = "Busy"
    CONFLICT = "Conflict"
    TRANSACTION_TIMEOUT = "TransactionTimeout"
    SKIPPED = "Skipped"
    DELIVERY_FAILED = "DeliveryFailed"
    EXHAUSTED = "Exhausted"
    INVALID = "Invalid"


class RegistrationError(Exception):
    """Base class for failures surfaced to API callers."""

    kind: ErrorKind = ErrorKind.CONFLICT
    status_code: int = status.HTTP_409_CONFLICT
    # Whether the client may retry the same request unchanged
    retryable: bool = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class CompetitionNotFound(RegistrationError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, competition_id: int):
        super().__init__(f"Competition with ID {competition_id} not found")
        self.competition_id = competition_id


class RegistrationNotFound(RegistrationError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class UserNotFound(RegistrationError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class RegistrationDeadlinePassed(RegistrationError):
    kind = ErrorKind.DEADLINE_PASSED
    status_code = status.HTTP_400_BAD_REQUEST


class CompetitionFull(RegistrationError):
    kind = ErrorKind.CAPACITY_EXCEEDED
    status_code = status.HTTP_400_BAD_REQUEST


class AlreadyRegistered(RegistrationError):
    kind = ErrorKind.ALREADY_REGISTERED
    status_code = status.HTTP_409_CONFLICT


class LockBusy(RegistrationError):
    kind = ErrorKind.BUSY
    status_code = status.HTTP_409_CONFLICT
    retryable = True


class IdempotencyConflict(RegistrationError):
    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT
    retryable = True

    def __init__(self, key: str):
        super().__init__("A request with this idempotency key is already being processed")
        self.key = key


class TransactionTimeout(RegistrationError):
    kind = ErrorKind.TRANSACTION_TIMEOUT
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class InvalidCompetition(RegistrationError):
    kind = ErrorKind.INVALID
    status_code = status.HTTP_400_BAD_REQUEST


class DeliveryFailed(Exception):
    """Raised by the worker so the queue's retry policy applies."""

    kind = ErrorKind.DELIVERY_FAILED


class InvalidJobPayload(Exception):
    """Job data does not match its declared job name; never retried."""

    kind = ErrorKind.EXHAUSTED
