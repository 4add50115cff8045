# backend/studio_booking/core/exceptions.py
"""
Domain-specific exceptions for the studio booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
Every exception carries a machine-readable ``status_class`` so a
transport layer can map it without inspecting the message.
"""

from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    status_class: str = "server"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "status_class": self.status_class,
            "details": self.details,
        }

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException using the class status code."""
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class ValidationException(DomainException):
    """Raised when request validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST
    status_class = "invalid"


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND
    status_class = "not_found"


class ForbiddenException(DomainException):
    """Raised when an action is not allowed at this time or by this actor."""

    status_code = status.HTTP_403_FORBIDDEN
    status_class = "forbidden"


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT
    status_class = "conflict"


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE
    status_class = "unprocessable"


class GoneException(DomainException):
    """Raised when a resource existed but is no longer usable."""

    status_code = status.HTTP_410_GONE
    status_class = "gone"


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    status_class = "server"

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["message"] = self.message or "An error occurred processing your request"
        return payload


# Specific booking engine exceptions


class SessionNotFoundException(NotFoundException):
    def __init__(self, session_id: str):
        super().__init__(
            message="Session not found",
            code="SESSION_NOT_FOUND",
            details={"session_id": session_id},
        )


class BookingNotFoundException(NotFoundException):
    def __init__(self, booking_id: str):
        super().__init__(
            message="Booking not found",
            code="BOOKING_NOT_FOUND",
            details={"booking_id": booking_id},
        )


class PlanNotFoundException(NotFoundException):
    """Raised when a preferred plan does not exist, is not active or belongs to someone else."""

    def __init__(self, plan_id: str):
        super().__init__(
            message="The selected plan could not be found",
            code="PLAN_NOT_FOUND",
            details={"plan_purchase_id": plan_id},
        )


class BookingWindowException(ForbiddenException):
    """Raised when a session is not yet open for booking."""

    def __init__(self, unlock_date: date, window_days: int):
        super().__init__(
            message=f"Booking for this session opens on {unlock_date.isoformat()}",
            code="BOOKING_WINDOW_CLOSED",
            details={"unlock_date": unlock_date.isoformat(), "booking_window_days": window_days},
        )


class SessionFullException(ConflictException):
    """Raised when a session has no free seats at the time of the check."""

    def __init__(self, session_id: str, capacity: int, occupied: int):
        super().__init__(
            message="Session full",
            code="SESSION_FULL",
            details={"session_id": session_id, "capacity": capacity, "occupied": occupied},
        )


class DuplicateBookingException(ConflictException):
    """Raised when the client already holds a live booking for the session."""

    def __init__(self, booking_id: str):
        super().__init__(
            message="You already have an active booking for this session",
            code="BOOKING_DUPLICATE",
            details={"booking_id": booking_id},
        )


class PlanNotEligibleException(ConflictException):
    """Raised when an explicitly chosen plan cannot pay for the session."""

    def __init__(self, plan_id: str, reason: str, message: str):
        super().__init__(
            message=message,
            code="PLAN_NOT_ELIGIBLE",
            details={"plan_purchase_id": plan_id, "reason": reason},
        )


class AllocationFailure(str, Enum):
    """Why no plan credit could be allocated to a booking."""

    NO_ELIGIBLE_PLAN = "NO_ELIGIBLE_PLAN"
    FIXED_PLAN_CONTACT_STAFF = "FIXED_PLAN_CONTACT_STAFF"


class AllocationExhaustedException(ConflictException):
    """Raised when no eligible plan credit is available for a booking."""

    def __init__(
        self,
        message: str = "No active plan with available classes applies to this session",
        code: str = AllocationFailure.NO_ELIGIBLE_PLAN.value,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code=code, details=details)


class FixedPlanContactStaffException(AllocationExhaustedException):
    """Fixed-plan clients get their sessions assigned by staff and cannot self-book."""

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=(
                "Your fixed plan already has its classes assigned. "
                "Please contact the front desk if you need changes."
            ),
            code=AllocationFailure.FIXED_PLAN_CONTACT_STAFF.value,
            details=details,
        )


class QrTokenExpiredException(GoneException):
    def __init__(self, token: str):
        super().__init__(
            message="The QR code has expired",
            code="QR_TOKEN_EXPIRED",
            details={"token": token},
        )


class OptimisticConflict(Exception):
    """
    Internal signal: a conditional update affected zero rows.

    Never surfaced to callers; services turn it into "try the next
    candidate" or "abort this sub-step".
    """

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"Conditional update on {resource} {resource_id} affected no rows")


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


def classify_allocation_failure(has_active_fixed_plan: bool) -> AllocationFailure:
    """Decide how an empty allocation is reported to the client."""
    if has_active_fixed_plan:
        return AllocationFailure.FIXED_PLAN_CONTACT_STAFF
    return AllocationFailure.NO_ELIGIBLE_PLAN


def exception_for_allocation_failure(
    failure: AllocationFailure, details: Optional[Dict[str, Any]] = None
) -> AllocationExhaustedException:
    if failure is AllocationFailure.FIXED_PLAN_CONTACT_STAFF:
        return FixedPlanContactStaffException(details=details)
    return AllocationExhaustedException(details=details)
