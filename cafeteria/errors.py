"""
Domain errors raised by the service layer.

Every error carries a stable ``kind`` and the HTTP status the API layer
renders it with; routers never translate them by hand.
"""

from fastapi import status


class CafeteriaError(Exception):
    """Base class for domain errors."""

    kind = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFoundError(CafeteriaError):
    """Referenced entity is absent or not visible to the caller."""

    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class UnauthenticatedError(CafeteriaError):
    """Missing, invalid or expired credentials."""

    kind = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(CafeteriaError):
    """Authenticated caller lacks the role or ownership required."""

    kind = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidArgumentError(CafeteriaError):
    kind = "invalid_argument"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class EmptyCartError(CafeteriaError):
    kind = "empty_cart"
    status_code = status.HTTP_409_CONFLICT


class ConflictError(CafeteriaError):
    """Uniqueness retries exhausted or a compare-and-set precondition failed."""

    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransitionError(CafeteriaError):
    kind = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT


class OrderCreationFailedError(CafeteriaError):
    """Order rows could not be written; the transaction was rolled back."""

    kind = "order_creation_failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
