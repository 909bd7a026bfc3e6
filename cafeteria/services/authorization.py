"""
Row-level access policy.

Every service read/write of cart, order or catalog rows goes through these
checks, parameterized by the caller and the owner of the resource. They are
applied in addition to the business rules of each service.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import Select

from cafeteria.errors import PermissionDeniedError
from cafeteria.models.order import Order
from cafeteria.models.profile import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    id: uuid.UUID
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def _deny(caller: Caller, reason: str, **context) -> None:
    logger.warning(
        "Access denied (%s)",
        reason,
        extra={"caller_id": str(caller.id), "caller_role": caller.role.value, **context},
    )


def ensure_admin(caller: Caller) -> None:
    if not caller.is_admin:
        _deny(caller, "role_denied", required_role=Role.ADMIN.value)
        raise PermissionDeniedError("Admin role required")


def ensure_student(caller: Caller) -> None:
    """Carts and orders are only ever owned by students."""
    if caller.role != Role.STUDENT:
        _deny(caller, "role_denied", required_role=Role.STUDENT.value)
        raise PermissionDeniedError("Only students can order")


def ensure_owner(caller: Caller, owner_id: uuid.UUID) -> None:
    # Admins have no write access to other users' carts either.
    if caller.id != owner_id:
        _deny(caller, "not_owner", owner_id=str(owner_id))
        raise PermissionDeniedError("Resource belongs to another user")


def can_view_order(caller: Caller, order: Order) -> bool:
    return caller.is_admin or order.student_id == caller.id


def scope_orders(stmt: Select, caller: Caller) -> Select:
    if caller.is_admin:
        return stmt
    return stmt.where(Order.student_id == caller.id)
