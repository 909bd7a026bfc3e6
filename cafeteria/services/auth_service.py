"""
Registration and token authentication.

Registration creates the login identity and its profile in one transaction;
the role is fixed at that point. Every authenticated request re-reads the
profile, so a token never carries authority on its own.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cafeteria.config import settings
from cafeteria.errors import ConflictError, PermissionDeniedError, UnauthenticatedError
from cafeteria.models.profile import Profile, Role, User
from cafeteria.schemas.auth import RegisterRequest
from cafeteria.services.authorization import Caller

logger = logging.getLogger(__name__)

_BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes and newer releases reject longer input.
    return (password or "").encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), (password_hash or "").encode("utf-8"))
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def create_access_token(user_id: uuid.UUID, expires_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> uuid.UUID:
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        return uuid.UUID(str(payload["sub"]))
    except (JWTError, KeyError, ValueError) as exc:
        raise UnauthenticatedError("Invalid or expired token") from exc


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def register(db: AsyncSession, data: RegisterRequest) -> Profile:
    if data.role == Role.ADMIN and not settings.allow_admin_signup:
        raise PermissionDeniedError("Admin accounts cannot be self-registered")

    email = str(data.email).lower()
    existing = await db.scalar(select(User.id).where(User.email == email))
    if existing is not None:
        raise ConflictError("An account with this email already exists")

    user = User(email=email, password_hash=hash_password(data.password))
    is_student = data.role == Role.STUDENT
    profile = Profile(
        user=user,
        email=email,
        full_name=data.full_name,
        role=data.role,
        student_id=data.student_id if is_student else None,
        department=data.department if is_student else None,
        staff_id=None if is_student else data.staff_id,
        cafeteria_name=None if is_student else data.cafeteria_name,
    )
    db.add_all([user, profile])
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("An account with this email already exists") from exc

    logger.info("User registered", extra={"user_id": str(user.id), "role": data.role.value})
    return profile


async def authenticate(db: AsyncSession, email: str, password: str) -> str:
    user = await db.scalar(select(User).where(User.email == email.lower()))
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Login failed", extra={"email": email.lower()})
        raise UnauthenticatedError("Incorrect email or password")
    return create_access_token(user.id)


async def get_caller(db: AsyncSession, token: str) -> Caller:
    user_id = decode_access_token(token)
    role = await get_caller_role(db, user_id)
    return Caller(id=user_id, role=role)


async def get_caller_role(db: AsyncSession, user_id: uuid.UUID) -> Role:
    role = await db.scalar(select(Profile.role).where(Profile.id == user_id))
    if role is None:
        raise UnauthenticatedError("User not found")
    return role


async def get_profile(db: AsyncSession, caller: Caller) -> Profile:
    profile = await db.get(Profile, caller.id)
    if profile is None:
        raise UnauthenticatedError("User not found")
    return profile
