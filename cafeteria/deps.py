from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from cafeteria.database import get_db
from cafeteria.services import auth_service
from cafeteria.services.authorization import Caller
from cafeteria.services.events import EventPublisher

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


async def get_caller(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Caller:
    """Resolve the bearer token to the caller, reading the role fresh from the profile."""
    return await auth_service.get_caller(db, token)


def get_publisher(request: Request) -> EventPublisher:
    return request.app.state.event_publisher


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")
