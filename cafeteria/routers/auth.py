import logging

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from cafeteria.database import get_db
from cafeteria.deps import get_caller
from cafeteria.schemas.auth import ProfileResponse, RegisterRequest, TokenResponse
from cafeteria.services import auth_service
from cafeteria.services.authorization import Caller

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/register", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    profile = await auth_service.register(db, body)
    return ProfileResponse.model_validate(profile)


@router.post("/token", response_model=TokenResponse)
async def login(
    form: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    token = await auth_service.authenticate(db, form.username, form.password)
    return TokenResponse(access_token=token)


@router.get("/me", response_model=ProfileResponse)
async def me(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    profile = await auth_service.get_profile(db, caller)
    return ProfileResponse.model_validate(profile)
