from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from articlehub.config import Settings
from articlehub.database import get_db
from articlehub.dependencies import get_settings, require_requester
from articlehub.policy import RequesterContext
from articlehub.schemas import (
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    TokenValidResponse,
    UserResponse,
)
from articlehub.security import create_access_token
from articlehub.services import user_service

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/register", status_code=201, response_model=UserResponse)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return await user_service.register_user(db, data, bcrypt_rounds=settings.BCRYPT_ROUNDS)


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Authenticate with email and password; returns a JWT access token.
    Send it back as ``Authorization: Bearer <access_token>``.
    """
    user = await user_service.authenticate(db, data.email, data.password)
    token = create_access_token(sub=user.id, role=user.role, settings=settings)
    return {
        "access_token": token,
        "token_type": "bearer",
        "user": {"id": user.id, "email": user.email, "name": user.name, "role": user.role},
    }


@router.post("/validate", response_model=TokenValidResponse)
async def validate_token(_: RequesterContext = Depends(require_requester)):
    return {"valid": True}
