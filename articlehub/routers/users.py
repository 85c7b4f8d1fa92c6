from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from articlehub.cache import CacheManager
from articlehub.database import get_db
from articlehub.dependencies import get_cache, require_admin, require_requester
from articlehub.policy import RequesterContext
from articlehub.schemas import MessageResponse, UserResponse, UserUpdate
from articlehub.services import user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("/me", response_model=UserResponse)
async def get_current_user(
    requester: RequesterContext = Depends(require_requester),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_user(db, requester.user_id)


# Everything below is admin-only.

@router.get("", response_model=list[UserResponse])
async def list_users(
    _: RequesterContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_users(db)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    _: RequesterContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_user(db, user_id)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    data: UserUpdate,
    _: RequesterContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    return await user_service.update_user(db, user_id, data, cache=cache)


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: str,
    _: RequesterContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    await user_service.delete_user(db, user_id, cache=cache)
    return {"message": "User deleted successfully"}
