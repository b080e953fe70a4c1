from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from quicksnack.db.database import get_async_session
from quicksnack.models.user import User
from quicksnack.schemas.auth import ProfileResponse, UserResponse, UserUpdate
from quicksnack.core.security import get_current_user_from_token

router = APIRouter()


async def _load_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user


@router.get("/me", response_model=ProfileResponse)
async def get_profile(
    current_user: dict = Depends(get_current_user_from_token),
    db: AsyncSession = Depends(get_async_session)
):
    """Get current user information."""
    user = await _load_user(db, current_user["user_id"])
    return {"user": UserResponse.model_validate(user)}


@router.put("/me", response_model=ProfileResponse)
async def update_profile(
    update_data: UserUpdate,
    current_user: dict = Depends(get_current_user_from_token),
    db: AsyncSession = Depends(get_async_session)
):
    """Update name and phone of the current user."""
    user = await _load_user(db, current_user["user_id"])

    if update_data.name:
        user.name = update_data.name
    if update_data.phone:
        user.phone = update_data.phone

    await db.commit()
    await db.refresh(user)

    return {
        "message": "Profile updated successfully",
        "user": UserResponse.model_validate(user)
    }
