from fastapi import APIRouter, Depends

from splitsync.api.deps import get_session
from splitsync.models.user import UserProfileResponse
from splitsync.services.session import LedgerSession

router = APIRouter()


@router.get("/{user_id}", response_model=UserProfileResponse)
async def get_profile(
    user_id: str,
    session: LedgerSession = Depends(get_session)
):
    """Profile of a user; a placeholder if the store has none."""
    profile = await session.profile(user_id)
    return UserProfileResponse(
        id=profile.id,
        email=profile.email,
        display_name=profile.display_name,
        placeholder=profile.is_placeholder
    )
