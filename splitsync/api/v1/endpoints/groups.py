from typing import List
from fastapi import APIRouter, Depends

from splitsync.api.deps import get_session
from splitsync.models.group import GroupResponse
from splitsync.services.session import LedgerSession

router = APIRouter()


@router.get("", response_model=List[GroupResponse])
async def list_groups(session: LedgerSession = Depends(get_session)):
    """Groups the caller is a member of, as last delivered by the roster stream."""
    profiles = session.profiles
    return [
        GroupResponse(
            id=group.id,
            name=group.name,
            members=group.members,
            created_by=group.created_by,
            member_names={
                member: profiles[member].display_name
                for member in group.members
                if member in profiles
            }
        )
        for group in session.groups
    ]
