from typing import Dict, List

from pydantic import BaseModel, Field, field_validator, model_validator

from splitsync.models.base import IdStr, StoredModel


class Group(StoredModel):
    """
    Group roster as stored under groups/{id}.

    Invariants:
    - members holds unique ids, order irrelevant
    - created_by is a member
    """
    name: str = Field(..., min_length=1, max_length=100)
    members: List[IdStr]
    created_by: IdStr

    @field_validator("members")
    @classmethod
    def unique_members(cls, members: List[str]) -> List[str]:
        return sorted(set(members))

    @model_validator(mode="after")
    def creator_is_member(self) -> "Group":
        if self.created_by not in self.members:
            raise ValueError("creator must be a member of the group")
        return self

    def has_member(self, user_id: str) -> bool:
        return user_id in self.members


class GroupResponse(BaseModel):
    """Group response schema."""
    id: str
    name: str
    members: List[str]
    created_by: str
    member_names: Dict[str, str] = Field(default_factory=dict)  # resolved profiles only
