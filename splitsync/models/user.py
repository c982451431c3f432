from pydantic import BaseModel, Field

from splitsync.core.config import settings
from splitsync.models.base import StoredModel


class UserProfile(StoredModel):
    """Profile of a user as stored under users/{id}."""
    email: str = ""
    display_name: str = Field(..., min_length=1, max_length=100)

    @classmethod
    def placeholder(cls, user_id: str) -> "UserProfile":
        """Stand-in for a profile the store does not have."""
        return cls(id=user_id, display_name=settings.PLACEHOLDER_DISPLAY_NAME)

    @property
    def is_placeholder(self) -> bool:
        return not self.email and self.display_name == settings.PLACEHOLDER_DISPLAY_NAME


class UserProfileResponse(BaseModel):
    """User profile response schema."""
    id: str
    email: str
    display_name: str
    placeholder: bool = False
