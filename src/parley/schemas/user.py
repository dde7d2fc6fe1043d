"""User-related Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field


class UserSummary(BaseModel):
    """Public profile fields embedded in message payloads."""

    id: int
    username: str = Field(..., description="Unique handle of the user")
    display_name: str | None = Field(None, description="Optional display name")
    user_image: str | None = Field(None, description="Optional avatar URL")

    model_config = ConfigDict(from_attributes=True)
