from pydantic import BaseModel, Field, field_validator
from typing import Optional

class AppUser(BaseModel):
    id: str = Field(alias="uid", min_length=1)
    display_name: str = Field(alias="displayName", min_length=1)
    email: str
    profile_image_url: Optional[str] = Field(None, alias="profileImageURL")
    profile_image_data: Optional[str] = Field(None, alias="profileImageData")

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("profile_image_url", "profile_image_data")
    @classmethod
    def _empty_means_absent(cls, v: Optional[str]) -> Optional[str]:
        return v or None

class DisplayNameUpdate(BaseModel):
    display_name: str = Field(alias="displayName")

    model_config = {"populate_by_name": True}
