from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

class Match(BaseModel):
    id: str
    participants: list[str] = Field(min_length=2, max_length=2)
    matched_at: datetime = Field(alias="matchedAt")

    model_config = {"populate_by_name": True, "frozen": True}

    def other_participant(self, user_id: str) -> str:
        a, b = self.participants
        return b if a == user_id else a

class SwipeCreate(BaseModel):
    target_id: str = Field(alias="targetId", min_length=1)
    liked: bool

    model_config = {"populate_by_name": True}

class VerdictResult(BaseModel):
    is_match: bool = Field(alias="isMatch")
    match: Optional[Match] = None

    model_config = {"populate_by_name": True, "frozen": True}
