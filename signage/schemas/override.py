from datetime import datetime

from pydantic import BaseModel, Field


class AssignSlideIn(BaseModel):
    slide_id: str
    screen_ids: list[str] = Field(default_factory=list)
    group_ids: list[str] = Field(default_factory=list)


class OverrideStateOut(BaseModel):
    target_type: str
    target_id: str
    active_slide_id: str | None = None
    urgent_slide_id: str | None = None
    urgent_starts_at: datetime | None = None
    urgent_expires_at: datetime | None = None
    urgent_active: bool = False
