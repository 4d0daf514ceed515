from pydantic import BaseModel
from datetime import datetime

class ScreenGroupOut(BaseModel):
    id: str
    org_id: str | None = None
    name: str
    default_playlist_id: str | None = None
    active_slide_id: str | None = None
    urgent_slide_id: str | None = None
    urgent_starts_at: datetime | None = None
    urgent_expires_at: datetime | None = None

    class Config:
        from_attributes = True

class ScreenOut(ScreenGroupOut):
    group_id: str | None = None
    timezone: str | None = None
