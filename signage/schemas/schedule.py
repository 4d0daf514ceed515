from pydantic import BaseModel, field_validator
from datetime import time

class ScheduleRuleOut(BaseModel):
    id: int
    target_type: str
    target_id: str
    playlist_id: str
    days_of_week: list[int]
    start_time: time
    end_time: time
    priority: int
    note: str | None = None

    @field_validator("days_of_week", mode="before")
    @classmethod
    def _split_days(cls, value):
        if isinstance(value, str):
            return [int(part) for part in value.split(",") if part.strip()]
        return value

    class Config:
        from_attributes = True
