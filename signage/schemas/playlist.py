import json

from pydantic import AliasChoices, BaseModel, Field, field_validator

class PlaylistItemOut(BaseModel):
    id: str
    playlist_id: str
    slide_id: str
    order: int
    duration_sec: int
    predicate: dict | None = Field(default=None, validation_alias=AliasChoices("predicate_json", "predicate"))

    @field_validator("predicate", mode="before")
    @classmethod
    def _decode_predicate(cls, value):
        if isinstance(value, str):
            return json.loads(value) if value.strip() else None
        return value

    class Config:
        from_attributes = True

class PlaylistOut(BaseModel):
    id: str
    org_id: str | None = None
    name: str

    class Config:
        from_attributes = True
