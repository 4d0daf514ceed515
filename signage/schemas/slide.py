from pydantic import BaseModel

class SlideOut(BaseModel):
    id: str
    org_id: str | None = None
    name: str

    class Config:
        from_attributes = True
