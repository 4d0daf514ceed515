import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from signage.db import Base


class Slide(Base):
    __tablename__ = "slide"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), nullable=True)
    name = Column(String, nullable=False)
    content_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
