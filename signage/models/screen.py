import uuid
from datetime import datetime
from sqlalchemy import Column, DateTime, String, ForeignKey
from signage.db import Base


class ScreenGroup(Base):
    __tablename__ = "screen_group"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), nullable=True)
    name = Column(String, nullable=False)
    default_playlist_id = Column(String(36), nullable=True)
    active_slide_id = Column(String(36), nullable=True)
    urgent_slide_id = Column(String(36), nullable=True)
    urgent_starts_at = Column(DateTime, nullable=True)
    urgent_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Screen(Base):
    __tablename__ = "screen"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), nullable=True)
    group_id = Column(String(36), ForeignKey("screen_group.id"), nullable=True)
    name = Column(String, nullable=False)
    timezone = Column(String(64), nullable=True)
    default_playlist_id = Column(String(36), nullable=True)
    active_slide_id = Column(String(36), nullable=True)
    urgent_slide_id = Column(String(36), nullable=True)
    urgent_starts_at = Column(DateTime, nullable=True)  # UTC
    urgent_expires_at = Column(DateTime, nullable=True)  # UTC
    created_at = Column(DateTime, default=datetime.utcnow)
