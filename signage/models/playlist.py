import uuid
from sqlalchemy import Column, String, Integer, ForeignKey
from signage.db import Base

class Playlist(Base):
    __tablename__ = "playlist"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), nullable=True)
    name = Column(String, nullable=False)

class PlaylistItem(Base):
    __tablename__ = "playlist_item"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    playlist_id = Column(String(36), ForeignKey("playlist.id"), nullable=False)
    slide_id = Column(String(36), nullable=False)
    order = Column(Integer, nullable=False)
    duration_sec = Column(Integer, nullable=False, default=10)
    predicate_json = Column(String, nullable=True)  # {"days": [0..6], "start_time": "HH:MM", "end_time": "HH:MM"}
