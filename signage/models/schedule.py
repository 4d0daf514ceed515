from sqlalchemy import Column, Integer, Time, String
from signage.db import Base

class ScheduleRule(Base):
    __tablename__ = "schedule_rule"
    # Integer key: lowest id is the earliest-created rule, used as the final tie-break.
    id = Column(Integer, primary_key=True, autoincrement=True)
    target_type = Column(String(16), nullable=False)  # screen | group
    target_id = Column(String(36), nullable=False, index=True)
    playlist_id = Column(String(36), nullable=False)
    days_of_week = Column(String, nullable=False)  # CSV: 0,1,2,3,4,5,6 (0=Sunday)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    priority = Column(Integer, nullable=False, default=1)
    note = Column(String, nullable=True)
