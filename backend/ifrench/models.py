from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, DateTime, Float, Integer, String
from .db import Base


class LearningStatsRecord(Base):
	__tablename__ = "learning_stats"
	id = Column(Integer, primary_key=True, autoincrement=True)
	recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
	duration = Column(Float, nullable=False)
	topic = Column(String(32), nullable=False)
	completed_items = Column(Integer, default=1, nullable=False)
	accuracy = Column(Float, nullable=False)
