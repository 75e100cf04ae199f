from __future__ import annotations

import logging
from typing import Dict, List, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from .models import LearningStatsRecord
from .schemas import LearningTopic, StatsEvent

LOGGER = logging.getLogger(__name__)


class StatsSink(Protocol):
	def record(self, event: StatsEvent) -> None:
		...

	def recent(self, limit: int = 20) -> List[StatsEvent]:
		...

	def summary(self) -> Dict[str, float]:
		...


class InMemoryStatsSink:
	def __init__(self) -> None:
		self.events: List[StatsEvent] = []

	def record(self, event: StatsEvent) -> None:
		self.events.append(event)

	def recent(self, limit: int = 20) -> List[StatsEvent]:
		return list(reversed(self.events))[:limit]

	def summary(self) -> Dict[str, float]:
		count = len(self.events)
		return {
			"events": count,
			"total_duration": sum(e.duration for e in self.events),
			"mean_accuracy": (sum(e.accuracy for e in self.events) / count) if count else 0.0,
		}


class SqlStatsSink:
	"""Persists learning events in the ``learning_stats`` table."""

	def __init__(self, session_factory: sessionmaker) -> None:
		self.session_factory = session_factory

	def record(self, event: StatsEvent) -> None:
		with self.session_factory() as db:
			db.add(LearningStatsRecord(
				recorded_at=event.recorded_at.replace(tzinfo=None),
				duration=event.duration,
				topic=event.topic.value,
				completed_items=event.completed_items,
				accuracy=event.accuracy,
			))
			db.commit()
		LOGGER.debug("Recorded %s event (%.1fs, accuracy %.2f)", event.topic.value, event.duration, event.accuracy)

	def recent(self, limit: int = 20) -> List[StatsEvent]:
		with self.session_factory() as db:
			rows = db.execute(
				select(LearningStatsRecord)
				.order_by(LearningStatsRecord.recorded_at.desc(), LearningStatsRecord.id.desc())
				.limit(limit)
			).scalars().all()
			return [
				StatsEvent(
					duration=row.duration,
					topic=LearningTopic(row.topic),
					completed_items=row.completed_items,
					accuracy=row.accuracy,
					recorded_at=row.recorded_at,
				)
				for row in rows
			]

	def summary(self) -> Dict[str, float]:
		with self.session_factory() as db:
			count, total, mean = db.execute(
				select(
					func.count(LearningStatsRecord.id),
					func.coalesce(func.sum(LearningStatsRecord.duration), 0.0),
					func.avg(LearningStatsRecord.accuracy),
				)
			).one()
		return {
			"events": int(count),
			"total_duration": float(total or 0.0),
			"mean_accuracy": float(mean) if mean is not None else 0.0,
		}
