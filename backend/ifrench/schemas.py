from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _new_id() -> str:
	return uuid.uuid4().hex


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class Difficulty(str, Enum):
	beginner = "beginner"
	intermediate = "intermediate"
	advanced = "advanced"


class ExerciseType(str, Enum):
	precision = "precision"
	extensive = "extensive"
	listen_repeat = "listen-repeat"


class LearningTopic(str, Enum):
	pronunciation = "pronunciation"
	vocabulary = "vocabulary"
	grammar = "grammar"
	listening = "listening"
	speaking = "speaking"


class GenerationTier(str, Enum):
	remote = "remote"
	keyword_template = "keyword_template"
	hardcoded = "hardcoded"
	metadata = "metadata"


class SessionState(str, Enum):
	no_selection = "no_selection"
	prepared = "prepared"
	playing = "playing"
	paused = "paused"


class Question(BaseModel):
	"""A multiple-choice comprehension question."""

	id: str = Field(default_factory=_new_id)
	question: str
	options: List[str] = Field(min_length=2)
	correct_option_index: int = Field(ge=0)
	difficulty: Difficulty = Difficulty.intermediate
	user_selected: Optional[int] = None

	@model_validator(mode="after")
	def _check_correct_index(self) -> "Question":
		if self.correct_option_index >= len(self.options):
			raise ValueError("correct_option_index out of range for options")
		return self

	@property
	def is_answered(self) -> bool:
		return self.user_selected is not None

	@property
	def is_correct(self) -> bool:
		return self.user_selected is not None and self.user_selected == self.correct_option_index


class BearerToken(BaseModel):
	"""Short-lived access token; replaced wholesale on refresh."""

	model_config = ConfigDict(frozen=True)

	value: str
	expires_at: float  # absolute, seconds since epoch

	def is_valid(self, now: float) -> bool:
		return now < self.expires_at


class AudioAsset(BaseModel):
	"""Audio stored in durable storage, not yet transcribed or quizzed."""

	file_name: str
	path: Path
	duration: float = Field(ge=0)
	title: str
	artist: Optional[str] = None
	album: Optional[str] = None
	source: str


class Exercise(BaseModel):
	id: str = Field(default_factory=_new_id)
	title: str
	audio_file_name: str
	duration: float = Field(ge=0)
	transcript: str = ""
	questions: List[Question] = Field(default_factory=list)
	difficulty: Difficulty = Difficulty.beginner
	type: ExerciseType = ExerciseType.extensive
	# Legacy single-question answer slot
	user_selected: Optional[int] = None
	marked_timestamps: List[float] = Field(default_factory=list)
	artist: Optional[str] = None
	album: Optional[str] = None

	# Legacy single-question views, derived from the first question
	@property
	def question(self) -> str:
		return self.questions[0].question if self.questions else ""

	@property
	def options(self) -> List[str]:
		return list(self.questions[0].options) if self.questions else []

	@property
	def correct_option_index(self) -> Optional[int]:
		return self.questions[0].correct_option_index if self.questions else None


class StatsEvent(BaseModel):
	duration: float
	topic: LearningTopic = LearningTopic.listening
	completed_items: int = 1
	accuracy: float = Field(ge=0.0, le=1.0)
	recorded_at: datetime = Field(default_factory=_utcnow)


class GenerationResult(BaseModel):
	"""Questions plus the tier that produced them (diagnostic only)."""

	tier: GenerationTier
	questions: List[Question]


class ComprehensionAnalysis(BaseModel):
	"""Feedback on one answered question."""

	is_correct: bool
	explanation: str = ""
	suggested_topics: List[str] = Field(default_factory=list)
	difficulty_analysis: str = ""
	common_mistakes: List[str] = Field(default_factory=list)


class ExerciseRecommendation(BaseModel):
	type: ExerciseType
	difficulty: Difficulty
	reason: str
	confidence: float = Field(ge=0.0, le=1.0)
