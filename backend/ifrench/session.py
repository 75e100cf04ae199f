"""
Exercise session state machine.

States: no_selection -> prepared -> playing <-> paused, with ``deselect``
returning to no_selection from anywhere. Playback problems are reported on
``ExerciseSession.error`` rather than raised; the state then stays at
prepared/paused.

Mutations run on the event loop that owns the session, so the 100 ms sampler
task and user commands never interleave mid-update.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Protocol

from .errors import INVALID_ANSWER, PlaybackError, SessionError, ValidationError
from .question_generation import QuestionGenerator
from .schemas import Exercise, LearningTopic, Question, SessionState, StatsEvent
from .stats import StatsSink

LOGGER = logging.getLogger(__name__)

SAMPLE_INTERVAL = 0.1
DEFAULT_SKIP_SECONDS = 5.0


# ============================================================================
# AUDIO TRANSPORT
# ============================================================================

class AudioPlayer(Protocol):
	def load(self, path: Path, duration: float) -> float:
		...

	def play(self) -> None:
		...

	def pause(self) -> None:
		...

	def stop(self) -> None:
		...

	@property
	def position(self) -> float:
		...

	@position.setter
	def position(self, value: float) -> None:
		...

	@property
	def duration(self) -> float:
		...


class ClockedPlayer:
	"""Software transport: the position advances with a monotonic clock while playing."""

	def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
		self._clock = clock
		self._path: Optional[Path] = None
		self._duration = 0.0
		self._offset = 0.0
		self._started_at: Optional[float] = None

	def load(self, path: Path, duration: float) -> float:
		self.stop()
		path = Path(path)
		if not path.is_file():
			self._path = None
			self._duration = 0.0
			raise PlaybackError(f"audio resource not found: {path.name}")
		self._path = path
		self._duration = max(0.0, float(duration))
		return self._duration

	@property
	def loaded(self) -> bool:
		return self._path is not None

	@property
	def duration(self) -> float:
		return self._duration

	@property
	def playing(self) -> bool:
		return self._started_at is not None

	@property
	def position(self) -> float:
		pos = self._offset
		if self._started_at is not None:
			pos += self._clock() - self._started_at
		return min(max(pos, 0.0), self._duration)

	@position.setter
	def position(self, value: float) -> None:
		self._offset = min(max(float(value), 0.0), self._duration)
		if self._started_at is not None:
			self._started_at = self._clock()

	def play(self) -> None:
		if self._path is None:
			raise PlaybackError("no audio resource loaded")
		if self._started_at is None:
			self._started_at = self._clock()

	def pause(self) -> None:
		if self._started_at is not None:
			self._offset = self.position
			self._started_at = None

	def stop(self) -> None:
		self._started_at = None
		self._offset = 0.0


# ============================================================================
# SESSION
# ============================================================================

class ExerciseSession:
	def __init__(
		self,
		player: AudioPlayer,
		generator: QuestionGenerator,
		stats: StatsSink,
		storage_root: Path,
		*,
		sample_interval: float = SAMPLE_INTERVAL,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
	) -> None:
		self.player = player
		self.generator = generator
		self.stats = stats
		self.storage_root = Path(storage_root)
		self.sample_interval = sample_interval
		self._sleep = sleep
		self.state = SessionState.no_selection
		self.current_exercise: Optional[Exercise] = None
		self.duration = 0.0
		self.current_time = 0.0
		self.progress = 0.0
		self.error: Optional[str] = None
		self._loaded = False
		self._sampler: Optional[asyncio.Task] = None

	# ---- selection ---------------------------------------------------------

	def select(self, exercise: Exercise) -> None:
		self._stop_sampler()
		self.player.stop()
		self.current_exercise = exercise
		self.state = SessionState.prepared
		self.current_time = 0.0
		self.progress = 0.0
		self.duration = 0.0
		self.error = None
		self._loaded = False
		try:
			self.duration = self.player.load(self.storage_root / exercise.audio_file_name, exercise.duration)
			self._loaded = True
		except PlaybackError as exc:
			LOGGER.warning("Cannot load audio for exercise %s: %s", exercise.id, exc)
			self.error = str(exc)

	def deselect(self) -> None:
		self._stop_sampler()
		self.player.stop()
		self.current_exercise = None
		self.state = SessionState.no_selection
		self.duration = 0.0
		self.current_time = 0.0
		self.progress = 0.0
		self.error = None
		self._loaded = False

	# ---- transport ---------------------------------------------------------

	def play(self) -> None:
		if self.state not in (SessionState.prepared, SessionState.paused):
			return
		if not self._loaded:
			self.error = "no audio resource loaded"
			return
		try:
			self.player.play()
		except PlaybackError as exc:
			self.error = str(exc)
			return
		self.state = SessionState.playing
		self._start_sampler()

	def pause(self) -> None:
		if self.state is not SessionState.playing:
			return
		self.player.pause()
		self._stop_sampler()
		self.state = SessionState.paused
		self._sample()

	def restart(self) -> None:
		self.seek(0.0)
		self.play()

	def seek(self, fraction: float) -> None:
		if not self._loaded:
			return
		fraction = min(max(float(fraction), 0.0), 1.0)
		self._move_to(fraction * self.duration)

	def forward(self, seconds: float = DEFAULT_SKIP_SECONDS) -> None:
		if self._loaded:
			self._move_to(self.player.position + seconds)

	def backward(self, seconds: float = DEFAULT_SKIP_SECONDS) -> None:
		if self._loaded:
			self._move_to(self.player.position - seconds)

	def _move_to(self, position: float) -> None:
		self.player.position = min(max(position, 0.0), self.duration)
		self._sample()

	def tick(self) -> None:
		"""One sampler step: refresh the position and stop at the end."""
		self._sample()
		if self.state is SessionState.playing and self.duration > 0 and self.current_time >= self.duration:
			LOGGER.debug("Reached end of audio; pausing")
			self.player.pause()
			self.state = SessionState.paused
			self._stop_sampler()

	def _sample(self) -> None:
		if not self._loaded:
			return
		self.current_time = min(max(self.player.position, 0.0), self.duration)
		self.progress = self.current_time / self.duration if self.duration > 0 else 0.0

	def _start_sampler(self) -> None:
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			# no loop: the owner drives tick() itself
			return
		if self._sampler is None or self._sampler.done():
			self._sampler = loop.create_task(self._run_sampler())

	def _stop_sampler(self) -> None:
		task, self._sampler = self._sampler, None
		if task is None or task.done():
			return
		try:
			current = asyncio.current_task()
		except RuntimeError:
			current = None
		if task is not current:
			task.cancel()

	async def _run_sampler(self) -> None:
		while self.state is SessionState.playing:
			await self._sleep(self.sample_interval)
			self.tick()

	# ---- answers and bookmarks ---------------------------------------------

	def _require_exercise(self) -> Exercise:
		if self.current_exercise is None:
			raise SessionError("no exercise selected")
		return self.current_exercise

	def _question(self, exercise: Exercise, question_id: Optional[str]) -> Optional[Question]:
		if question_id is None:
			return exercise.questions[0] if exercise.questions else None
		for q in exercise.questions:
			if q.id == question_id:
				return q
		raise SessionError(f"question {question_id} not in exercise {exercise.id}")

	def submit_answer(self, index: int, question_id: Optional[str] = None) -> Optional[StatsEvent]:
		"""Record an answer; returns the stats event emitted for a correct one."""
		exercise = self._require_exercise()
		question = self._question(exercise, question_id)
		if question is not None and not 0 <= index < len(question.options):
			raise ValidationError(INVALID_ANSWER, str(index), f"answer index {index} out of range")
		# answers may be overwritten
		exercise.user_selected = index
		if question is None:
			return None
		question.user_selected = index
		if not question.is_correct:
			return None
		event = StatsEvent(
			duration=exercise.duration,
			topic=LearningTopic.listening,
			completed_items=1,
			accuracy=1.0,
		)
		self.stats.record(event)
		return event

	def mark_timestamp(self) -> float:
		exercise = self._require_exercise()
		self._sample()
		exercise.marked_timestamps.append(self.current_time)
		return self.current_time

	async def regenerate_questions(self) -> Exercise:
		exercise = self._require_exercise()
		if exercise.transcript:
			result = await self.generator.generate_result(exercise.transcript)
		else:
			result = self.generator.basic_result(exercise.difficulty)
		exercise.questions = result.questions
		exercise.user_selected = None
		LOGGER.info("Regenerated %d questions for exercise %s (%s)", len(result.questions), exercise.id, result.tier.value)
		return exercise
