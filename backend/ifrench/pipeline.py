from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .acquisition import AcquisitionManager, ProgressCallback
from .errors import ListeningError
from .question_generation import QuestionGenerator
from .schemas import AudioAsset, Difficulty, Exercise, ExerciseType
from .transcription import TranscriptionClient

LOGGER = logging.getLogger(__name__)


class ExerciseCatalog:
	"""Ordered in-memory collection of assembled exercises."""

	def __init__(self, exercises: Optional[List[Exercise]] = None) -> None:
		self._items: Dict[str, Exercise] = {}
		for ex in exercises or []:
			self.add(ex)

	def add(self, exercise: Exercise) -> Exercise:
		self._items[exercise.id] = exercise
		return exercise

	def get(self, exercise_id: str) -> Exercise:
		try:
			return self._items[exercise_id]
		except KeyError:
			raise KeyError(exercise_id) from None

	def replace(self, exercise: Exercise) -> Exercise:
		if exercise.id not in self._items:
			raise KeyError(exercise.id)
		self._items[exercise.id] = exercise
		return exercise

	def all(self) -> List[Exercise]:
		return list(self._items.values())

	def __len__(self) -> int:
		return len(self._items)

	def __iter__(self) -> Iterator[Exercise]:
		return iter(self.all())

	def __contains__(self, exercise_id: object) -> bool:
		return exercise_id in self._items


class ExercisePipeline:
	"""Acquisition -> transcription -> question generation -> catalog.

	Acquisition and transcription errors reach the caller. When
	``allow_metadata_only`` is set a failed transcription leaves the transcript
	empty and the exercise gets metadata-only questions instead.
	"""

	def __init__(
		self,
		acquisition: AcquisitionManager,
		transcriber: TranscriptionClient,
		generator: QuestionGenerator,
		catalog: Optional[ExerciseCatalog] = None,
	) -> None:
		self.acquisition = acquisition
		self.transcriber = transcriber
		self.generator = generator
		self.catalog = catalog if catalog is not None else ExerciseCatalog()

	async def import_local(self, path: Path, *, allow_metadata_only: bool = False) -> Exercise:
		asset = await self.acquisition.import_local(Path(path))
		return await self.assemble(asset, allow_metadata_only=allow_metadata_only)

	async def download_remote(
		self,
		url: str,
		title: Optional[str] = None,
		is_video_platform: bool = False,
		*,
		allow_metadata_only: bool = False,
		progress: Optional[ProgressCallback] = None,
	) -> Exercise:
		asset = await self.acquisition.download_remote(
			url, title, is_video_platform, progress=progress
		)
		return await self.assemble(asset, allow_metadata_only=allow_metadata_only)

	async def assemble(self, asset: AudioAsset, *, allow_metadata_only: bool = False) -> Exercise:
		transcript = ""
		try:
			transcript = await self.transcriber.transcribe(asset.path)
		except ListeningError as exc:
			if not allow_metadata_only:
				LOGGER.warning("Transcription of %s failed, discarding the stored audio: %s", asset.file_name, exc)
				self.acquisition.discard(asset.file_name)
				raise
			LOGGER.warning("Transcription of %s failed, using metadata-only questions: %s", asset.file_name, exc)

		if transcript:
			result = await self.generator.generate_result(transcript)
		else:
			result = self.generator.basic_result(Difficulty.beginner)
		questions = result.questions

		exercise = Exercise(
			title=asset.title,
			audio_file_name=asset.file_name,
			duration=asset.duration,
			transcript=transcript,
			questions=questions,
			difficulty=questions[0].difficulty if questions else Difficulty.beginner,
			type=ExerciseType.extensive,
			artist=asset.artist,
			album=asset.album,
		)
		self.catalog.add(exercise)
		LOGGER.info(
			"Exercise %s ready: %r with %d questions (%s)", exercise.id, exercise.title, len(questions), result.tier.value
		)
		return exercise
