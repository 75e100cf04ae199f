from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.engine import Engine

from .acquisition import AcquisitionManager
from .completion_client import CompletionClient
from .credentials import CredentialManager
from .db import make_engine, make_session_factory
from .feedback import FeedbackAdvisor
from .pipeline import ExerciseCatalog, ExercisePipeline
from .question_generation import QuestionGenerator
from .session import ClockedPlayer, ExerciseSession
from .settings import Settings
from .stats import SqlStatsSink, StatsSink
from .transcription import TranscriptionClient


@dataclass
class Services:
	settings: Settings
	acquisition: AcquisitionManager
	transcriber: TranscriptionClient
	generator: QuestionGenerator
	catalog: ExerciseCatalog
	pipeline: ExercisePipeline
	session: ExerciseSession
	stats: StatsSink
	advisor: FeedbackAdvisor
	engine: Optional[Engine] = None
	http: Optional[httpx.AsyncClient] = None

	async def aclose(self) -> None:
		if self.http is not None:
			await self.http.aclose()
		if self.engine is not None:
			self.engine.dispose()


def build_services(cfg: Settings) -> Services:
	"""Wire every component explicitly from one settings object."""
	http = httpx.AsyncClient(timeout=cfg.download_timeout, follow_redirects=True)
	engine = make_engine(cfg.database_url)
	stats = SqlStatsSink(make_session_factory(engine))

	credentials = CredentialManager.from_settings(cfg, client=http)
	transcriber = TranscriptionClient.from_settings(cfg, credentials, client=http)
	completion = CompletionClient.from_settings(cfg, client=http)
	remote = completion if cfg.deepseek_api_key else None
	generator = QuestionGenerator(remote)
	advisor = FeedbackAdvisor(remote)
	acquisition = AcquisitionManager.from_settings(cfg, client=http)
	catalog = ExerciseCatalog()
	pipeline = ExercisePipeline(acquisition, transcriber, generator, catalog)
	session = ExerciseSession(ClockedPlayer(), generator, stats, acquisition.storage_root)
	return Services(
		settings=cfg,
		acquisition=acquisition,
		transcriber=transcriber,
		generator=generator,
		catalog=catalog,
		pipeline=pipeline,
		session=session,
		stats=stats,
		advisor=advisor,
		engine=engine,
		http=http,
	)
