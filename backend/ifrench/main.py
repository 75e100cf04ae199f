from __future__ import annotations
import logging
from typing import Optional

from fastapi import FastAPI

from .db import create_tables
from .logging_config import configure_logging
from .routers import exercises
from .services import Services, build_services
from .settings import settings

LOGGER = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
	"""Build the app; run with ``uvicorn ifrench.main:create_app --factory``."""
	if services is None:
		configure_logging(settings.log_level)
		services = build_services(settings)

	app = FastAPI(title="iFrench Listening API")
	app.state.services = services
	app.include_router(exercises.router)

	@app.get("/info")
	def info():
		return {
			"status": "ok",
			"exercises": len(services.catalog),
			"completion_configured": bool(services.settings.deepseek_api_key),
			"credentials_configured": services.settings.credentials_file is not None,
		}

	@app.on_event("startup")
	async def startup_event():
		# Initialize DB schema
		if services.engine is not None:
			create_tables(services.engine)
		LOGGER.info("Audio storage at %s", services.acquisition.storage_root)

	@app.on_event("shutdown")
	async def shutdown_event():
		await services.aclose()

	return app
