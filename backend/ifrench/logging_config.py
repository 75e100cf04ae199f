"""Logging setup for the iFrench service."""

from __future__ import annotations

import logging
from typing import Union

DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
NOISY_LOGGERS = ("httpx", "httpcore")

_HANDLER_NAME = "ifrench-stream"


def configure_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
	"""Configure the root logger once; later calls only adjust the level."""
	if isinstance(level, str):
		level = logging.getLevelName(level.upper())
		if not isinstance(level, int):
			level = logging.INFO
	logger = logging.getLogger()
	logger.setLevel(level)

	if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
		handler = logging.StreamHandler()
		handler.set_name(_HANDLER_NAME)
		handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
		logger.addHandler(handler)

	for name in NOISY_LOGGERS:
		logging.getLogger(name).setLevel(logging.WARNING)
	return logger
