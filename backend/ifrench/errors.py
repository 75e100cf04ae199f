"""Exception taxonomy for the exercise ingestion pipeline.

Acquisition and transcription raise these to their callers unchanged. Question
generation never lets them escape; the session records playback problems on
its ``error`` attribute instead of raising.
"""

from __future__ import annotations

from typing import Optional


UNSUPPORTED_FORMAT = "unsupported_format"
INVALID_URL = "invalid_url"
UNREADABLE_AUDIO = "unreadable_audio"
MISSING_SOURCE = "missing_source"
INVALID_ANSWER = "invalid_answer"


class ListeningError(Exception):
	"""Base class for every error raised by the pipeline."""


class ValidationError(ListeningError):
	def __init__(self, reason: str, value: str = "", message: Optional[str] = None) -> None:
		self.reason = reason
		self.value = value
		super().__init__(message or (f"{reason}: {value}" if value else reason))


class AuthError(ListeningError):
	"""Credential document, signing or token exchange failure."""


class TransportError(ListeningError):
	def __init__(self, message: str, *, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
		self.status_code = status_code
		self.body = body
		super().__init__(message)


class NetworkError(TransportError):
	"""Download of a remote audio source failed."""


class PollingTimeoutError(ListeningError, TimeoutError):
	def __init__(self, attempts: int) -> None:
		self.attempts = attempts
		super().__init__(f"operation not done after {attempts} polls")


class ParseError(ListeningError):
	"""A remote response did not have the expected shape."""


class PlaybackError(ListeningError):
	"""Audio resource missing or unreadable."""


class SessionError(ListeningError):
	"""Operation needs a selected exercise (or a loaded audio resource)."""
