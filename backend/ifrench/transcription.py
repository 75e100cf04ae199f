from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from .credentials import CredentialManager
from .errors import ParseError, TransportError
from .polling import RetryPolicy, Sleep, poll_until_done
from .settings import Settings

LOGGER = logging.getLogger(__name__)


class TranscriptionClient:
	"""Uploads audio to object storage and drives a long-running recognition job."""

	def __init__(
		self,
		credentials: CredentialManager,
		*,
		upload_base_url: str,
		bucket: str,
		recognize_url: str,
		operations_url: str,
		recognition_config: Dict[str, Any],
		policy: Optional[RetryPolicy] = None,
		client: Optional[httpx.AsyncClient] = None,
		sleep: Sleep = asyncio.sleep,
	) -> None:
		self.credentials = credentials
		self.upload_base_url = upload_base_url.rstrip("/")
		self.bucket = bucket
		self.recognize_url = recognize_url
		self.operations_url = operations_url.rstrip("/")
		self.recognition_config = dict(recognition_config)
		self.policy = policy or RetryPolicy()
		self._sleep = sleep
		self._owns_client = client is None
		self._client = client or httpx.AsyncClient(timeout=60)

	@classmethod
	def from_settings(
		cls,
		cfg: Settings,
		credentials: CredentialManager,
		*,
		client: Optional[httpx.AsyncClient] = None,
	) -> "TranscriptionClient":
		return cls(
			credentials,
			upload_base_url=cfg.storage_upload_base_url,
			bucket=cfg.storage_bucket,
			recognize_url=cfg.speech_recognize_url,
			operations_url=cfg.speech_operations_url,
			recognition_config={
				"encoding": cfg.speech_encoding,
				"sampleRateHertz": cfg.speech_sample_rate_hertz,
				"languageCode": cfg.speech_language_code,
				"enableAutomaticPunctuation": True,
				"model": cfg.speech_model,
				"audioChannelCount": cfg.speech_audio_channel_count,
			},
			policy=RetryPolicy.from_settings(cfg),
			client=client,
		)

	async def transcribe(self, audio_path: Path) -> str:
		token = await self.credentials.get_token()
		uri = await self.upload(audio_path, token.value)
		operation = await self.submit(uri, token.value)
		LOGGER.info("Recognition job %s submitted for %s", operation, audio_path.name)

		async def fetch() -> Dict[str, Any]:
			return await self.fetch_operation(operation, token.value)

		status = await poll_until_done(fetch, self.policy, sleep=self._sleep)
		transcript = extract_transcript(status)
		if transcript is None:
			raise ParseError(f"operation {operation} finished without a transcript")
		LOGGER.info("Transcribed %s (%d chars)", audio_path.name, len(transcript))
		return transcript

	async def upload(self, audio_path: Path, token: str) -> str:
		key = f"{uuid.uuid4()}{audio_path.suffix.lower()}"
		content_type = mimetypes.guess_type(audio_path.name)[0] or "audio/mpeg"
		try:
			payload = await asyncio.to_thread(audio_path.read_bytes)
		except OSError as exc:
			raise TransportError(f"cannot read audio {audio_path}: {exc}") from exc
		url = f"{self.upload_base_url}/b/{self.bucket}/o"
		try:
			r = await self._client.post(
				url,
				params={"uploadType": "media", "name": key},
				headers={"Authorization": f"Bearer {token}", "Content-Type": content_type},
				content=payload,
			)
		except httpx.RequestError as exc:
			raise TransportError(f"upload failed: {exc}") from exc
		if not r.is_success:
			raise TransportError(f"upload failed: {r.text}", status_code=r.status_code, body=r.text)
		LOGGER.debug("Uploaded %d bytes as %s", len(payload), key)
		return f"gs://{self.bucket}/{key}"

	async def submit(self, uri: str, token: str) -> str:
		body = {"config": self.recognition_config, "audio": {"uri": uri}}
		data = await self._request_json("POST", self.recognize_url, token, json=body)
		name = data.get("name")
		if not isinstance(name, str) or not name:
			raise ParseError(f"recognition submission returned no operation name: {data}")
		return name

	async def fetch_operation(self, operation: str, token: str) -> Dict[str, Any]:
		return await self._request_json("GET", f"{self.operations_url}/{operation}", token)

	async def _request_json(self, method: str, url: str, token: str, **kwargs: Any) -> Dict[str, Any]:
		try:
			r = await self._client.request(method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs)
		except httpx.RequestError as exc:
			raise TransportError(f"{method} {url} failed: {exc}") from exc
		if not r.is_success:
			raise TransportError(
				f"{method} {url} returned HTTP {r.status_code}: {r.text}",
				status_code=r.status_code,
				body=r.text,
			)
		try:
			data = r.json()
		except ValueError as exc:
			raise ParseError(f"non-JSON response from {url}: {r.text}") from exc
		if not isinstance(data, dict):
			raise ParseError(f"unexpected response from {url}: {r.text}")
		return data

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()


def extract_transcript(status: Dict[str, Any]) -> Optional[str]:
	"""First alternative of the first result, or ``None`` when absent."""
	try:
		transcript = status["response"]["results"][0]["alternatives"][0]["transcript"]
	except (KeyError, IndexError, TypeError):
		return None
	return transcript if isinstance(transcript, str) else None
