from __future__ import annotations
import httpx
from typing import Any, Dict, Optional

from .errors import ParseError, TransportError
from .settings import Settings

class CompletionClient:
	def __init__(
		self,
		api_key: Optional[str],
		*,
		base_url: str,
		model: str = "text-generation",
		max_tokens: int = 1000,
		temperature: float = 0.7,
		top_p: float = 0.9,
		timeout: float = 60.0,
		client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self.api_key = api_key
		self.model = model
		# e.g. https://api.deepseek.com/v1/text-generation/completions
		self.endpoint = f"{base_url.rstrip('/')}/{model}/completions"
		self.max_tokens = max_tokens
		self.temperature = temperature
		self.top_p = top_p
		self._owns_client = client is None
		self._client = client or httpx.AsyncClient(timeout=timeout)

	@classmethod
	def from_settings(cls, cfg: Settings, *, client: Optional[httpx.AsyncClient] = None) -> "CompletionClient":
		return cls(
			cfg.deepseek_api_key,
			base_url=cfg.deepseek_base_url,
			model=cfg.deepseek_model,
			max_tokens=cfg.completion_max_tokens,
			temperature=cfg.completion_temperature,
			top_p=cfg.completion_top_p,
			timeout=cfg.completion_timeout,
			client=client,
		)

	async def generate(self, prompt: str) -> str:
		if not self.api_key:
			raise TransportError("completion API key is not configured")
		payload: Dict[str, Any] = {
			"prompt": prompt,
			"max_tokens": self.max_tokens,
			"temperature": self.temperature,
			"top_p": self.top_p,
		}
		headers = {
			"Authorization": f"Bearer {self.api_key}",
			"Content-Type": "application/json",
		}
		try:
			r = await self._client.post(self.endpoint, headers=headers, json=payload)
		except httpx.RequestError as net_err:
			raise TransportError(f"completion request failed: {net_err}") from net_err
		if not r.is_success:
			raise TransportError(
				f"completion endpoint returned HTTP {r.status_code}",
				status_code=r.status_code,
				body=r.text,
			)
		try:
			data = r.json()
			text = data["choices"][0]["text"]
		except Exception as err:
			raise ParseError(f"Unexpected completion response: {r.text}") from err
		if not isinstance(text, str):
			raise ParseError(f"Unexpected completion response: {r.text}")
		return text

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()
