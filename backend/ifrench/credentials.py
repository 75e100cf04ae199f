from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import httpx
from jose import jwt
from jose.exceptions import JOSEError

from .errors import AuthError, TransportError
from .schemas import BearerToken
from .settings import Settings

LOGGER = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


def load_service_credentials(path: Optional[Path]) -> Tuple[str, str]:
	"""Return ``(issuer, private_key_pem)`` from a service-account document."""
	if path is None:
		raise AuthError("no credential document configured")
	try:
		raw = Path(path).read_text(encoding="utf-8")
	except OSError as exc:
		raise AuthError(f"cannot read credential document {path}: {exc}") from exc
	try:
		doc = json.loads(raw)
	except ValueError as exc:
		raise AuthError(f"credential document {path} is not valid JSON") from exc
	if not isinstance(doc, dict):
		raise AuthError("credential document must be a JSON object")
	issuer = doc.get("client_email")
	private_key = doc.get("private_key")
	if not isinstance(issuer, str) or not issuer or not isinstance(private_key, str) or not private_key:
		raise AuthError("credential document is missing client_email or private_key")
	return issuer, private_key


class CredentialManager:
	"""Exchanges a signed service assertion for a cached bearer token.

	The cached token is replaced wholesale after each exchange. Concurrent
	refreshes may both hit the token endpoint; the last writer wins.
	"""

	def __init__(
		self,
		credentials_path: Optional[Path],
		*,
		token_uri: str,
		scope: str,
		assertion_lifetime: int = 3600,
		client: Optional[httpx.AsyncClient] = None,
		clock: Callable[[], float] = time.time,
	) -> None:
		self.credentials_path = credentials_path
		self.token_uri = token_uri
		self.scope = scope
		self.assertion_lifetime = assertion_lifetime
		self._clock = clock
		self._owns_client = client is None
		self._client = client or httpx.AsyncClient(timeout=30)
		self._token: Optional[BearerToken] = None

	@classmethod
	def from_settings(cls, cfg: Settings, *, client: Optional[httpx.AsyncClient] = None) -> "CredentialManager":
		return cls(
			cfg.credentials_file,
			token_uri=cfg.token_uri,
			scope=cfg.token_scope,
			assertion_lifetime=cfg.assertion_lifetime_seconds,
			client=client,
		)

	@property
	def cached_token(self) -> Optional[BearerToken]:
		return self._token

	def build_assertion(self) -> str:
		issuer, private_key = load_service_credentials(self.credentials_path)
		now = int(self._clock())
		claims: Dict[str, Any] = {
			"iss": issuer,
			"scope": self.scope,
			"aud": self.token_uri,
			"exp": now + self.assertion_lifetime,
			"iat": now,
		}
		try:
			# header {"alg": "RS256", "typ": "JWT"}; base64url segments without padding
			return jwt.encode(claims, private_key, algorithm="RS256")
		except (JOSEError, ValueError, TypeError) as exc:
			raise AuthError(f"failed to sign assertion: {exc}") from exc

	async def get_token(self) -> BearerToken:
		token = self._token
		if token is not None and token.is_valid(self._clock()):
			return token
		token = await self._exchange()
		self._token = token
		return token

	async def _exchange(self) -> BearerToken:
		assertion = self.build_assertion()
		LOGGER.debug("Exchanging service assertion at %s", self.token_uri)
		try:
			r = await self._client.post(
				self.token_uri,
				data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
				headers={"Content-Type": "application/x-www-form-urlencoded"},
			)
		except httpx.RequestError as exc:
			raise TransportError(f"token endpoint unreachable: {exc}") from exc
		if not r.is_success:
			raise AuthError(f"token exchange failed with HTTP {r.status_code}: {r.text}")
		try:
			data = r.json()
			value = data["access_token"]
			expires_in = float(data["expires_in"])
		except (ValueError, KeyError, TypeError) as exc:
			raise AuthError(f"unexpected token response: {r.text}") from exc
		if not isinstance(value, str) or not value:
			raise AuthError("token response carried an empty access_token")
		LOGGER.info("Obtained bearer token valid for %.0fs", expires_in)
		return BearerToken(value=value, expires_at=self._clock() + expires_in)

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()
