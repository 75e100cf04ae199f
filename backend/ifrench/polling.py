from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_attempt, wait_exponential, wait_fixed
from tenacity.wait import wait_base

from .errors import PollingTimeoutError
from .settings import Settings

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def constant_backoff(interval: float) -> wait_base:
	return wait_fixed(interval)


def exponential_backoff(interval: float) -> wait_base:
	# tenacity numbers the finished attempt; the wait precedes the next one
	return wait_exponential(multiplier=interval * 2)


BACKOFFS: Dict[str, Callable[[float], wait_base]] = {
	"constant": constant_backoff,
	"exponential": exponential_backoff,
}


@dataclass(frozen=True)
class RetryPolicy:
	max_attempts: int = 30
	interval: float = 2.0
	backoff: str = "constant"

	def __post_init__(self) -> None:
		if self.backoff not in BACKOFFS:
			raise ValueError(f"unknown poll backoff {self.backoff!r}; expected one of {sorted(BACKOFFS)}")

	def wait(self) -> wait_base:
		return BACKOFFS[self.backoff](self.interval)

	@classmethod
	def from_settings(cls, cfg: Settings) -> "RetryPolicy":
		return cls(max_attempts=cfg.speech_poll_attempts, interval=cfg.speech_poll_interval, backoff=cfg.speech_poll_backoff)


def _not_done(status: Dict[str, Any]) -> bool:
	return status.get("done") is not True


def _log_pending(retry_state) -> None:
	LOGGER.debug("Operation still running after poll %d", retry_state.attempt_number)


async def poll_until_done(
	fetch: Callable[[], Awaitable[Dict[str, Any]]],
	policy: RetryPolicy,
	*,
	sleep: Sleep = asyncio.sleep,
) -> Dict[str, Any]:
	"""Call ``fetch`` until it returns a status with ``done`` set.

	Every fetch is preceded by a wait, the first one included, so exhausting
	the policy performs exactly ``max_attempts`` fetches. Errors raised by
	``fetch`` are not retried.
	"""
	retrying = AsyncRetrying(
		stop=stop_after_attempt(policy.max_attempts),
		wait=policy.wait(),
		retry=retry_if_result(_not_done),
		before_sleep=_log_pending,
		sleep=sleep,
	)
	await sleep(policy.interval)
	try:
		status = await retrying(fetch)
	except RetryError as exc:
		raise PollingTimeoutError(policy.max_attempts) from exc
	LOGGER.debug("Operation finished")
	return status
