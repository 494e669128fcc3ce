"""
Gateway to the language-model completion endpoint.

Wraps one OpenAI-compatible chat completion call with a timeout, linear
retry backoff, JSON sanitization of the response and cancellation by the
run's stop signal.
"""

import logging
from typing import Any, Callable, Dict, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from app.config import settings
from app.errors import GenerationStopped
from app.services.cancellation import CancellationToken
from app.utils.json_extraction import extract_json

logger = logging.getLogger(__name__)

StatusSink = Callable[[str], None]

SYSTEM_PROMPT = (
    "You are a friendly personal day-planning assistant. "
    "Always answer with valid JSON only, without any extra text."
)


class ModelAttemptFailed(Exception):
    """A single completion attempt produced nothing usable (retryable)."""

    pass


# Failures worth another attempt; anything else propagates
RETRYABLE_ERRORS = (httpx.HTTPError, ModelAttemptFailed, ValueError)


def retry_delay(attempt: int, max_attempts: int, base_delay: float) -> Optional[float]:
    """
    Linear backoff policy.

    Args:
        attempt: Number of the attempt that just failed (1-based)
        max_attempts: Total attempts allowed
        base_delay: Delay unit in seconds

    Returns:
        Seconds to wait before the next attempt, or None to give up
    """
    if attempt >= max_attempts:
        return None
    return base_delay * attempt


class ModelGateway:
    """Client for the language-model completion endpoint."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.api_url = settings.llm_api_url
        self.api_key = settings.llm_api_key
        self.model = settings.llm_model
        self.temperature = settings.llm_temperature
        self.timeout = settings.llm_timeout
        self.max_attempts = settings.llm_max_attempts
        self.base_delay = settings.llm_retry_base_delay
        self.http_client = http_client or httpx.AsyncClient(timeout=self.timeout)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(self, prompt: str, system_prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
        }

    async def _request(self, prompt: str, system_prompt: str) -> str:
        """Perform one completion request and return the raw text content."""
        response = await self.http_client.post(
            self.api_url,
            json=self._payload(prompt, system_prompt),
            headers=self._headers(),
            timeout=self.timeout,
        )
        response.raise_for_status()
        if not response.content:
            raise ModelAttemptFailed("Empty response body")

        data = response.json()
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise ModelAttemptFailed("Response contained no choices")

        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ModelAttemptFailed("Model returned no content")
        return content

    @staticmethod
    def _notify(status: Optional[StatusSink], text: str) -> None:
        if status is not None:
            status(text)

    async def complete(
        self,
        prompt: str,
        max_attempts: Optional[int] = None,
        *,
        base_delay: Optional[float] = None,
        token: Optional[CancellationToken] = None,
        status: Optional[StatusSink] = None,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> Optional[Any]:
        """
        Ask the model for a JSON value.

        Args:
            prompt: User prompt text
            max_attempts: Attempts before giving up (defaults to settings)
            base_delay: Backoff unit in seconds (defaults to settings)
            token: Run cancellation token; firing it aborts the in-flight call
            status: Optional observer receiving progress text
            system_prompt: System message sent with the prompt

        Returns:
            The parsed JSON value, or None once attempts are exhausted

        Raises:
            GenerationStopped: The token fired; never retried
        """
        attempts = max_attempts or self.max_attempts
        delay_unit = self.base_delay if base_delay is None else base_delay
        token = token or CancellationToken()

        def wait(retry_state: RetryCallState) -> float:
            return retry_delay(retry_state.attempt_number, attempts, delay_unit) or 0.0

        def before_attempt(retry_state: RetryCallState) -> None:
            self._notify(status, f"Generating (attempt {retry_state.attempt_number}/{attempts})...")

        def before_sleep(retry_state: RetryCallState) -> None:
            logger.warning(
                f"Model attempt {retry_state.attempt_number}/{attempts} failed: "
                f"{retry_state.outcome.exception()}"
            )
            self._notify(status, f"Retrying in {retry_state.next_action.sleep:.1f}s...")

        def give_up(retry_state: RetryCallState) -> None:
            logger.warning(
                f"Model attempt {retry_state.attempt_number}/{attempts} failed: "
                f"{retry_state.outcome.exception()}; giving up"
            )
            self._notify(status, "Model unavailable, using fallback")
            return None

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait,
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            sleep=token.sleep,
            before=before_attempt,
            before_sleep=before_sleep,
            retry_error_callback=give_up,
        )
        try:
            return await retrying(self._attempt, prompt, system_prompt, token)
        except GenerationStopped:
            logger.info("Model call aborted by stop request")
            raise

    async def _attempt(self, prompt: str, system_prompt: str, token: CancellationToken) -> Any:
        token.raise_if_cancelled()
        raw = await token.run(self._request(prompt, system_prompt))
        value = extract_json(raw)
        if value is None:
            raise ModelAttemptFailed("Response did not contain valid JSON")
        return value
