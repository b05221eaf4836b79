"""Resilient async client for the Addis AI generation provider.

Wraps ``POST /chat_generate`` and ``POST /audio`` behind one retry core built
on tenacity. Each public call gets its own attempt counter:

- 429: wait ``retry_after * 2^(attempt-1)`` plus up to 0.5s of jitter, where
  ``retry_after`` comes from the ``Retry-After`` header (default 5s).
- 5xx, timeouts and connection errors: wait ``2^attempt`` seconds.
- Any other 4xx: raise ProviderRequestError without retrying.

When attempts run out a RetriesExhaustedError (RateLimitExceededError if the
last failure was a 429) carries the last status and provider error code.
The API key is only ever sent as a header and never appears in errors or logs.
"""

from __future__ import annotations

import random
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
)

from src.companion.core.monitoring import record_retry, track_generation_call
from src.companion.schemas.generation import (
    GenerationRequest,
    GenerationResponse,
    SpeechRequest,
    SpeechResponse,
)

logger = structlog.get_logger(__name__)

MAX_JITTER_SECONDS = 0.5


# ── Errors ───────────────────────────────────────────────────────────────────


class GenerationError(Exception):
    """Base class for provider failures surfaced to callers."""

    def __init__(
        self, message: str, status: int | None = None, code: str | None = None
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class ProviderRequestError(GenerationError):
    """Provider rejected the request with a non-retryable 4xx status."""


class RetriesExhaustedError(GenerationError):
    """Every attempt failed with a retryable status."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        code: str | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, status=status, code=code)
        self.attempts = attempts


class RateLimitExceededError(RetriesExhaustedError):
    """Attempts ran out while the provider kept answering 429."""


class _RetryableProviderError(Exception):
    """One failed attempt that the retry policy may repeat."""

    def __init__(
        self, status: int, code: str | None = None, retry_after: float | None = None
    ) -> None:
        super().__init__(f"status={status} code={code}")
        self.status = status
        self.code = code
        self.retry_after = retry_after

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


def _error_code(response: httpx.Response) -> str | None:
    """Extract ``error.code`` from a provider error body, if present."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        code = body["error"].get("code")
        return str(code) if code is not None else None
    return None


def _parse_retry_after(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return max(float(value), 0.0)
    except ValueError:
        return default


def _default_jitter() -> float:
    return random.uniform(0, MAX_JITTER_SECONDS)


# ── Client ───────────────────────────────────────────────────────────────────


class GenerationClient:
    """Async client for the generation provider with bounded retries.

    Args:
        api_key: Provider API key, sent as ``X-API-Key``.
        base_url: Provider API root.
        timeout: Per-attempt timeout in seconds.
        max_attempts: Total attempts per call, including the first.
        default_retry_after: Seconds used when a 429 carries no Retry-After.
        sleep: Awaitable sleep used between attempts (injectable for tests).
        jitter: Returns the extra seconds added to rate-limit waits.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 30.0,
        max_attempts: int = 3,
        default_retry_after: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        jitter: Callable[[], float] | None = None,
    ) -> None:
        self._api_key = api_key
        self._max_attempts = max_attempts
        self._default_retry_after = default_retry_after
        self._jitter = jitter or _default_jitter
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "X-API-Key": api_key,
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

        if not api_key:
            logger.warning(
                "generation.no_api_key",
                msg="ADDIS_AI_API_KEY not configured, generation calls will fail",
            )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Public API ───────────────────────────────────────────────────────────

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Send a chat generation request.

        Args:
            request: Prompt, target language, history and sampling config.

        Returns:
            Parsed GenerationResponse.

        Raises:
            ProviderRequestError: Non-retryable 4xx from the provider.
            RetriesExhaustedError: All attempts failed (RateLimitExceededError
                when the last one was a 429).
        """
        async with track_generation_call("chat") as tracker:
            data = await self._request("chat", "/chat_generate", request.to_payload())
            response = GenerationResponse.model_validate(data)
            tracker["prompt_tokens"] = response.usage_metadata.prompt_token_count
            tracker["completion_tokens"] = response.usage_metadata.candidates_token_count

        logger.info(
            "generation.completed",
            language=request.target_language.value,
            history_entries=len(request.conversation_history),
            finish_reason=response.finish_reason,
            total_tokens=response.usage_metadata.total_token_count,
        )
        return response

    async def synthesize_speech(self, request: SpeechRequest) -> SpeechResponse:
        """Convert text to base64 audio through ``POST /audio``."""
        async with track_generation_call("speech"):
            data = await self._request("speech", "/audio", request.to_payload())
            response = SpeechResponse.model_validate(data)

        logger.info(
            "generation.speech_completed",
            language=request.language.value,
            text_length=len(request.text),
        )
        return response

    # ── Retry core ───────────────────────────────────────────────────────────

    async def _request(self, operation: str, path: str, payload: dict) -> dict:
        if not self._api_key:
            raise GenerationError("ADDIS_AI_API_KEY is not configured")

        retry_kwargs: dict[str, Any] = {
            "stop": stop_after_attempt(self._max_attempts),
            "wait": self._backoff_delay,
            "retry": retry_if_exception_type(_RetryableProviderError),
            "before_sleep": self._before_sleep(operation),
        }
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep

        try:
            async for attempt in AsyncRetrying(**retry_kwargs):
                with attempt:
                    return await self._attempt(path, payload)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            raise self._exhausted(operation, last) from last

        raise GenerationError(f"{operation} request produced no result")

    async def _attempt(self, path: str, payload: dict) -> dict:
        """Run a single HTTP attempt and classify its outcome."""
        try:
            response = await self._http.post(path, json=payload)
        except httpx.TransportError as exc:
            logger.warning(
                "generation.transport_error",
                path=path,
                error_type=type(exc).__name__,
            )
            raise _RetryableProviderError(status=0) from exc

        status = response.status_code
        if status == 429:
            raise _RetryableProviderError(
                status=status,
                code=_error_code(response),
                retry_after=_parse_retry_after(
                    response.headers.get("retry-after"), self._default_retry_after
                ),
            )
        if status >= 500:
            raise _RetryableProviderError(status=status, code=_error_code(response))
        if status >= 400:
            code = _error_code(response)
            logger.warning("generation.request_rejected", path=path, status=status, code=code)
            raise ProviderRequestError(
                f"Generation provider rejected request. Status: {status}, Code: {code}",
                status=status,
                code=code,
            )
        return response.json()

    def _backoff_delay(self, retry_state: RetryCallState) -> float:
        """Seconds to wait after the attempt that just failed."""
        attempt = retry_state.attempt_number
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, _RetryableProviderError) and error.rate_limited:
            retry_after = (
                error.retry_after
                if error.retry_after is not None
                else self._default_retry_after
            )
            return retry_after * 2 ** (attempt - 1) + self._jitter()
        return float(2**attempt)

    def _before_sleep(self, operation: str) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            status = getattr(error, "status", None)
            reason = "rate_limited" if status == 429 else "server_error"
            record_retry(operation, reason)
            logger.warning(
                "generation.retry_scheduled",
                operation=operation,
                attempt=retry_state.attempt_number,
                status=status,
                delay=round(retry_state.next_action.sleep, 3),
            )

        return log_retry

    def _exhausted(
        self, operation: str, last: BaseException | None
    ) -> RetriesExhaustedError:
        status = getattr(last, "status", None)
        code = getattr(last, "code", None)
        message = (
            f"Generation request failed after {self._max_attempts} attempts. "
            f"Status: {status}, Code: {code}"
        )
        logger.error(
            "generation.retries_exhausted",
            operation=operation,
            attempts=self._max_attempts,
            status=status,
            code=code,
        )
        error_cls = RateLimitExceededError if status == 429 else RetriesExhaustedError
        return error_cls(message, status=status, code=code, attempts=self._max_attempts)
