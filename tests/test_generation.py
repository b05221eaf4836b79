"""Tests for the resilient generation client.

HTTP is mocked by patching httpx.AsyncClient.post with canned
httpx.Response objects; backoff sleeps and jitter are injected so no test
actually waits.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.companion.schemas.conversation import ConversationEntry, EntryRole, Language
from src.companion.schemas.generation import (
    GenerationConfig,
    GenerationRequest,
    SpeechRequest,
)
from src.companion.services.generation import (
    GenerationClient,
    GenerationError,
    ProviderRequestError,
    RateLimitExceededError,
    RetriesExhaustedError,
)

API_KEY = "sk-test-secret-key"

_REQUEST = httpx.Request("POST", "https://test.com")

_OK_BODY = {
    "response_text": "ሰላም! እንዴት ነህ?",
    "finish_reason": "STOP",
    "usage_metadata": {
        "prompt_token_count": 30,
        "candidates_token_count": 10,
        "total_token_count": 40,
    },
    "modelVersion": "addis-1",
}


def _ok() -> httpx.Response:
    return httpx.Response(200, json=_OK_BODY, request=_REQUEST)


def _error(status: int, code: str = "upstream_error", headers: dict | None = None) -> httpx.Response:
    return httpx.Response(
        status,
        json={"error": {"code": code, "message": "failed"}},
        headers=headers or {},
        request=_REQUEST,
    )


def _request() -> GenerationRequest:
    return GenerationRequest(
        prompt="ሰላም",
        target_language=Language.AMHARIC,
        conversation_history=[ConversationEntry(role=EntryRole.SYSTEM, content="persona")],
        generation_config=GenerationConfig(temperature=0.6),
    )


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
async def client(sleep):
    generation_client = GenerationClient(
        api_key=API_KEY,
        base_url="https://api.addisassistant.com/api/v1",
        max_attempts=3,
        default_retry_after=5.0,
        sleep=sleep,
        jitter=lambda: 0.25,
    )
    yield generation_client
    await generation_client.aclose()


class TestSuccess:
    async def test_generate_parses_response(self, client, sleep):
        with patch(
            "httpx.AsyncClient.post", new_callable=AsyncMock, return_value=_ok()
        ) as mock_post:
            response = await client.generate(_request())

        assert response.response_text == _OK_BODY["response_text"]
        assert response.usage_metadata.total_token_count == 40
        assert response.model_version == "addis-1"
        mock_post.assert_awaited_once()
        sleep.assert_not_awaited()

    async def test_payload_shape(self, client):
        with patch(
            "httpx.AsyncClient.post", new_callable=AsyncMock, return_value=_ok()
        ) as mock_post:
            await client.generate(
                GenerationRequest(
                    prompt="summarize",
                    target_language=Language.OROMO,
                    generation_config=GenerationConfig(temperature=0.3, max_output_tokens=200),
                )
            )

        path = mock_post.call_args.args[0]
        payload = mock_post.call_args.kwargs["json"]
        assert path == "/chat_generate"
        assert payload["target_language"] == "om"
        assert payload["generation_config"] == {"temperature": 0.3, "maxOutputTokens": 200}
        assert payload["conversation_history"] == []

    async def test_api_key_sent_as_header(self, client):
        assert client._http.headers["X-API-Key"] == API_KEY

    async def test_synthesize_speech(self, client):
        response = httpx.Response(200, json={"audio": "UklGRg=="}, request=_REQUEST)
        with patch(
            "httpx.AsyncClient.post", new_callable=AsyncMock, return_value=response
        ) as mock_post:
            result = await client.synthesize_speech(
                SpeechRequest(text="ሰላም", language=Language.AMHARIC)
            )

        assert result.audio == "UklGRg=="
        assert mock_post.call_args.args[0] == "/audio"
        assert mock_post.call_args.kwargs["json"] == {"text": "ሰላም", "language": "am"}


class TestRateLimit:
    async def test_429_then_success_waits_once(self, client, sleep):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=[_error(429, "rate_limited", {"Retry-After": "2"}), _ok()],
        ) as mock_post:
            response = await client.generate(_request())

        assert response.response_text == _OK_BODY["response_text"]
        assert mock_post.await_count == 2
        # retry_after * 2^0 + jitter
        sleep.assert_awaited_once_with(2.25)

    async def test_missing_retry_after_uses_default(self, client, sleep):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=[_error(429), _ok()],
        ):
            await client.generate(_request())

        sleep.assert_awaited_once_with(5.25)

    async def test_backoff_doubles_per_attempt(self, client, sleep):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=[
                _error(429, headers={"Retry-After": "1"}),
                _error(429, headers={"Retry-After": "1"}),
                _ok(),
            ],
        ):
            await client.generate(_request())

        assert [c.args[0] for c in sleep.await_args_list] == [1.25, 2.25]

    async def test_exhausted_on_429_raises_rate_limit_error(self, client, sleep):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=[_error(429, "quota")] * 3,
        ) as mock_post:
            with pytest.raises(RateLimitExceededError) as exc_info:
                await client.generate(_request())

        assert mock_post.await_count == 3
        assert sleep.await_count == 2
        assert exc_info.value.status == 429
        assert exc_info.value.code == "quota"
        assert exc_info.value.attempts == 3


class TestServerErrors:
    async def test_5xx_backoff_is_exponential(self, client, sleep):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=[_error(503), _error(500), _ok()],
        ):
            await client.generate(_request())

        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    async def test_exhausted_on_5xx(self, client):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=[_error(502, "bad_gateway")] * 3,
        ):
            with pytest.raises(RetriesExhaustedError) as exc_info:
                await client.generate(_request())

        error = exc_info.value
        assert not isinstance(error, RateLimitExceededError)
        assert error.status == 502
        assert error.code == "bad_gateway"
        assert "failed after 3 attempts" in str(error)
        assert API_KEY not in str(error)

    async def test_transport_error_is_retried(self, client, sleep):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=[httpx.ConnectTimeout("timed out"), _ok()],
        ):
            response = await client.generate(_request())

        assert response.finish_reason == "STOP"
        sleep.assert_awaited_once_with(2.0)

    async def test_each_call_has_its_own_attempt_counter(self, client, sleep):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=[_error(503), _ok(), _error(503), _ok()],
        ):
            await client.generate(_request())
            await client.generate(_request())

        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 2.0]


class TestClientErrors:
    @pytest.mark.parametrize("status", [400, 401, 403, 422])
    async def test_non_429_4xx_not_retried(self, client, sleep, status):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            return_value=_error(status, "invalid_request"),
        ) as mock_post:
            with pytest.raises(ProviderRequestError) as exc_info:
                await client.generate(_request())

        mock_post.assert_awaited_once()
        sleep.assert_not_awaited()
        assert exc_info.value.status == status
        assert exc_info.value.code == "invalid_request"

    async def test_error_without_json_body(self, client):
        response = httpx.Response(400, text="bad request", request=_REQUEST)
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=response):
            with pytest.raises(ProviderRequestError) as exc_info:
                await client.generate(_request())

        assert exc_info.value.code is None


class TestMissingApiKey:
    async def test_calls_fail_without_touching_network(self, sleep):
        client = GenerationClient(api_key="", base_url="https://example.test", sleep=sleep)
        try:
            with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
                with pytest.raises(GenerationError):
                    await client.generate(_request())
            mock_post.assert_not_awaited()
        finally:
            await client.aclose()
