"""HTTP tests for the chat, speech, health and metrics endpoints.

Builds the app with create_app() and installs test doubles on app.state
(the lifespan is not run), then drives it through httpx ASGITransport.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from src.companion.config import get_settings
from src.companion.core.cache import TtsCache
from src.companion.main import create_app
from src.companion.schemas.generation import SpeechResponse
from src.companion.services.generation import RetriesExhaustedError


def _token(sub: str = "user-1", audience: str = "authenticated", expired: bool = False) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    exp = now - timedelta(minutes=5) if expired else now + timedelta(hours=1)
    return jwt.encode(
        {"sub": sub, "email": "user@example.com", "aud": audience, "exp": exp, "iat": now},
        settings.SUPABASE_JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


AUTH = {"Authorization": f"Bearer {_token()}"}


@pytest.fixture
def speech_client() -> MagicMock:
    client = MagicMock()
    client.synthesize_speech = AsyncMock(return_value=SpeechResponse(audio="UklGRg=="))
    return client


@pytest_asyncio.fixture
async def api(pipeline, store, speech_client, clock):
    app = create_app()
    app.state.pipeline = pipeline
    app.state.session_store = store
    app.state.generation_client = speech_client
    app.state.tts_cache = TtsCache(ttl_seconds=3600, max_entries=10, clock=clock)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await pipeline.drain()


class TestAuth:
    async def test_missing_token(self, api):
        response = await api.post(
            "/api/v1/chat", json={"message": "ሰላም", "session_id": "s-1", "language": "am"}
        )
        assert response.status_code == 401

    async def test_wrong_audience(self, api):
        response = await api.post(
            "/api/v1/chat",
            json={"message": "ሰላም", "session_id": "s-1", "language": "am"},
            headers={"Authorization": f"Bearer {_token(audience='anon')}"},
        )
        assert response.status_code == 401

    async def test_expired_token(self, api):
        response = await api.post(
            "/api/v1/chat/end",
            json={"session_id": "s-1"},
            headers={"Authorization": f"Bearer {_token(expired=True)}"},
        )
        assert response.status_code == 401


class TestValidation:
    async def test_invalid_language(self, api):
        response = await api.post(
            "/api/v1/chat",
            json={"message": "hello", "session_id": "s-1", "language": "en"},
            headers=AUTH,
        )

        assert response.status_code == 400
        assert response.json()["error"].startswith("Validation error on 'language'")

    async def test_blank_message(self, api):
        response = await api.post(
            "/api/v1/chat",
            json={"message": "   ", "session_id": "s-1", "language": "am"},
            headers=AUTH,
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "Validation error on 'message': Required non-empty string"
        }

    async def test_missing_session_id(self, api):
        response = await api.post(
            "/api/v1/chat", json={"message": "hi", "language": "am"}, headers=AUTH
        )
        assert response.status_code == 400
        assert "'session_id'" in response.json()["error"]

    async def test_message_too_long(self, api):
        response = await api.post(
            "/api/v1/chat",
            json={"message": "a" * 2001, "session_id": "s-1", "language": "am"},
            headers=AUTH,
        )
        assert response.status_code == 400

    async def test_mood_out_of_range(self, api):
        response = await api.post(
            "/api/v1/chat/end", json={"session_id": "s-1", "mood_after": 6}, headers=AUTH
        )
        assert response.status_code == 400
        assert "'mood_after'" in response.json()["error"]


class TestChat:
    async def test_crisis_response(self, api, generation_client):
        response = await api.post(
            "/api/v1/chat",
            json={"message": "ልሞት", "session_id": "s-1", "language": "am"},
            headers=AUTH,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["escalation"] is True
        assert data["tier"] == 1
        assert data["should_disable_input"] is True
        assert "+251-111-550-909" in data["response_text"]
        generation_client.generate.assert_not_awaited()

    async def test_generated_reply(self, api, store):
        response = await api.post(
            "/api/v1/chat",
            json={"message": "ሰላም", "session_id": "s-1", "language": "am", "mood_before": 3},
            headers=AUTH,
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["escalation"] is False
        assert data["session_id"] == "s-1"
        assert data["turn_count"] == 1
        assert data["usage"]["total_token_count"] == 20
        assert "tier" not in data
        assert store.get("user-1", "s-1") is not None

    async def test_provider_failure_is_502(self, api, generation_client):
        generation_client.generate.side_effect = RetriesExhaustedError(
            "Generation request failed after 3 attempts. Status: 503, Code: None",
            status=503,
            attempts=3,
        )

        response = await api.post(
            "/api/v1/chat",
            json={"message": "ሰላም", "session_id": "s-1", "language": "am"},
            headers=AUTH,
        )

        assert response.status_code == 502
        assert response.json()["status"] == 503

    async def test_request_id_header(self, api):
        response = await api.post(
            "/api/v1/chat",
            json={"message": "ሰላም", "session_id": "s-1", "language": "am"},
            headers=AUTH,
        )
        assert "X-Request-ID" in response.headers


class TestEndSession:
    async def test_end(self, api, repository):
        await api.post(
            "/api/v1/chat",
            json={"message": "ሰላም", "session_id": "s-1", "language": "am"},
            headers=AUTH,
        )

        response = await api.post(
            "/api/v1/chat/end", json={"session_id": "s-1", "mood_after": 5}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json() == {"ended": True, "session_id": "s-1"}
        assert repository.conversations[0].mood_after == 5

    async def test_end_unknown_session(self, api):
        response = await api.post("/api/v1/chat/end", json={"session_id": "nope"}, headers=AUTH)
        assert response.status_code == 200
        assert response.json()["ended"] is True

    async def test_persistence_failure_is_500(self, api, repository):
        await api.post(
            "/api/v1/chat",
            json={"message": "ሰላም", "session_id": "s-1", "language": "am"},
            headers=AUTH,
        )
        repository.fail_conversation_writes = True

        response = await api.post("/api/v1/chat/end", json={"session_id": "s-1"}, headers=AUTH)

        assert response.status_code == 500


class TestSpeech:
    async def test_second_request_served_from_cache(self, api, speech_client):
        body = {"text": "ሰላም", "language": "am"}

        first = await api.post("/api/v1/speech", json=body, headers=AUTH)
        second = await api.post("/api/v1/speech", json=body, headers=AUTH)

        assert first.json() == {"audio": "UklGRg==", "cached": False}
        assert second.json() == {"audio": "UklGRg==", "cached": True}
        speech_client.synthesize_speech.assert_awaited_once()


class TestInfrastructure:
    async def test_health_reports_active_sessions(self, api):
        await api.post(
            "/api/v1/chat",
            json={"message": "ሰላም", "session_id": "s-1", "language": "am"},
            headers=AUTH,
        )

        response = await api.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["active_sessions"] == 1

    async def test_metrics(self, api):
        response = await api.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text
