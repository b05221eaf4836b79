"""FastAPI dependency injection for authentication and app-scoped services.

Services are created once in the application lifespan and stored on
``app.state``; these dependencies hand them to endpoints.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.companion.chat.pipeline import TurnPipeline
from src.companion.core.cache import TtsCache
from src.companion.core.security import AuthenticatedUser, verify_token
from src.companion.services.generation import GenerationClient

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> AuthenticatedUser:
    """Resolve the caller from the ``Authorization: Bearer`` header.

    Raises:
        HTTPException(401): If the header is missing or the token is invalid.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return verify_token(credentials.credentials)


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not initialized",
        )
    return service


async def get_pipeline(request: Request) -> TurnPipeline:
    return _service(request, "pipeline")


async def get_generation_client(request: Request) -> GenerationClient:
    return _service(request, "generation_client")


async def get_tts_cache(request: Request) -> TtsCache:
    return _service(request, "tts_cache")
