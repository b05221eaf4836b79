"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.companion.api.v1 import chat, health, speech

router = APIRouter()

router.include_router(health.router)
router.include_router(chat.router)
router.include_router(speech.router)
