"""FastAPI API endpoints under /api.

Endpoint groups: health and LLM status, story catalog, play sessions.
Session child actions (messages, hints, reset) are nested under
/api/sessions/{session_id}/.
"""

from fastapi import APIRouter

from .sessions import router as sessions_router
from .settings import router as settings_router
from .stories import router as stories_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(stories_router)
router.include_router(sessions_router)
