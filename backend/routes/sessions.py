"""Play session endpoints: create, inspect, chat, hints, reset."""

from fastapi import APIRouter, Request

from storyplay.models import ChatMessage
from storyplay.orchestrator import GameSession
from storyplay.sessions import SessionStore

from .models import CreateSession, HintBody, MessageBody, ResetBody

router = APIRouter()


def _store(request: Request) -> SessionStore:
    return request.app.state.sessions


def _turn(session: GameSession, messages: list[ChatMessage]) -> dict:
    return {
        "messages": [m.model_dump(mode="json") for m in messages],
        "state": session.snapshot(),
    }


@router.post("/sessions")
async def create_session(request: Request, body: CreateSession):
    """Start a new session and play the story's opening."""
    session = await _store(request).create(body.story_id, body.player_character)
    return session.snapshot()


@router.get("/sessions/{session_id}")
async def get_session(request: Request, session_id: str):
    """Full session state, transcript included."""
    return _store(request).get(session_id).snapshot()


@router.delete("/sessions/{session_id}")
async def delete_session(request: Request, session_id: str):
    _store(request).delete(session_id)
    return {"ok": True}


@router.post("/sessions/{session_id}/messages")
async def send_message(request: Request, session_id: str, body: MessageBody):
    """Send a player message and run one conversation turn."""
    session = _store(request).get(session_id)
    messages = await session.process_user_message(body.message)
    return _turn(session, messages)


@router.get("/sessions/{session_id}/hints")
async def list_hints(request: Request, session_id: str):
    """Hint candidates for the session's current progress band."""
    session = _store(request).get(session_id)
    return [c.model_dump() for c in session.hint_candidates()]


@router.post("/sessions/{session_id}/hints")
async def request_hint(request: Request, session_id: str, body: HintBody):
    """Use a hint: the chosen candidate, or the next one in rotation."""
    session = _store(request).get(session_id)
    messages = await session.request_hint(body.choice_id, body.request_id, body.follow_up)
    return _turn(session, messages)


@router.post("/sessions/{session_id}/reset")
async def reset_session(request: Request, session_id: str, body: ResetBody | None = None):
    """Discard session state and replay the opening, optionally on another story."""
    body = body or ResetBody()
    session = await _store(request).reset(session_id, body.story_id, body.player_character)
    return session.snapshot()
