"""Core domain models.

Every engine component (trackers, hint engine, orchestrator) operates on
these types. Pydantic is used for validation and serialisation at every data
boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

MessageType = Literal["user", "assistant", "system"]

HistoryRole = Literal["system", "user", "assistant"]

Difficulty = Literal["easy", "medium", "hard"]

Phase = Literal["awaiting_character", "playing"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    """A single entry in a session's append-only transcript."""

    model_config = ConfigDict(frozen=True)

    type: MessageType
    content: str
    timestamp: datetime = Field(default_factory=_now)
    avatar: str | None = None
    speaker: str | None = None
    character_id: str | None = None


class Character(BaseModel):
    """A member of a story's cast."""

    id: str
    name: str
    role: str = ""
    personality: str = ""
    avatar: str = "N"
    faction: str | None = None


class HintChoice(BaseModel):
    """One candidate direction offered to the player."""

    id: str
    text: str
    hint: str
    difficulty: Difficulty


class HistoryTurn(BaseModel):
    """One entry of the rolling conversation history sent to the LLM."""

    role: HistoryRole
    content: str


class LLMReply(BaseModel):
    """A parsed LLM reply: who speaks, what they say, and their *actions*."""

    character_id: str
    content: str
    actions: list[str] = Field(default_factory=list)


class GameState(BaseModel):
    """Authoritative state of one play session."""

    story_id: str
    player_character: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)
    completed_keywords: list[str] = Field(default_factory=list)
    story_progress: float = 0.0
    score: int = 0
    hints_used: int = 0
    started_at: datetime = Field(default_factory=_now)
