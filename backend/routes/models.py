"""Pydantic request models for API endpoints."""

from pydantic import BaseModel, Field


class CreateSession(BaseModel):
    story_id: str
    player_character: str | None = None


class MessageBody(BaseModel):
    message: str = Field(min_length=1)


class HintBody(BaseModel):
    choice_id: str | None = None
    request_id: str | None = None
    follow_up: bool = False


class ResetBody(BaseModel):
    story_id: str | None = None
    player_character: str | None = None
