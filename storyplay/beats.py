"""Scripted beat playback.

A beat is one scripted message (see storyplay.stories.Beat). Beats are
rendered through the story's Handlebars context, labelled through the
character directory, and appended to the transcript strictly in order,
each after its own delay. Callers hold the session lock while playing, so
beats of one sequence never interleave with another action's messages.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from storyplay.characters import CharacterDirectory
from storyplay.models import ChatMessage, GameState
from storyplay.prompts import render
from storyplay.stories import Beat

Sleep = Callable[[float], Awaitable[None]]


def speaker_message(directory: CharacterDirectory, character_id: str | None, content: str) -> ChatMessage:
    """Build an assistant message labelled with the character's name and avatar."""
    char = directory.resolve(character_id)
    return ChatMessage(
        type="assistant",
        content=content,
        avatar=char.avatar,
        speaker=char.name,
        character_id=char.id,
    )


def render_beat(
    beat: Beat,
    directory: CharacterDirectory,
    context: dict[str, Any],
    default_speaker: str | None = None,
) -> ChatMessage:
    content = render(beat.content, context)
    if beat.type == "system":
        return ChatMessage(type="system", content=content)
    return speaker_message(directory, beat.character or default_speaker, content)


async def play_beats(
    beats: list[Beat],
    state: GameState,
    directory: CharacterDirectory,
    context: dict[str, Any],
    *,
    default_speaker: str | None = None,
    delay_scale: float = 1.0,
    sleep: Sleep = asyncio.sleep,
) -> list[ChatMessage]:
    """Append each beat to the transcript in order. Returns the new messages."""
    played: list[ChatMessage] = []
    for beat in beats:
        if beat.delay_ms and delay_scale > 0:
            await sleep(beat.delay_ms / 1000 * delay_scale)
        msg = render_beat(beat, directory, context, default_speaker)
        state.messages.append(msg)
        played.append(msg)
    return played
