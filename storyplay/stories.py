"""Story descriptors: one JSON file per story under presets/stories/.

A descriptor is the whole per-story table the engine runs on:

    keywords         ordered keyword list driving story progress
    evidence         label → trigger substrings
    roster           cast, either flat {id: Character} or grouped
                     {faction: {id: Character}} (tagged by "shape")
    system_prompt    Handlebars template for the LLM system prompt
    hint_bands       five progress bands of hint slots
    hint_scripts     hint id → scripted beats + evidence reveals
    introductions    player character id → beats played on selection
    opening          beats played when a session starts
    fallbacks        in-character lines used when the LLM fails

Adding a story is adding a file; no engine code branches on story ids.
Unknown ids resolve to the "generic" story. Malformed files raise
StoryLoadError, which callers surface as "story failed to initialize".
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from storyplay.models import Character, Difficulty, HistoryTurn
from storyplay.prompts import PromptError, check_templates

logger = logging.getLogger(__name__)

DEFAULT_STORIES_DIR = Path(__file__).parent.parent / "presets" / "stories"

GENERIC_STORY_ID = "generic"

# Upper bound (inclusive) of each hint band: [0,20], (20,40], ... (80,100]
BAND_BOUNDS = (20, 40, 60, 80, 100)


class StoryLoadError(RuntimeError):
    """Raised when story data is missing or has an unexpected shape."""


# ---------------------------------------------------------------------------
# Roster shapes
# ---------------------------------------------------------------------------

class FlatRoster(BaseModel):
    shape: Literal["flat"] = "flat"
    characters: dict[str, Character]


class GroupedRoster(BaseModel):
    shape: Literal["grouped"] = "grouped"
    factions: dict[str, dict[str, Character]]


Roster = Annotated[Union[FlatRoster, GroupedRoster], Field(discriminator="shape")]


# ---------------------------------------------------------------------------
# Descriptor parts
# ---------------------------------------------------------------------------

class Beat(BaseModel):
    """One scripted message. `character` is a roster id (assistant beats)."""

    type: Literal["assistant", "system"] = "assistant"
    character: str | None = None
    content: str
    delay_ms: int = 0


class EvidenceRule(BaseModel):
    label: str
    triggers: list[str]


class HintPhrasing(BaseModel):
    text: str
    hint: str


class HintSlot(BaseModel):
    """A hint candidate whose phrasing deepens once its prerequisite is met.

    The prerequisite is met when any listed keyword is completed or any
    listed evidence is discovered.
    """

    id: str
    difficulty: Difficulty
    requires_keywords: list[str] = Field(default_factory=list)
    requires_evidence: list[str] = Field(default_factory=list)
    first: HintPhrasing
    deepen: HintPhrasing


class HintScript(BaseModel):
    beats: list[Beat] = Field(default_factory=list)
    reveals: list[str] = Field(default_factory=list)


class FallbackLine(BaseModel):
    """An in-character line for when the LLM is unavailable.

    Lines with triggers are tried first (substring match on the player's
    input); lines with `player` only apply to that player character.
    """

    content: str
    character: str | None = None
    triggers: list[str] = Field(default_factory=list)
    player: str | None = None


class StoryDescriptor(BaseModel):
    id: str
    title: str
    author: str = ""
    description: str = ""
    genre: str = ""
    setting: dict[str, str] = Field(default_factory=dict)

    player_role: Literal["single", "choice"] = "single"
    player_name: str = "플레이어"
    playable_characters: list[str] = Field(default_factory=list)
    roster: Roster
    default_speaker: str = "narrator"
    default_speaker_by_player: dict[str, str] = Field(default_factory=dict)

    system_prompt: str
    hint_request_prompt: str = "지금 상황에서 {{player_name}}에게 도움이 될 만한 힌트를 한 가지 알려주세요."

    keywords: list[str] = Field(default_factory=list)
    evidence: list[EvidenceRule] = Field(default_factory=list)

    evidence_notice: str = "🔍 새로운 증거를 발견했습니다: {{evidence}}"
    milestone_notice: str = "📖 스토리 진행도: {{progress}}%"
    hint_notice: str = "💡 힌트를 사용했습니다 (점수 -{{cost}}점) | 총 힌트 사용: {{count}}회"
    acknowledgement: str = "*고개를 끄덕이며* {{{hint}}}"

    hint_bands: list[list[HintSlot]] = Field(default_factory=list)
    hint_scripts: dict[str, HintScript] = Field(default_factory=dict)
    introductions: dict[str, list[Beat]] = Field(default_factory=dict)

    opening: list[Beat] = Field(default_factory=list)
    opening_history: list[HistoryTurn] = Field(default_factory=list)
    fallbacks: list[FallbackLine] = Field(default_factory=list)

    @field_validator("keywords")
    @classmethod
    def _lowercase_keywords(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for kw in v:
            kw = kw.lower()
            if kw and kw not in seen:
                seen.append(kw)
        return seen

    @field_validator("hint_bands")
    @classmethod
    def _at_most_five_bands(cls, v: list[list[HintSlot]]) -> list[list[HintSlot]]:
        if len(v) > len(BAND_BOUNDS):
            raise ValueError(f"at most {len(BAND_BOUNDS)} hint bands allowed, got {len(v)}")
        return v

    @model_validator(mode="after")
    def _templates_compile(self) -> StoryDescriptor:
        try:
            check_templates(self.templates())
        except PromptError as e:
            raise ValueError(str(e)) from e
        return self

    def templates(self) -> Iterator[tuple[str, str]]:
        """Every Handlebars template in the story, labelled by where it lives."""
        for name in (
            "system_prompt", "hint_request_prompt", "evidence_notice",
            "milestone_notice", "hint_notice", "acknowledgement",
        ):
            yield name, getattr(self, name)
        for b, band in enumerate(self.hint_bands):
            for slot in band:
                for stage in ("first", "deepen"):
                    phrasing = getattr(slot, stage)
                    yield f"hint_bands[{b}].{slot.id}.{stage}.text", phrasing.text
                    yield f"hint_bands[{b}].{slot.id}.{stage}.hint", phrasing.hint
        beat_lists = {"opening": self.opening}
        beat_lists.update((f"hint_scripts.{k}", s.beats) for k, s in self.hint_scripts.items())
        beat_lists.update((f"introductions.{k}", beats) for k, beats in self.introductions.items())
        for where, beats in beat_lists.items():
            for i, beat in enumerate(beats):
                yield f"{where}[{i}]", beat.content
        for i, line in enumerate(self.fallbacks):
            yield f"fallbacks[{i}]", line.content

    @property
    def has_character_choice(self) -> bool:
        return self.player_role == "choice"

    def speaker_for(self, player_character: str | None) -> str:
        """Default speaker id when the LLM reply names no character."""
        if player_character and player_character in self.default_speaker_by_player:
            return self.default_speaker_by_player[player_character]
        return self.default_speaker


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def load_story(path: Path) -> StoryDescriptor:
    """Load and validate one story file."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise StoryLoadError(f"Story failed to initialize: cannot read {path.name}: {e}") from e
    try:
        return StoryDescriptor.model_validate(data)
    except ValidationError as e:
        raise StoryLoadError(f"Story failed to initialize: {path.name} is malformed: {e}") from e


class StoryCatalog:
    """All known stories, keyed by id."""

    def __init__(self, stories: dict[str, StoryDescriptor]) -> None:
        if GENERIC_STORY_ID not in stories:
            raise StoryLoadError("Story failed to initialize: no generic story defined")
        self._stories = dict(stories)

    @classmethod
    def load(cls, directory: Path | None = None) -> StoryCatalog:
        directory = directory or DEFAULT_STORIES_DIR
        if not directory.is_dir():
            raise StoryLoadError(f"Story failed to initialize: {directory} does not exist")
        stories: dict[str, StoryDescriptor] = {}
        for path in sorted(directory.glob("*.json")):
            story = load_story(path)
            if story.id in stories:
                raise StoryLoadError(f"Story failed to initialize: duplicate story id {story.id!r}")
            stories[story.id] = story
            logger.debug("loaded story %s from %s", story.id, path.name)
        logger.info("story catalog loaded: %s", ", ".join(stories))
        return cls(stories)

    def get(self, story_id: str) -> StoryDescriptor:
        """Return the story for `story_id`, or the generic story for unknown ids."""
        story = self._stories.get(story_id)
        if story is None:
            logger.info("unknown story id %r: using generic story", story_id)
            return self._stories[GENERIC_STORY_ID]
        return story

    def ids(self) -> list[str]:
        return list(self._stories)

    def summaries(self) -> list[dict]:
        return [
            {
                "id": s.id,
                "title": s.title,
                "author": s.author,
                "description": s.description,
                "genre": s.genre,
                "player_role": s.player_role,
                "playable_characters": s.playable_characters,
            }
            for s in self._stories.values()
        ]
