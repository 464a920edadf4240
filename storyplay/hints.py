"""Adaptive hint engine: generator, selector, executor.

Generator: progress is bucketed into five bands ([0,20], (20,40], (40,60],
(60,80], (80,100]). Each band lists two or three slots; a slot offers its "first"
phrasing until its prerequisite (any listed keyword completed or evidence
found) is met, then its "deepen" phrasing. The result is a pure function of
(story, band, player character, evidence, completed keywords).

Selector: progressive cycling: candidates are stably sorted easy < medium <
hard and indexed with hints_used mod len, so consecutive requests visit
every candidate in turn and the pick is reproducible.

Executor: plays the scripted beats for the chosen hint id, reveals any
plot-critical evidence tied to it, folds the hint text into keyword
progress, then charges the fixed hint cost (score floored at 0) and counts
the hint. Unknown ids get a single acknowledgement beat.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from storyplay.beats import Sleep, play_beats
from storyplay.characters import CharacterDirectory
from storyplay.models import ChatMessage, GameState, HintChoice
from storyplay.prompts import build_context, render
from storyplay.stories import BAND_BOUNDS, Beat, StoryDescriptor
from storyplay.tracking import ProgressUpdate, add_evidence, update_story_progress

logger = logging.getLogger(__name__)

DIFFICULTY_ORDER = {"easy": 0, "medium": 1, "hard": 2}

DEFAULT_HINT_COST = 5


class NoHintCandidates(LookupError):
    """Raised by select_hint() when the generator produced nothing."""


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

def band_index(progress: float) -> int:
    """Map a progress percentage to its band (0 to 4)."""
    for i, bound in enumerate(BAND_BOUNDS):
        if progress <= bound:
            return i
    return len(BAND_BOUNDS) - 1


def player_display_name(
    story: StoryDescriptor,
    player_character: str | None,
    directory: CharacterDirectory | None = None,
) -> str:
    if player_character and directory is not None:
        char = directory.get(player_character)
        if char is not None:
            return char.name
    return story.player_name


def generate_hints(
    story: StoryDescriptor,
    progress: float,
    player_character: str | None,
    evidence: list[str],
    completed_keywords: list[str],
    directory: CharacterDirectory | None = None,
) -> list[HintChoice]:
    idx = band_index(progress)
    if idx >= len(story.hint_bands):
        return []

    ctx = {"player_name": player_display_name(story, player_character, directory)}
    choices: list[HintChoice] = []
    for slot in story.hint_bands[idx]:
        met = any(k in completed_keywords for k in slot.requires_keywords) or any(
            e in evidence for e in slot.requires_evidence
        )
        phrasing = slot.deepen if met else slot.first
        choices.append(HintChoice(
            id=slot.id,
            text=render(phrasing.text, ctx),
            hint=render(phrasing.hint, ctx),
            difficulty=slot.difficulty,
        ))
    return choices


# ---------------------------------------------------------------------------
# Selector
# ---------------------------------------------------------------------------

def select_hint(candidates: list[HintChoice], hints_used: int) -> HintChoice:
    if not candidates:
        raise NoHintCandidates("no hint candidates for the current progress")
    ordered = sorted(candidates, key=lambda c: DIFFICULTY_ORDER[c.difficulty])
    return ordered[hints_used % len(ordered)]


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

@dataclass
class HintOutcome:
    choice: HintChoice
    messages: list[ChatMessage] = field(default_factory=list)
    revealed: list[str] = field(default_factory=list)
    progress: ProgressUpdate | None = None


class HintExecutor:
    """Runs hint scripts against one session's state."""

    def __init__(
        self,
        story: StoryDescriptor,
        directory: CharacterDirectory,
        hint_cost: int = DEFAULT_HINT_COST,
        delay_scale: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._story = story
        self._directory = directory
        self._hint_cost = hint_cost
        self._delay_scale = delay_scale
        self._sleep = sleep

    def _beats_for(self, choice: HintChoice) -> tuple[list[Beat], list[str]]:
        script = self._story.hint_scripts.get(choice.id)
        if script is None:
            logger.warning("story=%s has no script for hint %r: acknowledging", self._story.id, choice.id)
            return [Beat(type="assistant", content=self._story.acknowledgement)], []
        return list(script.beats), list(script.reveals)

    async def execute(self, choice: HintChoice, state: GameState) -> HintOutcome:
        outcome = HintOutcome(choice=choice)
        beats, reveals = self._beats_for(choice)
        default_speaker = self._story.speaker_for(state.player_character)
        ctx = build_context(
            self._story,
            player_display_name(self._story, state.player_character, self._directory),
            self._directory.all(),
            hint=choice.hint,
            text=choice.text,
            cost=self._hint_cost,
            count=state.hints_used + 1,
        )

        notice = Beat(type="system", content=self._story.hint_notice)
        outcome.messages.extend(await play_beats(
            [notice, *beats], state, self._directory, ctx,
            default_speaker=default_speaker,
            delay_scale=self._delay_scale,
            sleep=self._sleep,
        ))

        for label in reveals:
            if add_evidence(state, label):
                outcome.revealed.append(label)

        outcome.progress = update_story_progress(state, self._story, f"{choice.text} {choice.hint}")

        state.hints_used += 1
        state.score = max(0, state.score - self._hint_cost)
        logger.info(
            "story=%s hint=%s hints_used=%d score=%d progress=%.1f",
            self._story.id, choice.id, state.hints_used, state.score, state.story_progress,
        )
        return outcome
