"""Keyword progress and evidence tracking.

Keyword tracker: each story defines N ordered keywords. Every call scans the
whole list against the lower-cased input; each keyword matched for the
first time is recorded and adds 100/N to progress (clamped to 100). Known
keywords are no-ops, so progress only moves when something new is found.

Evidence tracker: each story maps an evidence label to one or more trigger
substrings. A label is recorded once per session; player-triggered
discoveries add a fixed amount to the score.

Both trackers mutate only their own GameState fields and are independent of
each other: one input may trigger either, both, or neither.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from storyplay.models import GameState
from storyplay.stories import StoryDescriptor

logger = logging.getLogger(__name__)

DEFAULT_EVIDENCE_SCORE = 10

MILESTONE_STEP = 20


@dataclass
class ProgressUpdate:
    progress: float
    new_keywords: list[str] = field(default_factory=list)
    milestone: int | None = None  # multiple of 20 crossed by this update

    @property
    def changed(self) -> bool:
        return bool(self.new_keywords)


def _crossed_milestone(before: float, after: float) -> int | None:
    """Return the highest multiple of MILESTONE_STEP crossed, if any."""
    if int(after // MILESTONE_STEP) > int(before // MILESTONE_STEP):
        return int(after // MILESTONE_STEP) * MILESTONE_STEP
    return None


def update_story_progress(state: GameState, story: StoryDescriptor, raw_input: str) -> ProgressUpdate:
    """Record newly matched keywords and advance progress."""
    text = (raw_input or "").strip().lower()
    before = state.story_progress
    if not text or not story.keywords:
        return ProgressUpdate(progress=before)

    step = 100 / len(story.keywords)
    new_keywords: list[str] = []
    progress = before
    for keyword in story.keywords:
        if keyword in state.completed_keywords or keyword not in text:
            continue
        state.completed_keywords.append(keyword)
        new_keywords.append(keyword)
        progress = min(100.0, progress + step)

    state.story_progress = progress
    if new_keywords:
        logger.debug(
            "story=%s keywords=%s progress %.2f → %.2f",
            story.id, new_keywords, before, progress,
        )
    return ProgressUpdate(
        progress=progress,
        new_keywords=new_keywords,
        milestone=_crossed_milestone(before, progress),
    )


def add_evidence(state: GameState, label: str, award: int = 0) -> bool:
    """Record one evidence label. Returns False if it was already known."""
    if label in state.evidence:
        return False
    state.evidence.append(label)
    if award:
        state.score = max(0, state.score + award)
    return True


def scan_evidence(
    state: GameState,
    story: StoryDescriptor,
    raw_input: str,
    award: int = DEFAULT_EVIDENCE_SCORE,
) -> list[str]:
    """Record every evidence label whose trigger occurs in the input."""
    text = (raw_input or "").strip().lower()
    if not text:
        return []

    found: list[str] = []
    for rule in story.evidence:
        if rule.label in state.evidence:
            continue
        if any(trigger.lower() in text for trigger in rule.triggers if trigger):
            add_evidence(state, rule.label, award=award)
            found.append(rule.label)
    if found:
        logger.debug("story=%s evidence found: %s (score=%d)", story.id, found, state.score)
    return found
