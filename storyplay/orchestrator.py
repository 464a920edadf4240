"""Conversation orchestrator: one GameSession per player.

Message turn:
  1. Validate input (non-empty string) before touching any state.
  2. Character-choice stories with no player character yet: if the input
     names a playable character, lock it in, play that character's scripted
     introduction and stop: no user message, no LLM call.
  3. Append the player's message to the transcript.
  4. Call the LLM with the rendered system prompt, the last N history turns
     and the player's message; parse the tagged reply.
  5. On success: run the keyword and evidence trackers, append the reply
     (speaker resolved via the character directory), extend the rolling
     history, then announce new evidence and progress milestones after
     their display delays.
  6. On LLM failure: append one in-character fallback line. Nothing else
     changes; retrying is the gateway's job, not ours.

Hint request:
  candidates (generator) → explicit choice or round-robin pick (selector)
  → scripted beats and state folding (executor). With no candidates the
  LLM is asked for a free-form hint instead.

Every operation holds the session lock from start to finish, including
scripted delays, so concurrent requests queue and never interleave beats.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from collections import OrderedDict
from typing import Any

from storyplay.beats import Sleep, play_beats, speaker_message
from storyplay.characters import CharacterDirectory
from storyplay.config import Settings
from storyplay.hints import (
    HintExecutor,
    NoHintCandidates,
    generate_hints,
    player_display_name,
    select_hint,
)
from storyplay.llm import LLM, LLMError
from storyplay.models import ChatMessage, GameState, HintChoice, HistoryTurn, LLMReply, Phase
from storyplay.prompts import PromptError, build_context, check_templates, history_window, render
from storyplay.replies import parse_reply
from storyplay.stories import StoryDescriptor, StoryLoadError
from storyplay.tracking import scan_evidence, update_story_progress

logger = logging.getLogger(__name__)

EVIDENCE_DELAY_MS = 1500
MILESTONE_DELAY_MS = 2000

# request ids remembered for replaying duplicate hint requests
HINT_REPLAY_LIMIT = 32

GENERIC_FALLBACK = "*고개를 끄덕이며* 흥미로운 말씀이네요. 더 자세히 말씀해주시겠습니까?"


class InvalidInput(ValueError):
    """Raised for player input that must not reach the orchestrator."""


class GameSession:
    """Owns the GameState of one play session and serializes every action on it."""

    def __init__(
        self,
        story: StoryDescriptor,
        llm: LLM,
        settings: Settings | None = None,
        *,
        session_id: str | None = None,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self._llm = llm
        self._settings = settings or Settings()
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._hint_results: OrderedDict[str, list[ChatMessage]] = OrderedDict()
        self.history: list[HistoryTurn] = []
        self.state = GameState(story_id=story.id)
        self._load_story(story)

    def _load_story(self, story: StoryDescriptor) -> None:
        """Swap in a story. Nothing changes unless every template compiles."""
        directory = CharacterDirectory.load(story)
        try:
            check_templates(story.templates())
            render(
                story.system_prompt,
                build_context(story, player_display_name(story, None, directory), directory.all()),
            )
        except PromptError as e:
            raise StoryLoadError(f"Story failed to initialize: {story.id}: {e}") from e
        self.story = story
        self.directory = directory
        self._executor = HintExecutor(
            story,
            directory,
            hint_cost=self._settings.hint_cost,
            delay_scale=self._settings.beat_delay_scale,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        if self.story.has_character_choice and self.state.player_character is None:
            return "awaiting_character"
        return "playing"

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _player_name(self) -> str:
        return player_display_name(self.story, self.state.player_character, self.directory)

    def _context(self, **extra: Any) -> dict[str, Any]:
        return build_context(self.story, self._player_name(), self.directory.all(), **extra)

    def _system_prompt(self) -> str:
        return render(self.story.system_prompt, self._context())

    def _append(self, msg: ChatMessage) -> ChatMessage:
        self.state.messages.append(msg)
        return msg

    async def _delay(self, ms: int) -> None:
        scale = self._settings.beat_delay_scale
        if ms and scale > 0:
            await self._sleep(ms / 1000 * scale)

    async def _announce(self, template: str, delay_ms: int, **ctx: Any) -> None:
        await self._delay(delay_ms)
        self._append(ChatMessage(type="system", content=render(template, self._context(**ctx))))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, player_character: str | None = None) -> list[ChatMessage]:
        """Play the story's opening beats on a fresh state."""
        async with self._lock:
            return await self._start(player_character)

    async def reset(
        self, story: StoryDescriptor | None = None, player_character: str | None = None
    ) -> list[ChatMessage]:
        """Discard all state (optionally switching story) and start over."""
        async with self._lock:
            previous = (self.story, self.directory, self._executor)
            if story is not None and story.id != self.story.id:
                logger.info("session=%s switching story %s → %s", self.id, self.story.id, story.id)
                self._load_story(story)
            try:
                return await self._start(player_character)
            except InvalidInput:
                self.story, self.directory, self._executor = previous
                raise

    async def _start(self, player_character: str | None) -> list[ChatMessage]:
        chosen = None
        if player_character and self.story.has_character_choice:
            chosen = self.directory.get(player_character)
            if chosen is None or chosen not in self.directory.player_characters():
                raise InvalidInput(f"{player_character!r} is not a playable character in {self.story.id}")

        self.state = GameState(story_id=self.story.id)
        self.history = [t.model_copy() for t in self.story.opening_history]
        self._hint_results.clear()
        await play_beats(
            self.story.opening, self.state, self.directory, self._context(),
            default_speaker=self.story.speaker_for(None),
            delay_scale=self._settings.beat_delay_scale,
            sleep=self._sleep,
        )
        if chosen is not None:
            await self._choose_character(chosen.id)
        logger.info("session=%s started story=%s phase=%s", self.id, self.story.id, self.phase)
        return list(self.state.messages)

    # ------------------------------------------------------------------
    # Player messages
    # ------------------------------------------------------------------

    async def process_user_message(self, text: Any) -> list[ChatMessage]:
        """Handle one player message. Returns the messages appended by it."""
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("message must be a non-empty string")
        async with self._lock:
            return await self._process(text.strip())

    async def _process(self, text: str) -> list[ChatMessage]:
        start = len(self.state.messages)

        if self.phase == "awaiting_character":
            chosen = self.directory.match_player_character(text)
            if chosen is not None:
                await self._choose_character(chosen.id)
                return self.state.messages[start:]

        self._append(ChatMessage(type="user", content=text))

        try:
            reply = await self._ask(text)
        except LLMError as e:
            logger.warning("session=%s llm failed, using fallback: %s", self.id, e)
            self._append(self._fallback_message(text))
            return self.state.messages[start:]

        progress = update_story_progress(self.state, self.story, text)
        found = scan_evidence(self.state, self.story, text, award=self._settings.evidence_score)

        self._append(speaker_message(self.directory, reply.character_id, reply.content))
        self.history.append(HistoryTurn(role="user", content=text))
        self.history.append(HistoryTurn(role="assistant", content=reply.content))

        if found:
            await self._announce(
                self.story.evidence_notice, EVIDENCE_DELAY_MS, evidence=", ".join(found)
            )
        if progress.milestone is not None:
            await self._announce(
                self.story.milestone_notice, MILESTONE_DELAY_MS,
                progress=round(progress.progress), milestone=progress.milestone,
            )
        return self.state.messages[start:]

    async def _choose_character(self, character_id: str) -> None:
        self.state.player_character = character_id
        logger.info("session=%s player character set to %s", self.id, character_id)
        await play_beats(
            self.story.introductions.get(character_id, []),
            self.state, self.directory, self._context(),
            default_speaker=self.story.speaker_for(character_id),
            delay_scale=self._settings.beat_delay_scale,
            sleep=self._sleep,
        )

    async def _ask(self, user_message: str) -> LLMReply:
        raw = await self._llm(
            self._system_prompt(),
            history_window(self.history, self._settings.history_window),
            user_message,
        )
        reply = parse_reply(raw, self.story.speaker_for(self.state.player_character))
        if not reply.content:
            raise LLMError("LLM reply has no content")
        return reply

    def _fallback_message(self, text: str) -> ChatMessage:
        """Pick one in-character line: first trigger match, else a random plain line."""
        lowered = text.lower()
        pc = self.state.player_character
        eligible = [f for f in self.story.fallbacks if f.player is None or f.player == pc]

        chosen = next(
            (f for f in eligible if f.triggers and any(t.lower() in lowered for t in f.triggers)),
            None,
        )
        if chosen is None:
            pool = [f for f in eligible if not f.triggers]
            chosen = self._rng.choice(pool) if pool else None

        speaker = self.story.speaker_for(pc)
        if chosen is None:
            return speaker_message(self.directory, speaker, GENERIC_FALLBACK)
        return speaker_message(
            self.directory, chosen.character or speaker, render(chosen.content, self._context())
        )

    # ------------------------------------------------------------------
    # Hints
    # ------------------------------------------------------------------

    def hint_candidates(self) -> list[HintChoice]:
        return generate_hints(
            self.story,
            self.state.story_progress,
            self.state.player_character,
            self.state.evidence,
            self.state.completed_keywords,
            self.directory,
        )

    async def request_hint(
        self,
        choice_id: str | None = None,
        request_id: str | None = None,
        follow_up: bool = False,
    ) -> list[ChatMessage]:
        """Deliver one hint. A repeated request_id replays the earlier result."""
        async with self._lock:
            if request_id and request_id in self._hint_results:
                logger.debug("session=%s duplicate hint request %s ignored", self.id, request_id)
                return list(self._hint_results[request_id])

            start = len(self.state.messages)
            candidates = self.hint_candidates()
            try:
                choice = self._pick_hint(candidates, choice_id)
            except NoHintCandidates:
                logger.info("session=%s no hint candidates at %.1f%%: asking the LLM", self.id, self.state.story_progress)
                await self._adhoc_hint()
            else:
                outcome = await self._executor.execute(choice, self.state)
                if outcome.progress is not None and outcome.progress.milestone is not None:
                    await self._announce(
                        self.story.milestone_notice, MILESTONE_DELAY_MS,
                        progress=round(outcome.progress.progress),
                        milestone=outcome.progress.milestone,
                    )
                if follow_up:
                    await self._steer(choice.hint)

            new_messages = self.state.messages[start:]
            if request_id:
                self._hint_results[request_id] = list(new_messages)
                while len(self._hint_results) > HINT_REPLAY_LIMIT:
                    self._hint_results.popitem(last=False)
            return new_messages

    def _pick_hint(self, candidates: list[HintChoice], choice_id: str | None) -> HintChoice:
        if choice_id is None:
            return select_hint(candidates, self.state.hints_used)
        for choice in candidates:
            if choice.id == choice_id:
                return choice
        raise InvalidInput(f"hint {choice_id!r} is not offered right now")

    async def _adhoc_hint(self) -> None:
        prompt = render(self.story.hint_request_prompt, self._context())
        try:
            reply = await self._ask(prompt)
        except LLMError as e:
            logger.warning("session=%s ad-hoc hint failed, using fallback: %s", self.id, e)
            self._append(self._fallback_message(""))
            return

        cost = self._settings.hint_cost
        self._append(ChatMessage(
            type="system",
            content=render(self.story.hint_notice, self._context(cost=cost, count=self.state.hints_used + 1)),
        ))
        self._append(speaker_message(self.directory, reply.character_id, reply.content))
        self.history.append(HistoryTurn(role="assistant", content=reply.content))
        self.state.hints_used += 1
        self.state.score = max(0, self.state.score - cost)

    async def _steer(self, hint: str) -> None:
        """Follow-up turn: let the LLM narrate the chosen direction."""
        try:
            reply = await self._ask(hint)
        except LLMError as e:
            logger.warning("session=%s hint follow-up failed, using fallback: %s", self.id, e)
            self._append(self._fallback_message(hint))
            return
        self._append(speaker_message(self.directory, reply.character_id, reply.content))
        self.history.append(HistoryTurn(role="assistant", content=reply.content))

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "story_id": self.story.id,
            "title": self.story.title,
            "phase": self.phase,
            "busy": self.busy,
            **self.state.model_dump(mode="json"),
        }
