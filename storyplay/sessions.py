"""In-memory session store.

All session state lives in process memory and is lost on exit. There is no
database and no file storage. Each id maps to one GameSession built from the
story catalog and sharing the process-wide LLM gateway.

Sessions idle longer than SESSION_IDLE_SECONDS are dropped, and past
MAX_SESSIONS the least recently used one goes. Busy sessions are never dropped.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import OrderedDict
from collections.abc import Callable

from storyplay.beats import Sleep
from storyplay.config import Settings
from storyplay.llm import LLM
from storyplay.orchestrator import GameSession
from storyplay.stories import StoryCatalog

logger = logging.getLogger(__name__)


class SessionNotFound(KeyError):
    """Raised for an unknown session id."""


class SessionStore:
    def __init__(
        self,
        catalog: StoryCatalog,
        llm: LLM,
        settings: Settings | None = None,
        *,
        rng_factory: Callable[[], random.Random] = random.Random,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.catalog = catalog
        self.llm = llm
        self._settings = settings or Settings()
        self._rng_factory = rng_factory
        self._sleep = sleep
        self._clock = clock
        # least recently used first
        self._sessions: OrderedDict[str, GameSession] = OrderedDict()
        self._last_used: dict[str, float] = {}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create(self, story_id: str, player_character: str | None = None) -> GameSession:
        session = GameSession(
            self.catalog.get(story_id),
            self.llm,
            self._settings,
            rng=self._rng_factory(),
            sleep=self._sleep,
        )
        await session.start(player_character)
        self._evict()
        self._sessions[session.id] = session
        self._touch(session.id)
        logger.info("session %s created for story %s", session.id, session.story.id)
        return session

    def get(self, session_id: str) -> GameSession:
        try:
            session = self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(session_id) from None
        self._touch(session_id)
        return session

    def delete(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFound(session_id)
        self._last_used.pop(session_id, None)
        logger.info("session %s deleted", session_id)

    async def reset(
        self, session_id: str, story_id: str | None = None, player_character: str | None = None
    ) -> GameSession:
        """Back to the menu: fresh state, optionally on another story."""
        session = self.get(session_id)
        story = self.catalog.get(story_id) if story_id else None
        await session.reset(story, player_character)
        return session

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def _touch(self, session_id: str) -> None:
        self._sessions.move_to_end(session_id)
        self._last_used[session_id] = self._clock()

    def _drop(self, session_id: str, reason: str) -> None:
        del self._sessions[session_id]
        del self._last_used[session_id]
        logger.info("session %s evicted (%s)", session_id, reason)

    def _evict(self) -> None:
        """Make room for one new session."""
        idle_limit = self._settings.session_idle_seconds
        if idle_limit > 0:
            now = self._clock()
            for sid, session in list(self._sessions.items()):
                if not session.busy and now - self._last_used[sid] > idle_limit:
                    self._drop(sid, "idle")
        for sid, session in list(self._sessions.items()):
            if len(self._sessions) < self._settings.max_sessions:
                break
            if not session.busy:
                self._drop(sid, "capacity")
