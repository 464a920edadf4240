import asyncio

import pytest

from storyplay.config import Settings
from storyplay.llm import LLMError
from storyplay.orchestrator import GameSession
from storyplay.stories import DEFAULT_STORIES_DIR, StoryCatalog


class StubLLM:
    """Scripted LLM: pops replies in order and records every call.

    A reply that is an exception instance is raised instead of returned.
    When the script runs out, `default` is returned. With `gate` set, each
    call waits on it before answering.
    """

    def __init__(self, replies=None, default: str = "CHARACTER_ID: watson\nCONTENT: *고개를 끄덕이며* 알겠습니다.",
                 gate: asyncio.Event | None = None) -> None:
        self.replies = list(replies or [])
        self.default = default
        self.gate = gate
        self.calls: list[tuple] = []

    async def __call__(self, system_prompt, history, user_message):
        self.calls.append((system_prompt, list(history), user_message))
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture(scope="session")
def catalog() -> StoryCatalog:
    return StoryCatalog.load(DEFAULT_STORIES_DIR)


@pytest.fixture
def settings() -> Settings:
    """Bundled defaults with scripted delays switched off."""
    return Settings(beat_delay_scale=0)


@pytest.fixture
def stub_llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def failing_llm() -> StubLLM:
    """An LLM whose every call fails, as after exhausted retries."""
    return StubLLM(default="", replies=[LLMError("backend down")] * 10)


@pytest.fixture
def make_session(catalog, settings, stub_llm):
    """Factory for unstarted sessions; call `await session.start()` yourself."""

    def _make(story_id: str = "red-study", llm=None, **kwargs) -> GameSession:
        return GameSession(catalog.get(story_id), llm or stub_llm, settings, **kwargs)

    return _make
