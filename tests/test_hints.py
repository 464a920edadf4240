"""Tests for storyplay.hints: generator, selector and executor."""

import pytest

from storyplay.characters import CharacterDirectory
from storyplay.hints import (
    HintExecutor,
    NoHintCandidates,
    band_index,
    generate_hints,
    select_hint,
)
from storyplay.models import GameState, HintChoice


@pytest.fixture
def holmes(catalog):
    return catalog.get("red-study")


@pytest.fixture
def verona(catalog):
    return catalog.get("romeo-and-juliet")


def _choice(id: str, difficulty: str) -> HintChoice:
    return HintChoice(id=id, text=f"{id} text", hint=f"{id} hint", difficulty=difficulty)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class TestBands:
    @pytest.mark.parametrize("progress,band", [
        (0, 0), (20, 0), (20.5, 1), (40, 1), (41, 2), (60, 2), (79.9, 3), (80, 3), (85, 4), (100, 4),
    ])
    def test_band_index(self, progress: float, band: int) -> None:
        assert band_index(progress) == band


class TestGenerateHints:
    def test_high_progress_draws_from_last_band_only(self, holmes) -> None:
        choices = generate_hints(holmes, 85, None, [], [])
        assert [c.id for c in choices] == ["name-culprit", "set-trap", "final-revelation"]

    def test_first_band_at_start(self, holmes) -> None:
        choices = generate_hints(holmes, 0, None, [], [])
        assert [c.id for c in choices] == ["investigate-scene", "identify-rache", "determine-cause"]
        assert [c.difficulty for c in choices] == ["easy", "medium", "hard"]

    def test_phrasing_deepens_once_evidence_found(self, holmes) -> None:
        before = generate_hints(holmes, 0, None, [], [])[0]
        after = generate_hints(holmes, 0, None, ["외상 없는 시체"], [])[0]
        assert before.text == "로리스턴 가든 현장을 직접 조사한다"
        assert after.text == "현장을 한 번 더 꼼꼼히 관찰한다"
        assert after.id == before.id

    def test_phrasing_deepens_once_keyword_completed(self, holmes) -> None:
        choice = generate_hints(holmes, 0, None, [], ["독"])[2]
        assert choice.text == "독살의 방법을 추리한다"

    def test_generation_is_pure(self, holmes) -> None:
        args = (holmes, 30, None, ["여자의 결혼반지"], ["로리스턴"])
        assert generate_hints(*args) == generate_hints(*args)

    def test_player_name_rendered(self, verona) -> None:
        cast = CharacterDirectory.load(verona)
        choice = generate_hints(verona, 0, "juliet", [], [], cast)[0]
        assert "줄리엣님, 오늘 밤" in choice.hint
        anonymous = generate_hints(verona, 0, None, [], [])[0]
        assert "플레이어님" in anonymous.hint

    def test_story_without_bands(self, catalog) -> None:
        assert generate_hints(catalog.get("generic"), 50, None, [], []) == []


# ---------------------------------------------------------------------------
# Selector
# ---------------------------------------------------------------------------

class TestSelectHint:
    @pytest.fixture
    def candidates(self) -> list[HintChoice]:
        # deliberately out of difficulty order
        return [_choice("c", "hard"), _choice("a", "easy"), _choice("b", "medium")]

    def test_cycles_by_hints_used(self, candidates) -> None:
        picks = [select_hint(candidates, n).id for n in range(4)]
        assert picks == ["a", "b", "c", "a"]

    def test_five_hints_used_picks_hard(self, candidates) -> None:
        assert select_hint(candidates, 5).difficulty == "hard"

    def test_never_repeats_consecutively(self, candidates) -> None:
        picks = [select_hint(candidates, n).id for n in range(10)]
        assert all(a != b for a, b in zip(picks, picks[1:]))

    def test_sort_is_stable_within_difficulty(self) -> None:
        candidates = [_choice("x", "easy"), _choice("y", "easy")]
        assert [select_hint(candidates, n).id for n in range(2)] == ["x", "y"]

    def test_empty_candidates(self) -> None:
        with pytest.raises(NoHintCandidates):
            select_hint([], 0)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class TestHintExecutor:
    @pytest.fixture
    def executor(self, holmes, fake_sleep) -> HintExecutor:
        return HintExecutor(holmes, CharacterDirectory.load(holmes), hint_cost=5, sleep=fake_sleep)

    async def test_scripted_beats_follow_the_notice(self, holmes, executor) -> None:
        state = GameState(story_id="red-study", score=20)
        choice = generate_hints(holmes, 0, None, [], [])[0]
        outcome = await executor.execute(choice, state)

        types = [(m.type, m.character_id) for m in outcome.messages]
        assert types == [("system", None), ("assistant", "watson"), ("assistant", "lestrade")]
        assert outcome.messages[0].content == "💡 힌트를 사용했습니다 (점수 -5점) | 총 힌트 사용: 1회"
        assert outcome.messages[1].content.endswith(choice.hint)
        assert state.messages == outcome.messages

    async def test_cost_and_count(self, holmes, executor) -> None:
        state = GameState(story_id="red-study", score=20)
        await executor.execute(generate_hints(holmes, 0, None, [], [])[1], state)
        assert state.hints_used == 1
        assert state.score == 15

    async def test_score_floored_at_zero(self, holmes, executor) -> None:
        state = GameState(story_id="red-study", score=3)
        await executor.execute(generate_hints(holmes, 0, None, [], [])[1], state)
        assert state.score == 0

    async def test_reveals_evidence_without_award(self, holmes, executor) -> None:
        state = GameState(story_id="red-study")
        outcome = await executor.execute(generate_hints(holmes, 0, None, [], [])[0], state)
        assert outcome.revealed == ["외상 없는 시체"]
        assert state.evidence == ["외상 없는 시체"]
        assert state.score == 0

    async def test_known_evidence_not_revealed_twice(self, holmes, executor) -> None:
        state = GameState(story_id="red-study", evidence=["외상 없는 시체"])
        outcome = await executor.execute(generate_hints(holmes, 0, None, [], [])[0], state)
        assert outcome.revealed == []
        assert state.evidence == ["외상 없는 시체"]

    async def test_hint_text_feeds_keyword_progress(self, holmes, executor) -> None:
        state = GameState(story_id="red-study")
        outcome = await executor.execute(generate_hints(holmes, 0, None, [], [])[0], state)
        assert set(state.completed_keywords) == {"로리스턴", "조사"}
        assert outcome.progress.progress == pytest.approx(200 / 24)

    async def test_unknown_hint_id_is_acknowledged(self, executor) -> None:
        state = GameState(story_id="red-study")
        outcome = await executor.execute(_choice("mystery", "easy"), state)
        assert len(outcome.messages) == 2
        ack = outcome.messages[1]
        assert ack.character_id == "watson"
        assert ack.content == "*고개를 끄덕이며* mystery hint"
        assert state.hints_used == 1

    async def test_beat_delays(self, holmes, executor, fake_sleep) -> None:
        state = GameState(story_id="red-study")
        await executor.execute(generate_hints(holmes, 0, None, [], [])[0], state)
        assert fake_sleep.calls == [0.5, 0.8]

    async def test_unnamed_beats_use_players_counterpart(self, verona, fake_sleep) -> None:
        cast = CharacterDirectory.load(verona)
        executor = HintExecutor(verona, cast, delay_scale=0, sleep=fake_sleep)
        state = GameState(story_id="romeo-and-juliet", player_character="romeo")
        choice = generate_hints(verona, 0, "romeo", [], [], cast)[0]
        outcome = await executor.execute(choice, state)
        assert outcome.messages[1].speaker == "줄리엣"
        assert "로미오님" in outcome.messages[1].content
        assert fake_sleep.calls == []
