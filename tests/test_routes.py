"""HTTP API tests through FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from backend.app import create_app
from conftest import StubLLM
from storyplay.llm import LLMError
from storyplay.stories import StoryCatalog

WATSON_REPLY = "CHARACTER_ID: watson\nCONTENT: *시체를 살피며* 외상이 전혀 없군요."


@pytest.fixture
def client(settings, catalog, stub_llm):
    with TestClient(create_app(settings, llm=stub_llm, catalog=catalog)) as c:
        yield c


def _create(client: TestClient, story_id: str = "red-study", **extra) -> dict:
    resp = client.post("/api/sessions", json={"story_id": story_id, **extra})
    assert resp.status_code == 200
    return resp.json()


class TestStatus:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_llm_status_without_status_report(self, client: TestClient) -> None:
        assert client.get("/api/llm/status").json()["connected"] is True

    def test_llm_check(self, client: TestClient) -> None:
        body = client.post("/api/llm/check").json()
        assert body["ok"] is True


class TestStories:
    def test_list(self, client: TestClient) -> None:
        ids = {s["id"] for s in client.get("/api/stories").json()}
        assert ids == {"red-study", "romeo-and-juliet", "generic"}


class TestSessions:
    def test_create(self, client: TestClient) -> None:
        session = _create(client)
        assert session["story_id"] == "red-study"
        assert session["phase"] == "playing"
        assert len(session["messages"]) == 2

    def test_create_unknown_story_falls_back(self, client: TestClient) -> None:
        assert _create(client, "nope")["story_id"] == "generic"

    def test_create_with_unplayable_character(self, client: TestClient) -> None:
        resp = client.post("/api/sessions", json={"story_id": "romeo-and-juliet", "player_character": "tybalt"})
        assert resp.status_code == 400

    def test_get_and_delete(self, client: TestClient) -> None:
        session_id = _create(client)["id"]
        assert client.get(f"/api/sessions/{session_id}").status_code == 200
        assert client.delete(f"/api/sessions/{session_id}").json() == {"ok": True}
        assert client.get(f"/api/sessions/{session_id}").status_code == 404
        assert client.delete(f"/api/sessions/{session_id}").status_code == 404

    def test_unknown_session(self, client: TestClient) -> None:
        resp = client.post("/api/sessions/missing/messages", json={"message": "안녕"})
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Session not found"


class TestMessages:
    def test_turn(self, client: TestClient, stub_llm: StubLLM) -> None:
        stub_llm.replies.append(WATSON_REPLY)
        session_id = _create(client)["id"]
        resp = client.post(f"/api/sessions/{session_id}/messages", json={"message": "저기 시체가 있어요"})
        assert resp.status_code == 200
        body = resp.json()
        assert [m["type"] for m in body["messages"]] == ["user", "assistant", "system"]
        assert body["messages"][1]["speaker"] == "왓슨 박사"
        assert body["state"]["score"] == 10
        assert body["state"]["evidence"] == ["외상 없는 시체"]

    def test_empty_message_rejected_by_schema(self, client: TestClient) -> None:
        session_id = _create(client)["id"]
        resp = client.post(f"/api/sessions/{session_id}/messages", json={"message": ""})
        assert resp.status_code == 422

    def test_blank_message_rejected(self, client: TestClient) -> None:
        session_id = _create(client)["id"]
        resp = client.post(f"/api/sessions/{session_id}/messages", json={"message": "   "})
        assert resp.status_code == 400
        assert len(client.get(f"/api/sessions/{session_id}").json()["messages"]) == 2

    def test_llm_failure_still_answers(self, client: TestClient, stub_llm: StubLLM) -> None:
        stub_llm.replies.append(LLMError("down"))
        session_id = _create(client)["id"]
        body = client.post(f"/api/sessions/{session_id}/messages", json={"message": "안녕"}).json()
        assert [m["type"] for m in body["messages"]] == ["user", "assistant"]
        assert body["state"]["story_progress"] == 0

    def test_character_selection(self, client: TestClient, stub_llm: StubLLM) -> None:
        session_id = _create(client, "romeo-and-juliet")["id"]
        body = client.post(f"/api/sessions/{session_id}/messages", json={"message": "줄리엣"}).json()
        assert body["state"]["player_character"] == "juliet"
        assert body["state"]["phase"] == "playing"
        assert len(body["messages"]) == 1
        assert stub_llm.calls == []


class TestHints:
    def test_list_candidates(self, client: TestClient) -> None:
        session_id = _create(client)["id"]
        hints = client.get(f"/api/sessions/{session_id}/hints").json()
        assert [h["difficulty"] for h in hints] == ["easy", "medium", "hard"]

    def test_use_hint(self, client: TestClient) -> None:
        session_id = _create(client)["id"]
        body = client.post(f"/api/sessions/{session_id}/hints", json={}).json()
        assert body["messages"][0]["type"] == "system"
        assert body["state"]["hints_used"] == 1

    def test_use_specific_hint_with_request_id(self, client: TestClient) -> None:
        session_id = _create(client)["id"]
        payload = {"choice_id": "identify-rache", "request_id": "req-1"}
        first = client.post(f"/api/sessions/{session_id}/hints", json=payload).json()
        second = client.post(f"/api/sessions/{session_id}/hints", json=payload).json()
        assert first["messages"] == second["messages"]
        assert second["state"]["hints_used"] == 1
        assert second["state"]["evidence"] == ["벽에 피로 쓰인 RACHE"]

    def test_hint_not_offered(self, client: TestClient) -> None:
        session_id = _create(client)["id"]
        resp = client.post(f"/api/sessions/{session_id}/hints", json={"choice_id": "name-culprit"})
        assert resp.status_code == 400


class TestReset:
    def test_reset_same_story(self, client: TestClient) -> None:
        session_id = _create(client)["id"]
        client.post(f"/api/sessions/{session_id}/hints", json={})
        body = client.post(f"/api/sessions/{session_id}/reset").json()
        assert body["hints_used"] == 0
        assert len(body["messages"]) == 2

    def test_reset_to_other_story(self, client: TestClient) -> None:
        session_id = _create(client)["id"]
        body = client.post(
            f"/api/sessions/{session_id}/reset",
            json={"story_id": "romeo-and-juliet", "player_character": "romeo"},
        ).json()
        assert body["story_id"] == "romeo-and-juliet"
        assert body["player_character"] == "romeo"


class TestStoryFailure:
    def test_broken_story_reports_503(self, settings, catalog) -> None:
        broken = catalog.get("generic").model_copy(update={"system_prompt": "{{/if}}"})
        app = create_app(settings, llm=StubLLM(), catalog=StoryCatalog({"generic": broken}))
        with TestClient(app) as client:
            resp = client.post("/api/sessions", json={"story_id": "generic"})
        assert resp.status_code == 503
        assert resp.json()["detail"] == "Story failed to initialize"
