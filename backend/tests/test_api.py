"""API endpoint tests using FastAPI TestClient."""
import sys
import os
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient
from main import app
from errors import GenerationError
from protocol import Question


@pytest.fixture
def client():
    """Run the app lifespan so each test gets a fresh registry."""
    with TestClient(app) as c:
        yield c


def seed_questions():
    return [
        {"question": "Capital of France?", "options": ["Paris", "London", "Rome"], "correctAnswer": "Paris"},
        {"question": "6 x 7?", "options": ["41", "42"], "correctAnswer": "42"},
    ]


def create_room(client, **overrides):
    body = {"subject": "Geography", "questions": seed_questions(), "creatorSessionId": "session-1"}
    body.update(overrides)
    res = client.post("/quiz/create", json=body)
    assert res.status_code == 200
    return res.json()["roomId"]


# ---------------------------------------------------------------------------
# Health & Root
# ---------------------------------------------------------------------------

class TestHealthEndpoints:
    def test_root(self, client):
        res = client.get("/")
        assert res.status_code == 200
        assert "running" in res.json()["message"].lower()

    def test_health(self, client):
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json()["status"] == "healthy"

    def test_health_counts_rooms(self, client):
        assert client.get("/health").json()["rooms"] == 0
        create_room(client)
        assert client.get("/health").json()["rooms"] == 1


# ---------------------------------------------------------------------------
# Room creation
# ---------------------------------------------------------------------------

class TestCreateRoom:
    def test_create_returns_room_id_and_url(self, client):
        res = client.post("/quiz/create", json={"subject": "Geography", "title": "Capitals",
                                                "questions": seed_questions()})
        assert res.status_code == 200
        data = res.json()
        assert len(data["roomId"]) == 6
        assert data["roomId"].isalnum() and data["roomId"] == data["roomId"].upper()
        assert data["url"] == f"/quiz/{data['roomId']}"

    def test_title_defaults_from_subject(self, client):
        room_id = create_room(client)
        assert client.get(f"/quiz/{room_id}").json()["title"] == "Quiz: Geography"

    def test_empty_question_list_allowed(self, client):
        room_id = create_room(client, questions=[])
        assert client.get(f"/quiz/{room_id}").json()["total"] == 0

    @pytest.mark.parametrize("questions", [None, "not a list", {"question": "Q?"}])
    def test_non_list_questions_rejected(self, client, questions):
        res = client.post("/quiz/create", json={"subject": "S", "questions": questions})
        assert res.status_code == 400
        assert res.json()["detail"] == "Invalid questions format"

    def test_missing_questions_rejected(self, client):
        res = client.post("/quiz/create", json={"subject": "S"})
        assert res.status_code == 400

    def test_answer_not_in_options_rejected(self, client):
        bad = [{"question": "Q?", "options": ["A", "B"], "correctAnswer": "C"}]
        res = client.post("/quiz/create", json={"subject": "S", "questions": bad})
        assert res.status_code == 400
        assert "index 0" in res.json()["detail"]

    def test_title_html_stripped(self, client):
        room_id = create_room(client, title="<b>Capitals</b>")
        assert client.get(f"/quiz/{room_id}").json()["title"] == "Capitals"


# ---------------------------------------------------------------------------
# Room lookup
# ---------------------------------------------------------------------------

class TestGetRoom:
    def test_get_new_room(self, client):
        room_id = create_room(client)
        res = client.get(f"/quiz/{room_id}")
        assert res.status_code == 200
        data = res.json()
        assert data["roomId"] == room_id
        assert data["state"] == "LOBBY"
        assert data["currentQuestionIndex"] == -1
        assert data["players"] == []
        assert data["total"] == 2

    def test_correct_answers_not_exposed(self, client):
        room_id = create_room(client)
        questions = client.get(f"/quiz/{room_id}").json()["questions"]
        assert questions[0] == {"question": "Capital of France?", "options": ["Paris", "London", "Rome"]}
        assert all("correctAnswer" not in q for q in questions)

    def test_lookup_is_case_insensitive(self, client):
        room_id = create_room(client)
        assert client.get(f"/quiz/{room_id.lower()}").status_code == 200

    def test_unknown_room_404(self, client):
        res = client.get("/quiz/ZZZZZZ")
        assert res.status_code == 404
        assert res.json()["detail"] == "Room not found"


class TestListRooms:
    def test_lists_rooms_for_session(self, client):
        mine = create_room(client, creatorSessionId="me")
        create_room(client, creatorSessionId="someone-else")
        rooms = client.get("/sessions/me/rooms").json()["rooms"]
        assert [r["roomId"] for r in rooms] == [mine]

    def test_session_id_alias(self, client):
        res = client.post("/quiz/create", json={"subject": "S", "questions": [], "sessionId": "legacy"})
        room_id = res.json()["roomId"]
        rooms = client.get("/sessions/legacy/rooms").json()["rooms"]
        assert [r["roomId"] for r in rooms] == [room_id]

    def test_unknown_session_empty(self, client):
        assert client.get("/sessions/nobody/rooms").json() == {"rooms": []}


# ---------------------------------------------------------------------------
# Question generation
# ---------------------------------------------------------------------------

class FakeEngine:
    def __init__(self, questions=None, error=None):
        self.questions = questions or []
        self.error = error
        self.subjects: list[str] = []

    async def generate_questions(self, subject):
        self.subjects.append(subject)
        if self.error:
            raise self.error
        return self.questions


class TestGenerateQuiz:
    def test_returns_generated_questions(self, client):
        engine = FakeEngine([Question(prompt="Q?", options=["A", "B"], correct_answer="A")])
        app.state.quiz_engine = engine
        res = client.post("/quiz/generate/biology")
        assert res.status_code == 200
        assert res.json() == {"quiz": [{"question": "Q?", "options": ["A", "B"], "correctAnswer": "A"}]}
        assert engine.subjects == ["biology"]

    def test_generation_failure_is_502(self, client):
        app.state.quiz_engine = FakeEngine(error=GenerationError("No content found for subject: empty"))
        res = client.post("/quiz/generate/empty")
        assert res.status_code == 502
        assert res.json()["detail"] == "No content found for subject: empty"

    def test_generated_quiz_can_seed_a_room(self, client):
        app.state.quiz_engine = FakeEngine([Question(prompt="Q?", options=["A", "B"], correct_answer="B")])
        quiz = client.post("/quiz/generate/biology").json()["quiz"]
        room_id = create_room(client, subject="biology", questions=quiz)
        assert client.get(f"/quiz/{room_id}").json()["total"] == 1
