import os
import tempfile
from pathlib import Path
from uuid import uuid4

# point the app at a throwaway database before any testprep module is imported
_TMP = Path(tempfile.mkdtemp(prefix="testprep-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP / 'test.db'}")
os.environ.setdefault("SESSION_STORAGE_DIR", str(_TMP / "local"))

import pytest
from sqlmodel import Session, SQLModel

from testprep import models, repositories
from testprep.database import engine
from testprep.practice.remote import RemoteRejected
from testprep.practice.types import Options, Question


@pytest.fixture(autouse=True)
def reset_db():
    """Ensure a fresh SQLite schema for every test."""
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture
def practice_questions():
    """Three questions whose correct answers are A, B and C."""
    out = []
    for i, correct in enumerate("ABC", start=1):
        out.append(Question(
            id=f"q{i}",
            test_type="SHSAT",
            subject="Math",
            topic="Algebra",
            difficulty="Medium",
            question_text=f"Question {i}?",
            options=Options(A="1", B="2", C="3", D="4"),
            correct_answer=correct,
        ))
    return out


@pytest.fixture
def add_questions():
    """Insert question rows and return them as endpoint dicts."""
    def _add(n, test_type="SHSAT", subject="Math", topic="Algebra", correct="A", difficulty="Medium"):
        rows = [
            models.Question(
                id=f"{subject.lower()}-{topic.lower()}-{i}-{uuid4().hex[:6]}",
                test_type=test_type,
                subject=subject,
                topic=topic,
                difficulty_level=difficulty,
                question_text=f"{subject} {topic} question {i}",
                option_a="1",
                option_b="2",
                option_c="3",
                option_d="4",
                correct_answer=correct,
            )
            for i in range(n)
        ]
        with Session(engine) as session:
            repositories.QuestionRepository(session).create_many(rows)
            return [r.model_dump(mode="json") for r in rows]
    return _add


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from testprep.main import app
    return TestClient(app)


def _login(client, username, password="pass123"):
    client.post('/auth/register', json={'username': username, 'password': password})
    r = client.post('/auth/login', json={'username': username, 'password': password})
    assert r.status_code == 200
    return r.json()['access_token']


@pytest.fixture
def token(client):
    return _login(client, f"user_{uuid4().hex[:8]}")


@pytest.fixture
def headers(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def other_headers(client):
    return {'Authorization': f'Bearer {_login(client, f"other_{uuid4().hex[:8]}")}'}


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class FakeRemoteClient:
    """Records calls; `failures[name]` holds exceptions to raise first, in order."""

    def __init__(self):
        self.is_authenticated = True
        self.calls = []
        self.failures = {}
        self.next_server_id = "srv-1"
        self.remote_session = None
        self.remote_score = 0

    def _maybe_fail(self, name):
        queue = self.failures.get(name)
        if queue:
            exc = queue.pop(0)
            if exc is not None:
                raise exc

    def create_session(self, **kwargs):
        self.calls.append(("create", kwargs))
        self._maybe_fail("create")
        return {"id": self.next_server_id}, []

    def submit_answer(self, **kwargs):
        self.calls.append(("submit", kwargs))
        self._maybe_fail("submit")
        return {"answer": kwargs}

    def complete_session(self, session_id, total_time_spent):
        self.calls.append(("complete", {"session_id": session_id, "total_time_spent": total_time_spent}))
        self._maybe_fail("complete")
        return {"results": {"score": self.remote_score}}

    def update_progress(self, session_id, current_index, total_time_spent=None):
        self.calls.append(("progress", {"session_id": session_id, "current_index": current_index}))
        self._maybe_fail("progress")
        return {}

    def load_session(self, session_id):
        self.calls.append(("load", {"session_id": session_id}))
        if self.remote_session is None:
            raise RemoteRejected("GET /sessions -> 404: not found", 404)
        return self.remote_session

    def names(self):
        return [name for name, _ in self.calls]


@pytest.fixture
def fake_client():
    return FakeRemoteClient()
