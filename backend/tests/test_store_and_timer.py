import time

import pytest

from testprep.practice import actions as a
from testprep.practice import build_store
from testprep.practice.remote import RemoteRejected, RemoteUnavailable
from testprep.practice.storage import LocalSessionStorage
from testprep.practice.store import SessionStore
from testprep.practice.timer import SessionTimer


@pytest.fixture
def store(fake_client, clock, tmp_path):
    return build_store(fake_client, storage_dir=tmp_path, clock=clock, sleep=lambda _s: None)


def _titles(store):
    return [n.title for n in store.notifications]


def test_local_slot_follows_every_change(tmp_path, practice_questions):
    store = SessionStore(LocalSessionStorage(tmp_path))
    s = store.start_session("SHSAT", "subject_practice", practice_questions, subject="Math")
    assert store.storage.load() == s
    store.answer("q1", "A", time_spent=3)
    assert store.storage.load().answers["q1"].selected_answer == "A"
    done = store.dispatch(a.CompleteSession())
    assert done.is_completed and done.score == 100
    assert store.session is done
    assert not store.storage.path.exists()


def test_abandon_clears_slot(tmp_path, practice_questions):
    store = SessionStore(LocalSessionStorage(tmp_path))
    store.start_session("SHSAT", "mixed_review", practice_questions)
    store.abandon()
    assert store.session is None
    assert store.storage.load() is None


def test_restore_resumes_saved_session(tmp_path, practice_questions):
    first = SessionStore(LocalSessionStorage(tmp_path))
    first.start_session("SHSAT", "subject_practice", practice_questions)
    first.answer("q2", "B")
    first.dispatch(a.GoToQuestion(2))

    second = SessionStore(LocalSessionStorage(tmp_path))
    restored = second.restore()
    assert restored == first.session
    assert restored.current_question == 2


def test_remote_mirroring_happy_path(store, fake_client, practice_questions):
    s = store.start_session("SHSAT", "subject_practice", practice_questions, subject="Math")
    assert s.server_session_id is None
    store.worker.drain()
    assert store.session.server_session_id == "srv-1"
    assert fake_client.calls[0][1]["session_type"] == "subject_practice"

    store.answer("q1", "A", time_spent=5)
    store.answer("q2", "C")
    store.worker.drain()
    submits = {kw["question_id"]: kw for name, kw in fake_client.calls if name == "submit"}
    assert submits["q1"]["is_correct"] is True
    assert submits["q2"]["is_correct"] is False
    assert {kw["session_id"] for kw in submits.values()} == {"srv-1"}

    store.dispatch(a.GoToQuestion(1))
    store.worker.drain()
    assert fake_client.calls[-1] == ("progress", {"session_id": "srv-1", "current_index": 1})

    fake_client.remote_score = 50
    done = store.dispatch(a.CompleteSession())
    store.worker.drain()
    assert done.score == 50
    assert fake_client.names()[-1] == "complete"
    assert store.last_results == {"score": 50}
    assert not store.notifications


def test_answers_before_create_are_sent_after_it(store, fake_client, practice_questions):
    store.start_session("SHSAT", "subject_practice", practice_questions)
    store.answer("q1", "A")
    store.dispatch(a.CompleteSession())
    store.worker.drain()
    assert fake_client.names() == ["create", "submit", "complete"]


def test_repeated_answer_makes_one_remote_write(store, fake_client, practice_questions):
    store.start_session("SHSAT", "subject_practice", practice_questions)
    store.worker.drain()
    store.answer("q1", "A")
    store.answer("q1", "A")
    store.worker.drain()
    store.answer("q1", "A")
    store.worker.drain()
    assert fake_client.names().count("submit") == 1


def test_unauthenticated_session_stays_local(store, fake_client, practice_questions):
    fake_client.is_authenticated = False
    s = store.start_session("SHSAT", "subject_practice", practice_questions)
    store.answer("q1", "A")
    done = store.dispatch(a.CompleteSession())
    store.worker.drain()
    assert fake_client.calls == []
    assert store.worker.link(s.id).offline
    assert done.score == 100
    assert not store.notifications


def test_create_failure_switches_to_offline_mode(store, fake_client, practice_questions):
    fake_client.failures["create"] = [RemoteUnavailable("down")] * 3
    s = store.start_session("SHSAT", "subject_practice", practice_questions)
    store.worker.drain()
    assert "Offline mode" in _titles(store)
    assert store.worker.link(s.id).offline
    store.answer("q1", "A")
    assert store.worker.pending_count() == 0
    assert store.session.answers["q1"].selected_answer == "A"


def test_failed_autosave_keeps_local_answer(store, fake_client, practice_questions):
    store.start_session("SHSAT", "subject_practice", practice_questions)
    store.worker.drain()
    fake_client.failures["submit"] = [RemoteRejected("bad", 400)]
    store.answer("q1", "B")
    store.worker.drain()
    assert _titles(store) == ["Auto-save failed"]
    assert store.session.answers["q1"].selected_answer == "B"
    assert store.dismiss_notifications()
    assert not store.notifications


def test_recover_remote_failure_notifies(store):
    assert store.recover_remote("srv-404") is None
    assert store.session is None
    assert _titles(store) == ["Session recovery failed"]


def test_recover_remote_rebuilds_session(store, fake_client, practice_questions):
    fake_client.remote_session = {
        "session": {
            "id": "srv-7",
            "test_type": "SHSAT",
            "session_type": "full_test",
            "current_question_index": 5,
            "status": "paused",
            "start_time": "2026-03-01T09:00:00",
            "total_time_spent": 42,
            "score": None,
        },
        "questions": [q.to_wire() for q in practice_questions],
        "answers": [
            {"question_id": "q2", "user_answer": "B", "time_spent": 9, "is_flagged": True, "confidence_level": None},
        ],
    }
    s = store.recover_remote("srv-7")
    assert s.server_session_id == "srv-7"
    assert s.current_question == 2
    assert s.is_paused
    assert s.session_time == 42
    assert s.answers["q2"].is_flagged
    assert store.worker.link(s.id).server_id == "srv-7"
    assert store.storage.load() == s


def test_timer_ticks_only_while_active(tmp_path, practice_questions):
    store = SessionStore(LocalSessionStorage(tmp_path))
    timer = SessionTimer(store, interval=0.01)
    assert timer.tick_once() is False
    store.start_session("SHSAT", "subject_practice", practice_questions)
    assert timer.tick_once() is True
    store.dispatch(a.PauseSession())
    assert timer.tick_once() is False
    assert store.session.session_time == 1


def test_timer_thread_advances_session(tmp_path, practice_questions):
    store = SessionStore(LocalSessionStorage(tmp_path))
    store.start_session("SHSAT", "subject_practice", practice_questions)
    timer = SessionTimer(store, interval=0.01)
    timer.start()
    deadline = time.monotonic() + 2.0
    while store.session.session_time == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    timer.stop()
    assert store.session.session_time > 0


def test_abandon_forgets_remote_link_once_writes_are_done(store, fake_client, practice_questions):
    s = store.start_session("SHSAT", "subject_practice", practice_questions)
    store.worker.drain()
    store.answer("q1", "A")
    store.abandon()
    # the unsent answer keeps the link alive until it is written
    assert store.worker.link(s.id).server_id == "srv-1"
    store.worker.drain()
    assert fake_client.names() == ["create", "submit"]
    store.worker.prune()
    assert store.worker.link(s.id) is None


def test_recovered_session_ignores_answers_for_unknown_questions(store, fake_client, practice_questions):
    fake_client.remote_session = {
        "session": {
            "id": "srv-8",
            "test_type": "SHSAT",
            "session_type": "mixed_review",
            "current_question_index": 0,
            "status": "in_progress",
            "start_time": "2026-03-01T09:00:00",
        },
        "questions": [q.to_wire() for q in practice_questions],
        "answers": [
            {"question_id": "q1", "user_answer": "A"},
            {"question_id": "retired", "user_answer": "C"},
        ],
    }
    s = store.recover_remote("srv-8")
    assert set(s.answers) == {"q1"}
