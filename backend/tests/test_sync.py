import pytest

from testprep.practice.remote import NotAuthenticated, RemoteRejected, RemoteUnavailable
from testprep.practice.sync import SyncJob, SyncWorker
from testprep.practice.types import UserAnswer


@pytest.fixture
def notes():
    return []


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def worker(fake_client, clock, notes, sleeps):
    w = SyncWorker(
        fake_client,
        notifier=notes.append,
        debounce_seconds=1.0,
        max_attempts=3,
        backoff_seconds=0.5,
        clock=clock,
        sleep=sleeps.append,
    )
    w.register("local-1", "srv-1")
    return w


def _answer(choice="A", flagged=False, question_id="q1"):
    return UserAnswer(question_id=question_id, selected_answer=choice, is_flagged=flagged)


def test_answer_writes_are_debounced_per_question(worker, fake_client, clock):
    worker.schedule_answer("local-1", _answer("A"), True)
    clock.advance(0.5)
    worker.schedule_answer("local-1", _answer("B"), False)
    clock.advance(0.7)
    assert worker.run_pending() == 0
    clock.advance(0.4)
    assert worker.run_pending() == 1
    submits = [kw for name, kw in fake_client.calls if name == "submit"]
    assert len(submits) == 1
    assert submits[0]["user_answer"] == "B"
    assert submits[0]["session_id"] == "srv-1"


def test_unchanged_answer_is_written_once(worker, fake_client):
    worker.schedule_answer("local-1", _answer("A"), True)
    worker.drain()
    worker.schedule_answer("local-1", _answer("A"), True)
    worker.drain()
    assert fake_client.names() == ["submit"]
    assert worker.writes == 1


def test_flag_change_is_written(worker, fake_client):
    worker.schedule_answer("local-1", _answer("A"), True)
    worker.drain()
    worker.schedule_answer("local-1", _answer("A", flagged=True), True)
    worker.drain()
    assert worker.writes == 2
    assert fake_client.calls[-1][1]["is_flagged"] is True


def test_transient_failures_are_retried_with_backoff(worker, fake_client, notes, sleeps):
    fake_client.failures["submit"] = [RemoteUnavailable("down"), RemoteUnavailable("down")]
    worker.schedule_answer("local-1", _answer("C"), False)
    worker.drain()
    assert fake_client.names() == ["submit", "submit", "submit"]
    assert sleeps == [0.5, 1.0]
    assert notes == []
    assert worker.writes == 1


def test_exhausted_retries_notify(worker, fake_client, notes, sleeps):
    fake_client.failures["submit"] = [RemoteUnavailable("down")] * 3
    worker.schedule_answer("local-1", _answer("C"), False)
    worker.drain()
    assert len(fake_client.calls) == 3
    assert sleeps == [0.5, 1.0]
    assert [n.title for n in notes] == ["Auto-save failed"]
    assert notes[0].variant == "destructive"
    assert worker.writes == 0


def test_rejected_write_is_not_retried(worker, fake_client, notes, sleeps):
    fake_client.failures["submit"] = [RemoteRejected("bad", 400)]
    worker.schedule_answer("local-1", _answer("C"), False)
    worker.drain()
    assert len(fake_client.calls) == 1
    assert sleeps == []
    assert len(notes) == 1


def test_failed_write_is_sent_again_when_rescheduled(worker, fake_client):
    fake_client.failures["submit"] = [RemoteRejected("bad", 400)]
    worker.schedule_answer("local-1", _answer("C"), False)
    worker.drain()
    worker.schedule_answer("local-1", _answer("C"), False)
    worker.drain()
    assert worker.writes == 1


def test_rejected_identity_notifies_and_keeps_known_link(worker, fake_client, notes):
    fake_client.failures["submit"] = [NotAuthenticated("no token")]
    worker.schedule_answer("local-1", _answer("A"), True)
    worker.drain()
    assert len(fake_client.calls) == 1
    assert notes
    # a session that already has a server id keeps it
    assert worker.link("local-1").server_id == "srv-1"


def test_offline_session_schedules_nothing(worker, fake_client):
    worker.register("local-2", offline=True)
    worker.schedule_answer("local-2", _answer("A"), True)
    assert worker.pending_count() == 0
    worker.drain()
    assert fake_client.calls == []


def test_answers_wait_for_server_id(worker, fake_client):
    worker.register("local-3")
    worker.schedule_answer("local-3", _answer("B"), False)
    worker.drain()
    assert fake_client.calls == []
    assert worker.pending_count() == 1
    worker.attach("local-3", "srv-3")
    worker.drain()
    assert fake_client.calls[0][1]["session_id"] == "srv-3"


def test_mark_offline_drops_pending(worker):
    worker.register("local-4")
    worker.schedule_answer("local-4", _answer("B"), False)
    worker.mark_offline("local-4")
    assert worker.pending_count() == 0
    assert worker.link("local-4").offline


def test_completion_flushes_answers_first(worker, fake_client):
    order = []

    def complete(server_id):
        order.append(("complete", server_id))

    worker.schedule_answer("local-1", _answer("A", question_id="q1"), True)
    worker.schedule_answer("local-1", _answer("D", question_id="q2"), False)
    worker.enqueue(SyncJob(name="complete-session", local_id="local-1", run=complete, flush_answers_first=True))
    worker.drain()
    assert fake_client.names() == ["submit", "submit"]
    assert order == [("complete", "srv-1")]
    assert worker.pending_count() == 0


def test_job_without_server_id_is_skipped(worker):
    ran = []
    worker.register("local-5", offline=True)
    worker.enqueue(SyncJob(name="update-progress", local_id="local-5", run=ran.append))
    worker.drain()
    assert ran == []


def test_failure_hook_runs(worker, notes):
    hooked = []

    def boom(_server_id):
        raise RemoteUnavailable("down")

    worker.enqueue(SyncJob(
        name="create-session",
        local_id="local-6",
        run=boom,
        needs_server_id=False,
        failure_title="Offline mode",
        on_failure=lambda: hooked.append(True),
    ))
    worker.drain()
    assert hooked == [True]
    assert notes[-1].title == "Offline mode"


def test_background_thread_flushes_on_stop(fake_client, notes):
    w = SyncWorker(fake_client, notifier=notes.append, debounce_seconds=60, max_attempts=1)
    w.register("local-1", "srv-1")
    w.start()
    w.schedule_answer("local-1", _answer("A"), True)
    w.stop()
    assert fake_client.names() == ["submit"]
    assert w.pending_count() == 0


def test_starting_another_session_forgets_idle_ones(worker, fake_client):
    worker.schedule_answer("local-1", _answer("A"), True)
    worker.drain()
    worker.register("local-7", "srv-7")
    assert worker.link("local-1") is None
    assert worker.link("local-7").server_id == "srv-7"

    # state for local-1 is gone, so the same answer is written again
    worker.register("local-1", "srv-1")
    worker.schedule_answer("local-1", _answer("A"), True)
    worker.drain()
    assert worker.writes == 2


def test_sessions_with_pending_work_are_kept(worker, fake_client):
    worker.schedule_answer("local-1", _answer("B"), False)
    worker.register("local-8", "srv-8")
    assert worker.link("local-1").server_id == "srv-1"
    worker.drain()
    assert fake_client.calls[0][1]["session_id"] == "srv-1"
    assert worker.prune() == 2
    assert worker.link("local-1") is None
    assert worker.link("local-8") is None


def test_running_job_keeps_its_session(worker):
    seen = []

    def progress(server_id):
        worker.register("local-9", "srv-9")
        seen.append(worker.link("local-1"))

    worker.enqueue(SyncJob(name="update-progress", local_id="local-1", run=progress))
    worker.drain()
    assert seen[0].server_id == "srv-1"
    assert worker.prune(keep="local-9") == 1
