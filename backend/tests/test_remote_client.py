import httpx
import pytest

from testprep.practice import actions as a
from testprep.practice import build_store
from testprep.practice.remote import NotAuthenticated, RemoteRejected, RemoteSessionClient, RemoteUnavailable


@pytest.fixture
def remote(client, token):
    return RemoteSessionClient(token=token, http=client)


def test_client_without_token_is_not_authenticated(client):
    remote = RemoteSessionClient(token=None, http=client)
    assert not remote.is_authenticated
    with pytest.raises(NotAuthenticated):
        remote.fetch_topics("SHSAT")


def test_token_source_may_be_callable(client, token):
    remote = RemoteSessionClient(token=lambda: token, http=client)
    assert remote.is_authenticated
    assert remote.fetch_topics("SHSAT") == []


def test_status_codes_map_to_errors(remote, client):
    with pytest.raises(RemoteRejected) as exc:
        remote.load_session("missing")
    assert exc.value.status_code == 404
    assert not exc.value.retryable
    with pytest.raises(NotAuthenticated):
        RemoteSessionClient(token="garbage", http=client).load_session("missing")


def test_transport_errors_are_retryable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    http = httpx.Client(base_url="http://remote.invalid", transport=httpx.MockTransport(handler))
    remote = RemoteSessionClient(token="t", http=http)
    with pytest.raises(RemoteUnavailable) as exc:
        remote.complete_session("s1", 10)
    assert exc.value.retryable


def test_server_errors_are_retryable():
    http = httpx.Client(base_url="http://remote.invalid", transport=httpx.MockTransport(lambda r: httpx.Response(503, json={"detail": "busy"})))
    with pytest.raises(RemoteUnavailable) as exc:
        RemoteSessionClient(token="t", http=http).fetch_topics("SHSAT")
    assert exc.value.status_code == 503


def test_full_session_against_endpoints(remote, add_questions, tmp_path):
    add_questions(3, correct="B")
    questions = remote.fetch_questions("SHSAT", subject="Math", count=3)
    assert len(questions) == 3

    store = build_store(remote, storage_dir=tmp_path, sleep=lambda _s: None)
    store.start_session("SHSAT", "subject_practice", questions, subject="Math")
    store.worker.drain()
    server_id = store.session.server_session_id
    assert server_id

    store.answer(questions[0].id, "B", time_spent=8)
    store.answer(questions[1].id, "A", time_spent=4)
    store.dispatch(a.ToggleFlag(questions[2].id))
    store.dispatch(a.GoToQuestion(2))
    store.worker.drain()

    loaded = remote.load_session(server_id)
    assert loaded["session"]["current_question_index"] == 2
    assert len(loaded["answers"]) == 3

    done = store.dispatch(a.CompleteSession())
    store.worker.drain()
    assert done.score == 50
    assert store.last_results["score"] == done.score
    assert store.last_results["totalAnswered"] == 2
    assert not store.notifications

    review = remote.get_session_review(server_id)
    flagged = [q for q in review["questions"] if q["isFlagged"]]
    assert [q["id"] for q in flagged] == [questions[2].id]


def test_recover_session_from_endpoints(remote, add_questions, tmp_path):
    add_questions(2)
    questions = remote.fetch_questions("SHSAT", count=2)
    first = build_store(remote, storage_dir=tmp_path / "device-a", sleep=lambda _s: None)
    first.start_session("SHSAT", "mixed_review", questions)
    first.worker.drain()
    first.answer(questions[1].id, "C")
    first.worker.drain()
    server_id = first.session.server_session_id

    second = build_store(remote, storage_dir=tmp_path / "device-b", sleep=lambda _s: None)
    recovered = second.recover_remote(server_id)
    assert recovered.server_session_id == server_id
    assert [q.id for q in recovered.questions] == [q.id for q in questions]
    assert recovered.answers[questions[1].id].selected_answer == "C"
