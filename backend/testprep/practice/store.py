"""The owning component for the live practice session.

`SessionStore` is the explicit context object the rest of the client
passes around: it holds the single live `PracticeSession`, applies every
transition through one `dispatch` entry point, mirrors each change to the
local storage slot synchronously, and hands remote mirroring to a
`SyncWorker` without waiting for it.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, List, Optional, Sequence

from . import actions as a
from .reducer import new_local_id, reduce
from .remote import RemoteError
from .scoring import is_correct
from .storage import LocalSessionStorage
from .sync import Notification, SyncJob, SyncWorker
from .types import PracticeSession, Question, UserAnswer

logger = logging.getLogger("testprep.store")


class SessionStore:
    def __init__(
        self,
        storage: LocalSessionStorage,
        worker: Optional[SyncWorker] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.storage = storage
        self.worker = worker
        self._now = now
        self._lock = threading.RLock()
        self._session: Optional[PracticeSession] = None
        self.last_results: Optional[dict] = None
        self.notifications: Deque[Notification] = deque(maxlen=20)

    @property
    def session(self) -> Optional[PracticeSession]:
        """The live session. It is immutable; change it through `dispatch`."""
        return self._session

    def notify(self, note: Notification) -> None:
        logger.warning("notification %s", json.dumps({"title": note.title, "description": note.description}, ensure_ascii=True))
        self.notifications.append(note)

    def dismiss_notifications(self) -> List[Notification]:
        out = list(self.notifications)
        self.notifications.clear()
        return out

    # -- transitions ---------------------------------------------------

    def dispatch(self, action: a.Action) -> Optional[PracticeSession]:
        """Apply one transition atomically and schedule its side effects."""
        with self._lock:
            previous = self._session
            current = reduce(previous, action, self._now())
            self._session = current
            if current is not previous:
                self._persist(current)
                self._mirror(previous, current, action)
            return current

    def start_session(
        self,
        test_type: str,
        session_type: str,
        questions: Sequence[Question],
        subject: Optional[str] = None,
        topic: Optional[str] = None,
        difficulty: Optional[str] = None,
    ) -> PracticeSession:
        """Start a new live session, discarding the previous one locally."""
        return self.dispatch(a.StartSession(
            test_type=test_type,
            session_type=session_type,
            questions=tuple(questions),
            subject=subject,
            topic=topic,
            difficulty=difficulty,
        ))

    def answer(self, question_id: str, choice: str, time_spent: int = 0) -> Optional[PracticeSession]:
        return self.dispatch(a.AnswerQuestion(question_id=question_id, selected_answer=choice, time_spent=time_spent))

    def abandon(self) -> None:
        """Drop the live session; queued remote writes still run."""
        self.dispatch(a.AbandonSession())

    def restore(self) -> Optional[PracticeSession]:
        """Offer resumption of the session left in the local slot, if any."""
        saved = self.storage.load()
        if saved is None:
            return None
        logger.info("restored session %s (%d answers)", saved.id, len(saved.answers))
        return self.dispatch(a.HydrateSession(saved))

    def recover_remote(self, server_session_id: str) -> Optional[PracticeSession]:
        """Rebuild the live session from its remote copy.

        Used when the local slot is gone (another device, cleared storage).
        Failure leaves the store without a session and posts a notification.
        """
        if self.worker is None:
            return None
        current = self._session
        local_id = current.id if current is not None and current.server_session_id == server_session_id else new_local_id()
        try:
            data = self.worker.client.load_session(server_session_id)
            recovered = session_from_remote(data, local_id)
        except (RemoteError, KeyError, ValueError) as exc:
            logger.error("session recovery failed for %s: %s", server_session_id, exc)
            self.notify(Notification(
                title="Session recovery failed",
                description="Could not load your practice session. Please start a new one.",
            ))
            return None
        return self.dispatch(a.HydrateSession(recovered))

    # -- side effects --------------------------------------------------

    def _persist(self, session: Optional[PracticeSession]) -> None:
        if session is None or session.is_completed:
            self.storage.clear()
        else:
            self.storage.save(session)

    def _mirror(self, previous: Optional[PracticeSession], current: Optional[PracticeSession], action: a.Action) -> None:
        if self.worker is None:
            return
        if current is None:
            if isinstance(action, a.AbandonSession):
                self.worker.prune()
            return
        match action:
            case a.StartSession():
                self._begin_remote(current)
            case a.HydrateSession():
                self.worker.register(current.id, current.server_session_id, offline=current.server_session_id is None)
            case a.AnswerQuestion(question_id=qid) | a.ToggleFlag(question_id=qid):
                self._schedule_answer(current, current.answers[qid])
            case a.GoToQuestion():
                self._push_progress(current)
            case a.CompleteSession():
                self._complete_remote(current)
            case _:
                pass

    def _begin_remote(self, session: PracticeSession) -> None:
        worker = self.worker
        if not worker.client.is_authenticated:
            logger.info("no identity token; session %s stays local", session.id)
            worker.register(session.id, offline=True)
            return
        worker.register(session.id)
        local_id = session.id

        def run(_server_id: Optional[str]) -> None:
            row, _questions = worker.client.create_session(
                session_type=session.session_type,
                test_type=session.test_type,
                subject=session.subject,
                topic=session.topic,
                difficulty=session.difficulty,
                questions=list(session.questions),
            )
            worker.attach(local_id, row["id"])
            self._attach(local_id, row["id"])

        worker.enqueue(SyncJob(
            name="create-session",
            local_id=local_id,
            run=run,
            needs_server_id=False,
            failure_title="Offline mode",
            failure_description="Your session could not be saved online; progress is kept on this device.",
            on_failure=lambda: worker.mark_offline(local_id),
        ))

    def _attach(self, local_id: str, server_id: str) -> None:
        with self._lock:
            if self._session is not None and self._session.id == local_id:
                self.dispatch(a.AttachServerSession(server_id))

    def _schedule_answer(self, session: PracticeSession, answer: UserAnswer) -> None:
        question = session.question(answer.question_id)
        self.worker.schedule_answer(session.id, answer, is_correct(answer.selected_answer, question.correct_answer))

    def _push_progress(self, session: PracticeSession) -> None:
        worker = self.worker
        index, elapsed = session.current_question, session.session_time

        def run(server_id: Optional[str]) -> None:
            worker.client.update_progress(server_id, index, elapsed)

        worker.enqueue(SyncJob(name="update-progress", local_id=session.id, run=run))

    def _complete_remote(self, session: PracticeSession) -> None:
        worker = self.worker

        def run(server_id: Optional[str]) -> None:
            data = worker.client.complete_session(server_id, session.session_time)
            results = data.get("results") or {}
            self.last_results = results
            if results.get("score") != session.score:
                logger.warning("score_mismatch %s", json.dumps({
                    "session": session.id,
                    "local": session.score,
                    "remote": results.get("score"),
                }))

        worker.enqueue(SyncJob(
            name="complete-session",
            local_id=session.id,
            run=run,
            flush_answers_first=True,
            failure_title="Submission failed",
            failure_description="Your results are saved on this device but could not be submitted.",
        ))


def session_from_remote(data: dict, local_id: str) -> PracticeSession:
    """Build a `PracticeSession` from the `GET /sessions/{id}` payload."""
    row = data["session"]
    questions = [Question.from_wire(q) for q in data.get("questions", [])]
    known = {q.id for q in questions}
    answers = {}
    for ans in data.get("answers", []):
        if ans["question_id"] not in known:
            continue
        answers[ans["question_id"]] = UserAnswer(
            question_id=ans["question_id"],
            selected_answer=ans.get("user_answer") or None,
            time_spent=ans.get("time_spent") or 0,
            is_flagged=bool(ans.get("is_flagged")),
            confidence=ans.get("confidence_level"),
        )
    index = row.get("current_question_index") or 0
    return PracticeSession(
        id=local_id,
        server_session_id=row["id"],
        test_type=row["test_type"],
        session_type=row["session_type"],
        subject=row.get("subject"),
        topic=row.get("topic"),
        difficulty=row.get("difficulty"),
        questions=questions,
        answers=answers,
        current_question=min(max(index, 0), len(questions) - 1) if questions else 0,
        start_time=row["start_time"],
        end_time=row.get("end_time"),
        session_time=row.get("total_time_spent") or 0,
        is_paused=row.get("status") == "paused",
        is_completed=row.get("status") == "completed",
        score=row.get("score"),
    )
