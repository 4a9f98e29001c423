"""Background mirroring of local session changes to the session endpoints.

The worker owns a FIFO of sync jobs plus a table of debounced answer
writes. Jobs run on a single daemon thread (or synchronously through
`drain()`), so remote operations never block a state transition. Failures
are logged and turned into a `Notification`; nothing here ever touches the
local session state.

Answer writes are debounced per (session, question): every change restarts
the quiet window and replaces the pending payload. When the window closes
the write is sent unless its `(selected_answer, is_flagged)` signature is
the one last acknowledged for that question.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, List, Optional, Tuple

from ..config import settings
from .remote import NotAuthenticated, RemoteError, RemoteSessionClient
from .types import UserAnswer

logger = logging.getLogger("testprep.sync")


@dataclass(frozen=True)
class Notification:
    """User-visible, dismissible message about a failed save."""
    title: str
    description: str
    variant: str = "destructive"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Notifier = Callable[[Notification], None]


def _log_notification(note: Notification) -> None:
    logger.warning("notification %s", json.dumps({"title": note.title, "description": note.description}, ensure_ascii=True))


@dataclass
class SessionLink:
    """Remote correlation state for one local session id."""
    local_id: str
    server_id: Optional[str] = None
    offline: bool = False

    @property
    def resolved(self) -> bool:
        return self.offline or self.server_id is not None


@dataclass
class PendingAnswer:
    local_id: str
    question_id: str
    selected_answer: Optional[str]
    is_flagged: bool
    time_spent: int
    confidence: Optional[str]
    is_correct: bool
    due: float

    @property
    def signature(self) -> Tuple[Optional[str], bool]:
        return (self.selected_answer, self.is_flagged)


@dataclass
class SyncJob:
    """One remote operation.

    `run` receives the resolved server session id (None when the job does
    not need one). When `flush_answers_first` is set, pending answers for
    the same session are sent before `run`.
    """
    name: str
    local_id: str
    run: Callable[[Optional[str]], None]
    needs_server_id: bool = True
    flush_answers_first: bool = False
    failure_title: str = "Sync failed"
    failure_description: str = "Your progress is saved on this device but could not be synced."
    on_failure: Optional[Callable[[], None]] = None


class SyncWorker:
    def __init__(
        self,
        client: RemoteSessionClient,
        notifier: Optional[Notifier] = None,
        debounce_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self._notify = notifier or _log_notification
        self._debounce = settings.AUTOSAVE_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self._max_attempts = max_attempts or settings.SYNC_MAX_ATTEMPTS
        self._backoff = settings.SYNC_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self._clock = clock
        self._sleep = sleep

        self._cond = threading.Condition()
        self._queue: Deque[SyncJob] = deque()
        self._pending: Dict[Tuple[str, str], PendingAnswer] = {}
        self._last_sent: Dict[Tuple[str, str], Tuple[Optional[str], bool]] = {}
        self._links: Dict[str, SessionLink] = {}
        self._inflight: Counter = Counter()
        self._thread: Optional[threading.Thread] = None
        self._stopping = False
        self.writes = 0

    # -- session links -------------------------------------------------

    def register(self, local_id: str, server_id: Optional[str] = None, offline: bool = False) -> SessionLink:
        with self._cond:
            link = SessionLink(local_id=local_id, server_id=server_id, offline=offline and server_id is None)
            self._links[local_id] = link
            self._prune_locked(keep=local_id)
            self._cond.notify_all()
            return link

    def attach(self, local_id: str, server_id: str) -> None:
        with self._cond:
            link = self._links.setdefault(local_id, SessionLink(local_id=local_id))
            link.server_id = server_id
            link.offline = False
            self._cond.notify_all()

    def mark_offline(self, local_id: str) -> None:
        """Stop mirroring this session; pending writes for it are dropped."""
        with self._cond:
            link = self._links.setdefault(local_id, SessionLink(local_id=local_id))
            if link.server_id is None:
                link.offline = True
            dropped = [k for k in self._pending if k[0] == local_id]
            for k in dropped:
                self._pending.pop(k, None)
            self._cond.notify_all()
        if dropped:
            logger.info("sync_skipped %s", json.dumps({"session": local_id, "answers": len(dropped), "reason": "offline"}))

    def link(self, local_id: str) -> Optional[SessionLink]:
        with self._cond:
            return self._links.get(local_id)

    def prune(self, keep: Optional[str] = None) -> int:
        """Forget links and last-sent signatures of sessions with no work left.

        A session is kept while it has pending answers, queued or running
        jobs, or when it is `keep`. Returns the number of links dropped.
        """
        with self._cond:
            return self._prune_locked(keep)

    def _prune_locked(self, keep: Optional[str]) -> int:
        busy = {k[0] for k in self._pending}
        busy.update(job.local_id for job in self._queue)
        busy.update(local_id for local_id, n in self._inflight.items() if n > 0)
        if keep is not None:
            busy.add(keep)
        idle = [local_id for local_id in self._links if local_id not in busy]
        for local_id in idle:
            del self._links[local_id]
        for key in [k for k in self._last_sent if k[0] not in busy]:
            del self._last_sent[key]
        if idle:
            logger.debug("pruned sync state for %d idle sessions", len(idle))
        return len(idle)

    # -- scheduling ----------------------------------------------------

    def schedule_answer(self, local_id: str, answer: UserAnswer, is_correct: bool) -> None:
        """Debounce a write of `answer`; later calls for the same question win."""
        key = (local_id, answer.question_id)
        with self._cond:
            link = self._links.get(local_id)
            if link is not None and link.offline:
                return
            self._pending[key] = PendingAnswer(
                local_id=local_id,
                question_id=answer.question_id,
                selected_answer=answer.selected_answer,
                is_flagged=answer.is_flagged,
                time_spent=answer.time_spent,
                confidence=answer.confidence,
                is_correct=is_correct,
                due=self._clock() + self._debounce,
            )
            self._cond.notify_all()

    def enqueue(self, job: SyncJob) -> None:
        with self._cond:
            self._queue.append(job)
            self._cond.notify_all()

    def pending_count(self) -> int:
        with self._cond:
            return len(self._pending) + len(self._queue)

    # -- execution -----------------------------------------------------

    def start(self) -> None:
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopping = False
            self._thread = threading.Thread(target=self._loop, name="session-sync", daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background thread after sending everything sendable."""
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def drain(self) -> None:
        """Run every queued job and send every sendable pending answer now."""
        while True:
            with self._cond:
                batch = self._take_ready(force=True)
            if not batch:
                return
            self._run_batch(batch)

    def run_pending(self) -> int:
        """Run queued jobs and answers whose quiet window has closed.

        For callers that drive the worker from their own loop instead of
        `start()`. Returns the number of jobs run.
        """
        with self._cond:
            batch = self._take_ready(force=False)
        self._run_batch(batch)
        return len(batch)

    def _loop(self) -> None:
        while True:
            with self._cond:
                batch = self._take_ready(force=self._stopping)
                while not batch:
                    if self._stopping:
                        return
                    self._cond.wait(self._next_wait())
                    batch = self._take_ready(force=self._stopping)
            self._run_batch(batch)

    def _run_batch(self, batch: List[SyncJob]) -> None:
        for job in batch:
            try:
                self._execute(job)
            finally:
                with self._cond:
                    self._inflight[job.local_id] -= 1
                    if self._inflight[job.local_id] <= 0:
                        del self._inflight[job.local_id]

    def _next_wait(self) -> Optional[float]:
        dues = [p.due for p in self._pending.values() if self._sendable(p.local_id)]
        if not dues:
            return None
        return max(0.0, min(dues) - self._clock())

    def _sendable(self, local_id: str) -> bool:
        link = self._links.get(local_id)
        return link is not None and link.resolved

    def _take_ready(self, force: bool) -> List[SyncJob]:
        """Turn due (or all, if `force`) answers into jobs, then pop queued jobs.

        Answers go first so a queued completion never overtakes them.
        Answers for a session whose remote id is still unknown stay pending.
        Called with the lock held.
        """
        batch = []
        now = self._clock()
        for key, pending in list(self._pending.items()):
            if not self._sendable(pending.local_id):
                continue
            if force or pending.due <= now:
                self._pending.pop(key)
                batch.append(self._answer_job(pending))
        batch.extend(self._queue)
        self._queue.clear()
        for job in batch:
            self._inflight[job.local_id] += 1
        return batch

    def _take_answers_for(self, local_id: str) -> List[SyncJob]:
        with self._cond:
            keys = [k for k in self._pending if k[0] == local_id]
            return [self._answer_job(self._pending.pop(k)) for k in keys]

    def _answer_job(self, pending: PendingAnswer) -> SyncJob:
        key = (pending.local_id, pending.question_id)

        def run(server_id: Optional[str]) -> None:
            with self._cond:
                if self._last_sent.get(key) == pending.signature:
                    logger.debug("answer for %s unchanged since last write", pending.question_id)
                    return
            self.client.submit_answer(
                session_id=server_id,
                question_id=pending.question_id,
                user_answer=pending.selected_answer,
                time_spent=pending.time_spent,
                is_correct=pending.is_correct,
                is_flagged=pending.is_flagged,
                confidence=pending.confidence,
            )
            with self._cond:
                self._last_sent[key] = pending.signature
                self.writes += 1

        return SyncJob(
            name="submit-answer",
            local_id=pending.local_id,
            run=run,
            failure_title="Auto-save failed",
            failure_description="Your answer couldn't be saved automatically.",
        )

    def _execute(self, job: SyncJob) -> None:
        server_id = None
        if job.needs_server_id:
            link = self.link(job.local_id)
            if link is None or link.offline or link.server_id is None:
                logger.info("sync_skipped %s", json.dumps({"job": job.name, "session": job.local_id, "reason": "no remote session"}))
                return
            server_id = link.server_id
        if job.flush_answers_first:
            for answer_job in self._take_answers_for(job.local_id):
                self._execute(answer_job)
        self._run_with_retry(job, server_id)

    def _run_with_retry(self, job: SyncJob, server_id: Optional[str]) -> bool:
        started = time.perf_counter()
        last_exc: Optional[Exception] = None
        for attempt in range(self._max_attempts):
            try:
                job.run(server_id)
            except NotAuthenticated as exc:
                # same as the store being unreachable: keep working locally
                last_exc = exc
                self.mark_offline(job.local_id)
                break
            except RemoteError as exc:
                last_exc = exc
                if not exc.retryable or attempt + 1 >= self._max_attempts:
                    break
                delay = self._backoff * (2 ** attempt)
                logger.warning("sync_retry %s", json.dumps({"job": job.name, "attempt": attempt + 1, "delay_s": delay, "error": str(exc)}, ensure_ascii=True))
                self._sleep(delay)
            except Exception as exc:
                last_exc = exc
                logger.exception("sync job %s crashed", job.name)
                break
            else:
                logger.info("sync_done %s", json.dumps({
                    "job": job.name,
                    "session": job.local_id,
                    "attempts": attempt + 1,
                    "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
                }))
                return True
        logger.error("sync_failed %s", json.dumps({
            "job": job.name,
            "session": job.local_id,
            "error": str(last_exc),
        }, ensure_ascii=True))
        self._notify(Notification(title=job.failure_title, description=job.failure_description))
        if job.on_failure is not None:
            job.on_failure()
        return False
