"""HTTP client for the session endpoints.

Every call raises a `RemoteError` subclass on failure; callers in the sync
worker decide whether to retry (`retryable`) and never let the error reach
the state machine.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Union

import httpx

from ..config import settings
from .types import Question

logger = logging.getLogger("testprep.remote")

TokenSource = Union[str, Callable[[], Optional[str]], None]


class RemoteError(Exception):
    """Base class for failures talking to the session endpoints."""
    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailable(RemoteError):
    """Transport failure, timeout, or a 5xx/408/429 response."""
    retryable = True


class RemoteRejected(RemoteError):
    """The endpoint refused the request (4xx)."""


class NotAuthenticated(RemoteError):
    """No identity token, or the endpoint rejected it."""


class RemoteSessionClient:
    """Thin wrapper over the `/functions/*` and `/sessions/*` endpoints.

    `http` may be any `httpx.Client` (FastAPI's `TestClient` included);
    when omitted a client for `base_url` is created and owned here.
    """

    def __init__(
        self,
        token: TokenSource = None,
        base_url: Optional[str] = None,
        http: Optional[httpx.Client] = None,
        timeout: Optional[float] = None,
    ):
        self._token = token
        self._owns_http = http is None
        self._http = http or httpx.Client(
            base_url=base_url or settings.REMOTE_BASE_URL,
            timeout=timeout if timeout is not None else settings.REMOTE_TIMEOUT_SECONDS,
        )

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def _current_token(self) -> Optional[str]:
        if callable(self._token):
            return self._token()
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return bool(self._current_token())

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        token = self._current_token()
        if not token:
            raise NotAuthenticated("no identity token configured")
        try:
            resp = self._http.request(method, path, json=payload, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            raise RemoteUnavailable(f"{method} {path} failed: {exc}") from exc
        if resp.status_code < 400:
            return resp.json()
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        message = f"{method} {path} -> {resp.status_code}: {detail}"
        if resp.status_code == 401:
            raise NotAuthenticated(message, resp.status_code)
        if resp.status_code >= 500 or resp.status_code in (408, 429):
            raise RemoteUnavailable(message, resp.status_code)
        raise RemoteRejected(message, resp.status_code)

    def create_session(
        self,
        session_type: str,
        test_type: str,
        subject: Optional[str] = None,
        topic: Optional[str] = None,
        difficulty: Optional[str] = None,
        questions: Optional[List[Question]] = None,
    ) -> tuple[dict, List[Question]]:
        """Create the remote session; returns `(session_row, questions)`."""
        body = {
            "sessionType": session_type,
            "testType": test_type,
            "subject": subject,
            "topic": topic,
            "difficulty": difficulty,
            "questionsData": [q.to_wire() for q in questions or []],
        }
        data = self._request("POST", "/functions/create-session", body)
        return data["session"], [Question.from_wire(q) for q in data.get("questions", [])]

    def submit_answer(
        self,
        session_id: str,
        question_id: str,
        user_answer: Optional[str],
        time_spent: int,
        is_correct: bool,
        is_flagged: bool,
        confidence: Optional[str] = None,
    ) -> dict:
        body = {
            "sessionId": session_id,
            "questionId": question_id,
            "userAnswer": user_answer,
            "timeSpent": time_spent,
            "isCorrect": is_correct,
            "isFlagged": is_flagged,
            "confidenceLevel": confidence,
        }
        return self._request("POST", "/functions/submit-answer", body)

    def complete_session(self, session_id: str, total_time_spent: int) -> dict:
        return self._request("POST", "/functions/complete-session", {
            "sessionId": session_id,
            "totalTimeSpent": total_time_spent,
        })

    def update_progress(self, session_id: str, current_index: int, total_time_spent: Optional[int] = None) -> dict:
        return self._request("PATCH", f"/sessions/{session_id}/progress", {
            "currentQuestionIndex": current_index,
            "totalTimeSpent": total_time_spent,
        })

    def load_session(self, session_id: str) -> dict:
        return self._request("GET", f"/sessions/{session_id}")

    def fetch_questions(
        self,
        test_type: str,
        subject: Optional[str] = None,
        topic: Optional[str] = None,
        difficulty: Optional[str] = None,
        count: int = 20,
    ) -> List[Question]:
        """Fetch up to `count` questions; the endpoint may return fewer."""
        data = self._request("POST", "/functions/get-questions", {
            "count": count,
            "testType": test_type,
            "subject": subject,
            "topic": topic,
            "difficulty": difficulty,
        })
        return [Question.from_wire(q) for q in data.get("questions", [])]

    def fetch_topics(self, test_type: str, subject: Optional[str] = None) -> List[dict]:
        return self._request("POST", "/functions/get-topics", {"testType": test_type, "subject": subject})["topics"]

    def get_session_review(self, session_id: str) -> dict:
        return self._request("POST", "/functions/get-session-review", {"sessionId": session_id})
