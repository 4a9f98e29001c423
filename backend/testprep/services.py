"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
domain logic for the session endpoints. Services are intentionally thin:
they validate, execute domain logic and persist aggregates via
repositories. They raise `ValueError` for bad input, `LookupError` when a
row is missing or not owned by the caller, `PermissionError` when the
caller may not perform the operation and `SessionClosedError` when a
completed session is written to; controllers map these to HTTP codes.
"""

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .practice import scoring
from .schemas import CompleteSessionIn, CreateSessionIn, GetQuestionsIn, ProgressIn, QuestionIn, SubmitAnswerIn

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
logger = logging.getLogger("testprep.services")

SUBJECT_COLORS = {
    "Math": "#1E40AF",
    "Verbal": "#059669",
    "Reading": "#D97706",
    "Writing": "#7C3AED",
}
DEFAULT_SUBJECT_COLOR = "#6B7280"


class SessionClosedError(Exception):
    """Raised when writing to a session that is already completed."""


def _dump(row) -> dict:
    return row.model_dump(mode="json")


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, password: str) -> models.User:
        """Create a new user with a hashed password and an empty profile.

        Returns the persisted `User` instance.
        """
        hashed = PWD_CTX.hash(password)
        u = models.User(username=username, password_hash=hashed)
        return self.user_repo.create(u)

    def authenticate(self, username: str, password: str):
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_username(username)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class QuestionService:
    """Serve questions and topics; admin creation of question rows."""
    def __init__(self, session: Session):
        self.session = session
        self.q_repo = repositories.QuestionRepository(session)
        self.history_repo = repositories.QuestionHistoryRepository(session)

    def add_questions(self, items: List[QuestionIn]) -> List[models.Question]:
        rows = []
        for item in items:
            data = item.model_dump(exclude_none=True)
            rows.append(models.Question(**data))
        return self.q_repo.create_many(rows)

    def fetch(self, user_id: int, params: GetQuestionsIn) -> dict:
        """Pick up to `params.count` questions for the caller.

        Questions seen in the last `RECENT_QUESTION_DAYS` are avoided first;
        when that leaves too few, the filters are relaxed step by step
        (recency, then topic/difficulty, then subject). The result may
        still be shorter than requested.
        """
        count = params.count
        recent: List[str] = []
        if params.avoid_recent:
            since = datetime.now(timezone.utc) - timedelta(days=settings.RECENT_QUESTION_DAYS)
            recent = self.history_repo.recent_ids(user_id, since)

        filters = dict(test_type=params.test_type, subject=params.subject, topic=params.topic, difficulty=params.difficulty)
        selected = self.q_repo.find(**filters, exclude_ids=recent, limit=count * 2)
        fresh = True
        if len(selected) < count:
            fresh = False
            logger.info("only %d fresh questions for user %s, expanding search", len(selected), user_id)
            relaxed = [filters]
            if params.subject:
                relaxed.append(dict(test_type=params.test_type, subject=params.subject))
            relaxed.append(dict(test_type=params.test_type))
            for f in relaxed:
                if len(selected) >= count:
                    break
                candidates = self.q_repo.find(**f, limit=count * 2)
                if len(candidates) > len(selected):
                    selected = candidates

        random.shuffle(selected)
        selected = selected[:count]
        # serialize before record_seen commits and expires the rows
        payload = [_dump(q) for q in selected]
        if params.session_id and selected:
            self.history_repo.record_seen(user_id, [q["id"] for q in payload], params.session_id)
        return {
            "questions": payload,
            "message": f"Found {len(selected)} questions",
            "freshQuestions": fresh,
        }

    def topics(self, test_type: str, subject: Optional[str] = None) -> dict:
        topics = self.q_repo.list_topics(test_type, subject)
        return {"topics": topics, "message": f"Found {len(topics)} topics"}


class SessionService:
    """Create, update, complete and review practice sessions."""
    def __init__(self, session: Session):
        self.session = session
        self.q_repo = repositories.QuestionRepository(session)
        self.s_repo = repositories.SessionRepository(session)
        self.a_repo = repositories.AnswerRepository(session)
        self.analytics_repo = repositories.AnalyticsRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def _owned(self, session_id: str, user_id: int) -> models.PracticeSessionRecord:
        record = self.s_repo.get_owned(session_id, user_id)
        if record is None:
            raise LookupError("Session not found or access denied")
        return record

    def create(self, user_id: int, body: CreateSessionIn) -> dict:
        """Insert an in-progress session for the supplied or fetched questions."""
        if body.questions_data:
            ids = [q.id for q in body.questions_data if q.id]
            if len(ids) != len(body.questions_data):
                raise ValueError("questionsData items must carry an id")
            questions = self.q_repo.get_many(ids)
            if len(questions) != len(ids):
                raise ValueError("questionsData contains unknown question ids")
        else:
            count = settings.FULL_TEST_QUESTION_COUNT if body.session_type == "full_test" else settings.PRACTICE_QUESTION_COUNT
            params = GetQuestionsIn(
                count=count,
                test_type=body.test_type,
                subject=body.subject,
                topic=body.topic,
                difficulty=body.difficulty,
            )
            fetched = QuestionService(self.session).fetch(user_id, params)["questions"]
            questions = self.q_repo.get_many([q["id"] for q in fetched])
        if not questions:
            raise ValueError("No questions available for the specified criteria")
        question_payload = [_dump(q) for q in questions]

        record = self.s_repo.create(models.PracticeSessionRecord(
            user_id=user_id,
            session_type=body.session_type,
            test_type=body.test_type,
            subject=body.subject,
            topic=body.topic,
            difficulty=body.difficulty,
            total_questions=len(questions),
            questions_order=[q.id for q in questions],
            status="in_progress",
        ))
        logger.info("created session %s for user %s with %d questions", record.id, user_id, len(questions))
        return {
            "session": _dump(record),
            "questions": question_payload,
            "message": "Practice session created successfully",
        }

    def submit_answer(self, user_id: int, body: SubmitAnswerIn) -> dict:
        """Upsert the caller's answer for one question of an open session.

        Correctness is derived from the stored question; a disagreeing
        client `isCorrect` is logged and ignored.
        """
        record = self._owned(body.session_id, user_id)
        if record.status == "completed":
            raise SessionClosedError("Session is already completed")
        if body.question_id not in (record.questions_order or []):
            raise ValueError("question is not part of this session")
        question = self.q_repo.get(body.question_id)
        if question is None:
            raise ValueError(f"question not found: {body.question_id}")
        correct = scoring.is_correct(body.user_answer, question.correct_answer)
        if body.is_correct is not None and body.is_correct != correct:
            logger.warning("client correctness mismatch for session %s question %s", record.id, question.id)
        answer = self.a_repo.upsert(models.UserAnswerRecord(
            session_id=record.id,
            question_id=question.id,
            user_answer=body.user_answer,
            is_correct=correct,
            time_spent=body.time_spent,
            is_flagged=body.is_flagged,
            confidence_level=body.confidence_level,
            answered_at=datetime.now(timezone.utc),
        ))
        return {"answer": _dump(answer), "message": "Answer submitted successfully"}

    def results(self, record: models.PracticeSessionRecord) -> scoring.SessionResults:
        """Recompute results from the persisted answer rows only."""
        rows = self.a_repo.list_for_session(record.id)
        return scoring.score_rows(((r.user_answer, r.is_correct) for r in rows), record.total_questions)

    def complete(self, user_id: int, body: CompleteSessionIn) -> dict:
        """Finalize the session and refresh the caller's analytics.

        Completing an already completed session returns its results again
        without touching analytics a second time.
        """
        record = self._owned(body.session_id, user_id)
        results = self.results(record)
        if record.status == "completed":
            return {
                "session": _dump(record),
                "results": results.to_wire(record.total_time_spent),
                "message": "Session already completed",
            }
        record.status = "completed"
        record.end_time = datetime.now(timezone.utc)
        record.score = results.score
        record.percentage_correct = results.percentage_correct
        record.total_time_spent = body.total_time_spent
        record = self.s_repo.save(record)
        snapshot = _dump(record)
        logger.info(
            "session %s completed: %d/%d correct (%d%%)",
            record.id, results.correct_answers, results.total_answered, results.score,
        )

        try:
            touched = self.analytics_repo.update_user_analytics(user_id, record.id)
            logger.info("analytics updated for user %s (%d topics)", user_id, touched)
        except Exception:
            # completion stands even if analytics cannot be refreshed
            self.session.rollback()
            logger.exception("analytics update failed for session %s", record.id)
        try:
            self._bump_profile(user_id, body.total_time_spent)
        except Exception:
            self.session.rollback()
            logger.exception("profile update failed for user %s", user_id)

        return {
            "session": snapshot,
            "results": results.to_wire(body.total_time_spent),
            "message": "Session completed successfully",
        }

    def _bump_profile(self, user_id: int, total_time_spent: int) -> None:
        profile = self.user_repo.get_profile(user_id)
        if profile is None:
            return
        profile.total_study_time += round(total_time_spent / 60)
        profile.study_streak += 1
        self.user_repo.save_profile(profile)

    def update_progress(self, user_id: int, session_id: str, body: ProgressIn) -> dict:
        """Store the client's current index; stale updates to closed sessions are ignored."""
        record = self._owned(session_id, user_id)
        if record.status == "completed":
            return {"session": _dump(record), "message": "Session already completed"}
        if body.current_question_index >= record.total_questions:
            raise ValueError("currentQuestionIndex out of range")
        record.current_question_index = body.current_question_index
        if body.total_time_spent is not None:
            record.total_time_spent = max(record.total_time_spent, body.total_time_spent)
        if body.status:
            record.status = body.status
        record = self.s_repo.save(record)
        return {"session": _dump(record), "message": "Progress saved"}

    def load(self, user_id: int, session_id: str) -> dict:
        """Return the session row, its ordered questions and saved answers."""
        record = self._owned(session_id, user_id)
        questions = self.q_repo.get_many(record.questions_order or [])
        answers = self.a_repo.list_for_session(record.id)
        return {
            "session": _dump(record),
            "questions": [_dump(q) for q in questions],
            "answers": [_dump(a) for a in answers],
        }

    def review(self, user_id: int, session_id: Optional[str]) -> dict:
        """Questions of a completed session in presentation order with the caller's answers."""
        if not session_id:
            raise ValueError("Session ID is required")
        record = self._owned(session_id, user_id)
        if record.status != "completed":
            raise PermissionError("Session must be completed to view review")
        questions = self.q_repo.get_many(record.questions_order or [])
        by_question = {a.question_id: a for a in self.a_repo.list_for_session(record.id)}
        out = []
        for q in questions:
            a = by_question.get(q.id)
            item = _dump(q)
            item.update({
                "userAnswer": a.user_answer if a else None,
                "isCorrect": a.is_correct if a else None,
                "timeSpent": a.time_spent if a else None,
                "confidenceLevel": a.confidence_level if a else None,
                "isFlagged": a.is_flagged if a else None,
            })
            out.append(item)
        return {"session": _dump(record), "questions": out, "totalQuestions": len(out)}


class AnalyticsService:
    """Summaries built from `user_analytics`, profiles and completed sessions."""
    def __init__(self, session: Session):
        self.session = session
        self.analytics_repo = repositories.AnalyticsRepository(session)
        self.s_repo = repositories.SessionRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def summary(self, user_id: int) -> dict:
        rows = self.analytics_repo.list_for_user(user_id)
        profile = self.user_repo.get_profile(user_id)

        subjects: dict = {}
        for row in rows:
            subject = subjects.setdefault(row.subject, {
                "subject": row.subject,
                "accuracy": 0,
                "questionsAttempted": 0,
                "averageTime": 0,
                "color": SUBJECT_COLORS.get(row.subject, DEFAULT_SUBJECT_COLOR),
                "topics": [],
            })
            subject["topics"].append({
                "topic": row.topic,
                "accuracy": row.accuracy_percentage,
                "questionsAttempted": row.total_attempted,
                "mastery": row.mastery_level,
                "averageTime": row.avg_time_per_question,
            })
        for subject in subjects.values():
            attempted = sum(t["questionsAttempted"] for t in subject["topics"])
            subject["questionsAttempted"] = attempted
            if attempted:
                subject["accuracy"] = round(sum(t["accuracy"] * t["questionsAttempted"] for t in subject["topics"]) / attempted)
                subject["averageTime"] = round(sum(t["averageTime"] * t["questionsAttempted"] for t in subject["topics"]) / attempted)

        history = [
            {
                "date": s.created_at.strftime("%b %d").replace(" 0", " "),
                "score": s.score or 0,
                "testType": s.test_type,
                "sessionType": s.session_type,
            }
            for s in self.s_repo.recent_completed(user_id, limit=10)
        ]
        total_questions = sum(r.total_attempted for r in rows)
        total_correct = sum(r.total_correct for r in rows)
        return {
            "overallStats": {
                "totalQuestions": total_questions,
                "averageScore": scoring.percentage(total_correct, total_questions),
                "studyStreak": profile.study_streak if profile else 0,
                "timeSpentThisWeek": profile.total_study_time if profile else 0,
            },
            "performanceBySubject": list(subjects.values()),
            "scoreHistory": history,
            "profile": _dump(profile) if profile else None,
        }
