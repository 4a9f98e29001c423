"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
questions, sessions, answers, analytics). Repositories return SQLModel
objects and perform commits/refreshes where appropriate. Session and
answer lookups always take the owning `user_id`, which is how the store
scopes rows to the authenticated caller.

`RoleRepository.has_role` and `AnalyticsRepository.update_user_analytics`
play the part of the hosted store's two stored procedures.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlmodel import Session, select

from . import models
from .practice.scoring import percentage


class UserRepository:
    """CRUD operations for `User` objects and their profile rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user with an empty profile and return it."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        self.session.add(models.UserProfile(user_id=user.id))
        self.session.commit()
        return user

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def get_profile(self, user_id: int) -> Optional[models.UserProfile]:
        return self.session.get(models.UserProfile, user_id)

    def save_profile(self, profile: models.UserProfile) -> models.UserProfile:
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)
        return profile


class RoleRepository:
    """Role grants (`has_role`)."""
    def __init__(self, session: Session):
        self.session = session

    def has_role(self, user_id: int, role: str) -> bool:
        stmt = select(models.UserRole.id).where(models.UserRole.user_id == user_id, models.UserRole.role == role)
        return self.session.exec(stmt).first() is not None

    def grant(self, user_id: int, role: str) -> None:
        """Grant `role` to the user; granting twice is a no-op."""
        if self.has_role(user_id, role):
            return
        self.session.add(models.UserRole(user_id=user_id, role=role))
        self.session.commit()


class QuestionRepository:
    """Read and create `Question` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create_many(self, questions: List[models.Question]) -> List[models.Question]:
        for q in questions:
            self.session.add(q)
        self.session.commit()
        for q in questions:
            self.session.refresh(q)
        return questions

    def get(self, question_id: str) -> Optional[models.Question]:
        """Fetch a question by id."""
        return self.session.get(models.Question, question_id)

    def get_many(self, question_ids: Sequence[str]) -> List[models.Question]:
        """Return questions for `question_ids` in the order the ids are given.

        Ids that no longer exist are skipped.
        """
        if not question_ids:
            return []
        stmt = select(models.Question).where(models.Question.id.in_(list(question_ids)))
        by_id = {q.id: q for q in self.session.exec(stmt).all()}
        return [by_id[qid] for qid in question_ids if qid in by_id]

    def find(
        self,
        test_type: str,
        subject: Optional[str] = None,
        topic: Optional[str] = None,
        difficulty: Optional[str] = None,
        exclude_ids: Iterable[str] = (),
        limit: int = 20,
    ) -> List[models.Question]:
        """Return up to `limit` active questions matching the given filters."""
        stmt = select(models.Question).where(
            models.Question.test_type == test_type,
            models.Question.is_active == True,  # noqa: E712
        )
        if subject:
            stmt = stmt.where(models.Question.subject == subject)
        if topic:
            stmt = stmt.where(models.Question.topic == topic)
        if difficulty:
            stmt = stmt.where(models.Question.difficulty_level == difficulty)
        excluded = list(exclude_ids)
        if excluded:
            stmt = stmt.where(models.Question.id.not_in(excluded))
        stmt = stmt.order_by(func.random()).limit(limit)
        return list(self.session.exec(stmt).all())

    def list_topics(self, test_type: str, subject: Optional[str] = None) -> List[dict]:
        """Return distinct subject/topic pairs with active question counts."""
        stmt = (
            select(models.Question.subject, models.Question.topic, func.count(models.Question.id))
            .where(models.Question.test_type == test_type, models.Question.is_active == True)  # noqa: E712
            .group_by(models.Question.subject, models.Question.topic)
            .order_by(models.Question.subject, models.Question.topic)
        )
        if subject:
            stmt = stmt.where(models.Question.subject == subject)
        return [
            {"subject": s, "topic": t, "questionCount": n}
            for s, t, n in self.session.exec(stmt).all()
        ]


class QuestionHistoryRepository:
    """Track which questions a user has recently been served."""
    def __init__(self, session: Session):
        self.session = session

    def recent_ids(self, user_id: int, since: datetime, limit: int = 100) -> List[str]:
        stmt = (
            select(models.UserQuestionHistory.question_id)
            .where(models.UserQuestionHistory.user_id == user_id, models.UserQuestionHistory.last_seen_at >= since)
            .order_by(models.UserQuestionHistory.last_seen_at.desc())
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())

    def record_seen(self, user_id: int, question_ids: Iterable[str], session_id: Optional[str]) -> None:
        """Upsert one history row per question (user, question unique)."""
        now = datetime.now(timezone.utc)
        for qid in question_ids:
            existing = self.session.exec(
                select(models.UserQuestionHistory).where(
                    models.UserQuestionHistory.user_id == user_id,
                    models.UserQuestionHistory.question_id == qid,
                )
            ).first()
            if existing:
                existing.last_seen_at = now
                existing.session_id = session_id
                existing.times_seen += 1
                self.session.add(existing)
            else:
                self.session.add(models.UserQuestionHistory(
                    user_id=user_id, question_id=qid, session_id=session_id, last_seen_at=now,
                ))
        self.session.commit()


class SessionRepository:
    """Persist and query `practice_sessions` rows for one owner."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, record: models.PracticeSessionRecord) -> models.PracticeSessionRecord:
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def get_owned(self, session_id: str, user_id: int) -> Optional[models.PracticeSessionRecord]:
        """Return the session only if it belongs to `user_id`."""
        stmt = select(models.PracticeSessionRecord).where(
            models.PracticeSessionRecord.id == session_id,
            models.PracticeSessionRecord.user_id == user_id,
        )
        return self.session.exec(stmt).first()

    def save(self, record: models.PracticeSessionRecord) -> models.PracticeSessionRecord:
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def recent_completed(self, user_id: int, limit: int = 10) -> List[models.PracticeSessionRecord]:
        stmt = (
            select(models.PracticeSessionRecord)
            .where(models.PracticeSessionRecord.user_id == user_id, models.PracticeSessionRecord.status == "completed")
            .order_by(models.PracticeSessionRecord.created_at.desc())
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())


class AnswerRepository:
    """Upsert and list `user_answers` rows."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, session_id: str, question_id: str) -> Optional[models.UserAnswerRecord]:
        stmt = select(models.UserAnswerRecord).where(
            models.UserAnswerRecord.session_id == session_id,
            models.UserAnswerRecord.question_id == question_id,
        )
        return self.session.exec(stmt).first()

    def upsert(self, answer: models.UserAnswerRecord) -> models.UserAnswerRecord:
        """Insert or update the answer keyed on (session_id, question_id).

        Resubmitting the same answer updates the existing row instead of
        creating a duplicate.
        """
        existing = self.get(answer.session_id, answer.question_id)
        if existing:
            existing.user_answer = answer.user_answer
            existing.is_correct = answer.is_correct
            existing.time_spent = max(existing.time_spent, answer.time_spent)
            existing.is_flagged = answer.is_flagged
            existing.confidence_level = answer.confidence_level
            existing.answered_at = answer.answered_at
            self.session.add(existing)
            self.session.commit()
            self.session.refresh(existing)
            return existing
        self.session.add(answer)
        self.session.commit()
        self.session.refresh(answer)
        return answer

    def list_for_session(self, session_id: str) -> List[models.UserAnswerRecord]:
        stmt = select(models.UserAnswerRecord).where(models.UserAnswerRecord.session_id == session_id)
        return list(self.session.exec(stmt).all())


def mastery_level(accuracy: int) -> str:
    """Bucket an accuracy percentage into a mastery label."""
    if accuracy >= 85:
        return "Advanced"
    if accuracy >= 70:
        return "Proficient"
    if accuracy >= 50:
        return "Intermediate"
    return "Beginner"


class AnalyticsRepository:
    """Per-topic analytics rows and their recomputation."""
    def __init__(self, session: Session):
        self.session = session

    def list_for_user(self, user_id: int) -> List[models.UserAnalytics]:
        stmt = (
            select(models.UserAnalytics)
            .where(models.UserAnalytics.user_id == user_id)
            .order_by(models.UserAnalytics.subject, models.UserAnalytics.topic)
        )
        return list(self.session.exec(stmt).all())

    def update_user_analytics(self, user_id: int, session_id: str) -> int:
        """Fold a completed session's answered rows into `user_analytics`.

        Only rows with a selected answer count as attempts. Returns the
        number of (subject, topic) rows touched.
        """
        stmt = (
            select(models.UserAnswerRecord, models.Question)
            .join(models.Question, models.Question.id == models.UserAnswerRecord.question_id)
            .where(models.UserAnswerRecord.session_id == session_id)
        )
        buckets: dict = {}
        for answer, question in self.session.exec(stmt).all():
            if not answer.user_answer:
                continue
            b = buckets.setdefault((question.subject, question.topic), [0, 0, 0])
            b[0] += 1
            b[1] += 1 if answer.is_correct else 0
            b[2] += answer.time_spent
        for (subject, topic), (attempted, correct, spent) in buckets.items():
            row = self.session.exec(
                select(models.UserAnalytics).where(
                    models.UserAnalytics.user_id == user_id,
                    models.UserAnalytics.subject == subject,
                    models.UserAnalytics.topic == topic,
                )
            ).first()
            if row is None:
                row = models.UserAnalytics(user_id=user_id, subject=subject, topic=topic)
            row.total_attempted += attempted
            row.total_correct += correct
            row.total_time_spent += spent
            row.accuracy_percentage = percentage(row.total_correct, row.total_attempted)
            row.avg_time_per_question = round(row.total_time_spent / row.total_attempted)
            row.mastery_level = mastery_level(row.accuracy_percentage)
            row.updated_at = datetime.now(timezone.utc)
            self.session.add(row)
        self.session.commit()
        return len(buckets)
