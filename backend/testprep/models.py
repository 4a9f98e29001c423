"""SQLModel data models for the remote session store.

Each class maps to one table. Table names follow the hosted store the
practice client talks to (`practice_sessions`, `user_answers`, ...), and
rows are always scoped by `user_id` in the repositories.
"""

from typing import Optional, List
from uuid import uuid4
from datetime import datetime, timezone

from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=_now)


class UserProfile(SQLModel, table=True):
    """Per-user profile with study totals updated on session completion."""
    __tablename__ = "user_profiles"

    user_id: int = Field(foreign_key="user.id", primary_key=True)
    first_name: str = "User"
    last_name: str = ""
    subscription_tier: str = "free"
    selected_test: str = "SHSAT"
    study_streak: int = 0
    total_study_time: int = 0  # minutes
    created_at: datetime = Field(default_factory=_now)


class UserRole(SQLModel, table=True):
    """Role grant checked by `RoleRepository.has_role`."""
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    role: str


class Question(SQLModel, table=True):
    """A four-option multiple-choice test item."""
    __tablename__ = "questions"

    id: str = Field(default_factory=_new_id, primary_key=True)
    test_type: str = Field(index=True)
    subject: str = Field(index=True)
    topic: str = Field(index=True)
    difficulty_level: str = "Medium"
    question_text: str
    passage: Optional[str] = None
    question_images: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_answer: str
    explanation: str = ""
    time_allocated: int = 60
    is_active: bool = True
    created_at: datetime = Field(default_factory=_now)


class PracticeSessionRecord(SQLModel, table=True):
    """Remote copy of a practice session.

    `questions_order` keeps the ids in the order they were presented so a
    client can rebuild the session and the review keeps that order.
    """
    __tablename__ = "practice_sessions"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    session_type: str
    test_type: str
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Optional[str] = None
    total_questions: int = 0
    current_question_index: int = 0
    questions_order: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    status: str = "in_progress"
    start_time: datetime = Field(default_factory=_now)
    end_time: Optional[datetime] = None
    total_time_spent: int = 0
    score: Optional[int] = None
    percentage_correct: Optional[int] = None
    created_at: datetime = Field(default_factory=_now)


class UserAnswerRecord(SQLModel, table=True):
    """One answer row per (session, question); writes are upserts."""
    __tablename__ = "user_answers"
    __table_args__ = (UniqueConstraint("session_id", "question_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(foreign_key="practice_sessions.id", index=True)
    question_id: str = Field(foreign_key="questions.id")
    user_answer: Optional[str] = None
    is_correct: bool = False
    time_spent: int = 0
    is_flagged: bool = False
    confidence_level: Optional[str] = None
    answered_at: datetime = Field(default_factory=_now)


class UserAnalytics(SQLModel, table=True):
    """Aggregated accuracy per (user, subject, topic)."""
    __tablename__ = "user_analytics"
    __table_args__ = (UniqueConstraint("user_id", "subject", "topic"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    subject: str
    topic: str
    total_attempted: int = 0
    total_correct: int = 0
    total_time_spent: int = 0
    accuracy_percentage: int = 0
    avg_time_per_question: int = 0
    mastery_level: str = "Beginner"
    updated_at: datetime = Field(default_factory=_now)


class UserQuestionHistory(SQLModel, table=True):
    """Last time a user was served a question, used to avoid repeats."""
    __tablename__ = "user_question_history"
    __table_args__ = (UniqueConstraint("user_id", "question_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    question_id: str = Field(foreign_key="questions.id")
    session_id: Optional[str] = None
    last_seen_at: datetime = Field(default_factory=_now)
    times_seen: int = 1
