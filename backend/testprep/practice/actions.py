"""Transition requests accepted by the session reducer.

Every request is a small frozen dataclass; `Action` is their union and
`reducer.reduce` matches on it exhaustively.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from .types import Choice, Confidence, Difficulty, PracticeSession, Question, SessionType, TestType


@dataclass(frozen=True)
class StartSession:
    test_type: TestType
    session_type: SessionType
    questions: Tuple[Question, ...]
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    server_session_id: Optional[str] = None

    def __post_init__(self):
        if not self.questions:
            raise ValueError("a session needs at least one question")
        object.__setattr__(self, "questions", tuple(self.questions))


@dataclass(frozen=True)
class HydrateSession:
    """Replace the live session with a restored one, keeping its progress."""
    session: PracticeSession


@dataclass(frozen=True)
class AttachServerSession:
    server_session_id: str


@dataclass(frozen=True)
class AnswerQuestion:
    question_id: str
    selected_answer: Choice
    time_spent: int = 0
    confidence: Optional[Confidence] = None


@dataclass(frozen=True)
class GoToQuestion:
    index: int


@dataclass(frozen=True)
class ToggleFlag:
    question_id: str


@dataclass(frozen=True)
class PauseSession:
    pass


@dataclass(frozen=True)
class ResumeSession:
    pass


@dataclass(frozen=True)
class TickTimer:
    pass


@dataclass(frozen=True)
class CompleteSession:
    pass


@dataclass(frozen=True)
class AbandonSession:
    reason: str = field(default="user")


Action = Union[
    StartSession,
    HydrateSession,
    AttachServerSession,
    AnswerQuestion,
    GoToQuestion,
    ToggleFlag,
    PauseSession,
    ResumeSession,
    TickTimer,
    CompleteSession,
    AbandonSession,
]
