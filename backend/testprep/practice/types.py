"""In-memory types for one practice session.

These are pydantic models so the live session can be written to and read
back from the local storage slot verbatim. Field names are snake_case in
Python; `to_wire` helpers produce the camelCase payloads the session
endpoints expect.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

TestType = Literal["SHSAT", "SSAT", "ISEE", "HSPT", "TACHS"]
SessionType = Literal["full_test", "subject_practice", "topic_practice", "mixed_review"]
Difficulty = Literal["Easy", "Medium", "Hard"]
Choice = Literal["A", "B", "C", "D"]
Confidence = Literal["Low", "Medium", "High"]


class Options(BaseModel):
    model_config = ConfigDict(frozen=True)

    A: str
    B: str
    C: str
    D: str


class Question(BaseModel):
    """Immutable test item as served by `get-questions`."""
    model_config = ConfigDict(frozen=True)

    id: str
    test_type: TestType
    subject: str
    topic: str
    difficulty: Difficulty
    question_text: str
    passage: Optional[str] = None
    question_images: List[str] = Field(default_factory=list)
    options: Options
    correct_answer: Choice
    explanation: str = ""
    time_allocated: int = 60

    @classmethod
    def from_wire(cls, data: dict) -> "Question":
        """Build a question from an endpoint row (`option_a`.. columns)."""
        return cls(
            id=str(data["id"]),
            test_type=data["test_type"],
            subject=data["subject"],
            topic=data["topic"],
            difficulty=data.get("difficulty_level") or data.get("difficulty") or "Medium",
            question_text=data["question_text"],
            passage=data.get("passage"),
            question_images=data.get("question_images") or [],
            options=Options(A=data["option_a"], B=data["option_b"], C=data["option_c"], D=data["option_d"]),
            correct_answer=data["correct_answer"],
            explanation=data.get("explanation") or "",
            time_allocated=data.get("time_allocated") or 60,
        )

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "test_type": self.test_type,
            "subject": self.subject,
            "topic": self.topic,
            "difficulty_level": self.difficulty,
            "question_text": self.question_text,
            "passage": self.passage,
            "question_images": list(self.question_images),
            "option_a": self.options.A,
            "option_b": self.options.B,
            "option_c": self.options.C,
            "option_d": self.options.D,
            "correct_answer": self.correct_answer,
            "explanation": self.explanation,
            "time_allocated": self.time_allocated,
        }


class UserAnswer(BaseModel):
    """The learner's response to one question.

    `selected_answer` is None for a flag-only placeholder.
    """
    model_config = ConfigDict(frozen=True)

    question_id: str
    selected_answer: Optional[Choice] = None
    time_spent: int = 0
    is_flagged: bool = False
    confidence: Optional[Confidence] = None

    @property
    def is_answered(self) -> bool:
        return bool(self.selected_answer)


class PracticeSession(BaseModel):
    """One timed attempt at a fixed, ordered list of questions."""
    model_config = ConfigDict(frozen=True)

    id: str
    server_session_id: Optional[str] = None
    test_type: TestType
    session_type: SessionType
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    questions: List[Question] = Field(min_length=1)
    answers: Dict[str, UserAnswer] = Field(default_factory=dict)
    current_question: int = 0
    start_time: datetime
    end_time: Optional[datetime] = None
    session_time: int = 0
    is_paused: bool = False
    is_completed: bool = False
    score: Optional[int] = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "PracticeSession":
        if not 0 <= self.current_question < len(self.questions):
            raise ValueError(f"current_question {self.current_question} out of range")
        unknown = set(self.answers) - {q.id for q in self.questions}
        if unknown:
            raise ValueError(f"answers for unknown questions: {sorted(unknown)}")
        return self

    def question(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None

    def has_question(self, question_id: str) -> bool:
        return self.question(question_id) is not None

    @property
    def current(self) -> Question:
        return self.questions[self.current_question]

    @property
    def is_active(self) -> bool:
        return not self.is_paused and not self.is_completed
