"""Pydantic request schemas used by the session endpoints.

Bodies use the camelCase keys the practice client sends; attributes are
snake_case in Python through aliases.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .practice.types import Choice, Confidence, Difficulty, SessionType, TestType


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterIn(BaseModel):
    """Payload for user registration/login endpoints."""
    username: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class QuestionIn(_Body):
    """A question row as sent by the client or the admin tools."""
    id: Optional[str] = None
    test_type: TestType
    subject: str
    topic: str
    difficulty_level: Difficulty = "Medium"
    question_text: str = Field(min_length=1)
    passage: Optional[str] = None
    question_images: Optional[List[str]] = None
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_answer: Choice
    explanation: str = ""
    time_allocated: int = Field(default=60, gt=0)


class CreateSessionIn(_Body):
    session_type: SessionType = Field(alias="sessionType")
    test_type: TestType = Field(default="SHSAT", alias="testType")
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    questions_data: List[QuestionIn] = Field(default_factory=list, alias="questionsData")


class SubmitAnswerIn(_Body):
    session_id: str = Field(alias="sessionId")
    question_id: str = Field(alias="questionId")
    user_answer: Optional[Choice] = Field(default=None, alias="userAnswer")
    time_spent: int = Field(default=0, ge=0, alias="timeSpent")
    is_correct: Optional[bool] = Field(default=None, alias="isCorrect")
    is_flagged: bool = Field(default=False, alias="isFlagged")
    confidence_level: Optional[Confidence] = Field(default=None, alias="confidenceLevel")


class CompleteSessionIn(_Body):
    session_id: str = Field(alias="sessionId")
    total_time_spent: int = Field(default=0, ge=0, alias="totalTimeSpent")


class GetQuestionsIn(_Body):
    count: int = Field(default=20, gt=0, le=200)
    test_type: TestType = Field(default="SHSAT", alias="testType")
    subject: Optional[str] = None
    topic: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    avoid_recent: bool = Field(default=True, alias="avoidRecent")
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class GetTopicsIn(_Body):
    test_type: TestType = Field(default="SHSAT", alias="testType")
    subject: Optional[str] = None


class SessionReviewIn(_Body):
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class ProgressIn(_Body):
    current_question_index: int = Field(ge=0, alias="currentQuestionIndex")
    total_time_spent: Optional[int] = Field(default=None, ge=0, alias="totalTimeSpent")
    status: Optional[Literal["in_progress", "paused"]] = None
