"""Session scoring shared by the client reducer and the completion endpoint.

Both sides call `compute_score`, so a score computed from the live session
and one recomputed from persisted answer rows agree whenever they see the
same answers.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from .types import Question, UserAnswer


def percentage(part: int, whole: int) -> int:
    """Integer percentage rounded half up; 0 when `whole` is 0."""
    if whole <= 0:
        return 0
    return int(math.floor(part * 100 / whole + 0.5))


def compute_score(correct: int, answered: int) -> int:
    return percentage(correct, answered)


@dataclass(frozen=True)
class ScoreSummary:
    answered: int
    correct: int
    score: int


def score_answers(questions: Sequence[Question], answers: Mapping[str, UserAnswer]) -> ScoreSummary:
    """Score the in-memory answers against the session's questions.

    Flag-only placeholders and answers for ids outside `questions` are not
    counted.
    """
    by_id = {q.id: q for q in questions}
    answered = 0
    correct = 0
    for question_id, answer in answers.items():
        question = by_id.get(question_id)
        if question is None or not answer.is_answered:
            continue
        answered += 1
        if answer.selected_answer == question.correct_answer:
            correct += 1
    return ScoreSummary(answered=answered, correct=correct, score=compute_score(correct, answered))


@dataclass(frozen=True)
class SessionResults:
    """Server-side results recomputed from persisted rows."""
    score: int
    correct_answers: int
    total_questions: int
    total_answered: int
    percentage_correct: int
    percentage_of_total: int

    def to_wire(self, total_time_spent: int = 0) -> dict:
        return {
            "score": self.score,
            "correctAnswers": self.correct_answers,
            "totalQuestions": self.total_questions,
            "totalAnswered": self.total_answered,
            "percentageCorrect": self.percentage_correct,
            "percentageOfTotal": self.percentage_of_total,
            "totalTimeSpent": total_time_spent,
        }


def score_rows(rows: Iterable[tuple], total_questions: int) -> SessionResults:
    """Recompute results from `(user_answer, is_correct)` pairs.

    `is_correct` must already be derived from the stored question; rows
    without a selected answer are flag-only and are skipped.
    """
    answered = 0
    correct = 0
    for user_answer, is_correct in rows:
        if not user_answer:
            continue
        answered += 1
        if is_correct:
            correct += 1
    score = compute_score(correct, answered)
    return SessionResults(
        score=score,
        correct_answers=correct,
        total_questions=total_questions,
        total_answered=answered,
        percentage_correct=score,
        percentage_of_total=percentage(correct, total_questions),
    )


def is_correct(selected: Optional[str], correct_answer: str) -> bool:
    return bool(selected) and selected == correct_answer
