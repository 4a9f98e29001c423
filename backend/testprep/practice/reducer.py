"""Pure transition function for the practice session state machine.

`reduce(session, action, now)` returns the next session (or None when
there is no live session). It never mutates its input, never performs I/O
and never raises for a request that does not apply: an action naming an
unknown question, navigating out of range, or mutating a completed
session simply returns the session unchanged.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from . import actions as a
from .scoring import score_answers
from .types import PracticeSession, UserAnswer

logger = logging.getLogger("testprep.reducer")


def new_local_id() -> str:
    """Display-only id for a local session; not unique across processes."""
    return f"session_{time.time_ns()}"


def reduce(session: Optional[PracticeSession], action: a.Action, now: Optional[datetime] = None) -> Optional[PracticeSession]:
    now = now or datetime.now(timezone.utc)

    match action:
        case a.StartSession():
            return PracticeSession(
                id=new_local_id(),
                server_session_id=action.server_session_id,
                test_type=action.test_type,
                session_type=action.session_type,
                subject=action.subject,
                topic=action.topic,
                difficulty=action.difficulty,
                questions=list(action.questions),
                answers={},
                current_question=0,
                start_time=now,
                session_time=0,
                is_paused=False,
                is_completed=False,
            )
        case a.HydrateSession():
            return action.session
        case a.AbandonSession():
            return None

    if session is None:
        return None

    match action:
        case a.AttachServerSession():
            if session.server_session_id == action.server_session_id:
                return session
            return session.model_copy(update={"server_session_id": action.server_session_id})

        case a.AnswerQuestion():
            if session.is_completed or not session.has_question(action.question_id):
                return session
            previous = session.answers.get(action.question_id)
            answer = UserAnswer(
                question_id=action.question_id,
                selected_answer=action.selected_answer,
                time_spent=max(previous.time_spent if previous else 0, action.time_spent),
                is_flagged=previous.is_flagged if previous else False,
                confidence=action.confidence if action.confidence is not None else (previous.confidence if previous else None),
            )
            if answer == previous:
                return session
            return session.model_copy(update={"answers": {**session.answers, action.question_id: answer}})

        case a.GoToQuestion():
            if not 0 <= action.index < len(session.questions):
                logger.debug("ignoring out-of-range navigation to %s", action.index)
                return session
            if action.index == session.current_question:
                return session
            return session.model_copy(update={"current_question": action.index})

        case a.ToggleFlag():
            if session.is_completed or not session.has_question(action.question_id):
                return session
            previous = session.answers.get(action.question_id)
            if previous:
                answer = previous.model_copy(update={"is_flagged": not previous.is_flagged})
            else:
                answer = UserAnswer(question_id=action.question_id, is_flagged=True)
            return session.model_copy(update={"answers": {**session.answers, action.question_id: answer}})

        case a.PauseSession():
            if session.is_completed or session.is_paused:
                return session
            return session.model_copy(update={"is_paused": True})

        case a.ResumeSession():
            if session.is_completed or not session.is_paused:
                return session
            return session.model_copy(update={"is_paused": False})

        case a.TickTimer():
            if not session.is_active:
                return session
            return session.model_copy(update={"session_time": session.session_time + 1})

        case a.CompleteSession():
            if session.is_completed:
                return session
            summary = score_answers(session.questions, session.answers)
            return session.model_copy(update={
                "score": summary.score,
                "end_time": now,
                "is_completed": True,
                "is_paused": False,
            })

        case _:
            raise TypeError(f"unhandled session action: {action!r}")
