"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints the practice client mirrors its
sessions to. Controllers are intentionally thin: they accept requests,
delegate to services, and return JSON responses.

Endpoints implemented:
- POST /auth/register
- POST /auth/login
- POST /functions/create-session
- POST /functions/submit-answer
- POST /functions/complete-session
- POST /functions/get-questions
- POST /functions/get-topics
- POST /functions/get-session-review
- POST /functions/get-analytics
- GET /sessions/{session_id}
- PATCH /sessions/{session_id}/progress
- POST /admin/questions
- GET /health
"""

from typing import List

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, repositories, models
from .auth import get_current_user, require_admin
from .schemas import (
    CompleteSessionIn,
    CreateSessionIn,
    GetQuestionsIn,
    GetTopicsIn,
    ProgressIn,
    QuestionIn,
    RegisterIn,
    SessionReviewIn,
    SubmitAnswerIn,
)
from .config import settings

app = FastAPI(title="Test Prep Practice Session API")
logger = logging.getLogger("testprep.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


TRACED_PREFIXES = ("/functions", "/sessions")


def _request_line(request: Request, req_id: str, started: float, status_code=None) -> str:
    fields = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
    }
    if status_code is None:
        fields["client"] = request.client.host if request.client else "unknown"
    else:
        fields["status_code"] = status_code
    return json.dumps(fields, ensure_ascii=True)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    traced = request.url.path.startswith(TRACED_PREFIXES)
    try:
        response = await call_next(request)
    except Exception:
        if traced:
            logger.exception("request_failed %s", _request_line(request, req_id, started))
        raise
    response.headers["X-Request-ID"] = req_id
    if traced:
        logger.info("request_done %s", _request_line(request, req_id, started, response.status_code))
    return response


def _call(fn, *args):
    """Run a service call, mapping domain errors to HTTP status codes."""
    try:
        return fn(*args)
    except services.SessionClosedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user (idempotent).

    Returns existing user if the username already exists to make the
    operation idempotent (useful for automation/tests).
    """
    existing = repositories.UserRepository(db).get_by_username(payload.username)
    if existing:
        return {'id': existing.id, 'username': existing.username}
    user = services.AuthService(db).register(payload.username, payload.password)
    return {'id': user.id, 'username': user.username}


@app.post('/auth/login')
def login(payload: RegisterIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a signed JWT token.

    The returned token contains `user_id` and `username`.
    """
    token = services.AuthService(db).authenticate(payload.username, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


@app.post('/functions/create-session')
def create_session(body: CreateSessionIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Create an in-progress session from supplied or freshly fetched questions."""
    return _call(services.SessionService(db).create, user.id, body)


@app.post('/functions/submit-answer')
def submit_answer(body: SubmitAnswerIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Upsert one answer; resubmitting the same answer updates the same row."""
    return _call(services.SessionService(db).submit_answer, user.id, body)


@app.post('/functions/complete-session')
def complete_session(body: CompleteSessionIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Finalize a session and return results recomputed from stored answers."""
    return _call(services.SessionService(db).complete, user.id, body)


@app.post('/functions/get-questions')
def get_questions(body: GetQuestionsIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return _call(services.QuestionService(db).fetch, user.id, body)


@app.post('/functions/get-topics')
def get_topics(body: GetTopicsIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return _call(services.QuestionService(db).topics, body.test_type, body.subject)


@app.post('/functions/get-session-review')
def get_session_review(body: SessionReviewIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Review a completed session; in-progress sessions are refused with 403."""
    return _call(services.SessionService(db).review, user.id, body.session_id)


@app.post('/functions/get-analytics')
def get_analytics(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.AnalyticsService(db).summary(user.id)


@app.get('/sessions/{session_id}')
def load_session(session_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return a session with its ordered questions and saved answers."""
    return _call(services.SessionService(db).load, user.id, session_id)


@app.patch('/sessions/{session_id}/progress')
def update_progress(session_id: str, body: ProgressIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return _call(services.SessionService(db).update_progress, user.id, session_id, body)


@app.post('/admin/questions')
def add_questions(items: List[QuestionIn], db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    """Insert question rows. Admin only."""
    rows = _call(services.QuestionService(db).add_questions, items)
    logger.info("admin %s added %d questions", user.username, len(rows))
    return {'created': len(rows), 'ids': [q.id for q in rows]}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
