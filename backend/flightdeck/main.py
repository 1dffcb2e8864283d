"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the FlightDeck airport quiz
backend. Controllers are intentionally thin: they accept requests,
delegate to services, and translate domain errors into status codes.

Endpoints implemented:
- POST /auth/register
- POST /auth/login
- GET /auth/me
- DELETE /auth/me
- GET /quiz/question
- POST /quiz/answer
- GET /quiz/stats
- GET /quiz/progress
- GET /airports
- POST /airports
- DELETE /airports/{code}
- GET /health
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
import json
import logging
import time
import uuid
from typing import List
from .database import engine, create_db_and_tables, get_session, seed_airports
from . import services, models
from .auth import get_current_user
from .errors import (
    DuplicateAirportError,
    DuplicateCredentialError,
    InsufficientDataError,
    InvalidCredentialsError,
    StorageError,
    UnknownAirportError,
    UnknownQuestionTypeError,
)
from .quiz import AirportRecord
from .schemas import (
    AirportIn,
    AirportOut,
    AnswerIn,
    AnswerOut,
    LoginIn,
    ProgressOut,
    QuizQuestionOut,
    QuizStats,
    RegisterIn,
    SummaryOut,
    TokenOut,
    UserInfoOut,
)
from .utils.rate_limit import LoginThrottle
from .config import settings

app = FastAPI(title="FlightDeck Airport Quiz API")
logger = logging.getLogger("flightdeck.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
_login_throttle = LoginThrottle(max_attempts=settings.LOGIN_RATE_LIMIT_PER_MIN, window_seconds=60)

# Wide-open CORS keeps local quiz front-ends working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()
if settings.SEED_AIRPORTS:
    with Session(engine) as _seed_session:
        seed_airports(_seed_session)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
            },
            ensure_ascii=True,
        ),
    )
    return response


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("storage_error %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "storage unavailable"})


def _token_out(creds: services.CredentialService, user: models.User) -> dict:
    issued = creds.issue_token(user)
    return {
        'token': issued.token,
        'expires_at': issued.expires_at,
        'email': user.email,
        'username': user.username,
    }


def _client_key(request: Request, email: str) -> str:
    host = request.client.host if request.client else 'unknown'
    return f"{host}:{(email or '').strip().lower()}"


@app.post('/auth/register', response_model=TokenOut, status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user and return a session token.

    Returns 409 if the email or username is already registered.
    """
    creds = services.CredentialService(db)
    try:
        user = creds.register(payload.email, payload.username, payload.password)
    except DuplicateCredentialError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _token_out(creds, user)


@app.post('/auth/login', response_model=TokenOut)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate a user and return a session token.

    Wrong password and unknown email both answer 401 with the same
    message. Repeated attempts for one client and email are throttled.
    """
    key = _client_key(request, payload.email)
    allowed, retry_after = _login_throttle.check(key)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"too many login attempts; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
    creds = services.CredentialService(db)
    try:
        user = creds.authenticate(payload.email, payload.password)
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=401, detail=str(e))
    _login_throttle.reset(key)
    return _token_out(creds, user)


@app.get('/auth/me', response_model=UserInfoOut)
def get_me(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return the authenticated user's account details and overall accuracy."""
    summary = services.ProgressTracker(db).get_summary(user.id)
    return {
        'id': user.id,
        'email': user.email,
        'username': user.username,
        'created_at': user.created_at,
        'total_quizzes': summary.total_attempts,
        'accuracy_rate': summary.accuracy_rate,
    }


@app.delete('/auth/me', status_code=204)
def delete_me(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Delete the authenticated account together with its progress."""
    services.CredentialService(db).delete_account(user.id)
    return Response(status_code=204)


@app.get('/quiz/question', response_model=QuizQuestionOut)
def get_question(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return a random four-option question about one airport."""
    learning = services.LearningEngine(db)
    try:
        q = learning.get_question()
    except InsufficientDataError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        'subject_code': q.subject_code,
        'prompt': q.prompt,
        'correct_answer': q.correct_answer,
        'wrong_answers': list(q.wrong_answers),
        'question_type': q.question_type,
        'choices': list(q.choices),
    }


@app.post('/quiz/answer', response_model=AnswerOut)
def submit_answer(payload: AnswerIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Score an answer and update the user's progress for that airport.

    The request echoes the question's `subject_code` and `question_type`
    since no pending question is kept on the server.
    """
    learning = services.LearningEngine(db)
    try:
        outcome = learning.submit_answer(user.id, payload.subject_code, payload.question_type, payload.answer)
    except (UnknownAirportError, UnknownQuestionTypeError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    p = outcome.progress
    stats = QuizStats(
        total_attempts=p.total_attempts,
        correct_answers=p.correct_answers,
        accuracy_rate=round(p.accuracy_rate * 100, 1),
        current_streak=p.current_streak,
        best_streak=p.best_streak,
    )
    return {
        'is_correct': outcome.is_correct,
        'correct_answer': outcome.correct_answer,
        'feedback': outcome.feedback,
        'stats': stats,
    }


@app.get('/quiz/stats', response_model=SummaryOut)
def get_stats(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return aggregate statistics across every airport the user has answered."""
    s = services.LearningEngine(db).get_summary(user.id)
    return {
        'total_quizzes': s.total_attempts,
        'total_correct': s.total_correct,
        'accuracy_rate': s.accuracy_rate,
        'accuracy_percent': round(s.accuracy_rate * 100, 1),
        'airports_studied': s.topics_studied,
        'weak_airports': s.weak_topic_count,
        'current_streak': s.current_streak_sum,
        'best_streak': s.best_streak_max,
    }


@app.get('/quiz/progress', response_model=List[ProgressOut])
def get_progress(weak_only: bool = False, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """List per-airport progress; `weak_only` keeps airports below 60% accuracy."""
    tracker = services.ProgressTracker(db)
    records = tracker.weak_topics(user.id) if weak_only else tracker.list_progress(user.id)
    return [
        {
            'airport_code': p.airport_code,
            'correct_answers': p.correct_answers,
            'total_attempts': p.total_attempts,
            'current_streak': p.current_streak,
            'best_streak': p.best_streak,
            'accuracy_rate': p.accuracy_rate,
            'is_weak': p.is_weak,
            'last_studied_at': p.last_studied_at,
        }
        for p in records
    ]


@app.get('/airports', response_model=List[AirportOut])
def list_airports(db: Session = Depends(get_session)):
    """List every airport in the catalog."""
    return [r._asdict() for r in services.AirportCatalog(db).list_records()]


@app.post('/airports', response_model=AirportOut, status_code=201)
def create_airport(payload: AirportIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Add an airport to the catalog; 409 when the code already exists."""
    catalog = services.AirportCatalog(db)
    try:
        rec = catalog.add(AirportRecord(payload.code, payload.name, payload.city, payload.country, payload.region))
    except DuplicateAirportError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return rec._asdict()


@app.delete('/airports/{code}', status_code=204)
def delete_airport(code: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Remove an airport from the catalog."""
    try:
        services.AirportCatalog(db).remove(code)
    except UnknownAirportError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=204)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
