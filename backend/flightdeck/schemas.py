"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests.
"""

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from .quiz import QuestionType


class RegisterIn(BaseModel):
    """Payload for the registration endpoint."""
    email: str = Field(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1)


class LoginIn(BaseModel):
    """Payload for the login endpoint."""
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing a session token."""
    token: str
    expires_at: datetime
    email: str
    username: str


class UserInfoOut(BaseModel):
    id: int
    email: str
    username: str
    created_at: datetime
    total_quizzes: int
    accuracy_rate: float


class AirportIn(BaseModel):
    """An airport record as submitted by an administrator."""
    code: str = Field(min_length=3, max_length=3)
    name: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    country: str = Field(min_length=1, max_length=100)
    region: str = Field(min_length=1, max_length=50)


class AirportOut(BaseModel):
    code: str
    name: str
    city: str
    country: str
    region: str


class QuizQuestionOut(BaseModel):
    """A generated question; `choices` is the shuffled set of four answers."""
    subject_code: str
    prompt: str
    correct_answer: str
    wrong_answers: List[str]
    question_type: QuestionType
    choices: List[str]


class AnswerIn(BaseModel):
    """Answer submission echoing the question's subject and type."""
    subject_code: str = Field(min_length=3, max_length=3)
    question_type: QuestionType = QuestionType.CODE_TO_AIRPORT
    answer: str


class QuizStats(BaseModel):
    """Per-airport stats returned after an answer; accuracy is a percentage."""
    total_attempts: int
    correct_answers: int
    accuracy_rate: float
    current_streak: int
    best_streak: int


class AnswerOut(BaseModel):
    is_correct: bool
    correct_answer: str
    feedback: str
    stats: QuizStats


class SummaryOut(BaseModel):
    """Aggregate stats across all airports a user has studied."""
    total_quizzes: int
    total_correct: int
    accuracy_rate: float
    accuracy_percent: float
    airports_studied: int
    weak_airports: int
    current_streak: int
    best_streak: int


class ProgressOut(BaseModel):
    airport_code: str
    correct_answers: int
    total_attempts: int
    current_streak: int
    best_streak: int
    accuracy_rate: float
    is_weak: bool
    last_studied_at: datetime
