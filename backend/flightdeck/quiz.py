"""Quiz question generation and answer evaluation.

Both pieces are pure: they work on `AirportRecord` values and an
injected `random.Random`, never touching the database. That keeps them
deterministic under a seeded random source in tests.
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional, Tuple

from .errors import InsufficientDataError, UnknownQuestionTypeError

ANSWER_OPTIONS = 4
DISTRACTOR_COUNT = ANSWER_OPTIONS - 1


class QuestionType(str, Enum):
    """Direction of a question.

    `CodeToAirport` shows "ATL" and asks for the airport name;
    `AirportToCode` shows the name and asks for "ATL".
    """
    CODE_TO_AIRPORT = "CodeToAirport"
    AIRPORT_TO_CODE = "AirportToCode"


class AirportRecord(NamedTuple):
    """Immutable airport reference data handed out by the catalog."""
    code: str
    name: str
    city: str
    country: str
    region: str


@dataclass(frozen=True)
class QuizQuestion:
    """A single multiple-choice question.

    `prompt` is what the learner sees, `choices` holds all four answers
    in a shuffled order. The caller echoes `subject_code` and
    `question_type` back when answering.
    """
    subject_code: str
    prompt: str
    correct_answer: str
    wrong_answers: Tuple[str, ...]
    question_type: QuestionType
    choices: Tuple[str, ...] = field(default=())

    def __post_init__(self):
        if len(self.wrong_answers) != DISTRACTOR_COUNT:
            raise ValueError(f"a quiz question needs exactly {DISTRACTOR_COUNT} wrong answers")
        answers = [self.correct_answer, *self.wrong_answers]
        if len({_normalize(a) for a in answers}) != len(answers):
            raise ValueError("quiz answers must be pairwise distinct")


class AnswerKey(NamedTuple):
    """What scoring needs to know about a question already asked."""
    subject_code: str
    question_type: QuestionType
    correct_answer: str


def _normalize(value: str) -> str:
    return value.strip().casefold()


def _prompt_for(record: AirportRecord, question_type: QuestionType) -> str:
    if question_type == QuestionType.AIRPORT_TO_CODE:
        return record.name
    return record.code


class QuestionGenerator:
    """Build questions from a set of airports.

    `policy` is one of `code_to_airport`, `airport_to_code` or `random`.
    """

    def __init__(self, rng: Optional[random.Random] = None, policy: str = "code_to_airport"):
        self.rng = rng or random.Random()
        self.policy = policy
        self.evaluator = AnswerEvaluator()

    def pick_type(self) -> QuestionType:
        if self.policy == "random":
            return self.rng.choice(list(QuestionType))
        if self.policy == "airport_to_code":
            return QuestionType.AIRPORT_TO_CODE
        if self.policy == "code_to_airport":
            return QuestionType.CODE_TO_AIRPORT
        raise UnknownQuestionTypeError(f"unknown question type policy: {self.policy}")

    def generate(self, topics: Iterable[AirportRecord]) -> QuizQuestion:
        """Return a question about one random airport with three distractors.

        Raises `InsufficientDataError` when there are fewer than four
        distinct airports, or fewer than four distinct answer strings.
        """
        unique = {}
        for t in topics:
            unique.setdefault(t.code.upper(), t)
        if len(unique) < ANSWER_OPTIONS:
            raise InsufficientDataError(
                f"need at least {ANSWER_OPTIONS} airports to build a question, have {len(unique)}"
            )
        # sorted so that a seeded rng gives the same question regardless of input order
        pool = sorted(unique.values(), key=lambda r: r.code)
        question_type = self.pick_type()
        subject = self.rng.choice(pool)
        correct = self.evaluator.expected_answer(subject, question_type)

        others = [r for r in pool if r.code != subject.code]
        self.rng.shuffle(others)
        wrong: List[str] = []
        seen = {_normalize(correct)}
        for r in others:
            candidate = self.evaluator.expected_answer(r, question_type)
            if _normalize(candidate) in seen:
                continue
            seen.add(_normalize(candidate))
            wrong.append(candidate)
            if len(wrong) == DISTRACTOR_COUNT:
                break
        if len(wrong) < DISTRACTOR_COUNT:
            raise InsufficientDataError("not enough distinct answers to build distractors")

        choices = [correct, *wrong]
        self.rng.shuffle(choices)
        return QuizQuestion(
            subject_code=subject.code,
            prompt=_prompt_for(subject, question_type),
            correct_answer=correct,
            wrong_answers=tuple(wrong),
            question_type=question_type,
            choices=tuple(choices),
        )


class AnswerEvaluator:
    """Score submitted answers, ignoring case and surrounding whitespace."""

    def expected_answer(self, record: AirportRecord, question_type) -> str:
        question_type = self._coerce_type(question_type)
        if question_type == QuestionType.CODE_TO_AIRPORT:
            return record.name
        return record.code

    def evaluate(self, question, submitted_answer: str) -> bool:
        """Score `submitted_answer` against a `QuizQuestion` or an `AnswerKey`."""
        self._coerce_type(question.question_type)
        return self.matches(question.correct_answer, submitted_answer)

    def matches(self, expected: str, submitted_answer: Optional[str]) -> bool:
        if submitted_answer is None:
            return False
        return _normalize(submitted_answer) == _normalize(expected)

    def _coerce_type(self, question_type) -> QuestionType:
        try:
            return QuestionType(question_type)
        except ValueError:
            raise UnknownQuestionTypeError(f"unknown question type: {question_type!r}") from None

    def answer_key(self, record: AirportRecord, question_type) -> AnswerKey:
        """Rebuild the scoring side of a question from its echoed subject and type."""
        question_type = self._coerce_type(question_type)
        return AnswerKey(record.code, question_type, self.expected_answer(record, question_type))
