"""
Exam payload normalizer.

Turns whatever JSON a teacher uploads into the canonical exam schema stored
on ``Exam.normalized_json``. Pure: no database, no settings.

Errors are collected per question so an upload reports every broken entry
at once, but a single error anywhere rejects the whole exam.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

DEFAULT_TIME_LIMIT_MINUTES = 30
DEFAULT_PASSING_SCORE_PERCENT = 70
DEFAULT_SUBJECT = 'General'
MISSING_TITLE_OR_QUESTIONS = 'missing title or question set'


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = 'multiple-choice'
    TRUE_FALSE = 'true-false'
    SHORT_ANSWER = 'short-answer'
    LONG_ANSWER = 'long-answer'

    @property
    def is_objective(self):
        return self in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE)


TYPE_ALIASES = {
    'mcq': QuestionType.MULTIPLE_CHOICE,
    'multiple-choice': QuestionType.MULTIPLE_CHOICE,
    'multiple_choice': QuestionType.MULTIPLE_CHOICE,
    'tf': QuestionType.TRUE_FALSE,
    'true-false': QuestionType.TRUE_FALSE,
    'true_false': QuestionType.TRUE_FALSE,
    'short': QuestionType.SHORT_ANSWER,
    'short-answer': QuestionType.SHORT_ANSWER,
    'short_answer': QuestionType.SHORT_ANSWER,
    'long': QuestionType.LONG_ANSWER,
    'long-answer': QuestionType.LONG_ANSWER,
    'long_answer': QuestionType.LONG_ANSWER,
}


@dataclass(frozen=True)
class NormalizedQuestion:
    id: str
    type: QuestionType
    prompt: str
    points: Union[int, float] = 1
    choices: Optional[List[str]] = None
    correct_answer: Optional[Union[str, bool]] = None
    rubric: Optional[str] = None

    def to_dict(self, include_answer_key=True):
        data = {
            'id': self.id,
            'type': self.type.value,
            'prompt': self.prompt,
            'points': self.points,
        }
        if self.choices is not None:
            data['choices'] = list(self.choices)
        if include_answer_key:
            if self.correct_answer is not None:
                data['correctAnswer'] = self.correct_answer
            if self.rubric is not None:
                data['rubric'] = self.rubric
        return data

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ValueError("question entry is not an object")
        try:
            question_type = QuestionType(data.get('type'))
        except ValueError:
            raise ValueError(f"unknown question type {data.get('type')!r}")
        question_id = data.get('id')
        prompt = data.get('prompt')
        if not isinstance(question_id, str) or not question_id:
            raise ValueError("question id is missing")
        if not isinstance(prompt, str):
            raise ValueError(f"question {question_id} has no prompt")
        choices = data.get('choices')
        if question_type is QuestionType.MULTIPLE_CHOICE and not _is_string_list(choices):
            raise ValueError(f"question {question_id} has malformed choices")
        return cls(
            id=question_id,
            type=question_type,
            prompt=prompt,
            points=data.get('points', 1),
            choices=list(choices) if choices is not None else None,
            correct_answer=data.get('correctAnswer'),
            rubric=data.get('rubric'),
        )


@dataclass(frozen=True)
class ExamSettings:
    time_limit_minutes: Union[int, float] = DEFAULT_TIME_LIMIT_MINUTES
    passing_score_percent: Union[int, float] = DEFAULT_PASSING_SCORE_PERCENT

    def to_dict(self):
        return {
            'timeLimitMinutes': self.time_limit_minutes,
            'passingScorePercent': self.passing_score_percent,
        }


@dataclass(frozen=True)
class NormalizedExam:
    title: str
    subject: str
    settings: ExamSettings
    questions: List[NormalizedQuestion]

    def to_dict(self, include_answer_key=True):
        return {
            'title': self.title,
            'subject': self.subject,
            'settings': self.settings.to_dict(),
            'questions': [q.to_dict(include_answer_key) for q in self.questions],
        }

    @classmethod
    def from_dict(cls, data):
        """Load a stored schema. Raises ValueError if it is malformed."""
        if not isinstance(data, dict):
            raise ValueError("exam schema is not an object")
        questions = data.get('questions')
        if not isinstance(questions, list):
            raise ValueError("exam schema has no question list")
        settings = data.get('settings') if isinstance(data.get('settings'), dict) else {}
        return cls(
            title=str(data.get('title', '')),
            subject=str(data.get('subject', DEFAULT_SUBJECT)),
            settings=ExamSettings(
                time_limit_minutes=settings.get('timeLimitMinutes', DEFAULT_TIME_LIMIT_MINUTES),
                passing_score_percent=settings.get('passingScorePercent', DEFAULT_PASSING_SCORE_PERCENT),
            ),
            questions=[NormalizedQuestion.from_dict(q) for q in questions],
        )

    @property
    def question_ids(self):
        return {q.id for q in self.questions}


@dataclass
class NormalizationResult:
    normalized: Optional[NormalizedExam]
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self):
        return self.normalized is not None and not self.errors


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_string_list(value):
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _positive_or(value, default):
    return value if _is_number(value) and value > 0 else default


def _text(value):
    return value.strip() if isinstance(value, str) else None


def resolve_question_type(raw_type):
    if not isinstance(raw_type, str):
        return None
    return TYPE_ALIASES.get(raw_type.strip().lower())


def slugify_question_id(candidate):
    slug = re.sub(r'[^a-z0-9-]+', '-', candidate.strip().lower())
    return slug.strip('-')


def coerce_boolean_answer(value):
    """True/False from a bool or the literal strings 'true'/'false', else None."""
    if isinstance(value, bool):
        return value
    if value == 'true':
        return True
    if value == 'false':
        return False
    return None


def _derive_question_id(raw, index, seen_ids):
    raw_id = raw.get('id')
    source = raw_id if isinstance(raw_id, str) else f'q{index}'

    question_id = slugify_question_id(source)
    if not question_id or question_id in seen_ids:
        question_id = f'q{index}'
    if question_id in seen_ids:
        return None, f'Duplicate question id after normalization: {question_id}'
    return question_id, None


def _normalize_question(raw, index, seen_ids, warnings):
    """Returns (question, error); exactly one of them is None."""
    question_type = resolve_question_type(raw.get('type'))
    if question_type is None:
        return None, f'Unsupported question type at index {index}'

    prompt = raw.get('prompt')
    if prompt is None:
        prompt = raw.get('questionText')
    prompt = _text(prompt)
    if not prompt:
        return None, f'Missing prompt at question index {index}'

    question_id, error = _derive_question_id(raw, index, seen_ids)
    if error:
        return None, error
    seen_ids.add(question_id)

    points = _positive_or(raw.get('points'), 1)
    correct_answer = None
    choices = None
    rubric = None

    if question_type is QuestionType.MULTIPLE_CHOICE:
        choices = raw.get('options') if isinstance(raw.get('options'), list) else raw.get('choices')
        if not _is_string_list(choices) or not choices:
            return None, f'Malformed answer schema for {question_id}'
        correct_answer = raw.get('correctAnswer')
        if correct_answer is not None and (not isinstance(correct_answer, str) or correct_answer not in choices):
            return None, f'Correct answer for {question_id} is not one of its choices'

    elif question_type is QuestionType.TRUE_FALSE:
        correct_answer = coerce_boolean_answer(raw.get('correctAnswer'))

    else:
        rubric_text = raw.get('rubric')
        if isinstance(rubric_text, str) and rubric_text.strip():
            rubric = rubric_text

    if question_type.is_objective and correct_answer is None:
        warnings.append(
            f'Question {question_id} has no correct answer; it will always be graded as incorrect'
        )

    question = NormalizedQuestion(
        id=question_id,
        type=question_type,
        prompt=prompt,
        points=points,
        choices=list(choices) if choices is not None else None,
        correct_answer=correct_answer,
        rubric=rubric,
    )
    return question, None


def normalize_exam_payload(payload):
    """
    Normalize a parsed JSON document into a NormalizedExam.

    Title and subject are read from ``examMetadata`` first, then from the
    root. Question positions in error messages are 1-based.
    """
    errors = []
    warnings = []

    if not isinstance(payload, dict):
        return NormalizationResult(None, ['Malformed exam payload'], warnings)

    metadata = payload.get('examMetadata') if isinstance(payload.get('examMetadata'), dict) else payload

    title = _text(metadata.get('title'))
    if title is None:
        title = _text(payload.get('title')) or ''
    subject = _text(metadata.get('subject'))
    if subject is None:
        subject = _text(payload.get('subject'))
    subject = subject or DEFAULT_SUBJECT

    raw_questions = payload.get('questions')
    if not title or not isinstance(raw_questions, list) or not raw_questions:
        errors.append(MISSING_TITLE_OR_QUESTIONS)

    raw_settings = payload.get('settings') if isinstance(payload.get('settings'), dict) else {}
    settings = ExamSettings(
        time_limit_minutes=_positive_or(raw_settings.get('timeLimitMinutes'), DEFAULT_TIME_LIMIT_MINUTES),
        passing_score_percent=_positive_or(raw_settings.get('passingScorePercent'), DEFAULT_PASSING_SCORE_PERCENT),
    )

    questions = []
    seen_ids = set()
    for position, raw in enumerate(raw_questions if isinstance(raw_questions, list) else [], start=1):
        if not isinstance(raw, dict):
            errors.append(f'Malformed question entry at index {position}')
            continue
        question, error = _normalize_question(raw, position, seen_ids, warnings)
        if error:
            errors.append(error)
            continue
        questions.append(question)

    if errors:
        return NormalizationResult(None, errors, warnings)

    exam = NormalizedExam(title=title, subject=subject, settings=settings, questions=questions)
    return NormalizationResult(exam, errors, warnings)
