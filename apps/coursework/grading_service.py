"""
Grading service with Strategy Pattern implementation.

Architecture:
- grade_objective_question: deterministic grading for multiple-choice and
  true/false questions
- BaseGrader: interface for grading free-text answers
- MockGrader: algorithmic text grading (rubric keywords, similarity)
- GeminiGrader: LLM-powered text grading
- GradingPipeline: grades a whole attempt and decides its final status

Text graders signal failure by raising. The pipeline turns every failure
into a zero-score result flagged for manual review, so a submit always
completes.
"""
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from difflib import SequenceMatcher
from typing import List, Optional

from django.conf import settings

from .exceptions import GradingUnavailable
from .normalizer import QuestionType, coerce_boolean_answer
from .observability import get_metrics

logger = logging.getLogger(__name__)

NO_ANSWER_FEEDBACK = 'No answer submitted'
UNAVAILABLE_FEEDBACK = 'grading unavailable; marked for manual review'
DEFAULT_TEXT_FEEDBACK = 'Needs manual review.'


@dataclass(frozen=True)
class GradedQuestion:
    question_id: str
    score_percent: int
    feedback: str
    needs_review: bool = False

    def to_dict(self):
        return {
            'questionId': self.question_id,
            'scorePercent': self.score_percent,
            'feedback': self.feedback,
            'needsReview': self.needs_review,
        }


@dataclass(frozen=True)
class GradingResult:
    score_percent: int
    status: str
    per_question: List[GradedQuestion]
    objective_count: int
    llm_count: int

    @property
    def review_count(self):
        return sum(1 for item in self.per_question if item.needs_review)

    @property
    def summary(self):
        return {
            'objectiveCount': self.objective_count,
            'llmCount': self.llm_count,
            'reviewCount': self.review_count,
        }


def round_half_up(value):
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def grade_objective_question(question, answer):
    """
    Exact-match grading. Same question and answer always give the same result.

    Multiple choice compares the submitted string to the stored choice as-is;
    true/false accepts booleans or the strings 'true'/'false'.
    """
    if question.type is QuestionType.MULTIPLE_CHOICE:
        is_correct = (
            isinstance(answer, str)
            and question.correct_answer is not None
            and answer == question.correct_answer
        )
    elif question.type is QuestionType.TRUE_FALSE:
        submitted = coerce_boolean_answer(answer)
        is_correct = submitted is not None and submitted == question.correct_answer
    else:
        return GradedQuestion(
            question_id=question.id,
            score_percent=0,
            feedback='Requires manual grading',
            needs_review=True,
        )

    return GradedQuestion(
        question_id=question.id,
        score_percent=100 if is_correct else 0,
        feedback='Correct' if is_correct else 'Incorrect',
    )


class BaseGrader(ABC):
    """
    Strategy interface for free-text grading.
    Enables dependency injection and easy testing.
    """

    @abstractmethod
    def grade_text_answer(self, prompt, rubric, answer):
        """
        Returns dict: {
            'score_percent': number in [0, 100],
            'feedback': str
        }
        Raises on any failure.
        """


class MockGrader(BaseGrader):
    """
    Algorithmic grading without external dependencies.

    The rubric is treated as the model answer:
    - short answers: string similarity with normalization
    - longer answers: rubric keyword coverage with a length factor

    Without a rubric there is nothing to compare against, so it refuses.
    """

    SHORT_ANSWER_WORDS = 12

    def grade_text_answer(self, prompt, rubric, answer):
        if not rubric or not rubric.strip():
            raise GradingUnavailable("No rubric to grade against")

        if len(answer.split()) <= self.SHORT_ANSWER_WORDS and len(rubric.split()) <= self.SHORT_ANSWER_WORDS:
            return self._grade_by_similarity(rubric, answer)
        return self._grade_by_keywords(rubric, answer)

    def _grade_by_similarity(self, rubric, answer):
        """Handles typos and minor variations."""
        similarity = SequenceMatcher(
            None,
            self._normalize_text(rubric),
            self._normalize_text(answer)
        ).ratio()

        if similarity >= 0.9:
            return {'score_percent': 100, 'feedback': 'Excellent answer!'}
        if similarity >= 0.7:
            return {'score_percent': 80, 'feedback': 'Good answer with minor issues. Partial credit awarded.'}
        if similarity >= 0.5:
            return {'score_percent': 50, 'feedback': 'Partially correct. Key concepts present but incomplete.'}
        return {'score_percent': 0, 'feedback': 'Answer does not match expected response.'}

    def _grade_by_keywords(self, rubric, answer):
        expected_keywords = self._extract_keywords(rubric)
        answer_lower = answer.lower()

        matched_count = sum(1 for keyword in expected_keywords if keyword in answer_lower)
        keyword_score = matched_count / len(expected_keywords) if expected_keywords else 0

        # Penalize very short essays
        word_count = len(answer.split())
        if word_count < 30:
            length_factor = 0.6
        elif word_count < 50:
            length_factor = 0.8
        else:
            length_factor = 1.0

        final_score = keyword_score * length_factor

        feedback = f"Keyword coverage: {matched_count}/{len(expected_keywords)}. "
        if final_score >= 0.8:
            feedback += "Strong answer with good coverage of key concepts."
        elif final_score >= 0.6:
            feedback += "Adequate answer but missing some key points."
        else:
            feedback += "Answer lacks sufficient depth and key concepts."

        return {'score_percent': final_score * 100, 'feedback': feedback}

    @staticmethod
    def _normalize_text(text):
        """Case-insensitive, whitespace-trimmed comparison."""
        return re.sub(r'\s+', ' ', text.strip().lower())

    @staticmethod
    def _extract_keywords(text):
        stopwords = {'the', 'a', 'an', 'is', 'are', 'was', 'were', 'in', 'on',
                     'at', 'to', 'for', 'of', 'and', 'or', 'but', 'should',
                     'must', 'answer', 'mention', 'explain', 'with'}
        words = re.findall(r'\w+', text.lower())
        return sorted({w for w in words if len(w) > 3 and w not in stopwords})


class GeminiGrader(BaseGrader):
    """
    LLM-powered grading using Google Gemini API.

    Failures are raised, never masked with a local grade: the pipeline
    decides what a failed grade means.
    """

    def __init__(self, api_key=None, model_name=None):
        self.model = None
        api_key = api_key if api_key is not None else getattr(settings, 'GEMINI_API_KEY', '')
        model_name = model_name or getattr(settings, 'GEMINI_MODEL', 'gemini-1.5-flash')
        if not api_key:
            logger.warning("GEMINI_API_KEY not configured; text answers will need manual review")
            return

        import google.generativeai as genai
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name)

    def grade_text_answer(self, prompt, rubric, answer):
        if self.model is None:
            raise GradingUnavailable("Gemini API key is not configured")

        try:
            response = self.model.generate_content(
                self._build_grading_prompt(prompt, rubric, answer),
                generation_config={'temperature': 0},
            )
            text = response.text
        except Exception as exc:
            raise GradingUnavailable(f"Gemini request failed: {exc}") from exc

        return self._parse_llm_response(text)

    @staticmethod
    def _build_grading_prompt(prompt, rubric, answer):
        """Construct prompt for LLM with strict JSON output requirement."""
        return f"""You are a strict exam grader. Evaluate the student's answer fairly and objectively.

Question: {prompt}
Rubric: {rubric or 'N/A'}

Student's Answer: {answer}

CRITICAL: Respond ONLY with valid JSON in this exact format (no markdown, no backticks):
{{
  "scorePercent": <number between 0 and 100>,
  "feedback": "<brief constructive feedback>"
}}
"""

    @staticmethod
    def _parse_llm_response(response_text):
        """Extract the JSON object from the reply, tolerating markdown wrapping."""
        match = re.search(r'\{.*\}', response_text or '', re.DOTALL)
        if not match:
            raise GradingUnavailable("Gemini returned a non-JSON grading response")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise GradingUnavailable("Gemini returned malformed JSON") from exc
        if not isinstance(parsed, dict):
            raise GradingUnavailable("Gemini returned malformed JSON")
        return {
            'score_percent': parsed.get('scorePercent'),
            'feedback': parsed.get('feedback'),
        }


def get_grader(grader_type=None):
    grader_type = grader_type or getattr(settings, 'GRADER_TYPE', 'mock')
    if grader_type == 'gemini':
        return GeminiGrader()
    return MockGrader()


class GradingPipeline:
    """
    Grades every question of an exam against a map of submitted answers.

    Objective questions are graded locally. Subjective questions with an
    answer go to the text grader; ``max_workers`` > 1 sends them through a
    bounded thread pool, otherwise they are graded one at a time. Results
    always come back in exam order.
    """

    def __init__(self, grader=None, metrics=None, max_workers=None):
        self.grader = grader or get_grader()
        self.metrics = metrics or get_metrics()
        if max_workers is None:
            max_workers = getattr(settings, 'GRADING_MAX_WORKERS', 1)
        self.max_workers = max(1, int(max_workers))

    def grade(self, exam, answers):
        """
        exam: NormalizedExam. answers: {question_id: submitted answer}.
        Returns a GradingResult.
        """
        results: List[Optional[GradedQuestion]] = [None] * len(exam.questions)
        pending = []
        objective_count = 0
        llm_count = 0

        for position, question in enumerate(exam.questions):
            answer = answers.get(question.id)
            if question.type.is_objective:
                objective_count += 1
                results[position] = grade_objective_question(question, answer)
                continue

            llm_count += 1
            if not isinstance(answer, str) or not answer.strip():
                results[position] = GradedQuestion(
                    question_id=question.id,
                    score_percent=0,
                    feedback=NO_ANSWER_FEEDBACK,
                    needs_review=True,
                )
            else:
                pending.append((position, question, answer))

        if self.max_workers > 1 and len(pending) > 1:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(pending))) as pool:
                graded = list(pool.map(lambda item: self.grade_text_question(item[1], item[2]), pending))
        else:
            graded = [self.grade_text_question(question, answer) for _, question, answer in pending]

        for (position, _, _), result in zip(pending, graded):
            results[position] = result

        total = sum(item.score_percent for item in results)
        score_percent = round_half_up(total / max(len(results), 1))
        status = 'needs_review' if any(item.needs_review for item in results) else 'graded'

        return GradingResult(
            score_percent=score_percent,
            status=status,
            per_question=results,
            objective_count=objective_count,
            llm_count=llm_count,
        )

    def grade_text_question(self, question, answer):
        started = time.perf_counter()
        try:
            raw = self.grader.grade_text_answer(question.prompt, question.rubric, answer)
            score_percent, feedback = self._validate_text_grade(raw)
        except Exception:
            latency_ms = (time.perf_counter() - started) * 1000
            self.metrics.record_grading_call(latency_ms, failed=True)
            self.metrics.increment('grading.text.failed')
            logger.warning("Text grading failed for question %s", question.id, exc_info=True)
            return GradedQuestion(
                question_id=question.id,
                score_percent=0,
                feedback=UNAVAILABLE_FEEDBACK,
                needs_review=True,
            )

        latency_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_grading_call(latency_ms, failed=False)
        self.metrics.increment('grading.text.succeeded')
        return GradedQuestion(
            question_id=question.id,
            score_percent=score_percent,
            feedback=feedback,
            needs_review=False,
        )

    @staticmethod
    def _validate_text_grade(raw):
        if not isinstance(raw, dict):
            raise GradingUnavailable("Grader returned a non-object result")
        score = raw.get('score_percent')
        if not isinstance(score, (int, float)) or isinstance(score, bool) or score != score:
            raise GradingUnavailable("Grader returned no numeric score")
        score_percent = max(0, min(100, round_half_up(score)))
        feedback = raw.get('feedback')
        if not isinstance(feedback, str) or not feedback.strip():
            feedback = DEFAULT_TEXT_FEEDBACK
        return score_percent, feedback
