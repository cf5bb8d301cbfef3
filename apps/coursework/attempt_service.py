"""
Attempt lifecycle: create, autosave, submit (with grading) and result lookup.

State machine: in_progress -> submitted -> graded | needs_review.
"""
import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from .audit import LoggingAuditSink
from .exceptions import Conflict
from .grading_service import GradingPipeline
from .models import Assignment, Attempt, Response
from .normalizer import NormalizedExam
from .observability import get_metrics
from .transactions import run_serializable

logger = logging.getLogger(__name__)

_MISSING = object()


def load_exam_schema(exam):
    """Parse an exam's stored schema; a broken schema is a validation error."""
    try:
        return NormalizedExam.from_dict(exam.normalized_json)
    except ValueError as exc:
        raise ValidationError(f"Exam schema is missing or malformed: {exc}")


class AttemptService:

    def __init__(self, pipeline=None, metrics=None, audit=None):
        self.pipeline = pipeline or GradingPipeline()
        self.metrics = metrics or get_metrics()
        self.audit = audit or LoggingAuditSink()

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    def create_attempt(self, actor, assignment_id):
        """
        Start a new attempt on an assigned exam.

        The checks and the insert share one serializable transaction with
        the assignment row locked, so two racing requests cannot both pass
        the quota check.
        """
        retries = getattr(settings, 'ATTEMPT_CREATE_RETRIES', 3)
        attempt = run_serializable(lambda: self._create_attempt_tx(actor, assignment_id), retries=retries)
        self.metrics.increment('attempt.created')
        logger.info("Attempt %s started on assignment %s by user %s", attempt.pk, assignment_id, actor.user_id)
        return attempt

    def _create_attempt_tx(self, actor, assignment_id):
        assignment = (
            Assignment.objects
            .select_for_update()
            .select_related('exam')
            .filter(
                pk=assignment_id,
                tenant_id=actor.tenant_id,
                assignee_student_id=actor.user_id,
            )
            .first()
        )
        if assignment is None:
            raise PermissionDenied("Assignment is not available for this student")

        if assignment.exam_id is None:
            raise ValidationError("This assignment does not include an exam")
        if assignment.exam.is_deleted:
            raise NotFound("Exam not found")

        pair = Attempt.objects.filter(
            tenant_id=actor.tenant_id,
            assignment=assignment,
            student_id=actor.user_id,
        )
        if pair.filter(status='in_progress').exists():
            raise Conflict("Complete the in-progress attempt before creating a new one")
        if pair.count() >= assignment.max_attempts:
            raise Conflict("Maximum attempts reached for this assignment")

        try:
            with transaction.atomic():
                return Attempt.objects.create(
                    tenant_id=actor.tenant_id,
                    assignment=assignment,
                    exam_id=assignment.exam_id,
                    student_id=actor.user_id,
                    status='in_progress',
                )
        except IntegrityError:
            raise Conflict("Complete the in-progress attempt before creating a new one")

    # ------------------------------------------------------------------
    # autosave
    # ------------------------------------------------------------------
    def save_responses(self, actor, attempt_id, responses):
        """
        Upsert answers for an in-progress attempt.

        ``responses`` is a list of dicts with ``questionId`` and ``answer``.
        An entry without an ``answer`` key is rejected; ``None`` is a valid
        answer.
        """
        attempt = (
            Attempt.objects
            .select_related('exam')
            .filter(pk=attempt_id, tenant_id=actor.tenant_id)
            .first()
        )
        if attempt is None:
            raise NotFound("Attempt not found")
        if attempt.student_id != actor.user_id:
            raise PermissionDenied("Cannot modify another student's attempt")
        if attempt.status != 'in_progress':
            raise Conflict("Only in-progress attempts can be autosaved")

        try:
            valid_ids = NormalizedExam.from_dict(attempt.exam.normalized_json).question_ids
        except ValueError:
            valid_ids = set()

        for entry in responses:
            question_id = entry.get('questionId')
            if not question_id or question_id not in valid_ids or entry.get('answer', _MISSING) is _MISSING:
                raise ValidationError(f"Invalid response payload for question {question_id}")

        with transaction.atomic():
            # The attempt may have been submitted since it was read above.
            locked = Attempt.objects.select_for_update().get(pk=attempt.pk)
            if locked.status != 'in_progress':
                raise Conflict("Only in-progress attempts can be autosaved")
            for entry in responses:
                Response.objects.update_or_create(
                    attempt=attempt,
                    question_id=entry['questionId'],
                    defaults={'answer_json': entry['answer']},
                )
        return {'ok': True, 'saved': len(responses)}

    # ------------------------------------------------------------------
    # submit
    # ------------------------------------------------------------------
    def submit_attempt(self, actor, attempt_id):
        """
        Submit and grade an attempt.

        Only one caller can move the row out of in_progress. Grading runs
        outside any transaction because text grading may call a remote
        service; its results are then written in one transaction.
        """
        with transaction.atomic():
            marked = Attempt.objects.filter(
                pk=attempt_id,
                tenant_id=actor.tenant_id,
                student_id=actor.user_id,
                status='in_progress',
            ).update(status='submitted', submitted_at=timezone.now())

            if marked == 0:
                existing = Attempt.objects.filter(pk=attempt_id, tenant_id=actor.tenant_id).first()
                if existing is None:
                    raise NotFound("Attempt not found")
                if existing.student_id != actor.user_id:
                    raise PermissionDenied("Cannot submit another student's attempt")
                raise Conflict("Attempt is already submitted")

            attempt = Attempt.objects.select_related('exam').get(pk=attempt_id)
            # Raising here rolls the status change back.
            exam = load_exam_schema(attempt.exam)

        answers = dict(attempt.responses.values_list('question_id', 'answer_json'))
        result = self.pipeline.grade(exam, answers)

        with transaction.atomic():
            for graded in result.per_question:
                response, created = Response.objects.get_or_create(
                    attempt=attempt,
                    question_id=graded.question_id,
                    defaults={'answer_json': None, 'grading_json': graded.to_dict()},
                )
                if not created:
                    response.grading_json = graded.to_dict()
                    response.save(update_fields=['grading_json', 'updated_at'])

            attempt.status = result.status
            attempt.score_percent = result.score_percent
            attempt.grading_summary = result.summary
            attempt.save(update_fields=['status', 'score_percent', 'grading_summary'])

        self.metrics.increment(f'attempt.{result.status}')
        logger.info(
            "Attempt %s graded: %s, %d%% (%d for review)",
            attempt.pk, result.status, result.score_percent, result.review_count,
        )
        self.audit.record(
            actor,
            'attempt.submit',
            'attempt',
            attempt.pk,
            {'status': result.status, 'score_percent': result.score_percent},
        )
        return attempt

    # ------------------------------------------------------------------
    # results
    # ------------------------------------------------------------------
    def get_attempt_result(self, actor, attempt_id):
        attempt = (
            Attempt.objects
            .select_related('exam', 'assignment', 'student')
            .prefetch_related('responses')
            .filter(pk=attempt_id, tenant_id=actor.tenant_id)
            .first()
        )
        if attempt is None:
            raise NotFound("Attempt not found")

        if actor.is_admin:
            return attempt
        if actor.is_student:
            if attempt.student_id != actor.user_id:
                raise PermissionDenied("Students can only view their own results")
            return attempt
        if actor.is_content_manager and attempt.assignment.assigned_by_teacher_id == actor.user_id:
            return attempt
        raise PermissionDenied("Owner does not have access to this attempt")
