"""
Subject auto-assignment.

Keeps Assignment rows in step with the subject's enrollments and content.
Both entry points build candidate rows and insert them with conflicts
ignored, so retried uploads or duplicated enrollment actions never create a
second assignment for the same enrollment and content. Nothing here ever
removes an assignment.
"""
import logging
from dataclasses import dataclass

from django.db import transaction

from .audit import LoggingAuditSink
from .models import Assignment, Exam, Lesson, SubjectEnrollment
from .observability import get_metrics

logger = logging.getLogger(__name__)

AUTO_ASSIGNMENT_SOURCE = 'subject_auto'
AUTO_ASSIGNMENT_TYPE = 'practice'
AUTO_ASSIGNMENT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class AutoAssignResult:
    lesson_candidates: int = 0
    lesson_created: int = 0
    exam_candidates: int = 0
    exam_created: int = 0

    @property
    def created(self):
        return self.lesson_created + self.exam_created

    @property
    def skipped(self):
        return (self.lesson_candidates + self.exam_candidates) - self.created


class AssignmentMaterializer:

    def __init__(self, metrics=None, audit=None):
        self.metrics = metrics or get_metrics()
        self.audit = audit or LoggingAuditSink()

    def _auto_row(self, enrollment, subject, lesson_id=None, exam_id=None):
        return Assignment(
            tenant_id=subject.tenant_id,
            assignee_student_id=enrollment.student_id,
            assigned_by_teacher_id=subject.teacher_owner_id,
            lesson_id=lesson_id,
            exam_id=exam_id,
            assignment_source=AUTO_ASSIGNMENT_SOURCE,
            subject_enrollment=enrollment,
            assignment_type=AUTO_ASSIGNMENT_TYPE,
            max_attempts=AUTO_ASSIGNMENT_MAX_ATTEMPTS,
            due_at=None,
        )

    @staticmethod
    def _insert_ignoring_duplicates(rows, existing):
        """
        Insert rows, skipping any that hit the subject-auto unique keys.

        ``existing`` counts the rows matching the candidates' keys; the
        difference before and after the insert is what this call created.
        """
        if not rows:
            return 0
        before = existing.count()
        Assignment.objects.bulk_create(rows, ignore_conflicts=True)
        return existing.count() - before

    def materialize_for_enrollment(self, enrollment):
        """
        Assign every live lesson and exam of the enrollment's subject.

        Runs on enrollment creation and on reactivation. The enrollment's
        ``auto_assign_future`` flag only concerns content published later.
        """
        subject = enrollment.subject
        with transaction.atomic():
            lesson_ids = list(
                Lesson.objects.filter(
                    tenant_id=subject.tenant_id,
                    subject=subject,
                    is_deleted=False,
                ).values_list('id', flat=True)
            )
            exam_ids = list(
                Exam.objects.filter(
                    tenant_id=subject.tenant_id,
                    subject=subject,
                    is_deleted=False,
                ).values_list('id', flat=True)
            )

            auto_rows = Assignment.objects.filter(
                subject_enrollment=enrollment,
                assignment_source=AUTO_ASSIGNMENT_SOURCE,
            )
            lesson_created = self._insert_ignoring_duplicates(
                [self._auto_row(enrollment, subject, lesson_id=pk) for pk in lesson_ids],
                auto_rows.filter(lesson_id__in=lesson_ids),
            )
            exam_created = self._insert_ignoring_duplicates(
                [self._auto_row(enrollment, subject, exam_id=pk) for pk in exam_ids],
                auto_rows.filter(exam_id__in=exam_ids),
            )

        result = AutoAssignResult(
            lesson_candidates=len(lesson_ids),
            lesson_created=lesson_created,
            exam_candidates=len(exam_ids),
            exam_created=exam_created,
        )
        self._record(result)
        logger.info(
            "Auto-assigned subject %s to enrollment %s: %d created, %d skipped",
            subject.pk, enrollment.pk, result.created, result.skipped,
        )
        return result

    def materialize_for_content(self, subject, lesson=None, exam=None, actor=None):
        """
        Assign newly published content to every active enrollment that opted
        into future content.
        """
        if lesson is None and exam is None:
            return AutoAssignResult()

        with transaction.atomic():
            enrollments = list(
                SubjectEnrollment.objects.filter(
                    tenant_id=subject.tenant_id,
                    subject=subject,
                    status='active',
                    auto_assign_future=True,
                )
            )
            if not enrollments:
                return AutoAssignResult()

            auto_rows = Assignment.objects.filter(
                subject_enrollment__in=enrollments,
                assignment_source=AUTO_ASSIGNMENT_SOURCE,
            )
            lesson_rows = [self._auto_row(e, subject, lesson_id=lesson.pk) for e in enrollments] if lesson else []
            exam_rows = [self._auto_row(e, subject, exam_id=exam.pk) for e in enrollments] if exam else []

            lesson_created = self._insert_ignoring_duplicates(
                lesson_rows, auto_rows.filter(lesson=lesson)
            ) if lesson else 0
            exam_created = self._insert_ignoring_duplicates(
                exam_rows, auto_rows.filter(exam=exam)
            ) if exam else 0

        result = AutoAssignResult(
            lesson_candidates=len(lesson_rows),
            lesson_created=lesson_created,
            exam_candidates=len(exam_rows),
            exam_created=exam_created,
        )
        self._record(result)

        if result.created > 0:
            self.audit.record(
                actor,
                'subject.auto_assign',
                'subject',
                subject.pk,
                {
                    'teacher_owner_id': subject.teacher_owner_id,
                    'lesson_id': lesson.pk if lesson else None,
                    'exam_id': exam.pk if exam else None,
                    'lessons_assigned': result.lesson_created,
                    'exams_assigned': result.exam_created,
                },
            )
        return result

    def ensure_enrollment(self, subject, student_id, enrolled_by_id, actor=None):
        """
        Make sure a manually assigned student is enrolled in the subject.

        Creates the enrollment with auto-assignment of future content turned
        off; an existing enrollment is returned untouched.
        Returns (enrollment, created).
        """
        enrollment, created = SubjectEnrollment.objects.get_or_create(
            tenant_id=subject.tenant_id,
            subject=subject,
            student_id=student_id,
            defaults={
                'status': 'active',
                'auto_assign_future': False,
                'enrolled_by_id': enrolled_by_id,
            },
        )
        if created:
            self.metrics.increment('subject.enrollment.created')
            self.audit.record(
                actor,
                'subject.enroll',
                'subject_enrollment',
                enrollment.pk,
                {
                    'subject_id': subject.pk,
                    'student_id': student_id,
                    'teacher_owner_id': subject.teacher_owner_id,
                    'auto_assign_future': False,
                    'source': 'manual_assignment',
                },
            )
        return enrollment, created

    def _record(self, result):
        if result.created > 0:
            self.metrics.increment('subject.auto_assign.created', result.created)
        if result.skipped > 0:
            self.metrics.increment('subject.auto_assign.skipped', result.skipped)
