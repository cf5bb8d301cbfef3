"""
Attempt lifecycle: quota and single in-progress rules, autosave, submit,
result visibility, and the serializable retry helper.
"""
import threading
from unittest import mock

from django.core.checks import Error
from django.db import OperationalError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from apps.coursework import content_service
from apps.coursework.attempt_service import AttemptService
from apps.coursework.audit import LoggingAuditSink
from apps.coursework.checks import check_partial_unique_support
from apps.coursework.exceptions import Conflict
from apps.coursework.grading_service import BaseGrader, GradingPipeline
from apps.coursework.models import Attempt, Exam, Lesson, Response
from apps.coursework.observability import MetricsRegistry
from apps.coursework.transactions import run_serializable

from .fixtures import CourseworkFixtureMixin, mixed_exam, two_choice_exam


class CountingGrader(BaseGrader):
    def __init__(self):
        self.calls = 0

    def grade_text_answer(self, prompt, rubric, answer):
        self.calls += 1
        return {'score_percent': 100, 'feedback': 'Correct pigment'}


class AttemptServiceTestCase(CourseworkFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        report = content_service.upload_exam(self.teacher_actor, self.subject.pk, two_choice_exam())
        self.exam = Exam.objects.get(pk=report['normalizedPreview']['id'])
        [self.assignment] = content_service.create_manual_assignments(
            self.teacher_actor, [self.student.pk], exam_id=self.exam.pk, max_attempts=2
        )

        self.grader = CountingGrader()
        self.metrics = MetricsRegistry()
        self.service = AttemptService(
            pipeline=GradingPipeline(grader=self.grader, metrics=self.metrics),
            metrics=self.metrics,
            audit=LoggingAuditSink(),
        )

    def _start(self, actor=None):
        return self.service.create_attempt(actor or self.student_actor, self.assignment.pk)

    # create ---------------------------------------------------------------

    def test_create_attempt(self):
        attempt = self._start()
        self.assertEqual(attempt.status, 'in_progress')
        self.assertEqual(attempt.exam_id, self.exam.pk)
        self.assertEqual(attempt.student_id, self.student.pk)
        self.assertEqual(self.metrics.counter('attempt.created'), 1)

    def test_only_one_attempt_in_progress(self):
        self._start()
        with self.assertRaises(Conflict) as ctx:
            self._start()
        self.assertIn('in-progress', str(ctx.exception.detail))
        self.assertEqual(Attempt.objects.filter(status='in_progress').count(), 1)

    def test_quota_is_enforced(self):
        for _ in range(2):
            attempt = self._start()
            self.service.submit_attempt(self.student_actor, attempt.pk)

        with self.assertRaises(Conflict) as ctx:
            self._start()
        self.assertIn('Maximum attempts', str(ctx.exception.detail))
        self.assertEqual(Attempt.objects.count(), 2)

    def test_assignment_of_another_student_is_forbidden(self):
        with self.assertRaises(PermissionDenied):
            self._start(self.other_student_actor)

    def test_lesson_assignment_has_no_exam(self):
        lesson, _ = content_service.publish_lesson(self.teacher_actor, self.subject.pk, 'Reading')
        [assignment] = content_service.create_manual_assignments(
            self.teacher_actor, [self.student.pk], lesson_id=lesson.pk
        )
        with self.assertRaises(ValidationError):
            self.service.create_attempt(self.student_actor, assignment.pk)

    def test_deleted_exam_is_not_found(self):
        Exam.objects.filter(pk=self.exam.pk).update(is_deleted=True)
        with self.assertRaises(NotFound):
            self._start()

    # autosave -------------------------------------------------------------

    def test_autosave_upserts_by_question(self):
        attempt = self._start()
        self.service.save_responses(self.student_actor, attempt.pk, [{'questionId': 'q1', 'answer': '3'}])
        result = self.service.save_responses(self.student_actor, attempt.pk, [
            {'questionId': 'q1', 'answer': '4'},
            {'questionId': 'q2', 'answer': None},
        ])

        self.assertEqual(result, {'ok': True, 'saved': 2})
        self.assertEqual(attempt.responses.count(), 2)
        self.assertEqual(attempt.responses.get(question_id='q1').answer_json, '4')
        self.assertIsNone(attempt.responses.get(question_id='q2').answer_json)

    def test_autosave_rejects_unknown_question(self):
        attempt = self._start()
        with self.assertRaises(ValidationError):
            self.service.save_responses(self.student_actor, attempt.pk, [
                {'questionId': 'q1', 'answer': '4'},
                {'questionId': 'q99', 'answer': 'x'},
            ])
        # Nothing from the rejected batch is stored.
        self.assertEqual(attempt.responses.count(), 0)

    def test_autosave_rejects_missing_answer(self):
        attempt = self._start()
        with self.assertRaises(ValidationError):
            self.service.save_responses(self.student_actor, attempt.pk, [{'questionId': 'q1'}])

    def test_autosave_after_submit_conflicts(self):
        attempt = self._start()
        self.service.submit_attempt(self.student_actor, attempt.pk)
        with self.assertRaises(Conflict):
            self.service.save_responses(self.student_actor, attempt.pk, [{'questionId': 'q1', 'answer': '4'}])

    def test_autosave_on_another_students_attempt(self):
        attempt = self._start()
        with self.assertRaises(PermissionDenied):
            self.service.save_responses(self.other_student_actor, attempt.pk, [{'questionId': 'q1', 'answer': '4'}])

    # submit ---------------------------------------------------------------

    def test_submit_grades_and_stores_results(self):
        attempt = self._start()
        self.service.save_responses(self.student_actor, attempt.pk, [
            {'questionId': 'q1', 'answer': '4'},
            {'questionId': 'q2', 'answer': '7'},
        ])

        attempt = self.service.submit_attempt(self.student_actor, attempt.pk)
        attempt.refresh_from_db()

        self.assertEqual(attempt.status, 'graded')
        self.assertEqual(attempt.score_percent, 50)
        self.assertIsNotNone(attempt.submitted_at)
        self.assertEqual(attempt.grading_summary, {'objectiveCount': 2, 'llmCount': 0, 'reviewCount': 0})
        grading = attempt.responses.get(question_id='q1').grading_json
        self.assertEqual(grading['scorePercent'], 100)
        self.assertFalse(grading['needsReview'])
        self.assertEqual(self.metrics.counter('attempt.graded'), 1)

    def test_unanswered_questions_get_a_graded_response(self):
        attempt = self._start()
        self.service.submit_attempt(self.student_actor, attempt.pk)

        responses = Response.objects.filter(attempt=attempt)
        self.assertEqual(responses.count(), 2)
        for response in responses:
            self.assertIsNone(response.answer_json)
            self.assertEqual(response.grading_json['scorePercent'], 0)

    def test_double_submit_conflicts_without_regrading(self):
        exam_report = content_service.upload_exam(self.teacher_actor, self.subject.pk, mixed_exam())
        [assignment] = content_service.create_manual_assignments(
            self.teacher_actor, [self.student.pk], exam_id=exam_report['normalizedPreview']['id']
        )
        attempt = self.service.create_attempt(self.student_actor, assignment.pk)
        self.service.save_responses(self.student_actor, attempt.pk, [{'questionId': 'pigment', 'answer': 'chlorophyll'}])

        self.service.submit_attempt(self.student_actor, attempt.pk)
        with self.assertRaises(Conflict) as ctx:
            self.service.submit_attempt(self.student_actor, attempt.pk)

        self.assertIn('already submitted', str(ctx.exception.detail))
        self.assertEqual(self.grader.calls, 1)

    def test_submit_by_another_student_is_forbidden(self):
        attempt = self._start()
        with self.assertRaises(PermissionDenied):
            self.service.submit_attempt(self.other_student_actor, attempt.pk)
        attempt.refresh_from_db()
        self.assertEqual(attempt.status, 'in_progress')

    def test_submit_unknown_attempt(self):
        with self.assertRaises(NotFound):
            self.service.submit_attempt(self.student_actor, '00000000-0000-0000-0000-000000000000')

    def test_malformed_schema_aborts_submit(self):
        attempt = self._start()
        Exam.objects.filter(pk=self.exam.pk).update(normalized_json={'title': 'Broken'})

        with self.assertRaises(ValidationError):
            self.service.submit_attempt(self.student_actor, attempt.pk)

        attempt.refresh_from_db()
        self.assertEqual(attempt.status, 'in_progress')
        self.assertIsNone(attempt.submitted_at)

    # results --------------------------------------------------------------

    def test_result_visibility(self):
        attempt = self._start()
        self.service.submit_attempt(self.student_actor, attempt.pk)

        self.assertEqual(self.service.get_attempt_result(self.student_actor, attempt.pk).pk, attempt.pk)
        self.assertEqual(self.service.get_attempt_result(self.teacher_actor, attempt.pk).pk, attempt.pk)
        self.assertEqual(self.service.get_attempt_result(self.admin_actor, attempt.pk).pk, attempt.pk)

        with self.assertRaises(PermissionDenied):
            self.service.get_attempt_result(self.other_student_actor, attempt.pk)
        with self.assertRaises(PermissionDenied):
            self.service.get_attempt_result(self.actor(self.other_teacher), attempt.pk)


class ManualAssignmentTestCase(CourseworkFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.lesson = Lesson.objects.create(
            tenant=self.tenant, subject=self.subject, title='Reading', uploaded_by=self.teacher
        )

    def test_attempt_defaults_follow_assignment_type(self):
        [practice] = content_service.create_manual_assignments(
            self.teacher_actor, [self.student.pk], lesson_id=self.lesson.pk
        )
        [assessment] = content_service.create_manual_assignments(
            self.teacher_actor, [self.student.pk], lesson_id=self.lesson.pk, assignment_type='assessment'
        )
        self.assertEqual(practice.max_attempts, 3)
        self.assertEqual(assessment.max_attempts, 1)

    def test_students_are_deduplicated_and_enrolled(self):
        created = content_service.create_manual_assignments(
            self.teacher_actor, [self.student.pk, self.student.pk], lesson_id=self.lesson.pk
        )
        self.assertEqual(len(created), 1)
        enrollment = created[0].subject_enrollment
        self.assertEqual(enrollment.student_id, self.student.pk)
        self.assertFalse(enrollment.auto_assign_future)
        self.assertEqual(created[0].assignment_source, 'manual')

    def test_rejects_non_students_and_bad_limits(self):
        with self.assertRaises(ValidationError):
            content_service.create_manual_assignments(
                self.teacher_actor, [self.other_teacher.pk], lesson_id=self.lesson.pk
            )
        with self.assertRaises(ValidationError):
            content_service.create_manual_assignments(
                self.teacher_actor, [self.student.pk], lesson_id=self.lesson.pk, max_attempts=21
            )
        with self.assertRaises(ValidationError):
            content_service.create_manual_assignments(self.teacher_actor, [self.student.pk])

    def test_archived_subject_takes_no_assignments(self):
        self.subject.is_archived = True
        self.subject.save()
        with self.assertRaises(ValidationError):
            content_service.create_manual_assignments(
                self.teacher_actor, [self.student.pk], lesson_id=self.lesson.pk
            )


class _SerializationFailure(Exception):
    sqlstate = '40001'


class RunSerializableTestCase(TestCase):

    def test_retries_then_succeeds(self):
        calls = []

        def operation():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError('could not serialize access') from _SerializationFailure()
            return 'done'

        self.assertEqual(run_serializable(operation, retries=3), 'done')
        self.assertEqual(len(calls), 3)

    def test_gives_up_with_conflict(self):
        calls = []

        def operation():
            calls.append(1)
            raise OperationalError('could not serialize access') from _SerializationFailure()

        with self.assertRaises(Conflict):
            run_serializable(operation, retries=2)
        self.assertEqual(len(calls), 2)

    def test_locked_sqlite_database_is_retried(self):
        calls = []

        def operation():
            calls.append(1)
            if len(calls) < 2:
                raise OperationalError('database is locked')
            return 'done'

        self.assertEqual(run_serializable(operation, retries=3), 'done')
        self.assertEqual(len(calls), 2)

    def test_other_operational_errors_propagate(self):
        def operation():
            raise OperationalError('disk I/O error')

        with self.assertRaises(OperationalError):
            run_serializable(operation)


@override_settings(ATTEMPT_CREATE_RETRIES=5)
class ConcurrentAttemptCreationTestCase(CourseworkFixtureMixin, TransactionTestCase):

    def setUp(self):
        super().setUp()
        report = content_service.upload_exam(self.teacher_actor, self.subject.pk, two_choice_exam())
        [self.assignment] = content_service.create_manual_assignments(
            self.teacher_actor, [self.student.pk], exam_id=report['normalizedPreview']['id'], max_attempts=1
        )
        self.service = AttemptService(metrics=MetricsRegistry(), audit=LoggingAuditSink())

    def test_racing_creations_leave_one_attempt_and_one_conflict(self):
        barrier = threading.Barrier(2)
        outcomes = []

        def start():
            barrier.wait()
            try:
                self.service.create_attempt(self.student_actor, self.assignment.pk)
                outcomes.append('created')
            except Conflict:
                outcomes.append('conflict')
            except Exception as exc:
                outcomes.append(repr(exc))
            finally:
                connection.close()

        threads = [threading.Thread(target=start) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), ['conflict', 'created'])
        self.assertEqual(Attempt.objects.filter(assignment=self.assignment).count(), 1)


class PartialUniqueSupportCheckTestCase(SimpleTestCase):

    def test_supported_backend_passes(self):
        self.assertEqual(check_partial_unique_support(), [])

    def test_backend_without_partial_indexes_is_rejected(self):
        with mock.patch.object(connection.features, 'supports_partial_indexes', False):
            errors = check_partial_unique_support()
        self.assertEqual([error.id for error in errors], ['coursework.E001'])
        self.assertIsInstance(errors[0], Error)
