"""
Subject auto-assignment: enrollment and content triggers, idempotence,
and the enrollment service calls that drive them.
"""
from django.test import TestCase
from rest_framework.exceptions import PermissionDenied, ValidationError

from apps.coursework import content_service
from apps.coursework.audit import LoggingAuditSink
from apps.coursework.materializer import AssignmentMaterializer
from apps.coursework.models import Assignment, Exam, Lesson, SubjectEnrollment
from apps.coursework.observability import MetricsRegistry, get_metrics

from .fixtures import CourseworkFixtureMixin, two_choice_exam


class MaterializerTestCase(CourseworkFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.metrics = MetricsRegistry()
        self.materializer = AssignmentMaterializer(metrics=self.metrics, audit=LoggingAuditSink())

    def _lesson(self, title, **kwargs):
        return Lesson.objects.create(
            tenant=self.tenant, subject=self.subject, title=title, uploaded_by=self.teacher, **kwargs
        )

    def _exam(self, title):
        return Exam.objects.create(
            tenant=self.tenant,
            subject=self.subject,
            title=title,
            subject_name=self.subject.name,
            normalized_json={'title': title, 'questions': []},
            uploaded_by=self.teacher,
        )

    def _enroll(self, student, **kwargs):
        return SubjectEnrollment.objects.create(
            tenant=self.tenant, subject=self.subject, student=student, enrolled_by=self.teacher, **kwargs
        )

    def test_enrollment_gets_existing_content_once(self):
        self._lesson('Fractions')
        self._lesson('Decimals')
        self._exam('Unit test')
        enrollment = self._enroll(self.student)

        first = self.materializer.materialize_for_enrollment(enrollment)
        self.assertEqual(first.created, 3)
        self.assertEqual((first.lesson_created, first.exam_created), (2, 1))

        second = self.materializer.materialize_for_enrollment(enrollment)
        self.assertEqual(second.created, 0)
        self.assertEqual(second.skipped, 3)
        self.assertEqual(Assignment.objects.filter(subject_enrollment=enrollment).count(), 3)

        self.assertEqual(self.metrics.counter('subject.auto_assign.created'), 3)
        self.assertEqual(self.metrics.counter('subject.auto_assign.skipped'), 3)

    def test_auto_assignments_carry_practice_defaults(self):
        self._lesson('Fractions')
        enrollment = self._enroll(self.student)
        self.materializer.materialize_for_enrollment(enrollment)

        assignment = Assignment.objects.get(subject_enrollment=enrollment)
        self.assertEqual(assignment.assignment_source, 'subject_auto')
        self.assertEqual(assignment.assignment_type, 'practice')
        self.assertEqual(assignment.max_attempts, 3)
        self.assertIsNone(assignment.due_at)
        self.assertEqual(assignment.assigned_by_teacher, self.teacher)

    def test_deleted_content_is_not_assigned(self):
        self._lesson('Gone', is_deleted=True)
        enrollment = self._enroll(self.student)
        self.assertEqual(self.materializer.materialize_for_enrollment(enrollment).created, 0)

    def test_enrollment_activation_ignores_future_flag(self):
        self._lesson('Fractions')
        enrollment = self._enroll(self.student, auto_assign_future=False)
        self.assertEqual(self.materializer.materialize_for_enrollment(enrollment).created, 1)

    def test_new_content_reaches_only_opted_in_active_enrollments(self):
        opted_in = self._enroll(self.student)
        self._enroll(self.other_student, auto_assign_future=False)
        completed_student = self.admin
        self._enroll(completed_student, status='completed')

        lesson = self._lesson('Fractions')
        result = self.materializer.materialize_for_content(self.subject, lesson=lesson)

        self.assertEqual(result.created, 1)
        self.assertEqual(
            list(Assignment.objects.values_list('subject_enrollment', flat=True)),
            [opted_in.pk],
        )

    def test_content_trigger_is_idempotent(self):
        self._enroll(self.student)
        self._enroll(self.other_student)
        exam = self._exam('Unit test')

        self.assertEqual(self.materializer.materialize_for_content(self.subject, exam=exam).created, 2)
        again = self.materializer.materialize_for_content(self.subject, exam=exam)
        self.assertEqual(again.created, 0)
        self.assertEqual(again.skipped, 2)
        self.assertEqual(Assignment.objects.filter(exam=exam).count(), 2)

    def test_manual_assignment_does_not_block_auto_assignment(self):
        lesson = self._lesson('Fractions')
        enrollment = self._enroll(self.student)
        Assignment.objects.create(
            tenant=self.tenant,
            assignee_student=self.student,
            assigned_by_teacher=self.teacher,
            lesson=lesson,
            subject_enrollment=enrollment,
            assignment_source='manual',
        )
        self.assertEqual(self.materializer.materialize_for_enrollment(enrollment).created, 1)

    def test_ensure_enrollment_creates_without_future_assignment(self):
        enrollment, created = self.materializer.ensure_enrollment(self.subject, self.student.pk, self.teacher.pk)
        self.assertTrue(created)
        self.assertFalse(enrollment.auto_assign_future)
        self.assertEqual(enrollment.status, 'active')

        again, created = self.materializer.ensure_enrollment(self.subject, self.student.pk, self.teacher.pk)
        self.assertFalse(created)
        self.assertEqual(again.pk, enrollment.pk)
        self.assertEqual(self.metrics.counter('subject.enrollment.created'), 1)


class EnrollmentServiceTestCase(CourseworkFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        for title in ('Fractions', 'Decimals'):
            content_service.publish_lesson(self.teacher_actor, self.subject.pk, title)
        report = content_service.upload_exam(self.teacher_actor, self.subject.pk, two_choice_exam())
        self.assertTrue(report['valid'])

    def test_enroll_assigns_existing_content(self):
        enrollment, result = content_service.enroll_student(self.teacher_actor, self.subject.pk, self.student.pk)

        self.assertTrue(enrollment.auto_assign_future)
        self.assertEqual(result.created, 3)
        self.assertEqual(Assignment.objects.filter(assignee_student=self.student).count(), 3)

    def test_reactivation_creates_nothing_new(self):
        content_service.enroll_student(self.teacher_actor, self.subject.pk, self.student.pk)
        reactivated_before = get_metrics().counter('subject.enrollment.reactivated')

        enrollment, result = content_service.update_enrollment(
            self.teacher_actor, self.subject.pk, self.student.pk, status='completed'
        )
        self.assertEqual(enrollment.status, 'completed')
        self.assertIsNotNone(enrollment.completed_at)
        self.assertEqual(enrollment.completed_by_id, self.teacher.pk)
        self.assertIsNone(result)

        enrollment, result = content_service.update_enrollment(
            self.teacher_actor, self.subject.pk, self.student.pk, status='active'
        )
        self.assertEqual(enrollment.status, 'active')
        self.assertIsNone(enrollment.completed_at)
        self.assertEqual(result.created, 0)
        self.assertEqual(Assignment.objects.filter(assignee_student=self.student).count(), 3)
        self.assertEqual(get_metrics().counter('subject.enrollment.reactivated'), reactivated_before + 1)

    def test_completed_enrollment_misses_new_content(self):
        content_service.enroll_student(self.teacher_actor, self.subject.pk, self.student.pk)
        content_service.update_enrollment(self.teacher_actor, self.subject.pk, self.student.pk, status='completed')

        _, result = content_service.publish_lesson(self.teacher_actor, self.subject.pk, 'Percentages')
        self.assertEqual(result.created, 0)

    def test_published_content_reaches_enrolled_students(self):
        content_service.enroll_student(self.teacher_actor, self.subject.pk, self.student.pk)
        content_service.enroll_student(self.teacher_actor, self.subject.pk, self.other_student.pk)

        lesson, result = content_service.publish_lesson(self.teacher_actor, self.subject.pk, 'Percentages')
        self.assertEqual(result.created, 2)
        self.assertEqual(Assignment.objects.filter(lesson=lesson).count(), 2)

    def test_only_students_can_be_enrolled(self):
        with self.assertRaises(ValidationError):
            content_service.enroll_student(self.teacher_actor, self.subject.pk, self.other_teacher.pk)

    def test_other_teacher_cannot_manage_subject(self):
        with self.assertRaises(PermissionDenied):
            content_service.enroll_student(self.actor(self.other_teacher), self.subject.pk, self.student.pk)
