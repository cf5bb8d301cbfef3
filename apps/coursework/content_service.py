"""
Subjects, enrollments, content publishing and manual assignments.

Every function takes the resolved Actor first and enforces the tenant and
ownership rules itself, so views stay thin.
"""
import logging

from django.db import IntegrityError, transaction
from django.db.models import Count
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from .attempt_service import load_exam_schema
from .audit import LoggingAuditSink
from .exceptions import Conflict
from .identity import CONTENT_MANAGER_ROLES
from .materializer import AssignmentMaterializer
from .models import Assignment, Exam, Lesson, Subject, SubjectEnrollment, User
from .normalizer import normalize_exam_payload
from .observability import get_metrics

logger = logging.getLogger(__name__)

MIN_ATTEMPTS = 1
MAX_ATTEMPTS = 20

_metrics = get_metrics()
_audit = LoggingAuditSink()
_materializer = AssignmentMaterializer(metrics=_metrics, audit=_audit)


# ----------------------------------------------------------------------
# Subjects
# ----------------------------------------------------------------------

def _assert_can_manage_subjects(actor):
    if not (actor.is_admin or actor.is_content_manager):
        raise PermissionDenied("Role cannot manage subjects")


def get_subject_for_actor(actor, subject_id):
    subject = Subject.objects.filter(pk=subject_id, tenant_id=actor.tenant_id).first()
    if subject is None:
        raise NotFound("Subject not found")
    if actor.is_platform_admin:
        return subject
    if actor.is_content_manager and subject.teacher_owner_id != actor.user_id:
        raise PermissionDenied("Cannot access another owner's subject")
    if actor.is_student:
        raise PermissionDenied("Students cannot manage subjects")
    return subject


def assert_subject_access(actor, subject_id):
    """Like get_subject_for_actor, but archived subjects take no new content."""
    subject = get_subject_for_actor(actor, subject_id)
    if subject.is_archived:
        raise ValidationError("Subject is archived")
    return subject


def _active_members(tenant_id, roles):
    return User.objects.filter(
        is_active=True,
        memberships__tenant_id=tenant_id,
        memberships__role__in=roles,
        memberships__status='active',
    ).distinct()


def create_subject(actor, name, teacher_owner_id=None):
    _assert_can_manage_subjects(actor)

    name = (name or '').strip()
    if not name:
        raise ValidationError("Subject name is required")

    if actor.is_content_manager:
        owner_id = actor.user_id
    else:
        if not teacher_owner_id:
            raise ValidationError("teacherOwnerId is required for admin subject creation")
        if not _active_members(actor.tenant_id, CONTENT_MANAGER_ROLES).filter(pk=teacher_owner_id).exists():
            raise ValidationError("Teacher owner must be an active teacher/parent/tutor member in this tenant")
        owner_id = teacher_owner_id

    try:
        with transaction.atomic():
            subject = Subject.objects.create(
                tenant_id=actor.tenant_id,
                teacher_owner_id=owner_id,
                name=name,
                name_normalized=name.lower(),
            )
    except IntegrityError:
        raise Conflict("Subject name already exists for this owner")

    _audit.record(actor, 'subject.create', 'subject', subject.pk, {
        'teacher_owner_id': owner_id,
        'name': subject.name,
    })
    return subject


def list_subjects(actor, include_archived=False):
    _assert_can_manage_subjects(actor)
    subjects = Subject.objects.filter(tenant_id=actor.tenant_id)
    if not include_archived:
        subjects = subjects.filter(is_archived=False)
    if actor.is_content_manager and not actor.is_platform_admin:
        subjects = subjects.filter(teacher_owner_id=actor.user_id)
    return subjects.select_related('teacher_owner').annotate(
        lesson_count=Count('lessons', distinct=True),
        exam_count=Count('exams', distinct=True),
        enrollment_count=Count('enrollments', distinct=True),
    )


# ----------------------------------------------------------------------
# Enrollments
# ----------------------------------------------------------------------

def list_subject_students(actor, subject_id):
    _assert_can_manage_subjects(actor)
    subject = get_subject_for_actor(actor, subject_id)
    return SubjectEnrollment.objects.filter(
        tenant_id=actor.tenant_id,
        subject=subject,
    ).select_related('student')


def enroll_student(actor, subject_id, student_id, auto_assign_future=None):
    """
    Enroll (or re-activate) a student and assign the subject's content.

    Returns (enrollment, AutoAssignResult).
    """
    _assert_can_manage_subjects(actor)
    subject = get_subject_for_actor(actor, subject_id)

    if not _active_members(actor.tenant_id, ['student']).filter(pk=student_id).exists():
        raise ValidationError("Student must be an active student member of this tenant")

    with transaction.atomic():
        enrollment = (
            SubjectEnrollment.objects
            .select_for_update()
            .filter(tenant_id=actor.tenant_id, subject=subject, student_id=student_id)
            .first()
        )
        created = enrollment is None
        if created:
            enrollment = SubjectEnrollment.objects.create(
                tenant_id=actor.tenant_id,
                subject=subject,
                student_id=student_id,
                status='active',
                auto_assign_future=True if auto_assign_future is None else auto_assign_future,
                enrolled_by_id=actor.user_id,
            )
        else:
            enrollment.status = 'active'
            enrollment.completed_at = None
            enrollment.completed_by = None
            if auto_assign_future is not None:
                enrollment.auto_assign_future = auto_assign_future
            enrollment.save()

        result = _materializer.materialize_for_enrollment(enrollment)

    if created:
        _metrics.increment('subject.enrollment.created')
    _audit.record(actor, 'subject.enroll', 'subject_enrollment', enrollment.pk, {
        'subject_id': subject.pk,
        'student_id': student_id,
        'teacher_owner_id': subject.teacher_owner_id,
        'auto_assign_future': enrollment.auto_assign_future,
        'assigned_lessons': result.lesson_created,
        'assigned_exams': result.exam_created,
    })
    return enrollment, result


def update_enrollment(actor, subject_id, student_id, status=None, auto_assign_future=None):
    """Complete, re-activate or toggle future auto-assignment. Returns (enrollment, result or None)."""
    _assert_can_manage_subjects(actor)
    subject = get_subject_for_actor(actor, subject_id)

    enrollment = SubjectEnrollment.objects.filter(
        tenant_id=actor.tenant_id,
        subject=subject,
        student_id=student_id,
    ).first()
    if enrollment is None:
        raise NotFound("Subject enrollment not found")

    previous_status = enrollment.status
    if auto_assign_future is not None:
        enrollment.auto_assign_future = auto_assign_future
    if status == 'completed':
        enrollment.status = 'completed'
        enrollment.completed_at = timezone.now()
        enrollment.completed_by_id = actor.user_id
    elif status == 'active':
        enrollment.status = 'active'
        enrollment.completed_at = None
        enrollment.completed_by = None
    elif status is not None:
        raise ValidationError(f"Unknown enrollment status: {status}")

    result = None
    with transaction.atomic():
        enrollment.save()
        if enrollment.status == 'active':
            result = _materializer.materialize_for_enrollment(enrollment)

    if enrollment.status == 'completed':
        _metrics.increment('subject.enrollment.completed')
    elif previous_status == 'completed':
        _metrics.increment('subject.enrollment.reactivated')

    action = 'subject.complete' if enrollment.status == 'completed' else 'subject.enroll'
    _audit.record(actor, action, 'subject_enrollment', enrollment.pk, {
        'subject_id': subject.pk,
        'student_id': student_id,
        'previous_status': previous_status,
        'status': enrollment.status,
        'auto_assign_future': enrollment.auto_assign_future,
        'assigned_lessons': result.lesson_created if result else 0,
        'assigned_exams': result.exam_created if result else 0,
    })
    return enrollment, result


# ----------------------------------------------------------------------
# Content
# ----------------------------------------------------------------------

def publish_lesson(actor, subject_id, title, grade_level=None, metadata=None):
    subject = assert_subject_access(actor, subject_id)
    title = (title or '').strip()
    if not title:
        raise ValidationError("Lesson title is required")

    with transaction.atomic():
        lesson = Lesson.objects.create(
            tenant_id=actor.tenant_id,
            subject=subject,
            title=title,
            grade_level=grade_level,
            metadata_json=metadata or {},
            uploaded_by_id=actor.user_id,
        )
        result = _materializer.materialize_for_content(subject, lesson=lesson, actor=actor)

    _audit.record(actor, 'lesson.publish', 'lesson', lesson.pk, {
        'title': lesson.title,
        'subject_id': subject.pk,
    })
    return lesson, result


def upload_exam(actor, subject_id, payload):
    """
    Validate and store an exam. Returns the upload report:

        {'valid': bool, 'errors': [...], 'warnings': [...], 'normalizedPreview': {...} | None}

    An invalid payload is reported, not raised; nothing is stored for it.
    """
    subject = assert_subject_access(actor, subject_id)

    normalization = normalize_exam_payload(payload)
    if not normalization.is_valid:
        logger.info(
            "Rejected exam upload for subject %s: %s",
            subject.pk, '; '.join(normalization.errors),
        )
        return {
            'valid': False,
            'errors': normalization.errors,
            'warnings': normalization.warnings,
            'normalizedPreview': None,
        }

    normalized = normalization.normalized
    with transaction.atomic():
        exam = Exam.objects.create(
            tenant_id=actor.tenant_id,
            subject=subject,
            title=normalized.title,
            subject_name=subject.name,
            settings_json=normalized.settings.to_dict(),
            normalized_json=normalized.to_dict(),
            normalized_schema_version='v1',
            uploaded_by_id=actor.user_id,
        )
        result = _materializer.materialize_for_content(subject, exam=exam, actor=actor)

    logger.info("Exam %s uploaded with %d questions", exam.pk, len(normalized.questions))
    _audit.record(actor, 'exam.upload', 'exam', exam.pk, {
        'title': exam.title,
        'subject_id': subject.pk,
    })
    return {
        'valid': True,
        'errors': [],
        'warnings': normalization.warnings,
        'normalizedPreview': {
            'id': str(exam.pk),
            'title': exam.title,
            'subjectId': str(subject.pk),
            'subject': subject.name,
            'questionCount': len(normalized.questions),
            'autoAssigned': result.created,
        },
    }


# ----------------------------------------------------------------------
# Manual assignments
# ----------------------------------------------------------------------

def _resolve_assignment_target(actor, lesson_id, exam_id):
    if lesson_id and exam_id:
        raise ValidationError("Assignment must reference exactly one of lessonId or examId")
    if not lesson_id and not exam_id:
        raise ValidationError("Assignment must reference lessonId or examId")

    model = Lesson if lesson_id else Exam
    target = model.objects.filter(pk=lesson_id or exam_id, tenant_id=actor.tenant_id).first()
    if target is None or target.is_deleted:
        raise NotFound(f"{model.__name__} not found")
    subject = assert_subject_access(actor, target.subject_id)
    return subject, target


def create_manual_assignments(actor, student_ids, lesson_id=None, exam_id=None, due_at=None,
                              assignment_type='practice', max_attempts=None):
    subject, target = _resolve_assignment_target(actor, lesson_id, exam_id)

    student_ids = list(dict.fromkeys(sid for sid in student_ids or [] if sid))
    if not student_ids:
        raise ValidationError("At least one student ID is required")

    found = _active_members(actor.tenant_id, ['student']).filter(pk__in=student_ids).count()
    if found != len(student_ids):
        raise ValidationError("One or more student IDs are invalid/inactive or not in this tenant")

    if assignment_type not in ('practice', 'assessment'):
        raise ValidationError(f"Unknown assignment type: {assignment_type}")
    if max_attempts is None:
        max_attempts = 1 if assignment_type == 'assessment' else 3
    if not MIN_ATTEMPTS <= max_attempts <= MAX_ATTEMPTS:
        raise ValidationError(f"maxAttempts must be between {MIN_ATTEMPTS} and {MAX_ATTEMPTS}")

    with transaction.atomic():
        created = []
        for student_id in student_ids:
            enrollment, _ = _materializer.ensure_enrollment(subject, student_id, actor.user_id, actor=actor)
            created.append(Assignment.objects.create(
                tenant_id=actor.tenant_id,
                assignee_student_id=student_id,
                assigned_by_teacher_id=subject.teacher_owner_id,
                lesson=target if lesson_id else None,
                exam=target if exam_id else None,
                assignment_source='manual',
                subject_enrollment=enrollment,
                assignment_type=assignment_type,
                max_attempts=max_attempts,
                due_at=due_at,
            ))

    _audit.record(actor, 'assignment.create', 'assignment_batch', None, {
        'student_count': len(created),
        'lesson_id': lesson_id,
        'exam_id': exam_id,
        'subject_id': subject.pk,
        'teacher_owner_id': subject.teacher_owner_id,
        'assignment_type': assignment_type,
        'max_attempts': max_attempts,
    })
    return created


# ----------------------------------------------------------------------
# Listing
# ----------------------------------------------------------------------

def list_exams(actor):
    exams = Exam.objects.filter(tenant_id=actor.tenant_id, is_deleted=False).select_related('subject')
    if actor.is_admin:
        return list(exams)
    if actor.is_content_manager:
        return list(exams.filter(subject__teacher_owner_id=actor.user_id))
    return list(exams.filter(assignments__assignee_student_id=actor.user_id).distinct())


def get_exam(actor, exam_id):
    """Exam detail. Students only get questions without answer keys."""
    exam = Exam.objects.select_related('subject').filter(pk=exam_id, tenant_id=actor.tenant_id).first()
    if exam is None or exam.is_deleted:
        raise NotFound("Exam not found")

    if actor.is_content_manager and not actor.is_admin and exam.subject.teacher_owner_id != actor.user_id:
        raise PermissionDenied("Cannot access another owner's exams")

    include_answer_key = True
    if actor.is_student:
        assigned = Assignment.objects.filter(
            tenant_id=actor.tenant_id,
            assignee_student_id=actor.user_id,
            exam=exam,
        ).exists()
        if not assigned:
            raise PermissionDenied("Exam is not assigned to this student")
        include_answer_key = False

    schema = load_exam_schema(exam)
    return {
        'id': str(exam.pk),
        'title': exam.title,
        'subjectId': str(exam.subject_id),
        'subject': exam.subject.name,
        'settings': exam.settings_json,
        'normalizedSchemaVersion': exam.normalized_schema_version,
        'questions': [q.to_dict(include_answer_key) for q in schema.questions],
    }


def list_my_assignments(actor):
    return (
        Assignment.objects
        .filter(tenant_id=actor.tenant_id, assignee_student_id=actor.user_id)
        .select_related('lesson__subject', 'exam__subject', 'subject_enrollment')
        .annotate(attempts_used=Count('attempts'))
    )
