import uuid
from django.db import models
from django.db.models import Q
from django.contrib.auth.models import AbstractUser
from django.core.validators import MaxValueValidator, MinValueValidator
from django.utils import timezone


class User(AbstractUser):
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'users'
        indexes = [
            models.Index(fields=['email'], name='users_email_4b85f2_idx'),
        ]


class Tenant(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    TENANT_TYPES = [
        ('institution', 'Institution'),
        ('individual', 'Individual'),
    ]

    name = models.CharField(max_length=255)
    tenant_type = models.CharField(max_length=20, choices=TENANT_TYPES, default='institution')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'tenants'

    def __str__(self):
        return self.name


class Membership(models.Model):
    """A user's role inside one tenant. Users may hold several roles."""
    ROLE_CHOICES = [
        ('platform_admin', 'Platform Admin'),
        ('school_admin', 'School Admin'),
        ('teacher', 'Teacher'),
        ('student', 'Student'),
        ('parent', 'Parent'),
        ('tutor', 'Tutor'),
    ]
    STATUS_CHOICES = [
        ('active', 'Active'),
        ('invited', 'Invited'),
        ('disabled', 'Disabled'),
    ]

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='memberships')
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='memberships')
    role = models.CharField(max_length=20, choices=ROLE_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'memberships'
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'tenant', 'role'],
                name='unique_user_tenant_role',
            )
        ]

    def __str__(self):
        return f"{self.user.username} ({self.role})"


class Subject(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='subjects')
    teacher_owner = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='owned_subjects'
    )
    name = models.CharField(max_length=120)
    name_normalized = models.CharField(max_length=120)
    is_archived = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'subjects'
        ordering = ['is_archived', '-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'teacher_owner', 'name_normalized'],
                name='unique_subject_name_per_owner'
            )
        ]

    def __str__(self):
        return self.name


class SubjectEnrollment(models.Model):
    """
    A student's membership in a subject.

    Rows are never deleted; completing a subject flips the status and keeps
    the enrollment (and its assignments) around. ``auto_assign_future``
    decides whether content published later reaches this student.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    STATUS_CHOICES = [
        ('active', 'Active'),
        ('completed', 'Completed'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='enrollments')
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name='enrollments')
    student = models.ForeignKey(User, on_delete=models.CASCADE, related_name='subject_enrollments')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    auto_assign_future = models.BooleanField(default=True)
    enrolled_by = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='+'
    )
    completed_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'subject_enrollments'
        ordering = ['status', '-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'subject', 'student'],
                name='unique_subject_student_enrollment'
            )
        ]
        indexes = [
            models.Index(fields=['subject', 'status', 'auto_assign_future'], name='subject_enr_subject_5f1c2a_idx'),
        ]

    def __str__(self):
        return f"{self.student.username} in {self.subject.name}"


class Lesson(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='lessons')
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name='lessons')
    title = models.CharField(max_length=255)
    grade_level = models.CharField(max_length=50, blank=True, null=True)
    metadata_json = models.JSONField(default=dict, blank=True)
    uploaded_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='+')
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'lessons'
        ordering = ['-created_at']

    def __str__(self):
        return self.title


class Exam(models.Model):
    """
    An uploaded exam. ``normalized_json`` holds the canonical schema produced
    by the normalizer; grading never looks at the raw upload.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='exams')
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name='exams')
    title = models.CharField(max_length=255)
    subject_name = models.CharField(max_length=120)
    settings_json = models.JSONField(default=dict)
    normalized_json = models.JSONField()
    normalized_schema_version = models.CharField(max_length=10, default='v1')
    uploaded_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='+')
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'exams'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.subject_name} - {self.title}"


class Assignment(models.Model):
    """
    One lesson or exam assigned to one student.

    Subject auto-assignment relies on the two partial unique constraints
    below: re-running it for the same enrollment and content inserts nothing.
    Manual assignments are not covered by them.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    SOURCE_CHOICES = [
        ('manual', 'Manual'),
        ('subject_auto', 'Subject Auto'),
    ]
    TYPE_CHOICES = [
        ('practice', 'Practice'),
        ('assessment', 'Assessment'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='assignments')
    assignee_student = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='assignments'
    )
    assigned_by_teacher = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='issued_assignments'
    )
    lesson = models.ForeignKey(
        Lesson,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='assignments'
    )
    exam = models.ForeignKey(
        Exam,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='assignments'
    )
    assignment_source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default='manual')
    assignment_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='practice')
    max_attempts = models.IntegerField(
        default=3,
        validators=[MinValueValidator(1), MaxValueValidator(20)]
    )
    due_at = models.DateTimeField(null=True, blank=True)
    subject_enrollment = models.ForeignKey(
        SubjectEnrollment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assignments'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'assignments'
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(lesson__isnull=False, exam__isnull=True)
                    | Q(lesson__isnull=True, exam__isnull=False)
                ),
                name='assignment_exactly_one_target'
            ),
            models.UniqueConstraint(
                fields=['subject_enrollment', 'lesson'],
                condition=Q(
                    assignment_source='subject_auto',
                    subject_enrollment__isnull=False,
                    lesson__isnull=False,
                ),
                name='unique_subject_auto_lesson'
            ),
            models.UniqueConstraint(
                fields=['subject_enrollment', 'exam'],
                condition=Q(
                    assignment_source='subject_auto',
                    subject_enrollment__isnull=False,
                    exam__isnull=False,
                ),
                name='unique_subject_auto_exam'
            ),
        ]
        indexes = [
            models.Index(fields=['assignee_student', 'due_at'], name='assignments_assigne_8d0e41_idx'),
        ]

    def __str__(self):
        target = self.exam_id or self.lesson_id
        return f"{self.assignee_student_id} -> {target}"


class Attempt(models.Model):
    """
    One student's try at an assigned exam.

    in_progress -> submitted -> graded | needs_review. Only in_progress
    accepts autosaves, and at most one in_progress row may exist per
    assignment and student.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    STATUS_CHOICES = [
        ('in_progress', 'In Progress'),
        ('submitted', 'Submitted'),
        ('graded', 'Graded'),
        ('needs_review', 'Needs Review'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='attempts')
    assignment = models.ForeignKey(Assignment, on_delete=models.CASCADE, related_name='attempts')
    exam = models.ForeignKey(Exam, on_delete=models.CASCADE, related_name='attempts')
    student = models.ForeignKey(User, on_delete=models.CASCADE, related_name='attempts')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='in_progress')
    score_percent = models.IntegerField(null=True, blank=True)
    started_at = models.DateTimeField(default=timezone.now)
    submitted_at = models.DateTimeField(null=True, blank=True)
    grading_summary = models.JSONField(null=True, blank=True)

    class Meta:
        db_table = 'attempts'
        ordering = ['-started_at']
        constraints = [
            models.UniqueConstraint(
                fields=['assignment', 'student'],
                condition=Q(status='in_progress'),
                name='unique_in_progress_attempt'
            )
        ]
        indexes = [
            models.Index(fields=['assignment', 'student'], name='attempts_assignm_3c7b90_idx'),
            models.Index(fields=['status'], name='attempts_status_6a1f0e_idx'),
        ]

    def __str__(self):
        return f"{self.student_id} - {self.exam_id} ({self.status})"


class Response(models.Model):
    """
    One answer to one question. ``answer_json`` is written by autosave,
    ``grading_json`` by submit.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    attempt = models.ForeignKey(Attempt, on_delete=models.CASCADE, related_name='responses')
    question_id = models.CharField(max_length=120)
    answer_json = models.JSONField(null=True, blank=True)
    grading_json = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'responses'
        constraints = [
            models.UniqueConstraint(
                fields=['attempt', 'question_id'],
                name='unique_attempt_question_response'
            )
        ]

    def __str__(self):
        return f"{self.question_id} in {self.attempt_id}"
