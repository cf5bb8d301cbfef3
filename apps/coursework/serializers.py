from rest_framework import serializers

from .content_service import MAX_ATTEMPTS, MIN_ATTEMPTS
from .models import Assignment, Attempt, Exam, Lesson, Response, Subject, SubjectEnrollment


# ----------------------------------------------------------------------
# Request payloads. Plain serializers: validation only, services persist.
# ----------------------------------------------------------------------

class SubjectCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=120)
    teacherOwnerId = serializers.IntegerField(required=False)


class EnrollStudentSerializer(serializers.Serializer):
    studentId = serializers.IntegerField()
    autoAssignFuture = serializers.BooleanField(required=False)


class EnrollmentUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=SubjectEnrollment.STATUS_CHOICES, required=False)
    autoAssignFuture = serializers.BooleanField(required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide status or autoAssignFuture.")
        return attrs


class LessonCreateSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=255)
    gradeLevel = serializers.CharField(max_length=50, required=False, allow_null=True, allow_blank=True)
    metadata = serializers.JSONField(required=False)


class AssignmentCreateSerializer(serializers.Serializer):
    """
    Manual assignment of one lesson or one exam to a batch of students.
    The service re-checks the target; this only rejects obviously bad input.
    """
    studentIds = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)
    lessonId = serializers.UUIDField(required=False, allow_null=True)
    examId = serializers.UUIDField(required=False, allow_null=True)
    dueAt = serializers.DateTimeField(required=False, allow_null=True)
    assignmentType = serializers.ChoiceField(choices=Assignment.TYPE_CHOICES, default='practice')
    maxAttempts = serializers.IntegerField(min_value=MIN_ATTEMPTS, max_value=MAX_ATTEMPTS, required=False)

    def validate(self, attrs):
        if bool(attrs.get('lessonId')) == bool(attrs.get('examId')):
            raise serializers.ValidationError("Assignment must reference exactly one of lessonId or examId")
        return attrs


class AttemptCreateSerializer(serializers.Serializer):
    assignmentId = serializers.UUIDField()


class ResponseItemSerializer(serializers.Serializer):
    """``answer`` must be present, but may be null."""
    questionId = serializers.CharField(max_length=120)
    answer = serializers.JSONField(allow_null=True)


class SaveResponsesSerializer(serializers.Serializer):
    responses = ResponseItemSerializer(many=True)


# ----------------------------------------------------------------------
# Read models
# ----------------------------------------------------------------------

class SubjectSerializer(serializers.ModelSerializer):
    teacherOwnerId = serializers.IntegerField(source='teacher_owner_id', read_only=True)
    isArchived = serializers.BooleanField(source='is_archived', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    counts = serializers.SerializerMethodField()

    class Meta:
        model = Subject
        fields = ['id', 'name', 'teacherOwnerId', 'isArchived', 'counts', 'createdAt']

    def get_counts(self, obj):
        """Only listed subjects carry the annotated counts."""
        return {
            'lessons': getattr(obj, 'lesson_count', 0),
            'exams': getattr(obj, 'exam_count', 0),
            'enrollments': getattr(obj, 'enrollment_count', 0),
        }


class EnrollmentSerializer(serializers.ModelSerializer):
    subjectId = serializers.UUIDField(source='subject_id', read_only=True)
    studentId = serializers.IntegerField(source='student_id', read_only=True)
    studentUsername = serializers.CharField(source='student.username', read_only=True)
    autoAssignFuture = serializers.BooleanField(source='auto_assign_future', read_only=True)
    completedAt = serializers.DateTimeField(source='completed_at', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = SubjectEnrollment
        fields = ['id', 'subjectId', 'studentId', 'studentUsername', 'status',
                  'autoAssignFuture', 'completedAt', 'createdAt']


class LessonSerializer(serializers.ModelSerializer):
    subjectId = serializers.UUIDField(source='subject_id', read_only=True)
    gradeLevel = serializers.CharField(source='grade_level', read_only=True)
    metadata = serializers.JSONField(source='metadata_json', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = Lesson
        fields = ['id', 'subjectId', 'title', 'gradeLevel', 'metadata', 'createdAt']


class ExamListSerializer(serializers.ModelSerializer):
    """Exam summary; never includes questions."""
    subjectId = serializers.UUIDField(source='subject_id', read_only=True)
    subject = serializers.CharField(source='subject.name', read_only=True)
    questionCount = serializers.SerializerMethodField()
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = Exam
        fields = ['id', 'title', 'subjectId', 'subject', 'questionCount', 'createdAt']

    def get_questionCount(self, obj):
        questions = (obj.normalized_json or {}).get('questions')
        return len(questions) if isinstance(questions, list) else 0


class AssignmentSerializer(serializers.ModelSerializer):
    assigneeStudentId = serializers.IntegerField(source='assignee_student_id', read_only=True)
    assignedByTeacherId = serializers.IntegerField(source='assigned_by_teacher_id', read_only=True)
    lessonId = serializers.UUIDField(source='lesson_id', read_only=True)
    examId = serializers.UUIDField(source='exam_id', read_only=True)
    assignmentSource = serializers.CharField(source='assignment_source', read_only=True)
    assignmentType = serializers.CharField(source='assignment_type', read_only=True)
    maxAttempts = serializers.IntegerField(source='max_attempts', read_only=True)
    dueAt = serializers.DateTimeField(source='due_at', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = Assignment
        fields = ['id', 'assigneeStudentId', 'assignedByTeacherId', 'lessonId', 'examId',
                  'assignmentSource', 'assignmentType', 'maxAttempts', 'dueAt', 'createdAt']


class MyAssignmentSerializer(AssignmentSerializer):
    """
    Student's view of an assignment. Expects the queryset from
    ``content_service.list_my_assignments`` (annotated ``attempts_used``).
    """
    attemptsUsed = serializers.IntegerField(source='attempts_used', read_only=True)
    subjectEnrollmentStatus = serializers.CharField(source='subject_enrollment.status', read_only=True)
    subject = serializers.SerializerMethodField()
    lesson = serializers.SerializerMethodField()
    exam = serializers.SerializerMethodField()

    class Meta(AssignmentSerializer.Meta):
        fields = AssignmentSerializer.Meta.fields + [
            'attemptsUsed', 'subjectEnrollmentStatus', 'subject', 'lesson', 'exam',
        ]

    def get_subject(self, obj):
        target = obj.lesson or obj.exam
        if target is None:
            return None
        return {'id': str(target.subject_id), 'name': target.subject.name}

    def get_lesson(self, obj):
        if obj.lesson is None:
            return None
        return {'id': str(obj.lesson.pk), 'title': obj.lesson.title, 'gradeLevel': obj.lesson.grade_level}

    def get_exam(self, obj):
        if obj.exam is None:
            return None
        return {'id': str(obj.exam.pk), 'title': obj.exam.title}


class AttemptSerializer(serializers.ModelSerializer):
    assignmentId = serializers.UUIDField(source='assignment_id', read_only=True)
    examId = serializers.UUIDField(source='exam_id', read_only=True)
    studentId = serializers.IntegerField(source='student_id', read_only=True)
    scorePercent = serializers.IntegerField(source='score_percent', read_only=True)
    startedAt = serializers.DateTimeField(source='started_at', read_only=True)
    submittedAt = serializers.DateTimeField(source='submitted_at', read_only=True)

    class Meta:
        model = Attempt
        fields = ['id', 'assignmentId', 'examId', 'studentId', 'status',
                  'scorePercent', 'startedAt', 'submittedAt']


class ResponseDetailSerializer(serializers.ModelSerializer):
    questionId = serializers.CharField(source='question_id', read_only=True)
    answer = serializers.JSONField(source='answer_json', read_only=True)
    grading = serializers.JSONField(source='grading_json', read_only=True)

    class Meta:
        model = Response
        fields = ['questionId', 'answer', 'grading']


class AttemptResultSerializer(AttemptSerializer):
    """
    Attempt with per-question answers and grading.
    Prefetch ``responses`` in the view to avoid one query per attempt.
    """
    gradingSummary = serializers.JSONField(source='grading_summary', read_only=True)
    responses = ResponseDetailSerializer(many=True, read_only=True)

    class Meta(AttemptSerializer.Meta):
        fields = AttemptSerializer.Meta.fields + ['gradingSummary', 'responses']
