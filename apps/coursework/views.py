import json
import logging

from drf_spectacular.utils import extend_schema
from rest_framework import generics, status
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from . import content_service
from .attempt_service import AttemptService
from .identity import actor_from_request
from .permissions import IsContentManagerOrAdmin, IsStudent, IsTenantMember
from .serializers import (
    AssignmentCreateSerializer,
    AssignmentSerializer,
    AttemptCreateSerializer,
    AttemptResultSerializer,
    AttemptSerializer,
    EnrollmentSerializer,
    EnrollmentUpdateSerializer,
    EnrollStudentSerializer,
    ExamListSerializer,
    LessonCreateSerializer,
    LessonSerializer,
    MyAssignmentSerializer,
    SaveResponsesSerializer,
    SubjectCreateSerializer,
    SubjectSerializer,
)

logger = logging.getLogger(__name__)


def _assignment_counts(result):
    return {
        'lessonsCreated': result.lesson_created if result else 0,
        'examsCreated': result.exam_created if result else 0,
    }


# ----------------------------------------------------------------------
# Subjects and enrollments
# ----------------------------------------------------------------------

@extend_schema(tags=['Subjects'])
class SubjectListCreateView(APIView):
    permission_classes = [IsAuthenticated, IsTenantMember, IsContentManagerOrAdmin]

    def get(self, request):
        include_archived = request.query_params.get('includeArchived') == 'true'
        subjects = content_service.list_subjects(actor_from_request(request), include_archived)
        return Response(SubjectSerializer(subjects, many=True).data)

    @extend_schema(request=SubjectCreateSerializer, responses={201: SubjectSerializer})
    def post(self, request):
        serializer = SubjectCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        subject = content_service.create_subject(
            actor_from_request(request),
            serializer.validated_data['name'],
            serializer.validated_data.get('teacherOwnerId'),
        )
        return Response(SubjectSerializer(subject).data, status=status.HTTP_201_CREATED)


@extend_schema(tags=['Subjects'])
class SubjectStudentsView(APIView):
    """Roster of a subject; POST enrolls (or re-activates) a student."""
    permission_classes = [IsAuthenticated, IsTenantMember, IsContentManagerOrAdmin]

    def get(self, request, subject_id):
        enrollments = content_service.list_subject_students(actor_from_request(request), subject_id)
        return Response(EnrollmentSerializer(enrollments, many=True).data)

    @extend_schema(request=EnrollStudentSerializer)
    def post(self, request, subject_id):
        serializer = EnrollStudentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        enrollment, result = content_service.enroll_student(
            actor_from_request(request),
            subject_id,
            serializer.validated_data['studentId'],
            serializer.validated_data.get('autoAssignFuture'),
        )
        return Response({
            'enrollment': EnrollmentSerializer(enrollment).data,
            'assignments': _assignment_counts(result),
        }, status=status.HTTP_201_CREATED)


@extend_schema(tags=['Subjects'])
class SubjectStudentDetailView(APIView):
    permission_classes = [IsAuthenticated, IsTenantMember, IsContentManagerOrAdmin]

    @extend_schema(request=EnrollmentUpdateSerializer)
    def patch(self, request, subject_id, student_id):
        serializer = EnrollmentUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        enrollment, result = content_service.update_enrollment(
            actor_from_request(request),
            subject_id,
            student_id,
            status=serializer.validated_data.get('status'),
            auto_assign_future=serializer.validated_data.get('autoAssignFuture'),
        )
        return Response({
            'enrollment': EnrollmentSerializer(enrollment).data,
            'assignments': _assignment_counts(result),
        })


# ----------------------------------------------------------------------
# Content
# ----------------------------------------------------------------------

@extend_schema(tags=['Subjects'])
class LessonPublishView(APIView):
    permission_classes = [IsAuthenticated, IsTenantMember, IsContentManagerOrAdmin]

    @extend_schema(request=LessonCreateSerializer, responses={201: LessonSerializer})
    def post(self, request, subject_id):
        serializer = LessonCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        lesson, result = content_service.publish_lesson(
            actor_from_request(request),
            subject_id,
            serializer.validated_data['title'],
            grade_level=serializer.validated_data.get('gradeLevel'),
            metadata=serializer.validated_data.get('metadata'),
        )
        data = LessonSerializer(lesson).data
        data['autoAssigned'] = result.created
        return Response(data, status=status.HTTP_201_CREATED)


@extend_schema(tags=['Exams'])
class ExamUploadView(APIView):
    """
    Upload an exam as a JSON body or as a ``file`` form field.

    Always answers with the validation report; a rejected exam is a 400 with
    ``valid: false`` and nothing stored.
    """
    permission_classes = [IsAuthenticated, IsTenantMember, IsContentManagerOrAdmin]
    parser_classes = [JSONParser, MultiPartParser, FormParser]

    def post(self, request, subject_id):
        upload = request.FILES.get('file')
        if upload is not None:
            try:
                payload = json.loads(upload.read().decode('utf-8'))
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.info("Rejected exam upload for subject %s: file is not valid JSON", subject_id)
                return Response({
                    'valid': False,
                    'errors': ['Malformed JSON payload'],
                    'warnings': [],
                    'normalizedPreview': None,
                }, status=status.HTTP_400_BAD_REQUEST)
        else:
            payload = request.data

        report = content_service.upload_exam(actor_from_request(request), subject_id, payload)
        code = status.HTTP_201_CREATED if report['valid'] else status.HTTP_400_BAD_REQUEST
        return Response(report, status=code)


@extend_schema(tags=['Exams'])
class ExamListView(generics.ListAPIView):
    permission_classes = [IsAuthenticated, IsTenantMember]
    serializer_class = ExamListSerializer
    pagination_class = None

    def get_queryset(self):
        return content_service.list_exams(actor_from_request(self.request))


@extend_schema(tags=['Exams'])
class ExamDetailView(APIView):
    """Students get the questions without correct answers or rubrics."""
    permission_classes = [IsAuthenticated, IsTenantMember]

    def get(self, request, pk):
        return Response(content_service.get_exam(actor_from_request(request), pk))


# ----------------------------------------------------------------------
# Assignments
# ----------------------------------------------------------------------

@extend_schema(tags=['Assignments'])
class AssignmentCreateView(APIView):
    permission_classes = [IsAuthenticated, IsTenantMember, IsContentManagerOrAdmin]

    @extend_schema(request=AssignmentCreateSerializer, responses={201: AssignmentSerializer(many=True)})
    def post(self, request):
        serializer = AssignmentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        assignments = content_service.create_manual_assignments(
            actor_from_request(request),
            data['studentIds'],
            lesson_id=data.get('lessonId'),
            exam_id=data.get('examId'),
            due_at=data.get('dueAt'),
            assignment_type=data['assignmentType'],
            max_attempts=data.get('maxAttempts'),
        )
        return Response(AssignmentSerializer(assignments, many=True).data, status=status.HTTP_201_CREATED)


@extend_schema(tags=['Assignments'])
class MyAssignmentsView(generics.ListAPIView):
    """
    The calling student's assignments with attempt usage.

    Security: filtered by the resolved actor, never by a query parameter.
    """
    permission_classes = [IsAuthenticated, IsTenantMember, IsStudent]
    serializer_class = MyAssignmentSerializer
    pagination_class = None

    def get_queryset(self):
        return content_service.list_my_assignments(actor_from_request(self.request))


# ----------------------------------------------------------------------
# Attempts
# ----------------------------------------------------------------------

@extend_schema(tags=['Attempts'])
class AttemptCreateView(APIView):
    permission_classes = [IsAuthenticated, IsTenantMember, IsStudent]

    @extend_schema(request=AttemptCreateSerializer, responses={201: AttemptSerializer})
    def post(self, request):
        serializer = AttemptCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        attempt = AttemptService().create_attempt(
            actor_from_request(request),
            serializer.validated_data['assignmentId'],
        )
        return Response(AttemptSerializer(attempt).data, status=status.HTTP_201_CREATED)


@extend_schema(tags=['Attempts'])
class AttemptResponsesView(APIView):
    """Autosave. Only in-progress attempts accept answers."""
    permission_classes = [IsAuthenticated, IsTenantMember, IsStudent]

    @extend_schema(request=SaveResponsesSerializer)
    def put(self, request, pk):
        serializer = SaveResponsesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = AttemptService().save_responses(
            actor_from_request(request),
            pk,
            serializer.validated_data['responses'],
        )
        return Response(result)


@extend_schema(tags=['Attempts'])
class AttemptSubmitView(APIView):
    """
    Submit and grade synchronously. Text-grading failures never fail the
    request; the attempt comes back as ``needs_review`` instead.
    """
    permission_classes = [IsAuthenticated, IsTenantMember, IsStudent]

    @extend_schema(request=None, responses={200: AttemptResultSerializer})
    def post(self, request, pk):
        service = AttemptService()
        actor = actor_from_request(request)
        service.submit_attempt(actor, pk)
        attempt = service.get_attempt_result(actor, pk)
        return Response(AttemptResultSerializer(attempt).data)


@extend_schema(tags=['Attempts'])
class AttemptDetailView(APIView):
    permission_classes = [IsAuthenticated, IsTenantMember]

    @extend_schema(responses={200: AttemptResultSerializer})
    def get(self, request, pk):
        attempt = AttemptService().get_attempt_result(actor_from_request(request), pk)
        return Response(AttemptResultSerializer(attempt).data)
