from django.urls import path
from .views import (
    SubjectListCreateView,
    SubjectStudentsView,
    SubjectStudentDetailView,
    LessonPublishView,
    ExamUploadView,
    ExamListView,
    ExamDetailView,
    AssignmentCreateView,
    MyAssignmentsView,
    AttemptCreateView,
    AttemptResponsesView,
    AttemptSubmitView,
    AttemptDetailView,
)

urlpatterns = [
    # Subjects
    path('subjects/', SubjectListCreateView.as_view(), name='subject-list'),
    path('subjects/<uuid:subject_id>/students/', SubjectStudentsView.as_view(), name='subject-students'),
    path('subjects/<uuid:subject_id>/students/<int:student_id>/', SubjectStudentDetailView.as_view(),
         name='subject-student-detail'),
    path('subjects/<uuid:subject_id>/lessons/', LessonPublishView.as_view(), name='subject-lessons'),
    path('subjects/<uuid:subject_id>/exams/', ExamUploadView.as_view(), name='subject-exams'),

    # Exams
    path('exams/', ExamListView.as_view(), name='exam-list'),
    path('exams/<uuid:pk>/', ExamDetailView.as_view(), name='exam-detail'),

    # Assignments
    path('assignments/', AssignmentCreateView.as_view(), name='assignment-create'),
    path('assignments/mine/', MyAssignmentsView.as_view(), name='assignment-mine'),

    # Attempts
    path('attempts/', AttemptCreateView.as_view(), name='attempt-create'),
    path('attempts/<uuid:pk>/', AttemptDetailView.as_view(), name='attempt-detail'),
    path('attempts/<uuid:pk>/responses/', AttemptResponsesView.as_view(), name='attempt-responses'),
    path('attempts/<uuid:pk>/submit/', AttemptSubmitView.as_view(), name='attempt-submit'),
]
