"""Shared builders for coursework tests."""
from django.contrib.auth import get_user_model

from apps.coursework.identity import resolve_actor
from apps.coursework.models import Membership, Subject, Tenant

User = get_user_model()


def two_choice_exam(title='Arithmetic Quiz'):
    return {
        'examMetadata': {'title': title, 'subject': 'Maths'},
        'questions': [
            {'id': 'q1', 'type': 'mcq', 'prompt': 'What is 2+2?', 'options': ['3', '4'], 'correctAnswer': '4'},
            {'id': 'q2', 'type': 'mcq', 'prompt': 'What is 3+3?', 'options': ['6', '7'], 'correctAnswer': '6'},
        ],
    }


def mixed_exam(title='Biology Check'):
    return {
        'title': title,
        'questions': [
            {'id': 'organelle', 'type': 'mcq', 'prompt': 'Powerhouse of the cell?',
             'options': ['Nucleus', 'Mitochondria'], 'correctAnswer': 'Mitochondria'},
            {'id': 'dna', 'type': 'tf', 'prompt': 'DNA is a protein.', 'correctAnswer': False},
            {'id': 'pigment', 'type': 'short', 'prompt': 'Name the green pigment.', 'rubric': 'Chlorophyll'},
        ],
    }


def create_member(tenant, username, role):
    user = User.objects.create_user(username=username, email=f'{username}@test.com', password='pass12345')
    Membership.objects.create(user=user, tenant=tenant, role=role)
    return user


class CourseworkFixtureMixin:
    """
    One tenant with a teacher, a second teacher, an admin and two students,
    plus a subject owned by the first teacher.
    """

    def setUp(self):
        super().setUp()
        self.tenant = Tenant.objects.create(name='Test School')
        self.teacher = create_member(self.tenant, 'teacher1', 'teacher')
        self.other_teacher = create_member(self.tenant, 'teacher2', 'teacher')
        self.admin = create_member(self.tenant, 'admin1', 'school_admin')
        self.student = create_member(self.tenant, 'student1', 'student')
        self.other_student = create_member(self.tenant, 'student2', 'student')

        self.teacher_actor = self.actor(self.teacher)
        self.admin_actor = self.actor(self.admin)
        self.student_actor = self.actor(self.student)
        self.other_student_actor = self.actor(self.other_student)

        self.subject = Subject.objects.create(
            tenant=self.tenant,
            teacher_owner=self.teacher,
            name='Maths',
            name_normalized='maths',
        )

    def actor(self, user, role=None):
        return resolve_actor(user, self.tenant.pk, role)
