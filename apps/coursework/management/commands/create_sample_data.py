from django.core.management.base import BaseCommand
from django.contrib.auth import get_user_model
from django.db import transaction
from rest_framework.authtoken.models import Token

from apps.coursework import content_service
from apps.coursework.identity import resolve_actor
from apps.coursework.models import Membership, Subject, Tenant

User = get_user_model()

BIOLOGY_EXAM = {
    'examMetadata': {'title': 'Biology Midterm', 'subject': 'Biology'},
    'settings': {'timeLimitMinutes': 45, 'passingScorePercent': 60},
    'questions': [
        {
            'id': 'cell-powerhouse',
            'type': 'mcq',
            'prompt': 'What is the powerhouse of the cell?',
            'options': ['Nucleus', 'Mitochondria', 'Ribosome', 'Golgi apparatus'],
            'correctAnswer': 'Mitochondria',
        },
        {
            'id': 'dna-replication',
            'type': 'tf',
            'questionText': 'DNA replication is semi-conservative.',
            'correctAnswer': 'true',
        },
        {
            'type': 'short',
            'prompt': 'Name the pigment that absorbs light during photosynthesis.',
            'rubric': 'Chlorophyll',
        },
        {
            'type': 'long',
            'prompt': 'Explain the process of photosynthesis and its importance to life on Earth.',
            'rubric': 'Mention light energy, chloroplasts, carbon dioxide, water, glucose and oxygen, '
                      'and that photosynthesis forms the base of most food chains.',
            'points': 4,
        },
    ],
}


class Command(BaseCommand):
    help = 'Creates a sample tenant with a teacher, students, a subject, a lesson and an exam'

    def _user(self, username, first_name, last_name):
        user, created = User.objects.get_or_create(
            username=username,
            defaults={
                'email': f'{username}@test.com',
                'first_name': first_name,
                'last_name': last_name,
            },
        )
        if created:
            user.set_password('testpass123')
            user.save()
            self.stdout.write(self.style.SUCCESS(f'Created user: {username}'))
        return user

    @transaction.atomic
    def handle(self, *args, **kwargs):
        self.stdout.write('Creating sample data...')

        tenant, _ = Tenant.objects.get_or_create(name='Sample Academy', defaults={'tenant_type': 'institution'})
        teacher = self._user('teacher1', 'Grace', 'Hopper')
        students = [
            self._user('student1', 'Alice', 'Johnson'),
            self._user('student2', 'Bob', 'Smith'),
        ]

        Membership.objects.get_or_create(user=teacher, tenant=tenant, role='teacher')
        for student in students:
            Membership.objects.get_or_create(user=student, tenant=tenant, role='student')

        actor = resolve_actor(teacher, tenant.pk, 'teacher')

        subject = Subject.objects.filter(
            tenant=tenant, teacher_owner=teacher, name_normalized='biology'
        ).first()
        if subject is None:
            subject = content_service.create_subject(actor, 'Biology')
        self.stdout.write(self.style.SUCCESS(f'Subject ready: {subject.name}'))

        for student in students:
            content_service.enroll_student(actor, subject.pk, student.pk)
        self.stdout.write(self.style.SUCCESS(f'Enrolled {len(students)} students'))

        if not subject.lessons.exists():
            content_service.publish_lesson(actor, subject.pk, 'Cell Structure', grade_level='10')
            self.stdout.write(self.style.SUCCESS('Published lesson: Cell Structure'))

        if not subject.exams.exists():
            report = content_service.upload_exam(actor, subject.pk, BIOLOGY_EXAM)
            if not report['valid']:
                self.stderr.write(self.style.ERROR(f"Sample exam rejected: {report['errors']}"))
                return
            preview = report['normalizedPreview']
            self.stdout.write(self.style.SUCCESS(
                f"Uploaded exam: {preview['title']} ({preview['questionCount']} questions, "
                f"{preview['autoAssigned']} assignments)"
            ))

        for user in [teacher] + students:
            token, _ = Token.objects.get_or_create(user=user)
            self.stdout.write(f'{user.username}: token={token.key}')

        self.stdout.write(self.style.SUCCESS('Sample data created successfully!'))
        self.stdout.write(f'Send X-Tenant-Id: {tenant.pk} with every request')
