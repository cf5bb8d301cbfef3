from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import (
    Assignment,
    Attempt,
    Exam,
    Lesson,
    Membership,
    Response,
    Subject,
    SubjectEnrollment,
    Tenant,
    User,
)

admin.site.register(User, UserAdmin)


class MembershipInline(admin.TabularInline):
    model = Membership
    extra = 0


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ('name', 'tenant_type', 'created_at')
    inlines = [MembershipInline]


@admin.register(Subject)
class SubjectAdmin(admin.ModelAdmin):
    list_display = ('name', 'tenant', 'teacher_owner', 'is_archived')
    list_filter = ('is_archived',)
    search_fields = ('name',)


@admin.register(SubjectEnrollment)
class SubjectEnrollmentAdmin(admin.ModelAdmin):
    list_display = ('subject', 'student', 'status', 'auto_assign_future', 'created_at')
    list_filter = ('status', 'auto_assign_future')


@admin.register(Lesson)
class LessonAdmin(admin.ModelAdmin):
    list_display = ('title', 'subject', 'grade_level', 'is_deleted')


@admin.register(Exam)
class ExamAdmin(admin.ModelAdmin):
    list_display = ('title', 'subject', 'normalized_schema_version', 'is_deleted', 'created_at')
    readonly_fields = ('normalized_json',)


@admin.register(Assignment)
class AssignmentAdmin(admin.ModelAdmin):
    list_display = ('assignee_student', 'lesson', 'exam', 'assignment_source', 'assignment_type', 'max_attempts')
    list_filter = ('assignment_source', 'assignment_type')


class ResponseInline(admin.TabularInline):
    model = Response
    extra = 0
    readonly_fields = ('question_id', 'answer_json', 'grading_json')


@admin.register(Attempt)
class AttemptAdmin(admin.ModelAdmin):
    list_display = ('student', 'exam', 'status', 'score_percent', 'started_at', 'submitted_at')
    list_filter = ('status',)
    inlines = [ResponseInline]
