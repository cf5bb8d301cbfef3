from rest_framework import permissions

from .identity import actor_from_request


class IsTenantMember(permissions.BasePermission):
    """
    Resolves ``request.actor`` from the X-Tenant-Id header.

    Every coursework endpoint is tenant-scoped, so this runs before any
    role check.
    """

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        actor_from_request(request)
        return True


class IsContentManagerOrAdmin(permissions.BasePermission):
    message = 'Only teachers, tutors, parents or administrators can do this.'

    def has_permission(self, request, view):
        actor = actor_from_request(request)
        return actor.is_content_manager or actor.is_admin


class IsStudent(permissions.BasePermission):
    message = 'Only students can do this.'

    def has_permission(self, request, view):
        return actor_from_request(request).is_student
