"""
Caller identity.

Authentication happens upstream (token auth). What this app needs on top is
the tenant the request acts in and the role the caller acts as, resolved
from an active Membership.
"""
import uuid
from dataclasses import dataclass

from rest_framework.exceptions import PermissionDenied

from .models import Membership

TENANT_HEADER = 'HTTP_X_TENANT_ID'
ROLE_HEADER = 'HTTP_X_ACTIVE_ROLE'

CONTENT_MANAGER_ROLES = frozenset({'teacher', 'parent', 'tutor'})
ADMIN_ROLES = frozenset({'school_admin', 'platform_admin'})

# Used to pick a role when the caller holds several and sends no X-Active-Role.
ROLE_PRIORITY = ['platform_admin', 'school_admin', 'teacher', 'tutor', 'parent', 'student']


@dataclass(frozen=True)
class Actor:
    user_id: int
    tenant_id: uuid.UUID
    active_role: str
    is_platform_admin: bool = False

    @property
    def is_content_manager(self):
        return self.active_role in CONTENT_MANAGER_ROLES

    @property
    def is_admin(self):
        return self.active_role in ADMIN_ROLES or self.is_platform_admin

    @property
    def is_student(self):
        return self.active_role == 'student'


def resolve_actor(user, tenant_id, role=None):
    """Build an Actor from an active membership, or raise PermissionDenied."""
    try:
        tenant_uuid = uuid.UUID(str(tenant_id))
    except (TypeError, ValueError):
        raise PermissionDenied("A valid X-Tenant-Id header is required")

    memberships = Membership.objects.filter(
        user_id=user.pk,
        tenant_id=tenant_uuid,
        status='active',
        user__is_active=True,
    )
    roles = set(memberships.values_list('role', flat=True))
    if not roles:
        raise PermissionDenied("No active membership in this tenant")

    if role:
        if role not in roles:
            raise PermissionDenied(f"Role {role} is not held in this tenant")
        active_role = role
    else:
        active_role = next(r for r in ROLE_PRIORITY if r in roles)

    return Actor(
        user_id=user.pk,
        tenant_id=tenant_uuid,
        active_role=active_role,
        is_platform_admin='platform_admin' in roles,
    )


def actor_from_request(request):
    actor = getattr(request, 'actor', None)
    if actor is None:
        actor = resolve_actor(
            request.user,
            request.META.get(TENANT_HEADER),
            request.META.get(ROLE_HEADER),
        )
        request.actor = actor
    return actor
