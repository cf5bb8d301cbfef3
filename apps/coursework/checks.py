from django.core.checks import Error, register
from django.db import connections

PARTIAL_UNIQUE_CONSTRAINTS = (
    'unique_subject_auto_lesson',
    'unique_subject_auto_exam',
    'unique_in_progress_attempt',
)


@register()
def check_partial_unique_support(app_configs=None, **kwargs):
    """Auto-assignment idempotency and the in-progress rule need partial unique indexes."""
    errors = []
    for alias in connections:
        connection = connections[alias]
        if not connection.features.supports_partial_indexes:
            errors.append(Error(
                f"Database '{alias}' ({connection.vendor}) cannot enforce conditional unique constraints",
                hint='Use PostgreSQL or SQLite. Required: ' + ', '.join(PARTIAL_UNIQUE_CONSTRAINTS),
                id='coursework.E001',
            ))
    return errors
