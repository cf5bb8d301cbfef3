"""
Domain errors.

Services raise DRF exceptions directly so the same code works from views,
management commands and tests; DRF's handler turns them into responses.
"""
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError


class Conflict(APIException):
    """Request is valid but clashes with the current state (quota, double submit)."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Request conflicts with the current state of the resource.'
    default_code = 'conflict'


class ExamPayloadInvalid(ValidationError):
    """Uploaded exam failed normalization. Carries every collected error."""

    def __init__(self, errors, warnings=None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__({'errors': self.errors, 'warnings': self.warnings})


class GradingUnavailable(Exception):
    """
    The text grader could not produce a usable result.

    Never leaves the grading pipeline: the question is marked for review.
    """
