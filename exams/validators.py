# proctor_platform/exams/validators.py
"""
Authoring-time checks. Everything here runs before any write and raises
Django's ValidationError, which DRF serializers report as a 400.
"""
from django.core.exceptions import ValidationError

OPTION_TYPES = ('mcq', 'true_false')


def validate_exam_window(open_date, close_date):
    if open_date and close_date and close_date <= open_date:
        raise ValidationError({'close_date': 'Close date must be after the open date.'})


def validate_duration(value):
    if value is None or value <= 0:
        raise ValidationError('Duration must be a positive number of minutes.')


def validate_points(value):
    if value is None or value <= 0:
        raise ValidationError('Points must be greater than zero.')


def validate_question_options(question_type, options):
    """
    `options` is a list of dicts with at least `text` and `is_correct`.
    Objective questions need at least two options and one marked correct.
    """
    if question_type not in OPTION_TYPES:
        if options:
            raise ValidationError({'options': 'Only multiple choice and true/false questions take options.'})
        return

    if len(options) < 2:
        raise ValidationError({'options': 'Provide at least two options.'})
    if any(not (opt.get('text') or '').strip() for opt in options):
        raise ValidationError({'options': 'Option text cannot be empty.'})
    if not any(opt.get('is_correct') for opt in options):
        raise ValidationError({'options': 'Mark one option as correct.'})
