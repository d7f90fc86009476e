# proctor_platform/exams/availability.py
from django.utils import timezone

UPCOMING = 'upcoming'
AVAILABLE = 'available'
IN_PROGRESS = 'in_progress'
COMPLETED = 'completed'
BLOCKED = 'blocked'
CLOSED = 'closed'

ACTIVE = (AVAILABLE, IN_PROGRESS)


def availability_status(exam, session=None, now=None):
    """Where an exam stands for one student, given their session (if any)."""
    now = now or timezone.now()
    if session is not None:
        if session.status == 'blocked':
            return BLOCKED
        if session.is_locked or session.status in ('submitted', 'auto_submitted'):
            return COMPLETED
        return IN_PROGRESS
    if now < exam.open_date:
        return UPCOMING
    if now > exam.close_date:
        return CLOSED
    return AVAILABLE
