# assessments/signals.py
import logging

from django.dispatch import Signal

logger = logging.getLogger(__name__)

# sender=ExamSession class; kwargs: session, count, signal_name, at
warning_issued = Signal()

# sender=ExamSession class; kwargs: session, status, actor
session_locked = Signal()

# sender=ExamResult class; kwargs: result, grader
result_finalized = Signal()


def notify(signal, sender, **kwargs):
    """Send after the state change is committed; a failing receiver is logged, not raised."""
    for receiver, response in signal.send_robust(sender=sender, **kwargs):
        if isinstance(response, Exception):
            logger.error("Signal receiver %r failed", receiver, exc_info=response)
