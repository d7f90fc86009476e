# cores/receivers.py
"""Audit trail for the exam session lifecycle."""
from django.dispatch import receiver

from assessments.signals import result_finalized, session_locked, warning_issued
from .models import AuditLog


@receiver(warning_issued, dispatch_uid='audit_warning_issued')
def log_warning(sender, session, count, signal_name, at, **kwargs):
    AuditLog.objects.create(
        actor_id=session.student_id,
        action='WARNING',
        target_model='ExamSession',
        target_object_id=str(session.id),
        details=f"Focus lost ({signal_name}): warning {count} of {session.exam.max_warnings}",
    )


@receiver(session_locked, dispatch_uid='audit_session_locked')
def log_session_locked(sender, session, status, actor=None, **kwargs):
    if status == 'blocked':
        action, details = 'BLOCK', "Session blocked by staff"
    else:
        action, details = 'SUBMIT', f"Session locked as {status}"
    AuditLog.objects.create(
        actor=actor,
        action=action,
        target_model='ExamSession',
        target_object_id=str(session.id),
        details=details,
    )


@receiver(result_finalized, dispatch_uid='audit_result_finalized')
def log_result_finalized(sender, result, grader=None, **kwargs):
    AuditLog.objects.create(
        actor=grader,
        action='GRADE',
        target_model='ExamResult',
        target_object_id=str(result.id),
        details=f"Graded {result.total_points}/{result.max_points} ({result.percentage}%)",
    )
