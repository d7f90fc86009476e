# assessments/store.py
"""
The engine's only door into the database. Every method is a single
CRUD step over the models; errors come out as Django's DatabaseError
(or DoesNotExist) and are mapped by the caller.
"""
from django.db import IntegrityError, transaction
from django.db.models import Prefetch

from exams.models import Exam, Question, Option

from .exceptions import SessionLocked
from .models import ExamSession, StudentAnswer, ExamResult


class ExamStore:

    # --- exams & questions ---

    def get_exam(self, exam_id):
        return Exam.objects.get(id=exam_id)

    def list_questions(self, exam_id):
        options = Prefetch('options', queryset=Option.objects.order_by('order_number', 'id'))
        return list(
            Question.objects.filter(exam_id=exam_id)
            .order_by('order_number')
            .prefetch_related(options)
        )

    # --- sessions ---

    def get_session(self, session_id):
        return ExamSession.objects.select_related('exam').get(id=session_id)

    def find_session(self, exam_id, student_id):
        return (
            ExamSession.objects.select_related('exam')
            .filter(exam_id=exam_id, student_id=student_id)
            .first()
        )

    def create_session(self, exam_id, student_id, started_at):
        """Insert a session; returns (session, created). A concurrent insert loses to the unique constraint."""
        try:
            with transaction.atomic():
                session = ExamSession.objects.create(
                    exam_id=exam_id,
                    student_id=student_id,
                    started_at=started_at,
                    status=ExamSession.Status.IN_PROGRESS,
                )
            return session, True
        except IntegrityError:
            return self.find_session(exam_id, student_id), False

    def record_warning(self, session_id, count, at):
        # Never lowers the stored counter and never touches a locked row
        updated = ExamSession.objects.filter(
            id=session_id, is_locked=False, warning_count__lt=count,
        ).update(warning_count=count, last_warning_at=at)
        return updated == 1

    def lock_session(self, session_id, status, at):
        """Single conditional row update. True only for the caller that performed the lock."""
        updated = ExamSession.objects.filter(id=session_id, is_locked=False).update(
            status=status, submitted_at=at, is_locked=True,
        )
        return updated == 1

    def mark_graded(self, session_id):
        ExamSession.objects.filter(id=session_id).update(is_graded=True)

    # --- answers ---

    def list_answers(self, session_id):
        return list(StudentAnswer.objects.filter(session_id=session_id).order_by('question__order_number'))

    def upsert_answers(self, session_id, drafts, saved_at):
        """Last write wins per (session, question). Refuses to touch a locked session."""
        with transaction.atomic():
            session = ExamSession.objects.select_for_update().get(id=session_id)
            if session.is_locked:
                raise SessionLocked(status=session.status)
            for draft in drafts:
                StudentAnswer.objects.update_or_create(
                    session_id=session_id,
                    question_id=draft.question_id,
                    defaults={
                        'answer_text': draft.answer_text,
                        'selected_option_id': draft.selected_option_id,
                        'last_saved_at': saved_at,
                    },
                )
        return len(drafts)

    def save_grades(self, session_id, grades):
        """`grades` is an iterable of (question_id, is_correct, points, comment or None)."""
        with transaction.atomic():
            for question_id, is_correct, points, comment in grades:
                defaults = {'is_correct': is_correct, 'points_earned': points}
                if comment is not None:
                    defaults['grader_comment'] = comment
                StudentAnswer.objects.update_or_create(
                    session_id=session_id, question_id=question_id, defaults=defaults,
                )

    # --- results ---

    def get_result(self, session_id):
        return ExamResult.objects.filter(session_id=session_id).first()

    def upsert_result(self, session_id, **fields):
        result, _ = ExamResult.objects.update_or_create(session_id=session_id, defaults=fields)
        return result
