import logging

from django.db import DatabaseError
from django.shortcuts import get_object_or_404
from rest_framework import generics, permissions, status, views
from rest_framework.response import Response

from exams.serializers import StudentQuestionSerializer
from .anticheat import FOCUS_LOSS_SIGNALS
from .attempt import ExamAttempt, block_session
from .exceptions import ExamEngineError, LoadFailure, PersistFailure, SessionLocked
from .grading import finalize_grading, suggest_grades
from .models import ExamSession
from .permissions import IsStudent, IsTeacher, OwnsExam
from .serializers import (
    ExamResultSerializer, ExamSessionSerializer, FinalizeGradeSerializer, FocusEventSerializer,
    GradedAnswerSerializer, SaveAnswersSerializer, SubmitSerializer, grade_suggestion_data,
)
from .store import ExamStore

logger = logging.getLogger(__name__)


def engine_error_response(exc):
    """Map an engine failure to the JSON error the client expects."""
    body = {"error": exc.message}
    if isinstance(exc, SessionLocked):
        body["redirect"] = "dashboard"
        body["status"] = exc.status
    elif isinstance(exc, PersistFailure):
        body["saved"] = False
    return Response(body, status=exc.status_code)


def locked_response(attempt):
    return engine_error_response(SessionLocked(status=attempt.state))


def draft_data(draft):
    return {
        "question_id": draft.question_id,
        "answer_text": draft.answer_text,
        "selected_option_id": draft.selected_option_id,
    }


class StudentSessionMixin:
    """Resolves the student's own session and resumes its attempt."""

    def get_session(self, request, session_id):
        return get_object_or_404(ExamSession, id=session_id, student=request.user)

    def resume(self, session):
        attempt = ExamAttempt(session.exam_id, session.student_id)
        attempt.start()
        return attempt


# --- STUDENT VIEWS ---

class StartExamView(views.APIView):
    """
    Student starts (or resumes) an exam.
    Returns the session, the ordered questions without answer keys and the saved answers.
    """
    permission_classes = [IsStudent]

    def post(self, request, exam_id):
        attempt = ExamAttempt(exam_id, request.user.id)
        try:
            attempt.start()
        except ExamEngineError as exc:
            return engine_error_response(exc)

        if attempt.is_locked:
            # Time ran out (or warnings were exhausted) while the student was away
            return locked_response(attempt)

        data = {
            "session": ExamSessionSerializer(attempt.session).data,
            "questions": StudentQuestionSerializer(attempt.questions, many=True).data,
            "answers": [draft_data(d) for d in attempt.answers.values()],
            "state": attempt.snapshot(),
            "client_policy": attempt.client_policy(),
        }
        return Response(data, status=status.HTTP_201_CREATED if attempt.created else status.HTTP_200_OK)


class SessionStateView(StudentSessionMixin, views.APIView):
    """Timer and warning state. Every poll enforces the deadline."""
    permission_classes = [IsStudent]

    def get(self, request, session_id):
        session = self.get_session(request, session_id)
        if session.is_locked:
            return Response({
                "session_id": session.id,
                "status": session.status,
                "is_locked": True,
                "remaining_seconds": 0,
                "redirect": "dashboard",
            })
        try:
            attempt = self.resume(session)
        except ExamEngineError as exc:
            return engine_error_response(exc)
        return Response(attempt.snapshot())


class SaveAnswersView(StudentSessionMixin, views.APIView):
    permission_classes = [IsStudent]

    def put(self, request, session_id):
        session = self.get_session(request, session_id)
        serializer = SaveAnswersSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            attempt = self.resume(session)
            for answer in serializer.validated_data['answers']:
                attempt.on_answer_change(
                    answer['question_id'],
                    answer_text=answer.get('answer_text'),
                    selected_option_id=answer.get('selected_option_id'),
                )
            saved = attempt.save_answers()
        except ExamEngineError as exc:
            return engine_error_response(exc)

        if not saved:
            if attempt.autosave.last_error is None:
                # Locked between resume and write
                return locked_response(attempt)
            return engine_error_response(PersistFailure())
        return Response({
            "saved": True,
            "save_status": attempt.save_status,
            "last_saved_at": attempt.autosave.last_saved_at,
            "remaining_seconds": attempt.remaining_time(),
        })


class FocusEventView(StudentSessionMixin, views.APIView):
    """One focus-loss signal from the browser, or the acknowledgement of the warning modal."""
    permission_classes = [IsStudent]

    def post(self, request, session_id):
        session = self.get_session(request, session_id)
        serializer = FocusEventSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        signal_name = serializer.validated_data['signal']

        try:
            attempt = self.resume(session)
            counted = False
            if signal_name in FOCUS_LOSS_SIGNALS:
                counted = attempt.report_focus_loss(signal_name)
            else:
                attempt.dismiss_warning()
        except ExamEngineError as exc:
            return engine_error_response(exc)

        data = {
            "counted": counted,
            "warning_state": attempt.warning_state(),
            "status": attempt.session.status,
            "is_locked": attempt.is_locked,
        }
        if attempt.is_locked:
            data["redirect"] = "dashboard"
        return Response(data)


class SubmitExamView(StudentSessionMixin, views.APIView):
    """
    Manual submit. Answers are flushed first; the session is only
    locked once they are stored.
    """
    permission_classes = [IsStudent]

    def post(self, request, session_id):
        session = self.get_session(request, session_id)
        serializer = SubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            attempt = self.resume(session)
            if attempt.is_locked:
                return locked_response(attempt)
            attempt.request_submit()
            submitted = attempt.confirm_submit()
        except ExamEngineError as exc:
            return engine_error_response(exc)

        if not submitted:
            return locked_response(attempt)
        return Response({
            "status": attempt.session.status,
            "submitted_at": attempt.session.submitted_at,
            "redirect": "dashboard",
        })


class StudentResultView(views.APIView):
    permission_classes = [IsStudent]

    def get(self, request, session_id):
        session = get_object_or_404(
            ExamSession.objects.select_related('exam'), id=session_id, student=request.user,
        )
        if not session.is_locked:
            return Response({"error": "Exam has not been submitted yet"}, status=status.HTTP_400_BAD_REQUEST)

        data = {"session": ExamSessionSerializer(session).data, "result": None}
        try:
            result = ExamStore().get_result(session.id)
            if session.is_graded and result is not None:
                data["result"] = ExamResultSerializer(result).data
                if session.exam.allow_review:
                    answers = session.answers.select_related('question').order_by('question__order_number')
                    data["answers"] = GradedAnswerSerializer(answers, many=True).data
        except DatabaseError:
            logger.error("Could not load the result of session %s", session.id, exc_info=True)
            return engine_error_response(LoadFailure("The result could not be loaded."))
        return Response(data)


class StudentExamAttemptsView(generics.ListAPIView):
    """List all exam sessions for the logged-in student."""
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = ExamSessionSerializer

    def get_queryset(self):
        return (
            ExamSession.objects.filter(student=self.request.user)
            .select_related('exam', 'student')
            .order_by('-started_at')
        )


# --- TEACHER VIEWS ---

class TeacherSessionMixin:

    def get_session(self, request, session_id):
        session = get_object_or_404(ExamSession.objects.select_related('exam', 'student'), id=session_id)
        self.check_object_permissions(request, session)
        return session


class PendingGradingListView(generics.ListAPIView):
    """Submitted sessions of the teacher's exams that still need a grade."""
    permission_classes = [IsTeacher]
    serializer_class = ExamSessionSerializer

    def get_queryset(self):
        queryset = (
            ExamSession.objects.filter(is_locked=True, is_graded=False)
            .select_related('exam', 'student')
            .order_by('submitted_at')
        )
        if not self.request.user.is_staff:
            queryset = queryset.filter(exam__teacher=self.request.user)
        exam_id = self.request.query_params.get('exam_id')
        if exam_id:
            queryset = queryset.filter(exam_id=exam_id)
        return queryset


class GradingPreviewView(TeacherSessionMixin, views.APIView):
    """Auto-grade suggestions for every question of a submitted session."""
    permission_classes = [IsTeacher, OwnsExam]

    def get(self, request, session_id):
        session = self.get_session(request, session_id)
        if not session.is_locked:
            return Response({"error": "Only submitted sessions can be graded"}, status=status.HTTP_400_BAD_REQUEST)
        try:
            suggestions = suggest_grades(session)
        except ExamEngineError as exc:
            return engine_error_response(exc)
        return Response({
            "session": ExamSessionSerializer(session).data,
            "questions": [grade_suggestion_data(s) for s in suggestions],
            "suggested_total": sum(s.points for s in suggestions),
            "max_points": sum(s.question.points for s in suggestions),
        })


class FinalizeGradeView(TeacherSessionMixin, views.APIView):
    """
    Teacher submits marks for a session.
    Payload: { "grades": [ { "question_id": 1, "points": 5, "comment": "" } ], "comments": "" }
    """
    permission_classes = [IsTeacher, OwnsExam]

    def post(self, request, session_id):
        session = self.get_session(request, session_id)
        serializer = FinalizeGradeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = finalize_grading(
                session,
                grader=request.user,
                overrides=serializer.to_overrides(),
                comments=serializer.validated_data['comments'],
            )
        except ExamEngineError as exc:
            return engine_error_response(exc)
        return Response(ExamResultSerializer(result).data)


class BlockSessionView(TeacherSessionMixin, views.APIView):
    permission_classes = [IsTeacher, OwnsExam]

    def post(self, request, session_id):
        session = self.get_session(request, session_id)
        try:
            blocked = block_session(session, actor=request.user)
        except ExamEngineError as exc:
            return engine_error_response(exc)
        if not blocked:
            session.refresh_from_db()
            return Response(
                {"error": "Session is already locked", "status": session.status},
                status=status.HTTP_409_CONFLICT,
            )
        return Response(ExamSessionSerializer(session).data)
