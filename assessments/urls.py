from django.urls import path
from .views import (
    StartExamView, SessionStateView, SaveAnswersView, FocusEventView, SubmitExamView,
    StudentResultView, StudentExamAttemptsView,
    PendingGradingListView, GradingPreviewView, FinalizeGradeView, BlockSessionView,
)

urlpatterns = [
    # --- Student Exam Flow ---
    path('exams/<int:exam_id>/start/', StartExamView.as_view(), name='start-exam'),
    path('sessions/', StudentExamAttemptsView.as_view(), name='student-attempts'),
    path('sessions/<int:session_id>/', SessionStateView.as_view(), name='session-state'),
    path('sessions/<int:session_id>/answers/', SaveAnswersView.as_view(), name='session-answers'),
    path('sessions/<int:session_id>/events/', FocusEventView.as_view(), name='session-events'),
    path('sessions/<int:session_id>/submit/', SubmitExamView.as_view(), name='session-submit'),
    path('sessions/<int:session_id>/result/', StudentResultView.as_view(), name='session-result'),

    # --- Grading Module (Teacher) ---
    path('grading/pending/', PendingGradingListView.as_view(), name='grading-pending'),
    path('grading/<int:session_id>/', GradingPreviewView.as_view(), name='grading-preview'),
    path('grading/<int:session_id>/finalize/', FinalizeGradeView.as_view(), name='grading-finalize'),
    path('sessions/<int:session_id>/block/', BlockSessionView.as_view(), name='session-block'),
]
