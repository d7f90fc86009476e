# assessments/models.py
from django.conf import settings
from django.db import models
from django.utils import timezone

from exams.models import Exam, Question, Option


class ExamSession(models.Model):
    """Tracks a student's single attempt at an exam."""

    class Status(models.TextChoices):
        IN_PROGRESS = "in_progress", "In Progress"
        SUBMITTED = "submitted", "Submitted"
        AUTO_SUBMITTED = "auto_submitted", "Auto Submitted"
        BLOCKED = "blocked", "Blocked"

    TERMINAL_STATUSES = (Status.SUBMITTED, Status.AUTO_SUBMITTED, Status.BLOCKED)

    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='exam_sessions')
    exam = models.ForeignKey(Exam, on_delete=models.CASCADE, related_name='sessions')

    # Server assigned once; the exam timer always counts from here
    started_at = models.DateTimeField(default=timezone.now)
    submitted_at = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.IN_PROGRESS)

    # Anti-cheat
    warning_count = models.PositiveIntegerField(default=0)
    last_warning_at = models.DateTimeField(null=True, blank=True)

    is_locked = models.BooleanField(default=False)
    # Status for grading workflow
    is_graded = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['exam', 'student'], name='one_session_per_student_exam'),
        ]

    def __str__(self):
        return f"{self.student} - {self.exam.title}"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES


class StudentAnswer(models.Model):
    session = models.ForeignKey(ExamSession, related_name='answers', on_delete=models.CASCADE)
    question = models.ForeignKey(Question, on_delete=models.CASCADE)

    # mcq / true_false
    selected_option = models.ForeignKey(Option, null=True, blank=True, on_delete=models.SET_NULL)
    # short_answer / long_answer
    answer_text = models.TextField(null=True, blank=True)

    # Grading; null means not graded yet
    is_correct = models.BooleanField(null=True, blank=True)
    points_earned = models.PositiveIntegerField(null=True, blank=True)
    grader_comment = models.TextField(blank=True)

    last_saved_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['session', 'question'], name='one_answer_per_question'),
        ]

    def __str__(self):
        return f"Answer to Q{self.question_id} in session {self.session_id}"


class ExamResult(models.Model):
    session = models.OneToOneField(ExamSession, on_delete=models.CASCADE, related_name='result')

    total_points = models.PositiveIntegerField(default=0)
    max_points = models.PositiveIntegerField()
    percentage = models.DecimalField(max_digits=5, decimal_places=2, default=0)

    # Null means the result was produced by auto-grading alone
    graded_by = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='graded_results')
    comments = models.TextField(blank=True)
    graded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Result for session {self.session_id}: {self.percentage}%"

    @property
    def grade_letter(self):
        from .scoring import grade_letter
        return grade_letter(self.percentage)
