# proctor_platform/exams/models.py
from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from .validators import validate_exam_window


class Exam(models.Model):
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    teacher = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='exams')

    duration_minutes = models.PositiveIntegerField()
    open_date = models.DateTimeField()
    close_date = models.DateTimeField()

    # Proctoring
    anti_cheat_enabled = models.BooleanField(default=True)
    max_warnings = models.PositiveIntegerField(default=2)
    allow_review = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-open_date']
        constraints = [
            models.CheckConstraint(condition=Q(duration_minutes__gt=0), name='exam_duration_positive'),
            models.CheckConstraint(condition=Q(close_date__gt=F('open_date')), name='exam_close_after_open'),
        ]

    def __str__(self):
        return self.title

    def clean(self):
        validate_exam_window(self.open_date, self.close_date)

    def is_open(self, now=None):
        now = now or timezone.now()
        return self.open_date <= now <= self.close_date


class Question(models.Model):
    class QuestionType(models.TextChoices):
        MCQ = "mcq", "Multiple Choice"
        TRUE_FALSE = "true_false", "True / False"
        SHORT_ANSWER = "short_answer", "Short Answer"
        LONG_ANSWER = "long_answer", "Long Answer"

    exam = models.ForeignKey(Exam, related_name='questions', on_delete=models.CASCADE)
    text = models.TextField()
    question_type = models.CharField(max_length=20, choices=QuestionType.choices, default=QuestionType.MCQ)
    points = models.PositiveIntegerField(default=1)
    order_number = models.PositiveIntegerField()

    # Model answer for short/long answers, compared case-insensitively
    correct_answer = models.TextField(blank=True, help_text="Model answer used for exact-match auto-grading")

    class Meta:
        ordering = ['order_number']
        constraints = [
            models.UniqueConstraint(fields=['exam', 'order_number'], name='question_order_unique_per_exam'),
            models.CheckConstraint(condition=Q(points__gt=0), name='question_points_positive'),
        ]

    def __str__(self):
        return f"{self.text[:50]}..."

    @property
    def has_options(self):
        return self.question_type in (self.QuestionType.MCQ, self.QuestionType.TRUE_FALSE)


class Option(models.Model):
    question = models.ForeignKey(Question, related_name='options', on_delete=models.CASCADE)
    text = models.CharField(max_length=255)
    is_correct = models.BooleanField(default=False)
    order_number = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['order_number', 'id']

    def __str__(self):
        return self.text
