from django.db import models
from django.core.cache import cache
from django.conf import settings

class PlatformSetting(models.Model):
    # --- General & Branding ---
    site_name = models.CharField(max_length=100, default="Proctored Exams")
    support_email = models.EmailField(default="support@example.com")

    # --- Authoring Defaults ---
    default_exam_duration = models.PositiveIntegerField(default=60, help_text="Default duration in minutes")
    default_max_warnings = models.PositiveIntegerField(default=2, help_text="Focus-loss warnings before auto-submit")
    anti_cheat_by_default = models.BooleanField(default=True)

    def save(self, *args, **kwargs):
        self.pk = 1  # Singleton pattern
        super().save(*args, **kwargs)
        cache.set('platform_settings', self)

    def delete(self, *args, **kwargs):
        pass

    @classmethod
    def load(cls):
        obj = cache.get('platform_settings')
        if obj is None:
            obj, created = cls.objects.get_or_create(pk=1)
            cache.set('platform_settings', obj)
        return obj

    def __str__(self):
        return "Platform Settings"


class AuditLog(models.Model):
    ACTION_CHOICES = [
        ('CREATE', 'Create'),
        ('UPDATE', 'Update'),
        ('DELETE', 'Delete'),
        ('WARNING', 'Focus Warning'),
        ('SUBMIT', 'Exam Submitted'),
        ('BLOCK', 'Session Blocked'),
        ('GRADE', 'Grade Submitted'),
        ('SETTINGS', 'Settings Changed'),
    ]

    actor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    action = models.CharField(max_length=20, choices=ACTION_CHOICES)
    target_model = models.CharField(max_length=50, help_text="e.g., Exam, ExamSession, ExamResult")
    target_object_id = models.CharField(max_length=100, blank=True, null=True)
    details = models.TextField(blank=True, help_text="Description of changes")
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-timestamp']

    def __str__(self):
        return f"{self.actor} - {self.action} - {self.timestamp}"
