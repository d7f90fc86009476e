from django.contrib import admin

from .models import ExamSession, StudentAnswer, ExamResult


class StudentAnswerInline(admin.TabularInline):
    model = StudentAnswer
    extra = 0
    readonly_fields = ('last_saved_at',)


@admin.register(ExamSession)
class ExamSessionAdmin(admin.ModelAdmin):
    list_display = ('id', 'exam', 'student', 'status', 'warning_count', 'is_locked', 'is_graded', 'started_at')
    list_filter = ('status', 'is_locked', 'is_graded')
    search_fields = ('student__email', 'exam__title')
    inlines = [StudentAnswerInline]


admin.site.register(ExamResult)
