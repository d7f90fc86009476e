from django.contrib import admin

from .models import Exam, Question, Option


class OptionInline(admin.TabularInline):
    model = Option
    extra = 0


@admin.register(Exam)
class ExamAdmin(admin.ModelAdmin):
    list_display = ('title', 'teacher', 'open_date', 'close_date', 'duration_minutes', 'anti_cheat_enabled')
    search_fields = ('title',)


@admin.register(Question)
class QuestionAdmin(admin.ModelAdmin):
    list_display = ('exam', 'order_number', 'question_type', 'points')
    list_filter = ('question_type',)
    inlines = [OptionInline]
