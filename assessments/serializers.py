from rest_framework import serializers

from .anticheat import FOCUS_LOSS_SIGNALS
from .models import ExamSession, StudentAnswer, ExamResult

DISMISS = 'dismiss'


class StudentAnswerSerializer(serializers.ModelSerializer):
    class Meta:
        model = StudentAnswer
        fields = ['id', 'question', 'selected_option', 'answer_text', 'last_saved_at']
        read_only_fields = fields


class GradedAnswerSerializer(serializers.ModelSerializer):
    question_text = serializers.CharField(source='question.text', read_only=True)
    max_points = serializers.IntegerField(source='question.points', read_only=True)

    class Meta:
        model = StudentAnswer
        fields = [
            'id', 'question', 'question_text', 'selected_option', 'answer_text',
            'is_correct', 'points_earned', 'max_points', 'grader_comment',
        ]
        read_only_fields = fields


class ExamSessionSerializer(serializers.ModelSerializer):
    """Lightweight serializer for lists / dashboard history."""
    exam_title = serializers.CharField(source='exam.title', read_only=True)
    student_email = serializers.CharField(source='student.email', read_only=True)

    class Meta:
        model = ExamSession
        fields = [
            'id', 'exam', 'exam_title', 'student', 'student_email', 'status',
            'started_at', 'submitted_at', 'warning_count', 'is_locked', 'is_graded',
        ]
        read_only_fields = fields


# --- Incoming payloads ---

class AnswerInputSerializer(serializers.Serializer):
    question_id = serializers.IntegerField()
    answer_text = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    selected_option_id = serializers.IntegerField(required=False, allow_null=True)


class SaveAnswersSerializer(serializers.Serializer):
    answers = AnswerInputSerializer(many=True)


class FocusEventSerializer(serializers.Serializer):
    signal = serializers.ChoiceField(choices=list(FOCUS_LOSS_SIGNALS) + [DISMISS])


class SubmitSerializer(serializers.Serializer):
    confirm = serializers.BooleanField()

    def validate_confirm(self, value):
        if not value:
            raise serializers.ValidationError("Submitting must be confirmed.")
        return value


class GradeOverrideSerializer(serializers.Serializer):
    question_id = serializers.IntegerField()
    points = serializers.IntegerField(min_value=0)
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class FinalizeGradeSerializer(serializers.Serializer):
    grades = GradeOverrideSerializer(many=True, required=False, default=list)
    comments = serializers.CharField(required=False, allow_blank=True, default='')

    def validate_grades(self, grades):
        ids = [g['question_id'] for g in grades]
        if len(ids) != len(set(ids)):
            raise serializers.ValidationError("Each question may only be graded once.")
        return grades

    def to_overrides(self):
        return {
            g['question_id']: {'points': g['points'], 'comment': g['comment']}
            for g in self.validated_data['grades']
        }


# --- Results ---

class ExamResultSerializer(serializers.ModelSerializer):
    grade_letter = serializers.CharField(read_only=True)
    graded_by_email = serializers.CharField(source='graded_by.email', read_only=True, default=None)

    class Meta:
        model = ExamResult
        fields = [
            'id', 'session', 'total_points', 'max_points', 'percentage', 'grade_letter',
            'graded_by', 'graded_by_email', 'comments', 'graded_at',
        ]
        read_only_fields = fields


def grade_suggestion_data(suggestion):
    answer = suggestion.answer
    return {
        'question_id': suggestion.question.id,
        'question_text': suggestion.question.text,
        'question_type': suggestion.question.question_type,
        'max_points': suggestion.question.points,
        'correct_answer': suggestion.question.correct_answer,
        'answer_text': answer.answer_text if answer else None,
        'selected_option': answer.selected_option_id if answer else None,
        'auto_gradable': suggestion.auto_gradable,
        'suggested_is_correct': suggestion.is_correct,
        'suggested_points': suggestion.points,
    }
