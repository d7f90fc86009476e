# proctor_platform/exams/serializers.py
from django.db import transaction
from rest_framework import serializers

from cores.models import PlatformSetting
from .availability import availability_status
from .models import Exam, Question, Option
from .validators import (
    validate_duration, validate_exam_window, validate_points, validate_question_options,
)

# --- Helper Serializers ---

class OptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Option
        fields = ['id', 'text', 'is_correct', 'order_number']
        read_only_fields = ['id']


class StudentOptionSerializer(serializers.ModelSerializer):
    """Options as a student sees them: no answer key."""
    class Meta:
        model = Option
        fields = ['id', 'text', 'order_number']

# --- Question Serializers ---

class QuestionSerializer(serializers.ModelSerializer):
    # Frontend sends 'question_text'
    question_text = serializers.CharField(source='text')
    options = OptionSerializer(many=True, required=False)
    points = serializers.IntegerField(required=False, validators=[validate_points])

    class Meta:
        model = Question
        fields = [
            'id', 'exam', 'question_text', 'question_type',
            'points', 'order_number', 'correct_answer', 'options',
        ]

    def validate_exam(self, exam):
        request = self.context.get('request')
        if request and exam.teacher_id != request.user.id and not request.user.is_staff:
            raise serializers.ValidationError("You can only add questions to your own exams.")
        return exam

    def validate(self, attrs):
        question_type = attrs.get('question_type', getattr(self.instance, 'question_type', Question.QuestionType.MCQ))
        if 'options' in attrs or self.instance is None:
            validate_question_options(question_type, attrs.get('options', []))
        elif question_type != self.instance.question_type:
            # Type changed without new options; the stored ones must suit the new type
            stored = [{'text': o.text, 'is_correct': o.is_correct} for o in self.instance.options.all()]
            validate_question_options(question_type, stored)

        exam = attrs.get('exam', getattr(self.instance, 'exam', None))
        order_number = attrs.get('order_number', getattr(self.instance, 'order_number', None))
        clash = Question.objects.filter(exam=exam, order_number=order_number)
        if self.instance is not None:
            clash = clash.exclude(pk=self.instance.pk)
        if clash.exists():
            raise serializers.ValidationError({'order_number': 'Another question already uses this position.'})
        return attrs

    @transaction.atomic
    def create(self, validated_data):
        options = validated_data.pop('options', [])
        question = Question.objects.create(**validated_data)
        self._write_options(question, options)
        return question

    @transaction.atomic
    def update(self, instance, validated_data):
        options = validated_data.pop('options', None)
        instance = super().update(instance, validated_data)
        if options is not None:
            # The option set is replaced as a whole
            instance.options.all().delete()
            self._write_options(instance, options)
        return instance

    def _write_options(self, question, options):
        for index, option in enumerate(options, start=1):
            Option.objects.create(
                question=question,
                text=option['text'],
                is_correct=option.get('is_correct', False),
                order_number=option.get('order_number') or index,
            )


class StudentQuestionSerializer(serializers.ModelSerializer):
    question_text = serializers.CharField(source='text', read_only=True)
    options = StudentOptionSerializer(many=True, read_only=True)

    class Meta:
        model = Question
        fields = ['id', 'question_text', 'question_type', 'points', 'order_number', 'options']

# --- Exam Serializers ---

class ExamSerializer(serializers.ModelSerializer):
    teacher = serializers.PrimaryKeyRelatedField(read_only=True)
    duration_minutes = serializers.IntegerField(required=False, validators=[validate_duration])
    max_warnings = serializers.IntegerField(required=False, min_value=0)
    anti_cheat_enabled = serializers.BooleanField(required=False)

    # Read-only counts
    total_questions = serializers.IntegerField(source='questions.count', read_only=True)

    class Meta:
        model = Exam
        fields = [
            'id', 'title', 'description', 'teacher',
            'duration_minutes', 'open_date', 'close_date',
            'anti_cheat_enabled', 'max_warnings', 'allow_review',
            'total_questions', 'created_at', 'updated_at',
        ]
        read_only_fields = ['created_at', 'updated_at']

    def validate(self, attrs):
        open_date = attrs.get('open_date', getattr(self.instance, 'open_date', None))
        close_date = attrs.get('close_date', getattr(self.instance, 'close_date', None))
        validate_exam_window(open_date, close_date)
        return attrs

    def create(self, validated_data):
        # Platform defaults fill in anything the teacher left out
        defaults = PlatformSetting.load()
        validated_data.setdefault('duration_minutes', defaults.default_exam_duration)
        validated_data.setdefault('max_warnings', defaults.default_max_warnings)
        validated_data.setdefault('anti_cheat_enabled', defaults.anti_cheat_by_default)
        return super().create(validated_data)


class ExamListSerializer(serializers.ModelSerializer):
    """Student catalogue entry with the student's own availability status."""
    availability = serializers.SerializerMethodField()
    session_id = serializers.SerializerMethodField()

    class Meta:
        model = Exam
        fields = [
            'id', 'title', 'description', 'duration_minutes', 'open_date', 'close_date',
            'anti_cheat_enabled', 'max_warnings', 'availability', 'session_id',
        ]

    def _session(self, obj):
        return self.context.get('sessions', {}).get(obj.id)

    def get_session_id(self, obj):
        session = self._session(obj)
        return session.id if session else None

    def get_availability(self, obj):
        return availability_status(obj, self._session(obj), self.context.get('now'))


class ExamDetailSerializer(ExamSerializer):
    """Detailed view for the owning teacher"""
    questions = QuestionSerializer(many=True, read_only=True)

    class Meta(ExamSerializer.Meta):
        fields = ExamSerializer.Meta.fields + ['questions']
