from django.db.models import Avg, Count, Q
from django.utils import timezone
from rest_framework import viewsets, generics, permissions, filters
from rest_framework.decorators import action
from rest_framework.response import Response

from assessments.models import ExamSession
from assessments.permissions import IsTeacher, OwnsExam
from cores.models import AuditLog
from .availability import ACTIVE, BLOCKED, COMPLETED, availability_status
from .models import Exam, Question
from .serializers import (
    ExamSerializer, ExamDetailSerializer, ExamListSerializer, QuestionSerializer,
)


class ExamViewSet(viewsets.ModelViewSet):
    """Authoring CRUD. Teachers only see and edit their own exams."""
    permission_classes = [IsTeacher, OwnsExam]

    # Enable search on title
    filter_backends = [filters.SearchFilter]
    search_fields = ['title', 'description']

    def get_queryset(self):
        queryset = Exam.objects.all().order_by('-created_at')
        if not self.request.user.is_staff:
            queryset = queryset.filter(teacher=self.request.user)
        return queryset

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return ExamDetailSerializer
        return ExamSerializer

    def perform_create(self, serializer):
        exam = serializer.save(teacher=self.request.user)
        self._audit('CREATE', exam, f"Created exam: {exam.title}")

    def perform_update(self, serializer):
        exam = serializer.save()
        self._audit('UPDATE', exam, f"Updated exam: {exam.title}")

    def perform_destroy(self, instance):
        self._audit('DELETE', instance, f"Deleted exam: {instance.title}")
        instance.delete()

    def _audit(self, action_name, exam, details):
        AuditLog.objects.create(
            actor=self.request.user,
            action=action_name,
            target_model='Exam',
            target_object_id=str(exam.id),
            details=details,
        )

    @action(detail=True, methods=['get'])
    def stats(self, request, pk=None):
        """Session counts per status, graded count and average result."""
        exam = self.get_object()
        sessions = ExamSession.objects.filter(exam=exam)
        by_status = {row['status']: row['total'] for row in sessions.values('status').annotate(total=Count('id'))}
        totals = sessions.aggregate(
            total=Count('id'),
            graded=Count('id', filter=Q(is_graded=True)),
            pending=Count('id', filter=Q(is_locked=True, is_graded=False)),
            average_percentage=Avg('result__percentage'),
        )
        return Response({
            "exam_id": exam.id,
            "total_sessions": totals['total'],
            "by_status": {choice: by_status.get(choice, 0) for choice in ExamSession.Status.values},
            "graded": totals['graded'],
            "pending_grading": totals['pending'],
            "average_percentage": totals['average_percentage'],
        })


class QuestionViewSet(viewsets.ModelViewSet):
    serializer_class = QuestionSerializer
    permission_classes = [IsTeacher, OwnsExam]

    filter_backends = [filters.SearchFilter]
    search_fields = ['text']

    def get_queryset(self):
        queryset = Question.objects.select_related('exam').prefetch_related('options').order_by('exam_id', 'order_number')
        if not self.request.user.is_staff:
            queryset = queryset.filter(exam__teacher=self.request.user)
        # Filter by Exam if provided ?exam_id=1
        exam_id = self.request.query_params.get('exam_id')
        if exam_id:
            queryset = queryset.filter(exam_id=exam_id)
        return queryset


class AvailableExamListView(generics.ListAPIView):
    """
    Student catalogue: every exam with the student's own availability status.
    ?status=active keeps available / in-progress exams, ?status=completed finished ones.
    """
    serializer_class = ExamListSerializer
    permission_classes = [permissions.IsAuthenticated]
    pagination_class = None

    def get_queryset(self):
        return Exam.objects.all().order_by('open_date')

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['now'] = self.now
        context['sessions'] = self.sessions
        return context

    def list(self, request, *args, **kwargs):
        self.now = timezone.now()
        self.sessions = {s.exam_id: s for s in ExamSession.objects.filter(student=request.user)}
        exams = list(self.get_queryset())

        wanted = request.query_params.get('status')
        if wanted == 'active':
            exams = [e for e in exams if availability_status(e, self.sessions.get(e.id), self.now) in ACTIVE]
        elif wanted == 'completed':
            exams = [
                e for e in exams
                if availability_status(e, self.sessions.get(e.id), self.now) in (COMPLETED, BLOCKED)
            ]

        serializer = self.get_serializer(exams, many=True)
        return Response(serializer.data)
