from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import ExamViewSet, QuestionViewSet, AvailableExamListView

router = DefaultRouter()
router.register(r'exams', ExamViewSet, basename='exams')
router.register(r'questions', QuestionViewSet, basename='questions')

urlpatterns = [
    # Must come before the router so 'available' is not read as an exam pk
    path('exams/available/', AvailableExamListView.as_view(), name='exams-available'),
    path('', include(router.urls)),
]
