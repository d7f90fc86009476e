from django.contrib import admin
from django.urls import path, include
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

urlpatterns = [
    path('admin/', admin.site.urls),

    # --- Authentication ---
    path('api/auth/token/', TokenObtainPairView.as_view(), name='token-obtain'),
    path('api/auth/token/refresh/', TokenRefreshView.as_view(), name='token-refresh'),

    # --- Exam catalogue & authoring ---
    path('api/', include('exams.urls')),

    # --- Exam sessions & grading ---
    path('api/', include('assessments.urls')),

    # --- Platform settings & audit trail ---
    path('api/', include('cores.urls')),
]
