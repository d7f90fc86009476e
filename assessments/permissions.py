from rest_framework import permissions


class IsTeacher(permissions.BasePermission):
    """
    Allows access to Teachers and Admins.
    Strictly blocks Students.
    """
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_teacher


class IsStudent(permissions.BasePermission):
    """Only students take exams."""
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return getattr(request.user, 'role', '') == 'student'


class OwnsExam(permissions.BasePermission):
    """Object-level: the exam (or the session's exam) belongs to the requesting teacher."""
    def has_object_permission(self, request, view, obj):
        if request.user.is_staff:
            return True
        exam = getattr(obj, 'exam', obj)
        return exam.teacher_id == request.user.id
