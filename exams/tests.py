from datetime import timedelta

from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from assessments.models import ExamSession
from assessments.tests.factories import add_mcq, add_written, make_exam, make_user
from cores.models import AuditLog, PlatformSetting
from .availability import availability_status
from .models import Exam, Question
from .validators import validate_question_options


class ValidatorTest(TestCase):
    def test_objective_question_needs_a_correct_option(self):
        with self.assertRaises(ValidationError):
            validate_question_options('mcq', [{'text': 'A'}, {'text': 'B'}])
        validate_question_options('mcq', [{'text': 'A', 'is_correct': True}, {'text': 'B'}])

    def test_written_question_takes_no_options(self):
        with self.assertRaises(ValidationError):
            validate_question_options('short_answer', [{'text': 'A', 'is_correct': True}])

    def test_exam_window_checked_in_clean(self):
        now = timezone.now()
        exam = Exam(
            title='Bad', teacher=make_user('t@example.com', role='teacher'), duration_minutes=10,
            open_date=now, close_date=now - timedelta(hours=1),
        )
        with self.assertRaises(ValidationError):
            exam.full_clean()


class AvailabilityTest(TestCase):
    def setUp(self):
        self.now = timezone.now()
        self.exam = make_exam(make_user('t@example.com', role='teacher'), opens=self.now)
        self.student = make_user('s@example.com')

    def test_without_session(self):
        self.assertEqual(availability_status(self.exam, None, self.now), 'available')
        self.assertEqual(availability_status(self.exam, None, self.now - timedelta(hours=2)), 'upcoming')
        self.assertEqual(availability_status(self.exam, None, self.now + timedelta(days=2)), 'closed')

    def test_with_session(self):
        session = ExamSession.objects.create(exam=self.exam, student=self.student)
        self.assertEqual(availability_status(self.exam, session, self.now), 'in_progress')
        session.is_locked, session.status = True, 'auto_submitted'
        self.assertEqual(availability_status(self.exam, session, self.now), 'completed')
        session.status = 'blocked'
        self.assertEqual(availability_status(self.exam, session, self.now), 'blocked')


class ExamAuthoringAPITest(APITestCase):
    def setUp(self):
        cache.clear()
        self.teacher = make_user('teacher@example.com', role='teacher')
        self.client.force_authenticate(user=self.teacher)
        self.now = timezone.now()

    def exam_payload(self, **overrides):
        payload = {
            'title': 'Algebra',
            'open_date': self.now.isoformat(),
            'close_date': (self.now + timedelta(days=1)).isoformat(),
        }
        payload.update(overrides)
        return payload

    def test_create_uses_platform_defaults(self):
        settings = PlatformSetting.load()
        settings.default_exam_duration = 45
        settings.default_max_warnings = 4
        settings.save()

        response = self.client.post(reverse('exams-list'), self.exam_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        exam = Exam.objects.get()
        self.assertEqual(exam.teacher, self.teacher)
        self.assertEqual(exam.duration_minutes, 45)
        self.assertEqual(exam.max_warnings, 4)
        self.assertTrue(AuditLog.objects.filter(action='CREATE', target_model='Exam').exists())

    def test_close_before_open_rejected(self):
        response = self.client.post(
            reverse('exams-list'),
            self.exam_payload(close_date=(self.now - timedelta(hours=1)).isoformat()),
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Exam.objects.exists())

    def test_zero_duration_rejected(self):
        response = self.client.post(reverse('exams-list'), self.exam_payload(duration_minutes=0), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_teachers_only_see_their_own_exams(self):
        make_exam(make_user('other@example.com', role='teacher'), title='Not mine')
        mine = make_exam(self.teacher, title='Mine')
        response = self.client.get(reverse('exams-list'))
        self.assertEqual([e['id'] for e in response.data], [mine.id])

    def test_students_cannot_author(self):
        self.client.force_authenticate(user=make_user('s@example.com'))
        response = self.client.post(reverse('exams-list'), self.exam_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_create_mcq_with_options(self):
        exam = make_exam(self.teacher)
        response = self.client.post(reverse('questions-list'), {
            'exam': exam.id,
            'question_text': '2 + 2?',
            'question_type': 'mcq',
            'points': 2,
            'order_number': 1,
            'options': [{'text': '3'}, {'text': '4', 'is_correct': True}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        question = Question.objects.get()
        self.assertEqual(list(question.options.values_list('text', flat=True)), ['3', '4'])

    def test_question_validation(self):
        exam = make_exam(self.teacher)
        add_mcq(exam, 1)
        base = {'exam': exam.id, 'question_text': 'Q', 'question_type': 'short_answer', 'order_number': 2}

        no_points = self.client.post(reverse('questions-list'), dict(base, points=0), format='json')
        self.assertEqual(no_points.status_code, status.HTTP_400_BAD_REQUEST)
        clash = self.client.post(reverse('questions-list'), dict(base, order_number=1), format='json')
        self.assertEqual(clash.status_code, status.HTTP_400_BAD_REQUEST)
        no_correct = self.client.post(reverse('questions-list'), dict(
            base, question_type='mcq', options=[{'text': 'a'}, {'text': 'b'}],
        ), format='json')
        self.assertEqual(no_correct.status_code, status.HTTP_400_BAD_REQUEST)

    def test_type_change_without_options_rejected(self):
        exam = make_exam(self.teacher)
        written = add_written(exam, 1)
        response = self.client.patch(
            reverse('questions-detail', args=[written.id]), {'question_type': 'mcq'}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('options', response.data)
        written.refresh_from_db()
        self.assertEqual(written.question_type, Question.QuestionType.SHORT_ANSWER)

        mcq = add_mcq(exam, 2)
        renamed = self.client.patch(
            reverse('questions-detail', args=[mcq.id]), {'question_type': 'true_false'}, format='json',
        )
        self.assertEqual(renamed.status_code, status.HTTP_200_OK)

    def test_cannot_add_question_to_foreign_exam(self):
        exam = make_exam(make_user('other@example.com', role='teacher'))
        response = self.client.post(reverse('questions-list'), {
            'exam': exam.id, 'question_text': 'Q', 'question_type': 'short_answer',
            'points': 1, 'order_number': 1,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_stats(self):
        exam = make_exam(self.teacher)
        students = [make_user(f's{i}@example.com') for i in range(3)]
        ExamSession.objects.create(exam=exam, student=students[0])
        ExamSession.objects.create(exam=exam, student=students[1], status='submitted', is_locked=True)
        ExamSession.objects.create(exam=exam, student=students[2], status='blocked', is_locked=True, is_graded=True)

        response = self.client.get(reverse('exams-stats', args=[exam.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_sessions'], 3)
        self.assertEqual(response.data['by_status']['submitted'], 1)
        self.assertEqual(response.data['by_status']['auto_submitted'], 0)
        self.assertEqual(response.data['pending_grading'], 1)
        self.assertEqual(response.data['graded'], 1)


class AvailableExamsAPITest(APITestCase):
    def setUp(self):
        teacher = make_user('teacher@example.com', role='teacher')
        self.student = make_user('student@example.com')
        now = timezone.now()
        self.open_exam = make_exam(teacher, title='Open', opens=now)
        self.done_exam = make_exam(teacher, title='Done', opens=now)
        self.later_exam = make_exam(teacher, title='Later', opens=now + timedelta(days=3))
        ExamSession.objects.create(exam=self.done_exam, student=self.student, status='submitted', is_locked=True)
        self.client.force_authenticate(user=self.student)

    def test_catalogue_statuses(self):
        response = self.client.get(reverse('exams-available'))
        statuses = {e['title']: e['availability'] for e in response.data}
        self.assertEqual(statuses, {'Open': 'available', 'Done': 'completed', 'Later': 'upcoming'})

    def test_status_filters(self):
        active = self.client.get(reverse('exams-available'), {'status': 'active'})
        self.assertEqual([e['title'] for e in active.data], ['Open'])
        completed = self.client.get(reverse('exams-available'), {'status': 'completed'})
        self.assertEqual([e['title'] for e in completed.data], ['Done'])
