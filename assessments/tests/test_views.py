from datetime import timedelta
from unittest import mock

from django.db import DatabaseError
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from assessments.models import ExamSession, StudentAnswer
from exams.models import Question
from .factories import add_mcq, add_written, make_exam, make_user, option


class SessionAPITestCase(APITestCase):
    def setUp(self):
        """Set up test data"""
        self.teacher = make_user('teacher@example.com', role='teacher')
        self.other_teacher = make_user('other@example.com', role='teacher')
        self.student = make_user('student@example.com')
        self.exam = make_exam(self.teacher, duration_minutes=30, max_warnings=2, opens=timezone.now())
        self.mcq = add_mcq(self.exam, 1, points=2)
        self.essay = add_written(self.exam, 2, points=5, question_type=Question.QuestionType.LONG_ANSWER)
        self.client.force_authenticate(user=self.student)

    def start(self):
        return self.client.post(reverse('start-exam', args=[self.exam.id]))

    def session_url(self, name, session_id):
        return reverse(name, args=[session_id])


class StudentFlowTest(SessionAPITestCase):
    def test_start_then_resume(self):
        response = self.start()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual([q['id'] for q in response.data['questions']], [self.mcq.id, self.essay.id])
        # No answer key reaches the student
        self.assertNotIn('is_correct', response.data['questions'][0]['options'][0])
        self.assertIn('copy', response.data['client_policy']['suppressed_actions'])

        again = self.start()
        self.assertEqual(again.status_code, status.HTTP_200_OK)
        self.assertEqual(again.data['session']['id'], response.data['session']['id'])

    def test_save_answers_and_state(self):
        session_id = self.start().data['session']['id']
        response = self.client.put(self.session_url('session-answers', session_id), {
            'answers': [
                {'question_id': self.mcq.id, 'selected_option_id': option(self.mcq, 'B').id},
                {'question_id': self.essay.id, 'answer_text': 'Draft essay'},
            ],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['saved'])
        self.assertEqual(StudentAnswer.objects.filter(session_id=session_id).count(), 2)

        state = self.client.get(self.session_url('session-state', session_id))
        self.assertEqual(state.data['status'], 'in_progress')
        self.assertGreater(state.data['remaining_seconds'], 29 * 60)
        self.assertEqual(state.data['urgency'], 'normal')

    def test_bad_option_is_400(self):
        session_id = self.start().data['session']['id']
        other = add_mcq(self.exam, 3)
        response = self.client.put(self.session_url('session-answers', session_id), {
            'answers': [{'question_id': self.mcq.id, 'selected_option_id': option(other, 'A').id}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_focus_events_lead_to_lockout(self):
        session_id = self.start().data['session']['id']
        url = self.session_url('session-events', session_id)

        first = self.client.post(url, {'signal': 'visibility_hidden'}, format='json')
        self.assertTrue(first.data['counted'])
        self.assertTrue(first.data['warning_state']['show_modal'])
        merged = self.client.post(url, {'signal': 'blur'}, format='json')
        self.assertFalse(merged.data['counted'])

        dismissed = self.client.post(url, {'signal': 'dismiss'}, format='json')
        self.assertFalse(dismissed.data['warning_state']['show_modal'])

        ExamSession.objects.filter(id=session_id).update(last_warning_at=timezone.now() - timedelta(minutes=1))
        final = self.client.post(url, {'signal': 'blur'}, format='json')
        self.assertTrue(final.data['is_locked'])
        self.assertEqual(final.data['status'], 'auto_submitted')
        self.assertEqual(final.data['redirect'], 'dashboard')

    def test_client_timestamp_is_ignored_for_focus_events(self):
        session_id = self.start().data['session']['id']
        url = self.session_url('session-events', session_id)
        last = timezone.now() - timedelta(minutes=1)
        ExamSession.objects.filter(id=session_id).update(last_warning_at=last)

        stale = (last + timedelta(milliseconds=100)).isoformat()
        response = self.client.post(url, {'signal': 'blur', 'at': stale}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['counted'])
        self.assertGreater(ExamSession.objects.get(id=session_id).last_warning_at, last + timedelta(seconds=30))

    def test_submit_requires_confirm(self):
        session_id = self.start().data['session']['id']
        url = self.session_url('session-submit', session_id)
        self.assertEqual(self.client.post(url, {'confirm': False}, format='json').status_code, 400)

        response = self.client.post(url, {'confirm': True}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'submitted')

        again = self.client.post(url, {'confirm': True}, format='json')
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(again.data['redirect'], 'dashboard')

    def test_locked_session_refuses_reentry_and_writes(self):
        session_id = self.start().data['session']['id']
        self.client.post(self.session_url('session-submit', session_id), {'confirm': True}, format='json')

        self.assertEqual(self.start().status_code, status.HTTP_409_CONFLICT)
        response = self.client.put(self.session_url('session-answers', session_id), {
            'answers': [{'question_id': self.essay.id, 'answer_text': 'late'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        state = self.client.get(self.session_url('session-state', session_id))
        self.assertTrue(state.data['is_locked'])

    def test_expired_session_is_auto_submitted_on_poll(self):
        session_id = self.start().data['session']['id']
        ExamSession.objects.filter(id=session_id).update(started_at=timezone.now() - timedelta(minutes=31))
        state = self.client.get(self.session_url('session-state', session_id))
        self.assertEqual(state.data['remaining_seconds'], 0)
        self.assertEqual(ExamSession.objects.get(id=session_id).status, 'auto_submitted')

    def test_closed_exam_cannot_be_started(self):
        self.exam.open_date = timezone.now() + timedelta(days=1)
        self.exam.close_date = timezone.now() + timedelta(days=2)
        self.exam.save()
        self.assertEqual(self.start().status_code, status.HTTP_404_NOT_FOUND)

    def test_other_students_session_is_hidden(self):
        session_id = self.start().data['session']['id']
        self.client.force_authenticate(user=make_user('peer@example.com'))
        response = self.client.get(self.session_url('session-state', session_id))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_teacher_cannot_take_exam(self):
        self.client.force_authenticate(user=self.teacher)
        self.assertEqual(self.start().status_code, status.HTTP_403_FORBIDDEN)

    def test_attempt_list(self):
        self.start()
        response = self.client.get(reverse('student-attempts'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)


class GradingFlowTest(SessionAPITestCase):
    def submit_answers(self):
        session_id = self.start().data['session']['id']
        self.client.put(self.session_url('session-answers', session_id), {
            'answers': [
                {'question_id': self.mcq.id, 'selected_option_id': option(self.mcq, 'B').id},
                {'question_id': self.essay.id, 'answer_text': 'My essay'},
            ],
        }, format='json')
        self.client.post(self.session_url('session-submit', session_id), {'confirm': True}, format='json')
        return session_id

    def test_grade_and_student_result(self):
        session_id = self.submit_answers()

        pending = self.client.get(reverse('grading-pending'))
        self.assertEqual(pending.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.teacher)
        pending = self.client.get(reverse('grading-pending'))
        self.assertEqual([s['id'] for s in pending.data], [session_id])

        preview = self.client.get(reverse('grading-preview', args=[session_id]))
        self.assertEqual(preview.data['suggested_total'], 2)
        self.assertEqual(preview.data['max_points'], 7)

        response = self.client.post(reverse('grading-finalize', args=[session_id]), {
            'grades': [{'question_id': self.essay.id, 'points': 5, 'comment': 'Excellent'}],
            'comments': 'Great work',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_points'], 7)
        self.assertEqual(response.data['grade_letter'], 'A')
        self.assertEqual(self.client.get(reverse('grading-pending')).data, [])

        self.client.force_authenticate(user=self.student)
        result = self.client.get(self.session_url('session-result', session_id))
        self.assertEqual(result.data['result']['total_points'], 7)
        self.assertNotIn('answers', result.data)

    def test_review_shows_answers_when_allowed(self):
        self.exam.allow_review = True
        self.exam.save()
        session_id = self.submit_answers()
        self.client.force_authenticate(user=self.teacher)
        self.client.post(reverse('grading-finalize', args=[session_id]), {}, format='json')

        self.client.force_authenticate(user=self.student)
        result = self.client.get(self.session_url('session-result', session_id))
        self.assertEqual(len(result.data['answers']), 2)

    def test_out_of_range_grade_is_400(self):
        session_id = self.submit_answers()
        self.client.force_authenticate(user=self.teacher)
        response = self.client.post(reverse('grading-finalize', args=[session_id]), {
            'grades': [{'question_id': self.essay.id, 'points': 9}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_other_teacher_cannot_grade(self):
        session_id = self.submit_answers()
        self.client.force_authenticate(user=self.other_teacher)
        response = self.client.get(reverse('grading-preview', args=[session_id]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_block_session(self):
        session_id = self.start().data['session']['id']
        self.client.force_authenticate(user=self.teacher)
        response = self.client.post(reverse('session-block', args=[session_id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'blocked')
        again = self.client.post(reverse('session-block', args=[session_id]))
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)

        self.client.force_authenticate(user=self.student)
        self.assertEqual(self.start().data['status'], 'blocked')

    def test_grading_preview_store_failure_is_503(self):
        session_id = self.submit_answers()
        self.client.force_authenticate(user=self.teacher)
        with mock.patch('assessments.store.ExamStore.list_questions', side_effect=DatabaseError("down")):
            with self.assertLogs('assessments.grading', level='ERROR'):
                response = self.client.get(reverse('grading-preview', args=[session_id]))
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertIn('error', response.data)

    def test_student_result_store_failure_is_503(self):
        session_id = self.submit_answers()
        with mock.patch('assessments.store.ExamStore.get_result', side_effect=DatabaseError("down")):
            with self.assertLogs('assessments.views', level='ERROR'):
                response = self.client.get(self.session_url('session-result', session_id))
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertIn('error', response.data)
