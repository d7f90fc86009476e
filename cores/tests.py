from django.core.cache import cache
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from assessments.tests.factories import make_user
from .models import AuditLog, PlatformSetting


class PlatformSettingTest(APITestCase):
    def setUp(self):
        cache.clear()
        self.admin = make_user('admin@example.com', role='admin', is_staff=True)

    def test_singleton(self):
        first = PlatformSetting.load()
        PlatformSetting(default_exam_duration=90).save()
        self.assertEqual(PlatformSetting.objects.count(), 1)
        self.assertEqual(PlatformSetting.load().default_exam_duration, 90)
        self.assertEqual(first.pk, 1)

    def test_admin_updates_settings(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.put(reverse('platform-settings'), {'default_max_warnings': 5}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(PlatformSetting.load().default_max_warnings, 5)
        self.assertTrue(AuditLog.objects.filter(action='SETTINGS').exists())

    def test_non_admin_forbidden(self):
        self.client.force_authenticate(user=make_user('t@example.com', role='teacher'))
        self.assertEqual(self.client.get(reverse('platform-settings')).status_code, status.HTTP_403_FORBIDDEN)


class AuditLogAPITest(APITestCase):
    def test_filter_by_action(self):
        admin = make_user('admin@example.com', role='admin', is_staff=True)
        AuditLog.objects.create(actor=admin, action='BLOCK', target_model='ExamSession', target_object_id='3')
        AuditLog.objects.create(actor=admin, action='GRADE', target_model='ExamResult', target_object_id='1')
        self.client.force_authenticate(user=admin)

        response = self.client.get(reverse('audit-logs'), {'action': 'BLOCK'})
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['actor_email'], 'admin@example.com')

        by_session = self.client.get(reverse('audit-logs'), {'session_id': '3'})
        self.assertEqual(len(by_session.data), 1)
