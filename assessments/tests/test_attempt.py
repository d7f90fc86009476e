from unittest import mock

from django.db import DatabaseError
from django.test import TestCase, override_settings

from assessments.anticheat import BLUR, VISIBILITY_HIDDEN
from assessments.attempt import ExamAttempt, block_session
from assessments.exceptions import LoadFailure, SessionLocked, SubmitFailure, ValidationFailure
from assessments.models import ExamSession, StudentAnswer
from assessments.scheduler import Scheduler
from assessments.store import ExamStore
from cores.models import AuditLog
from .factories import FakeClock, T0, add_mcq, add_written, make_exam, make_user, option

Status = ExamSession.Status


def flaky_store(method, failures):
    """A real store whose `method` raises DatabaseError for its first `failures` calls."""
    store = ExamStore()
    real = getattr(store, method)

    def side_effect(*args, **kwargs):
        if patched.call_count <= failures:
            raise DatabaseError("store unavailable")
        return real(*args, **kwargs)

    patched = mock.Mock(side_effect=side_effect)
    setattr(store, method, patched)
    return store


class AttemptTestCase(TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.teacher = make_user('teacher@example.com', role='teacher')
        self.student = make_user('student@example.com')
        self.exam = make_exam(self.teacher, duration_minutes=30, max_warnings=2)
        self.mcq = add_mcq(self.exam, 1, points=2)
        self.short = add_written(self.exam, 2, points=3, correct_answer='Paris')

    def attempt(self, store=None):
        attempt = ExamAttempt(self.exam.id, self.student.id, store=store, clock=self.clock)
        attempt.start()
        return attempt

    def stored_session(self):
        return ExamSession.objects.get(exam=self.exam, student=self.student)


class StartOrResumeTest(AttemptTestCase):
    def test_first_start_creates_session(self):
        attempt = self.attempt()
        self.assertTrue(attempt.created)
        self.assertEqual(attempt.state, Status.IN_PROGRESS)
        self.assertEqual(attempt.session.started_at, T0)
        self.assertEqual([q.id for q in attempt.questions], [self.mcq.id, self.short.id])

    def test_second_start_resumes_same_session(self):
        first = self.attempt()
        first.on_answer_change(self.short.id, answer_text="Paris")
        first.save_answers()

        self.clock.advance(120)
        second = self.attempt()
        self.assertFalse(second.created)
        self.assertEqual(second.session.id, first.session.id)
        self.assertEqual(second.answers[self.short.id].answer_text, "Paris")
        self.assertEqual(second.remaining_time(), 30 * 60 - 120)
        self.assertEqual(ExamSession.objects.count(), 1)

    def test_locked_session_cannot_be_reentered(self):
        attempt = self.attempt()
        attempt.request_submit()
        attempt.confirm_submit()
        with self.assertRaises(SessionLocked) as ctx:
            self.attempt()
        self.assertEqual(ctx.exception.status, Status.SUBMITTED)

    def test_closed_exam_refuses_new_session(self):
        self.clock.advance(2 * 24 * 3600)
        with self.assertRaises(LoadFailure) as ctx:
            self.attempt()
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertFalse(ExamSession.objects.exists())

    def test_unknown_exam(self):
        with self.assertRaises(LoadFailure):
            ExamAttempt(999999, self.student.id, clock=self.clock).start()

    def test_store_outage_on_load(self):
        with self.assertLogs('assessments.attempt', level='ERROR'):
            with self.assertRaises(LoadFailure) as ctx:
                self.attempt(store=flaky_store('get_exam', 1))
        self.assertEqual(ctx.exception.status_code, 503)

    def test_resume_after_deadline_auto_submits(self):
        attempt = self.attempt()
        attempt.on_answer_change(self.mcq.id, selected_option_id=option(self.mcq, 'B').id)
        attempt.save_answers()

        self.clock.advance(31 * 60)
        resumed = self.attempt()
        self.assertTrue(resumed.is_locked)
        self.assertEqual(self.stored_session().status, Status.AUTO_SUBMITTED)


class AnswerTest(AttemptTestCase):
    def test_answer_change_is_in_memory_until_saved(self):
        attempt = self.attempt()
        attempt.on_answer_change(self.short.id, answer_text="Lyon")
        self.assertFalse(StudentAnswer.objects.exists())
        self.assertTrue(attempt.save_answers())
        answer = StudentAnswer.objects.get()
        self.assertEqual(answer.answer_text, "Lyon")
        self.assertEqual(answer.last_saved_at, T0)

    def test_last_write_wins(self):
        attempt = self.attempt()
        attempt.on_answer_change(self.mcq.id, selected_option_id=option(self.mcq, 'A').id)
        attempt.save_answers()
        attempt.on_answer_change(self.mcq.id, selected_option_id=option(self.mcq, 'C').id)
        attempt.save_answers()
        self.assertEqual(StudentAnswer.objects.get().selected_option, option(self.mcq, 'C'))

    def test_unknown_question_rejected(self):
        attempt = self.attempt()
        with self.assertRaises(ValidationFailure):
            attempt.on_answer_change(123456, answer_text="x")

    def test_foreign_option_rejected(self):
        other = add_mcq(self.exam, 3)
        attempt = self.attempt()
        with self.assertRaises(ValidationFailure):
            attempt.on_answer_change(self.mcq.id, selected_option_id=option(other, 'A').id)

    def test_autosave_failure_keeps_answers(self):
        attempt = self.attempt(store=flaky_store('upsert_answers', 1))
        attempt.on_answer_change(self.short.id, answer_text="Paris")
        with self.assertLogs('assessments.autosave', level='WARNING'):
            self.assertFalse(attempt.save_answers())
        self.assertEqual(attempt.answers[self.short.id].answer_text, "Paris")
        self.assertTrue(attempt.save_answers())

    def test_writes_after_lock_are_refused(self):
        attempt = self.attempt()
        attempt.request_submit()
        attempt.confirm_submit()
        with self.assertRaises(SessionLocked):
            attempt.on_answer_change(self.short.id, answer_text="late")


class SubmitTest(AttemptTestCase):
    def test_manual_submit_needs_confirmation(self):
        attempt = self.attempt()
        with self.assertRaises(ValidationFailure):
            attempt.submit()
        with self.assertRaises(ValidationFailure):
            attempt.confirm_submit()
        attempt.request_submit()
        attempt.cancel_submit()
        with self.assertRaises(ValidationFailure):
            attempt.confirm_submit()

    def test_manual_submit_flushes_then_locks(self):
        attempt = self.attempt()
        attempt.on_answer_change(self.mcq.id, selected_option_id=option(self.mcq, 'B').id)
        attempt.on_answer_change(self.short.id, answer_text="paris")
        self.clock.advance(60)
        attempt.request_submit()
        self.assertTrue(attempt.confirm_submit())

        session = self.stored_session()
        self.assertEqual(session.status, Status.SUBMITTED)
        self.assertTrue(session.is_locked)
        self.assertEqual(session.submitted_at, self.clock())
        answers = {a.question_id: a for a in session.answers.all()}
        self.assertEqual(len(answers), 2)
        # Auto-grade preview is written right after the lock
        self.assertTrue(answers[self.mcq.id].is_correct)
        self.assertEqual(answers[self.mcq.id].points_earned, 2)
        self.assertEqual(answers[self.short.id].points_earned, 3)

    def test_submit_is_idempotent(self):
        attempt = self.attempt()
        attempt.request_submit()
        self.assertTrue(attempt.confirm_submit())
        self.assertFalse(attempt.submit(is_forced=True))
        self.assertEqual(self.stored_session().status, Status.SUBMITTED)
        self.assertEqual(AuditLog.objects.filter(action='SUBMIT').count(), 1)

    def test_second_context_loses_the_race(self):
        first = self.attempt()
        second = self.attempt()
        second.on_answer_change(self.short.id, answer_text="too late")

        first.request_submit()
        self.assertTrue(first.confirm_submit())
        self.assertFalse(second.submit(is_forced=True))
        self.assertEqual(second.state, Status.SUBMITTED)
        self.assertEqual(self.stored_session().status, Status.SUBMITTED)
        self.assertFalse(StudentAnswer.objects.filter(answer_text="too late").exists())

    def test_flush_failure_keeps_session_open(self):
        attempt = self.attempt(store=flaky_store('upsert_answers', 1))
        attempt.on_answer_change(self.short.id, answer_text="Paris")
        attempt.request_submit()
        with self.assertRaises(SubmitFailure):
            attempt.confirm_submit()
        self.assertFalse(self.stored_session().is_locked)
        self.assertEqual(attempt.state, Status.IN_PROGRESS)
        # The student can try again
        attempt.request_submit()
        self.assertTrue(attempt.confirm_submit())

    @override_settings(EXAM_ENGINE={'SUBMIT_RETRY_ATTEMPTS': 2})
    def test_lock_write_failure_is_retried_then_reported(self):
        attempt = self.attempt(store=flaky_store('lock_session', 2))
        attempt.request_submit()
        with self.assertLogs('assessments.attempt', level='WARNING'):
            with self.assertRaises(SubmitFailure):
                attempt.confirm_submit()
        self.assertFalse(self.stored_session().is_locked)

        attempt.request_submit()
        self.assertTrue(attempt.confirm_submit())

    def test_expiry_auto_submits_once(self):
        attempt = self.attempt()
        attempt.on_answer_change(self.short.id, answer_text="Paris")
        self.clock.advance(30 * 60)
        self.assertEqual(attempt.check_time(), 0)
        attempt.check_time()

        session = self.stored_session()
        self.assertEqual(session.status, Status.AUTO_SUBMITTED)
        self.assertEqual(session.answers.get().answer_text, "Paris")
        self.assertEqual(AuditLog.objects.filter(action='SUBMIT').count(), 1)


class WarningTest(AttemptTestCase):
    def test_warnings_are_persisted_and_audited(self):
        attempt = self.attempt()
        self.assertTrue(attempt.report_focus_loss(VISIBILITY_HIDDEN))
        self.clock.advance(0.3)
        self.assertFalse(attempt.report_focus_loss(BLUR))

        session = self.stored_session()
        self.assertEqual(session.warning_count, 1)
        self.assertEqual(session.last_warning_at, T0)
        self.assertEqual(AuditLog.objects.filter(action='WARNING').count(), 1)

    def test_max_warnings_auto_submits(self):
        attempt = self.attempt()
        attempt.on_answer_change(self.short.id, answer_text="Paris")
        attempt.report_focus_loss(BLUR)
        self.clock.advance(10)
        attempt.report_focus_loss(BLUR)

        session = self.stored_session()
        self.assertEqual(session.warning_count, 2)
        self.assertEqual(session.status, Status.AUTO_SUBMITTED)
        self.assertTrue(attempt.warning_state()['max_reached'])
        self.assertFalse(attempt.report_focus_loss(BLUR))

    def test_counter_survives_reload(self):
        self.attempt().report_focus_loss(BLUR)
        self.clock.advance(60)
        resumed = self.attempt()
        self.assertEqual(resumed.warning_state()['count'], 1)
        resumed.report_focus_loss(BLUR)
        self.assertTrue(self.stored_session().is_locked)

    def test_exhausted_counter_locks_on_resume(self):
        attempt = self.attempt()
        ExamSession.objects.filter(id=attempt.session.id).update(warning_count=2)
        resumed = self.attempt()
        self.assertTrue(resumed.is_locked)
        self.assertEqual(self.stored_session().status, Status.AUTO_SUBMITTED)

    def test_disabled_anti_cheat_ignores_focus_loss(self):
        self.exam.anti_cheat_enabled = False
        self.exam.save()
        attempt = self.attempt()
        self.assertFalse(attempt.report_focus_loss(BLUR))
        self.assertEqual(attempt.client_policy()['suppressed_actions'], [])
        self.assertEqual(self.stored_session().warning_count, 0)

    def test_unknown_signal(self):
        with self.assertRaises(ValidationFailure):
            self.attempt().report_focus_loss('resize')


class ScheduledAttemptTest(AttemptTestCase):
    def run_for(self, scheduler, seconds):
        for _ in range(seconds):
            self.clock.advance(1)
            scheduler.run_pending()

    def test_background_autosave_and_timer(self):
        scheduler = Scheduler(clock=self.clock)
        attempt = ExamAttempt(self.exam.id, self.student.id, clock=self.clock)
        with attempt.running(scheduler):
            attempt.on_answer_change(self.short.id, answer_text="Paris")
            self.run_for(scheduler, 10)
            self.assertEqual(StudentAnswer.objects.get().answer_text, "Paris")

            self.run_for(scheduler, 30 * 60)
            self.assertEqual(attempt.state, Status.AUTO_SUBMITTED)
            self.assertEqual(scheduler.pending, [])

    def test_autosave_adopts_a_lock_made_elsewhere(self):
        scheduler = Scheduler(clock=self.clock)
        attempt = ExamAttempt(self.exam.id, self.student.id, clock=self.clock)
        with attempt.running(scheduler):
            block_session(self.stored_session(), actor=self.teacher, clock=self.clock)
            self.run_for(scheduler, 10)

            self.assertEqual(attempt.state, Status.BLOCKED)
            self.assertTrue(attempt.is_locked)
            self.assertEqual(scheduler.pending, [])
            self.assertFalse(attempt.report_focus_loss(BLUR))
        self.assertFalse(AuditLog.objects.filter(action='WARNING').exists())

    def test_leaving_tears_down_every_task(self):
        scheduler = Scheduler(clock=self.clock)
        attempt = ExamAttempt(self.exam.id, self.student.id, clock=self.clock)
        with attempt.running(scheduler):
            self.assertEqual(len(scheduler.pending), 2)
        self.assertEqual(scheduler.pending, [])
        self.run_for(scheduler, 31 * 60)
        self.assertFalse(self.stored_session().is_locked)

    @override_settings(EXAM_ENGINE={'SUBMIT_RETRY_ATTEMPTS': 1, 'SUBMIT_RETRY_BACKOFF_SECONDS': 2})
    def test_failed_forced_submit_retries_with_backoff(self):
        scheduler = Scheduler(clock=self.clock)
        store = flaky_store('lock_session', 2)
        attempt = ExamAttempt(self.exam.id, self.student.id, store=store, clock=self.clock)
        attempt.start()
        attempt.attach(scheduler)

        with self.assertLogs('assessments.attempt', level='WARNING'):
            self.run_for(scheduler, 30 * 60)
            self.assertFalse(self.stored_session().is_locked)
            # first retry after 2s fails again, second after a further 4s succeeds
            self.run_for(scheduler, 2)
            self.assertFalse(self.stored_session().is_locked)
            self.run_for(scheduler, 4)
        self.assertEqual(self.stored_session().status, Status.AUTO_SUBMITTED)
        attempt.detach()


class BlockSessionTest(AttemptTestCase):
    def test_block_locks_open_session(self):
        attempt = self.attempt()
        session = self.stored_session()
        self.assertTrue(block_session(session, actor=self.teacher, clock=self.clock))
        self.assertEqual(self.stored_session().status, Status.BLOCKED)
        self.assertFalse(block_session(session, actor=self.teacher, clock=self.clock))
        self.assertFalse(attempt.submit(is_forced=True))
        self.assertEqual(attempt.state, Status.BLOCKED)
        log = AuditLog.objects.get(action='BLOCK')
        self.assertEqual(log.actor, self.teacher)

    def test_block_reports_store_failure(self):
        self.attempt()
        with self.assertRaises(SubmitFailure):
            block_session(self.stored_session(), store=flaky_store('lock_session', 1), clock=self.clock)
