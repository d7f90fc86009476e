# assessments/attempt.py
"""
Session lifecycle for one student's attempt at one exam.

    NOT_STARTED -> IN_PROGRESS -> SUBMITTED | AUTO_SUBMITTED | BLOCKED

The attempt owns the timer, the cheat detector and the autosave task.
Timer expiry and warning exhaustion both end in a forced submit with
status AUTO_SUBMITTED; BLOCKED is only set by an administrative lock
(see `block_session`). Whoever performs the conditional lock update in
the store first wins, every later submit is a no-op.

Used two ways:
  * long-lived, attached to a Scheduler (`with attempt.running(scheduler)`),
    the timer ticks every second and autosave runs on its interval;
  * per request, where a view resumes the attempt, calls one operation
    and lets it go. `check_time()` enforces expiry on every such call.
"""
import logging
from contextlib import contextmanager

from django.db import DatabaseError
from django.utils import timezone

from exams.models import Exam

from . import scoring
from .anticheat import FOCUS_LOSS_SIGNALS, CheatDetector
from .autosave import AnswerDraft, AutosaveScheduler
from .conf import engine_setting
from .exceptions import LoadFailure, PersistFailure, SessionLocked, SubmitFailure, ValidationFailure
from .models import ExamSession
from .signals import notify, session_locked, warning_issued
from .store import ExamStore
from .timer import ExamTimer

logger = logging.getLogger(__name__)

NOT_STARTED = 'not_started'
Status = ExamSession.Status


class ExamAttempt:

    def __init__(self, exam_id, student_id, store=None, clock=timezone.now):
        self.exam_id = exam_id
        self.student_id = student_id
        self.store = store or ExamStore()
        self.clock = clock

        self.state = NOT_STARTED
        self.created = False
        self.exam = None
        self.session = None
        self.questions = []
        self.answers = {}

        self.timer = None
        self.detector = None
        self.autosave = None

        self.submitting = False
        self.confirm_pending = False
        self.last_error = None

        self._scheduler = None
        self._retry_task = None
        self._retry_attempt = 0

    # ------------------------------------------------------------------
    # Create or resume
    # ------------------------------------------------------------------

    def start(self):
        """
        Look up the (exam, student) session, resuming it or creating one.
        Raises SessionLocked for a terminal session and LoadFailure when
        anything needed to take the exam is unavailable.
        """
        try:
            self.exam = self.store.get_exam(self.exam_id)
            session = self.store.find_session(self.exam_id, self.student_id)
            if session is not None and (session.is_locked or session.is_terminal):
                raise SessionLocked(status=session.status)

            if session is None:
                now = self.clock()
                if not self.exam.is_open(now):
                    raise LoadFailure("This exam is not open.", status_code=404)
                session, self.created = self.store.create_session(self.exam_id, self.student_id, now)
                if session.is_locked:
                    raise SessionLocked(status=session.status)

            self.questions = self.store.list_questions(self.exam_id)
            saved = self.store.list_answers(session.id)
        except Exam.DoesNotExist as exc:
            raise LoadFailure("Exam not found.", status_code=404) from exc
        except DatabaseError as exc:
            logger.error("Could not load exam %s for student %s", self.exam_id, self.student_id, exc_info=True)
            raise LoadFailure() from exc

        self.session = session
        self.state = Status.IN_PROGRESS
        self.answers = {
            answer.question_id: AnswerDraft(answer.question_id, answer.answer_text, answer.selected_option_id)
            for answer in saved
        }
        self._build_components()
        logger.info(
            "%s session %s (exam %s, student %s)",
            "Created" if self.created else "Resumed", session.id, self.exam_id, self.student_id,
        )

        if self.detector.exhausted:
            # A previous lockout did not manage to lock the row
            self.detector.fire_lockout()
        else:
            self.check_time()
        return session

    def _build_components(self):
        self.timer = ExamTimer(
            self.session.started_at,
            self.exam.duration_minutes,
            on_expire=self._handle_expiry,
            clock=self.clock,
        )
        self.detector = CheatDetector(
            enabled=self.exam.anti_cheat_enabled,
            max_warnings=self.exam.max_warnings,
            on_warning=self._handle_warning,
            on_max_warnings=self._handle_max_warnings,
            warning_count=self.session.warning_count,
            last_warning_at=self.session.last_warning_at,
            debounce_seconds=engine_setting('FOCUS_LOSS_DEBOUNCE_SECONDS'),
            clock=self.clock,
        )
        self.detector.start()
        self.autosave = AutosaveScheduler(
            self.store,
            self.session.id,
            lambda: self.answers,
            interval_seconds=engine_setting('AUTOSAVE_INTERVAL_SECONDS'),
            saved_display_seconds=engine_setting('SAVED_STATUS_DISPLAY_SECONDS'),
            clock=self.clock,
            on_locked=self._adopt_stored_state,
        )

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def attach(self, scheduler):
        self._require_started()
        self._scheduler = scheduler
        if self.is_locked:
            return
        self.timer.start(scheduler, engine_setting('TIMER_TICK_SECONDS'))
        self.autosave.start(scheduler)

    def detach(self):
        """Tear down every periodic task and listener. Safe to call twice."""
        if self.timer is not None:
            self.timer.stop()
        if self.autosave is not None:
            self.autosave.stop()
        if self.detector is not None:
            self.detector.stop()
        if self._retry_task is not None:
            self._retry_task.cancel()
            self._retry_task = None
        self._scheduler = None

    @contextmanager
    def running(self, scheduler):
        if self.state == NOT_STARTED:
            self.start()
        self.attach(scheduler)
        try:
            yield self
        finally:
            self.detach()

    # ------------------------------------------------------------------
    # Student operations
    # ------------------------------------------------------------------

    def on_answer_change(self, question_id, answer_text=None, selected_option_id=None):
        """Replace the in-memory answer. Persisted by the next autosave tick or by submit."""
        self._require_open()
        question = next((q for q in self.questions if q.id == question_id), None)
        if question is None:
            raise ValidationFailure(f"Question {question_id} is not part of this exam.")

        if question.has_options:
            if selected_option_id is not None and not any(opt.id == selected_option_id for opt in question.options.all()):
                raise ValidationFailure(f"Option {selected_option_id} does not belong to question {question_id}.")
            draft = AnswerDraft(question_id, None, selected_option_id)
        else:
            draft = AnswerDraft(question_id, answer_text, None)
        self.answers[question_id] = draft
        return draft

    def save_answers(self):
        """Run one autosave tick now. Never raises for store failures."""
        self._require_open()
        return self.autosave.save()

    def report_focus_loss(self, signal_name, at=None):
        self._require_started()
        if signal_name not in FOCUS_LOSS_SIGNALS:
            raise ValidationFailure(f"Unknown focus signal: {signal_name}")
        if self.is_locked:
            return False
        return self.detector.report(signal_name, at)

    def dismiss_warning(self):
        if self.detector is not None:
            self.detector.dismiss_warning()

    def remaining_time(self):
        self._require_started()
        if self.is_locked:
            return 0
        return self.timer.remaining_seconds()

    def check_time(self):
        """One timer tick; fires the forced submit if time is up."""
        self._require_started()
        if self.is_locked:
            return 0
        return self.timer.tick()

    def warning_state(self):
        self._require_started()
        state = self.detector.warning_state()
        state['max_reached'] = self.detector.max_reached
        return state

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def request_submit(self):
        self._require_open()
        self.confirm_pending = True

    def cancel_submit(self):
        self.confirm_pending = False

    def confirm_submit(self):
        if not self.confirm_pending:
            raise ValidationFailure("Submit has not been requested.")
        return self.submit(is_forced=False)

    def submit(self, is_forced=False):
        """
        Flush answers, then lock the session. Returns True when this call
        performed the terminal transition, False when it was a no-op
        (already locked, lost the race, or a submit is already in flight).
        """
        self._require_started()
        if self.is_locked:
            return False
        if self.submitting:
            return False
        if not is_forced and not self.confirm_pending:
            raise ValidationFailure("Manual submit must be confirmed.")

        status = Status.AUTO_SUBMITTED if is_forced else Status.SUBMITTED
        self.submitting = True
        try:
            try:
                self.autosave.flush()
            except SessionLocked:
                return self._adopt_stored_state()
            except PersistFailure as exc:
                self.last_error = exc
                raise SubmitFailure("Answers could not be saved before submitting.") from exc

            now = self.clock()
            locked = self._lock_with_retries(status, now)
            if not locked:
                return self._adopt_stored_state()

            self._finish(status, now)
            return True
        finally:
            self.submitting = False
            self.confirm_pending = False

    def _lock_with_retries(self, status, now):
        attempts = max(1, engine_setting('SUBMIT_RETRY_ATTEMPTS'))
        for attempt in range(1, attempts + 1):
            try:
                return self.store.lock_session(self.session.id, status, now)
            except DatabaseError as exc:
                self.last_error = exc
                logger.warning(
                    "Lock write failed for session %s (attempt %s/%s)",
                    self.session.id, attempt, attempts, exc_info=True,
                )
        raise SubmitFailure() from self.last_error

    def _adopt_stored_state(self):
        try:
            self.session = self.store.get_session(self.session.id)
        except DatabaseError:
            logger.warning("Could not reload session %s after losing the lock", self.session.id, exc_info=True)
            return False
        if self.session.is_locked:
            self.state = self.session.status
            self.detach()
            logger.info("Session %s was already locked as %s", self.session.id, self.session.status)
        return False

    def _finish(self, status, now):
        self.session.status = status
        self.session.submitted_at = now
        self.session.is_locked = True
        self.state = status
        self.last_error = None
        self.detach()
        logger.info("Session %s locked as %s", self.session.id, status)

        self._store_preview_grades()
        notify(session_locked, ExamSession, session=self.session, status=status, actor=None)

    def _store_preview_grades(self):
        grades = []
        for question in self.questions:
            if question.id not in self.answers:
                continue
            is_correct, points = scoring.score_answer(question, self.answers[question.id])
            grades.append((question.id, is_correct, points if is_correct is not None else None, None))
        try:
            self.store.save_grades(self.session.id, grades)
        except DatabaseError:
            logger.warning("Could not store preview grades for session %s", self.session.id, exc_info=True)

    # ------------------------------------------------------------------
    # Callbacks from timer / detector
    # ------------------------------------------------------------------

    def _handle_warning(self, count, at, signal_name):
        self.session.warning_count = count
        self.session.last_warning_at = at
        try:
            self.store.record_warning(self.session.id, count, at)
        except DatabaseError:
            logger.warning("Could not persist warning %s for session %s", count, self.session.id, exc_info=True)
        notify(warning_issued, ExamSession, session=self.session, count=count, signal_name=signal_name, at=at)

    def _handle_max_warnings(self):
        self._forced_submit("max-warnings")

    def _handle_expiry(self):
        self._forced_submit("time-up")

    def _forced_submit(self, reason):
        try:
            self.submit(is_forced=True)
        except SubmitFailure as exc:
            self.last_error = exc
            logger.error("Forced submit (%s) failed for session %s", reason, self.session.id)
            self._schedule_retry(reason)
        else:
            self._retry_attempt = 0

    def _schedule_retry(self, reason):
        if self._scheduler is None:
            # Per-request use: the next request re-checks the timer and tries again
            return
        base = engine_setting('SUBMIT_RETRY_BACKOFF_SECONDS')
        cap = engine_setting('SUBMIT_RETRY_MAX_BACKOFF_SECONDS')
        delay = min(cap, base * (2 ** self._retry_attempt))
        self._retry_attempt += 1
        logger.info("Retrying forced submit of session %s in %ss", self.session.id, delay)
        self._retry_task = self._scheduler.call_later(
            delay, lambda: self._forced_submit(reason), name='forced-submit-retry',
        )

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------

    @property
    def is_locked(self):
        return self.state in ExamSession.TERMINAL_STATUSES

    @property
    def save_status(self):
        return self.autosave.status if self.autosave is not None else 'idle'

    def client_policy(self):
        return {
            'suppressed_actions': list(self.detector.suppressed_actions),
            'focus_debounce_seconds': engine_setting('FOCUS_LOSS_DEBOUNCE_SECONDS'),
            'autosave_interval_seconds': engine_setting('AUTOSAVE_INTERVAL_SECONDS'),
            'timer_tick_seconds': engine_setting('TIMER_TICK_SECONDS'),
        }

    def snapshot(self):
        self._require_started()
        return {
            'session_id': self.session.id,
            'status': self.session.status,
            'is_locked': self.session.is_locked,
            'started_at': self.session.started_at,
            'submitted_at': self.session.submitted_at,
            'remaining_seconds': self.remaining_time(),
            'formatted_time': self.timer.formatted() if not self.is_locked else '0:00',
            'urgency': self.timer.urgency() if not self.is_locked else 'critical',
            'warning_state': self.warning_state(),
            'save_status': self.save_status,
        }

    def _require_started(self):
        if self.state == NOT_STARTED:
            raise RuntimeError("Attempt has not been started")

    def _require_open(self):
        self._require_started()
        if self.is_locked:
            raise SessionLocked(status=self.state)


def block_session(session, actor=None, clock=timezone.now, store=None):
    """Administrative lock. Returns True when the session was still open."""
    store = store or ExamStore()
    now = clock()
    try:
        locked = store.lock_session(session.id, Status.BLOCKED, now)
    except DatabaseError as exc:
        raise SubmitFailure("The session could not be blocked.") from exc
    if locked:
        session.status = Status.BLOCKED
        session.submitted_at = now
        session.is_locked = True
        logger.info("Session %s blocked by %s", session.id, actor)
        notify(session_locked, ExamSession, session=session, status=Status.BLOCKED, actor=actor)
    return locked
