# assessments/autosave.py
import logging
from collections import namedtuple
from datetime import timedelta

from django.db import DatabaseError
from django.utils import timezone

from .exceptions import PersistFailure, SessionLocked

logger = logging.getLogger(__name__)

# One in-memory answer. Exactly one of answer_text / selected_option_id is meaningful.
AnswerDraft = namedtuple('AnswerDraft', ['question_id', 'answer_text', 'selected_option_id'])


class SaveStatus:
    IDLE = 'idle'
    SAVING = 'saving'
    SAVED = 'saved'


class AutosaveScheduler:
    """
    Periodically writes every in-memory answer of a session to the store.

    A failed tick is logged and left for the next one; it never aborts
    the attempt. `flush()` is the synchronous variant used right before
    submit and raises instead.

    `on_locked` is called once the store reports the session as locked.
    """

    def __init__(self, store, session_id, answers_provider, interval_seconds=10,
                 saved_display_seconds=2, clock=timezone.now, on_locked=None):
        self.store = store
        self.session_id = session_id
        self.answers_provider = answers_provider
        self.interval_seconds = interval_seconds
        self.saved_display = timedelta(seconds=saved_display_seconds)
        self.clock = clock
        self.on_locked = on_locked
        self.last_saved_at = None
        self.last_error = None
        self._saving = False
        self._task = None

    @property
    def status(self):
        if self._saving:
            return SaveStatus.SAVING
        if self.last_saved_at is not None and self.clock() - self.last_saved_at < self.saved_display:
            return SaveStatus.SAVED
        return SaveStatus.IDLE

    def _write(self):
        drafts = list(self.answers_provider().values())
        now = self.clock()
        self._saving = True
        try:
            self.store.upsert_answers(self.session_id, drafts, saved_at=now)
        finally:
            self._saving = False
        self.last_saved_at = now
        self.last_error = None
        return len(drafts)

    def save(self):
        """One autosave tick. Returns True when the answers reached the store."""
        try:
            written = self._write()
        except SessionLocked:
            logger.info("Session %s is locked, stopping autosave", self.session_id)
            self.stop()
            if self.on_locked is not None:
                self.on_locked()
            return False
        except DatabaseError as exc:
            self.last_error = exc
            logger.warning("Autosave failed for session %s, retrying next tick", self.session_id, exc_info=True)
            return False
        logger.debug("Autosaved %s answers for session %s", written, self.session_id)
        return True

    def flush(self):
        try:
            return self._write()
        except DatabaseError as exc:
            self.last_error = exc
            raise PersistFailure() from exc

    def start(self, scheduler):
        self.stop()
        self._task = scheduler.call_every(self.interval_seconds, self.save, name='autosave')
        return self._task

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

    @property
    def running(self):
        return self._task is not None
