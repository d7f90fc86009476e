# assessments/timer.py
import logging
from datetime import timedelta

from django.utils import timezone

logger = logging.getLogger(__name__)

ONE_SECOND = timedelta(seconds=1)


def format_remaining(seconds):
    """H:MM:SS from one hour up, M:SS below."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class ExamTimer:
    """
    Wall-clock exam timer.

    Remaining time is always recomputed from `started_at`, never from
    counted ticks, so a reload or a late tick gives the right answer.
    `on_expire` is called once, on the first tick that sees zero.
    """

    def __init__(self, started_at, duration_minutes, on_expire=None, clock=timezone.now):
        self.started_at = started_at
        self.duration_minutes = duration_minutes
        self.on_expire = on_expire
        self.clock = clock
        self._expired_fired = False
        self._task = None

    @property
    def deadline(self):
        return self.started_at + timedelta(minutes=self.duration_minutes)

    @property
    def total_seconds(self):
        return self.duration_minutes * 60

    def remaining_seconds(self, now=None):
        now = now or self.clock()
        return max(0, (self.deadline - now) // ONE_SECOND)

    @property
    def has_fired(self):
        return self._expired_fired

    def tick(self, now=None):
        remaining = self.remaining_seconds(now)
        if remaining <= 0 and not self._expired_fired:
            self._expired_fired = True
            self.stop()
            logger.info("Exam time expired (started %s, %s min)", self.started_at.isoformat(), self.duration_minutes)
            if self.on_expire is not None:
                self.on_expire()
        return remaining

    # --- presentation projections, no side effects ---

    def formatted(self, now=None):
        return format_remaining(self.remaining_seconds(now))

    def urgency(self, now=None):
        if not self.total_seconds:
            return 'critical'
        percent_left = self.remaining_seconds(now) * 100 / self.total_seconds
        if percent_left > 50:
            return 'normal'
        if percent_left > 25:
            return 'caution'
        if percent_left > 10:
            return 'warning'
        return 'critical'

    # --- scheduling ---

    def start(self, scheduler, tick_seconds=1):
        self.stop()
        self._task = scheduler.call_every(tick_seconds, self.tick, name='exam-timer', run_now=True)
        return self._task

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None
