# assessments/anticheat.py
"""
Focus-loss detection and the warning / lockout policy.

Blur and visibility-hidden usually arrive together for a single tab
switch. They are merged: a focus-loss signal arriving within
`debounce_seconds` of the last counted one belongs to the same episode
and is not counted again.

The suppressed browser actions are a deterrent only. Clients apply them
on their side and a determined user can get around them; nothing in the
grading or locking logic relies on them.
"""
import logging
from datetime import timedelta

from django.utils import timezone

logger = logging.getLogger(__name__)

VISIBILITY_HIDDEN = 'visibility_hidden'
BLUR = 'blur'
FOCUS_LOSS_SIGNALS = (VISIBILITY_HIDDEN, BLUR)

SUPPRESSED_ACTIONS = ('contextmenu', 'selectstart', 'copy', 'cut', 'paste')


class CheatDetector:
    def __init__(self, enabled, max_warnings, on_warning=None, on_max_warnings=None,
                 warning_count=0, last_warning_at=None, debounce_seconds=1.0, clock=timezone.now):
        self.enabled = enabled
        self.max_warnings = max_warnings
        self.on_warning = on_warning
        self.on_max_warnings = on_max_warnings
        self.warning_count = warning_count
        self.last_warning_at = last_warning_at
        self.debounce = timedelta(seconds=debounce_seconds)
        self.clock = clock
        self.show_warning = False
        self._max_fired = False
        self._listening = False

    # Listening is scoped: start() when the attempt begins, stop() on teardown.
    def start(self):
        self._listening = self.enabled

    def stop(self):
        self._listening = False

    @property
    def listening(self):
        return self._listening

    @property
    def max_reached(self):
        return self._max_fired

    @property
    def exhausted(self):
        """Counter already at the threshold, e.g. when resuming after a failed lockout."""
        return self.enabled and 0 < self.max_warnings <= self.warning_count

    @property
    def suppressed_actions(self):
        return SUPPRESSED_ACTIONS if self.enabled else ()

    def should_suppress(self, action):
        return action in self.suppressed_actions

    def report(self, signal_name, at=None):
        """
        Feed one focus-loss signal. Returns True when it opened a new
        warning episode.
        """
        if signal_name not in FOCUS_LOSS_SIGNALS:
            raise ValueError(f"Unknown focus signal: {signal_name}")
        if not self._listening or self._max_fired:
            return False

        at = at or self.clock()
        if self.last_warning_at is not None and at - self.last_warning_at < self.debounce:
            logger.debug("Focus signal %s merged into the current episode", signal_name)
            return False

        counted = False
        if self.warning_count < self.max_warnings:
            self.warning_count += 1
            self.last_warning_at = at
            self.show_warning = True
            counted = True
            logger.info("Focus loss warning %s/%s (%s)", self.warning_count, self.max_warnings, signal_name)
            if self.on_warning is not None:
                self.on_warning(self.warning_count, at, signal_name)

        if self.warning_count >= self.max_warnings:
            self.fire_lockout()
        return counted

    def fire_lockout(self):
        if self._max_fired:
            return
        self._max_fired = True
        self._listening = False
        logger.warning("Maximum warnings reached (%s)", self.max_warnings)
        if self.on_max_warnings is not None:
            self.on_max_warnings()

    def dismiss_warning(self):
        self.show_warning = False

    def warning_state(self):
        return {
            'count': self.warning_count,
            'max': self.max_warnings,
            'show_modal': self.show_warning,
        }
