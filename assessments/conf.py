# assessments/conf.py
from django.conf import settings

DEFAULTS = {
    'TIMER_TICK_SECONDS': 1,
    'AUTOSAVE_INTERVAL_SECONDS': 10,
    'SAVED_STATUS_DISPLAY_SECONDS': 2,
    'FOCUS_LOSS_DEBOUNCE_SECONDS': 1.0,
    'SUBMIT_RETRY_ATTEMPTS': 3,
    'SUBMIT_RETRY_BACKOFF_SECONDS': 2,
    'SUBMIT_RETRY_MAX_BACKOFF_SECONDS': 30,
}


def engine_setting(name):
    """Read one EXAM_ENGINE value, falling back to the built-in default."""
    overrides = getattr(settings, 'EXAM_ENGINE', None) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
