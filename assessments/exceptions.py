# assessments/exceptions.py
"""
Failure kinds raised by the exam session engine. Store errors are caught
at each operation boundary and re-raised as one of these. `status_code`
is the HTTP status the REST layer answers with.
"""


class ExamEngineError(Exception):
    default_message = "Exam engine error"
    status_code = 500

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class LoadFailure(ExamEngineError):
    """Exam, questions or session could not be loaded; the attempt cannot start."""
    default_message = "The exam could not be loaded."
    status_code = 503

    def __init__(self, message=None, status_code=None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class SessionLocked(ExamEngineError):
    """The session is terminal. Callers should send the student back to the dashboard."""
    default_message = "This exam session is locked."
    status_code = 409

    def __init__(self, message=None, status=None):
        super().__init__(message)
        self.status = status


class PersistFailure(ExamEngineError):
    default_message = "Answers could not be saved. They will be retried."
    status_code = 503


class SubmitFailure(ExamEngineError):
    default_message = "The exam could not be submitted. Please try again."
    status_code = 503


class ValidationFailure(ExamEngineError):
    default_message = "Invalid input."
    status_code = 400
