"""Error taxonomy for exam grading."""


class ExamGradingError(Exception):
    """Base class for exam grading failures."""


class ConfigurationError(ExamGradingError):
    """Provider credentials or endpoint are missing."""


class ValidationError(ExamGradingError):
    """An operation was rejected before any state change or provider call."""


class SubmissionNotFoundError(ValidationError):
    """No submission with the requested id exists."""

    def __init__(self, submission_id: str):
        super().__init__(f"Submission not found: {submission_id}")
        self.submission_id = submission_id


class ProviderError(ExamGradingError):
    """The grading provider call failed; no result was written."""


class PersistenceWarning(Warning):
    """A state store read or write failed. Logged, never raised to callers."""
