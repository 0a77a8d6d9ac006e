"""AI-assisted exam grading with a grade dispute workflow."""

from .errors import (
    ConfigurationError, ExamGradingError, PersistenceWarning, ProviderError,
    SubmissionNotFoundError, ValidationError
)
from .models import (
    Accepted, AppSnapshot, Disputed, DisputeStatus, GradedQuestion, GradedResult,
    GradedStep, Resolved, Rubric, RubricKeyword, RubricQuestion, RubricStep, Submission
)
from .disputes import MarksPolicy
from .grader import ExamGrader
from .registry import SubmissionRegistry
from .rubric_catalog import RubricCatalog, load_rubric_file
from .state import GradingState, build_state
from .storage import StateSync, YamlFileStore

__all__ = [
    'Accepted',
    'AppSnapshot',
    'ConfigurationError',
    'Disputed',
    'DisputeStatus',
    'ExamGrader',
    'ExamGradingError',
    'GradedQuestion',
    'GradedResult',
    'GradedStep',
    'GradingState',
    'MarksPolicy',
    'PersistenceWarning',
    'ProviderError',
    'Resolved',
    'Rubric',
    'RubricCatalog',
    'RubricKeyword',
    'RubricQuestion',
    'RubricStep',
    'StateSync',
    'Submission',
    'SubmissionNotFoundError',
    'SubmissionRegistry',
    'ValidationError',
    'YamlFileStore',
    'build_state',
    'load_rubric_file',
]
