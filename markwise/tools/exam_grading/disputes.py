"""Dispute state machine for graded questions.

A question is always in one of three states::

    Accepted  --toggle-->  Disputed  --toggle-->  Accepted
    Resolved  --toggle-->  Disputed  --resolve--> Resolved(comment)

``resolve_dispute`` may be called from any state and always lands in
``Resolved``. ``set_marks`` edits marks without touching the dispute state.
There is no terminal state. Every result-level helper here re-runs the
aggregator before returning, so a caller never sees a stale total.
"""

import logging
from enum import Enum
from typing import Callable, Union

from .aggregator import recompute
from .errors import ValidationError
from .models import Accepted, Disputed, GradedQuestion, GradedResult, Resolved

LOG = logging.getLogger(__name__)

QuestionTransition = Callable[[GradedQuestion], GradedQuestion]


class MarksPolicy(str, Enum):
    """What to do with marks outside ``[0, max_marks]``."""
    REJECT = "reject"
    CLAMP = "clamp"
    UNCHECKED = "unchecked"


def check_marks(question: GradedQuestion, new_marks: float,
                policy: Union[MarksPolicy, str] = MarksPolicy.REJECT) -> float:
    """Apply the marks policy to ``new_marks`` for ``question``.

    Raises:
        ValidationError: If the policy is ``reject`` and the marks are out of range
    """
    policy = MarksPolicy(policy)
    if policy is MarksPolicy.UNCHECKED:
        return new_marks
    if 0 <= new_marks <= question.max_marks:
        return new_marks
    if policy is MarksPolicy.CLAMP:
        clamped = min(max(new_marks, 0), question.max_marks)
        LOG.debug("Clamped marks for question %s from %s to %s",
                  question.question_number, new_marks, clamped)
        return clamped
    raise ValidationError(
        f"Marks {new_marks} out of range for question {question.question_number} "
        f"(0-{question.max_marks})"
    )


def toggle_dispute(question: GradedQuestion) -> GradedQuestion:
    """Flip between Disputed and not disputed.

    Raising a dispute from Accepted or Resolved drops any resolution comment.
    Withdrawing one lands in Accepted, not Resolved.
    """
    if question.is_disputed:
        return question.model_copy(update={'dispute': Accepted()})
    return question.model_copy(update={'dispute': Disputed()})


def resolve_dispute(question: GradedQuestion, new_marks: float, comment: str,
                    policy: Union[MarksPolicy, str] = MarksPolicy.REJECT) -> GradedQuestion:
    """Formally resolve a dispute with new marks and a grader comment."""
    if not comment or not comment.strip():
        raise ValidationError("A resolution comment is required")
    marks = check_marks(question, new_marks, policy)
    return question.model_copy(update={
        'marks_awarded': marks,
        'dispute': Resolved(comment=comment),
    })


def set_marks(question: GradedQuestion, new_marks: float,
              policy: Union[MarksPolicy, str] = MarksPolicy.REJECT) -> GradedQuestion:
    """Correct marks outside the dispute flow."""
    marks = check_marks(question, new_marks, policy)
    return question.model_copy(update={'marks_awarded': marks})


def apply_to_result(result: GradedResult, question_index: int,
                    transition: QuestionTransition) -> GradedResult:
    """Apply ``transition`` to one question and recompute the total in the same step.

    Raises:
        ValidationError: If ``question_index`` does not address a question
    """
    if not 0 <= question_index < len(result.questions):
        raise ValidationError(
            f"Question index {question_index} out of range (result has {len(result.questions)} questions)"
        )
    questions = list(result.questions)
    questions[question_index] = transition(questions[question_index])
    return recompute(result.model_copy(update={'questions': tuple(questions)}))
