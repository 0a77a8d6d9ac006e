"""Keep a graded result's total in line with its per-question marks."""

from .models import GradedResult, Submission


def recompute(result: GradedResult) -> GradedResult:
    """Return ``result`` with ``total_marks_awarded`` re-derived from its questions."""
    total = sum(q.marks_awarded for q in result.questions)
    if total == result.total_marks_awarded:
        return result
    return result.model_copy(update={'total_marks_awarded': total})


def recompute_submission(submission: Submission) -> Submission:
    """Recompute the total of a submission's result; ungraded submissions pass through."""
    if submission.graded_result is None:
        return submission
    result = recompute(submission.graded_result)
    if result is submission.graded_result:
        return submission
    return submission.model_copy(update={'graded_result': result})
