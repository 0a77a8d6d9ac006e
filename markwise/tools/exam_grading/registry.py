"""Copy-on-write collection of submissions."""

from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .aggregator import recompute_submission
from .errors import SubmissionNotFoundError, ValidationError
from .models import GradedResult, Submission


class SubmissionRegistry:
    """Ordered submissions indexed by id.

    A registry is never changed after construction. Every mutation returns a
    new registry that shares the untouched (frozen) submissions with this one,
    so a holder of an older registry keeps a consistent point-in-time view.
    Every submission that enters a registry has its total re-derived.
    """

    def __init__(self, submissions: Iterable[Submission] = ()):
        by_id: Dict[str, Submission] = {}
        order: List[str] = []
        for submission in submissions:
            if submission.id in by_id:
                raise ValidationError(f"Duplicate submission id: {submission.id}")
            by_id[submission.id] = recompute_submission(submission)
            order.append(submission.id)
        self._by_id = by_id
        self._order: Tuple[str, ...] = tuple(order)

    @classmethod
    def _from_parts(cls, order: Tuple[str, ...], by_id: Dict[str, Submission]) -> 'SubmissionRegistry':
        registry = cls.__new__(cls)
        registry._order = order
        registry._by_id = by_id
        return registry

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[Submission]:
        return (self._by_id[sid] for sid in self._order)

    def __contains__(self, submission_id: str) -> bool:
        return submission_id in self._by_id

    def add(self, submission: Submission) -> 'SubmissionRegistry':
        """Append a submission."""
        if submission.id in self._by_id:
            raise ValidationError(f"Duplicate submission id: {submission.id}")
        by_id = dict(self._by_id)
        by_id[submission.id] = recompute_submission(submission)
        return self._from_parts(self._order + (submission.id,), by_id)

    def update_submission(self, submission_id: str,
                          fn: Callable[[Submission], Submission]) -> 'SubmissionRegistry':
        """Replace one submission with ``fn(submission)``."""
        current = self._by_id.get(submission_id)
        if current is None:
            raise SubmissionNotFoundError(submission_id)
        updated = fn(current)
        if updated.id != submission_id:
            raise ValidationError("A submission's id cannot change")
        by_id = dict(self._by_id)
        by_id[submission_id] = recompute_submission(updated)
        return self._from_parts(self._order, by_id)

    def replace_result(self, submission_id: str, graded_result: Optional[GradedResult]) -> 'SubmissionRegistry':
        """Replace a submission's graded result entirely."""
        return self.update_submission(
            submission_id,
            lambda sub: sub.model_copy(update={'graded_result': graded_result}),
        )

    def find_by_id(self, submission_id: str) -> Optional[Submission]:
        return self._by_id.get(submission_id)

    def get(self, submission_id: str) -> Submission:
        """Like find_by_id, but raises SubmissionNotFoundError."""
        submission = self._by_id.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        return submission

    def index_of(self, submission_id: str) -> int:
        """Position of the submission in registry order, or -1."""
        try:
            return self._order.index(submission_id)
        except ValueError:
            return -1

    def filter_by_student(self, student_name: str, newest_first: bool = False) -> List[Submission]:
        """All submissions by one student, in registry order or newest first."""
        matches = [sub for sub in self if sub.student_name == student_name]
        if newest_first:
            matches.sort(key=lambda sub: sub.submission_date, reverse=True)
        return matches

    def student_names(self) -> List[str]:
        """Distinct student names in order of first submission."""
        return list(dict.fromkeys(sub.student_name for sub in self))

    def pending(self) -> List[Submission]:
        """Submissions that have not been graded yet."""
        return [sub for sub in self if sub.graded_result is None]
