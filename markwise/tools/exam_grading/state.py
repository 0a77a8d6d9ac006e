"""Application state container and the operations that mutate it."""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Union

from tqdm.asyncio import tqdm

from markwise.libs.config_loader import ConfigType, get_config
from .disputes import MarksPolicy, QuestionTransition, apply_to_result
from . import disputes
from .errors import ConfigurationError, ExamGradingError, ValidationError
from .grader import SUPPORTED_MIME_TYPES, ExamGrader
from .models import AppSnapshot, GradedQuestion, GradedResult, Rubric, Submission
from .registry import SubmissionRegistry
from .rubric_catalog import RubricCatalog
from .storage import StateSync, YamlFileStore

LOG = logging.getLogger(__name__)

SheetLoader = Callable[[str], bytes]


def new_submission_id() -> str:
    return f"sub-{uuid.uuid4().hex[:12]}"


def read_sheet_bytes(answer_sheet_ref: str) -> bytes:
    """Default loader: the reference is a filesystem path."""
    if not answer_sheet_ref:
        raise ValidationError("Submission has no answer sheet")
    try:
        return Path(answer_sheet_ref).read_bytes()
    except OSError as e:
        raise ValidationError(f"Could not read answer sheet {answer_sheet_ref}: {e}") from e


@dataclass
class GradingOutcome:
    """Result of grading one submission in a batch."""
    submission_id: str
    success: bool
    total_marks_awarded: float = 0
    total_max_marks: float = 0
    error_message: Optional[str] = None


class GradingState:
    """Owns the rubric catalog and the submission registry.

    All mutations are synchronous and commit a whole new registry in one
    assignment, then hand the new snapshot to StateSync. Grading is the only
    suspending operation; calls for the same submission id are serialized.
    """

    def __init__(self,
                 grader: Optional[ExamGrader] = None,
                 sync: Optional[StateSync] = None,
                 marks_policy: Union[MarksPolicy, str] = MarksPolicy.REJECT,
                 sheet_loader: Optional[SheetLoader] = None,
                 grader_factory: Optional[Callable[[], ExamGrader]] = None,
                 max_concurrent: int = 4):
        self.catalog = RubricCatalog()
        self.registry = SubmissionRegistry()
        self.grader = grader
        self.grader_factory = grader_factory
        self.sync = sync
        self.marks_policy = MarksPolicy(marks_policy)
        self.sheet_loader = sheet_loader or read_sheet_bytes
        self.max_concurrent = max_concurrent
        self._grading_locks: Dict[str, asyncio.Lock] = {}
        self._grading_waiters: Dict[str, int] = {}

    # -- snapshots -------------------------------------------------------

    @property
    def rubric(self) -> Optional[Rubric]:
        return self.catalog.get_rubric()

    def snapshot(self) -> AppSnapshot:
        return AppSnapshot(rubric=self.catalog.get_rubric(), submissions=tuple(self.registry))

    def restore(self, snapshot: AppSnapshot, persist: bool = True) -> None:
        """Replace all state with ``snapshot``, re-deriving every total."""
        self.catalog = RubricCatalog(snapshot.rubric)
        self.registry = SubmissionRegistry(snapshot.submissions)
        LOG.info("Restored state with %d submissions", len(self.registry))
        if persist:
            self._persist()

    def reset(self) -> None:
        """Drop the rubric and every submission."""
        self.catalog = RubricCatalog()
        self.registry = SubmissionRegistry()
        LOG.info("State reset")
        self._persist()

    def _persist(self) -> None:
        if self.sync is not None:
            self.sync.save(self.snapshot())

    def _commit(self, registry: SubmissionRegistry) -> None:
        self.registry = registry
        self._persist()

    # -- rubric ----------------------------------------------------------

    def set_rubric(self, rubric: Rubric) -> None:
        self.catalog.set_rubric(rubric)
        self._persist()

    # -- submissions -----------------------------------------------------

    def register_submission(self, student_name: str, answer_sheet_ref: str = "",
                            mime_type: str = "image/png",
                            submitted_at: Optional[datetime] = None,
                            submission_id: Optional[str] = None) -> Submission:
        """Add an ungraded submission."""
        if not student_name or not student_name.strip():
            raise ValidationError("A student name is required")
        submission = Submission(
            id=submission_id or new_submission_id(),
            student_name=student_name,
            submission_date=submitted_at or datetime.now(),
            answer_sheet_ref=answer_sheet_ref,
            mime_type=mime_type,
        )
        self._commit(self.registry.add(submission))
        LOG.info("Registered submission %s for %s", submission.id, student_name)
        return submission

    def _require_grader(self) -> ExamGrader:
        if self.grader is None:
            if self.grader_factory is None:
                raise ConfigurationError("No grading provider is configured")
            self.grader = self.grader_factory()
        return self.grader

    @asynccontextmanager
    async def _grading_slot(self, submission_id: str) -> AsyncIterator[None]:
        """Serialize grading per submission id.

        Callers block here until earlier calls for the same id finish. The
        lock is dropped once nobody is waiting on it.
        """
        lock = self._grading_locks.setdefault(submission_id, asyncio.Lock())
        self._grading_waiters[submission_id] = self._grading_waiters.get(submission_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._grading_waiters[submission_id] -= 1
            if self._grading_waiters[submission_id] == 0:
                del self._grading_waiters[submission_id]
                del self._grading_locks[submission_id]

    def is_grading(self, submission_id: str) -> bool:
        return submission_id in self._grading_locks

    async def grade_submission(self, submission_id: str) -> Submission:
        """Grade (or regrade) a registered submission.

        A regrade replaces the previous result entirely, discarding disputes.

        Raises:
            ValidationError: No rubric, or the answer sheet cannot be read
            SubmissionNotFoundError: Unknown id
            ConfigurationError: No usable grading provider
            ProviderError: The provider call failed; the submission is unchanged
        """
        self.catalog.require_rubric()
        self.registry.get(submission_id)
        grader = self._require_grader()

        async with self._grading_slot(submission_id):
            # State may have moved on while this call was queued
            rubric = self.catalog.require_rubric()
            submission = self.registry.get(submission_id)
            image = self.sheet_loader(submission.answer_sheet_ref)
            result = await grader.grade_async(image, submission.mime_type, rubric)
            self._commit(self.registry.replace_result(submission_id, result))

        LOG.info("Graded %s: %s/%s", submission_id, result.total_marks_awarded, result.total_max_marks)
        return self.registry.get(submission_id)

    async def submit_and_grade(self, student_name: str, image: bytes, mime_type: str,
                               answer_sheet_ref: str = "",
                               submission_id: Optional[str] = None) -> Submission:
        """Grade an uploaded answer sheet; the submission is only added on success."""
        if mime_type not in SUPPORTED_MIME_TYPES:
            raise ValidationError(f"Unsupported answer sheet type: {mime_type}")
        if not student_name or not student_name.strip():
            raise ValidationError("A student name is required")
        self.catalog.require_rubric()
        grader = self._require_grader()
        submission_id = submission_id or new_submission_id()
        if submission_id in self.registry:
            raise ValidationError(f"Duplicate submission id: {submission_id}")

        async with self._grading_slot(submission_id):
            rubric = self.catalog.require_rubric()
            result = await grader.grade_async(image, mime_type, rubric)
            submission = Submission(
                id=submission_id,
                student_name=student_name,
                submission_date=datetime.now(),
                answer_sheet_ref=answer_sheet_ref,
                mime_type=mime_type,
                graded_result=result,
            )
            self._commit(self.registry.add(submission))

        LOG.info("Uploaded and graded %s for %s", submission_id, student_name)
        return submission

    async def grade_pending(self, max_concurrent: Optional[int] = None,
                            show_progress: bool = True) -> List[GradingOutcome]:
        """Grade every ungraded submission with bounded concurrency.

        Individual failures are reported in the outcomes, never raised.
        ``max_concurrent`` defaults to the state's configured limit.
        """
        if max_concurrent is None:
            max_concurrent = self.max_concurrent
        if max_concurrent < 1:
            raise ValidationError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.catalog.require_rubric()
        self._require_grader()
        pending = self.registry.pending()
        if not pending:
            LOG.info("No ungraded submissions")
            return []

        semaphore = asyncio.Semaphore(max_concurrent)

        async def grade_with_semaphore(submission_id: str) -> GradingOutcome:
            async with semaphore:
                try:
                    graded = await self.grade_submission(submission_id)
                except ExamGradingError as e:
                    LOG.warning(f"Failed: {submission_id} - {e}")
                    return GradingOutcome(submission_id=submission_id, success=False, error_message=str(e))
                result = graded.graded_result
                return GradingOutcome(
                    submission_id=submission_id,
                    success=True,
                    total_marks_awarded=result.total_marks_awarded,
                    total_max_marks=result.total_max_marks,
                )

        tasks = [asyncio.ensure_future(grade_with_semaphore(sub.id)) for sub in pending]
        outcomes = []
        for coro in tqdm.as_completed(tasks, total=len(tasks), desc="Grading submissions",
                                      disable=not show_progress):
            outcomes.append(await coro)

        order = {sub.id: i for i, sub in enumerate(pending)}
        outcomes.sort(key=lambda o: order[o.submission_id])
        return outcomes

    # -- disputes and mark edits -----------------------------------------

    def _update_question(self, submission_id: str, question_index: int,
                         transition: QuestionTransition) -> GradedQuestion:
        submission = self.registry.get(submission_id)
        if submission.graded_result is None:
            raise ValidationError(f"Submission {submission_id} has not been graded")
        result: GradedResult = apply_to_result(submission.graded_result, question_index, transition)
        self._commit(self.registry.replace_result(submission_id, result))
        return result.questions[question_index]

    def toggle_dispute(self, submission_id: str, question_index: int) -> GradedQuestion:
        """Raise or withdraw a dispute; either role may call this."""
        question = self._update_question(submission_id, question_index, disputes.toggle_dispute)
        LOG.info("Question %s of %s is now %s", question.question_number, submission_id,
                 question.dispute_status.value)
        return question

    def resolve_dispute(self, submission_id: str, question_index: int,
                        new_marks: float, comment: str) -> GradedQuestion:
        """Resolve a dispute with new marks and a comment."""
        question = self._update_question(
            submission_id, question_index,
            lambda q: disputes.resolve_dispute(q, new_marks, comment, self.marks_policy),
        )
        LOG.info("Resolved dispute on question %s of %s with %s marks",
                 question.question_number, submission_id, question.marks_awarded)
        return question

    def set_marks(self, submission_id: str, question_index: int, new_marks: float) -> GradedQuestion:
        """Edit a question's marks without touching its dispute state."""
        return self._update_question(
            submission_id, question_index,
            lambda q: disputes.set_marks(q, new_marks, self.marks_policy),
        )


def build_state(configs: ConfigType,
                grader: Optional[ExamGrader] = None,
                sync: Optional[StateSync] = None) -> GradingState:
    """Composition root: build a GradingState from configuration and load saved state."""
    if sync is None:
        state_path = Path(get_config("storage.state_path", configs, default=".markwise/state.yaml"))
        sync = StateSync(YamlFileStore(state_path))

    marks_policy = get_config("grading.marks_policy", configs, default=MarksPolicy.REJECT.value)
    try:
        marks_policy = MarksPolicy(marks_policy)
    except ValueError as e:
        raise ConfigurationError(f"Unknown grading.marks_policy: {marks_policy}") from e

    max_concurrent = get_config("grading.max_concurrent", configs, default=4)
    if isinstance(max_concurrent, bool) or not isinstance(max_concurrent, int) or max_concurrent < 1:
        raise ConfigurationError(f"grading.max_concurrent must be a positive integer, got {max_concurrent!r}")

    state = GradingState(
        grader=grader,
        sync=sync,
        marks_policy=marks_policy,
        grader_factory=lambda: ExamGrader(configs),
        max_concurrent=max_concurrent,
    )
    snapshot = sync.load()
    if snapshot is not None:
        state.restore(snapshot, persist=False)
    return state
