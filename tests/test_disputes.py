"""Tests for the dispute state machine and score aggregation."""

import pytest

from markwise.tools.exam_grading.aggregator import recompute, recompute_submission
from markwise.tools.exam_grading.disputes import (
    MarksPolicy, apply_to_result, check_marks, resolve_dispute, set_marks, toggle_dispute
)
from markwise.tools.exam_grading.errors import ValidationError
from markwise.tools.exam_grading.models import (
    Accepted, Disputed, DisputeStatus, GradedQuestion, GradedResult, Resolved, Submission
)


def make_question(number="1", marks=8, max_marks=10, dispute=None):
    return GradedQuestion(
        question_number=number, marks_awarded=marks, max_marks=max_marks,
        dispute=dispute or Accepted(),
    )


def make_result(*marks):
    questions = [make_question(str(i + 1), m) for i, m in enumerate(marks)]
    return GradedResult(total_marks_awarded=sum(marks), total_max_marks=10 * len(marks),
                        questions=questions)


class TestToggleDispute:
    """Test raising and withdrawing disputes."""

    def test_accepted_to_disputed(self):
        toggled = toggle_dispute(make_question())
        assert toggled.dispute_status is DisputeStatus.DISPUTED
        assert toggled.resolution_comment is None

    def test_disputed_back_to_accepted(self):
        toggled = toggle_dispute(make_question(dispute=Disputed()))
        assert toggled.dispute == Accepted()

    def test_resolved_to_disputed_drops_comment(self):
        question = make_question(dispute=Resolved(comment="regraded"))
        toggled = toggle_dispute(question)
        assert toggled.dispute_status is DisputeStatus.DISPUTED
        assert toggled.resolution_comment is None

    def test_double_toggle_returns_to_not_disputed_but_loses_comment(self):
        """Toggling twice restores the disputed/not-disputed side, not the comment."""
        question = make_question(dispute=Resolved(comment="regraded"))
        twice = toggle_dispute(toggle_dispute(question))
        assert not twice.is_disputed
        assert twice.dispute_status is DisputeStatus.ACCEPTED
        assert twice.resolution_comment is None

    def test_toggle_does_not_touch_marks(self):
        assert toggle_dispute(make_question(marks=7)).marks_awarded == 7


class TestResolveDispute:
    """Test formal dispute resolution."""

    @pytest.mark.parametrize("dispute", [Accepted(), Disputed(), Resolved(comment="old")])
    def test_resolve_from_any_state(self, dispute):
        resolved = resolve_dispute(make_question(dispute=dispute), 9, "partial credit for method")
        assert resolved.dispute_status is DisputeStatus.RESOLVED
        assert resolved.marks_awarded == 9
        assert resolved.resolution_comment == "partial credit for method"

    def test_blank_comment_rejected(self):
        question = make_question(dispute=Disputed())
        with pytest.raises(ValidationError, match="comment"):
            resolve_dispute(question, 9, "  ")

    def test_marks_policy_applies(self):
        question = make_question(dispute=Disputed())
        with pytest.raises(ValidationError, match="out of range"):
            resolve_dispute(question, 11, "too generous")
        clamped = resolve_dispute(question, 11, "capped", policy=MarksPolicy.CLAMP)
        assert clamped.marks_awarded == 10


class TestSetMarks:
    """Test direct mark edits."""

    @pytest.mark.parametrize("dispute", [Accepted(), Disputed(), Resolved(comment="kept")])
    def test_dispute_state_unchanged(self, dispute):
        edited = set_marks(make_question(dispute=dispute), 5)
        assert edited.marks_awarded == 5
        assert edited.dispute == dispute

    def test_policies(self):
        question = make_question(max_marks=10)
        assert check_marks(question, 10) == 10
        with pytest.raises(ValidationError):
            check_marks(question, -1)
        assert check_marks(question, -1, "clamp") == 0
        assert check_marks(question, 12, MarksPolicy.CLAMP) == 10
        assert check_marks(question, 12, MarksPolicy.UNCHECKED) == 12


class TestApplyToResult:
    """Test result-level updates keep the total in sync."""

    def test_direct_edit_recomputes_total(self):
        """Q1=8, Q2=8; set Q2 to 10 and the total becomes 18."""
        result = make_result(8, 8)
        assert result.total_marks_awarded == 16

        updated = apply_to_result(result, 1, lambda q: set_marks(q, 10))
        assert updated.total_marks_awarded == 18
        assert updated.questions[1].dispute_status is DisputeStatus.ACCEPTED
        # The original result is untouched
        assert result.total_marks_awarded == 16
        assert result.questions[1].marks_awarded == 8

    def test_resolution_recomputes_total(self):
        result = make_result(8)
        result = apply_to_result(result, 0, toggle_dispute)
        result = apply_to_result(result, 0, lambda q: resolve_dispute(q, 9, "partial credit for method"))
        assert result.total_marks_awarded == 9
        assert result.questions[0].resolution_comment == "partial credit for method"

    @pytest.mark.parametrize("index", [-1, 2])
    def test_bad_index(self, index):
        with pytest.raises(ValidationError, match="out of range"):
            apply_to_result(make_result(1, 2), index, toggle_dispute)


class TestAggregator:
    """Test total recomputation."""

    def test_recompute_fixes_stale_total(self):
        stale = make_result(3, 4).model_copy(update={'total_marks_awarded': 99})
        assert recompute(stale).total_marks_awarded == 7

    def test_recompute_returns_same_object_when_consistent(self):
        result = make_result(3, 4)
        assert recompute(result) is result

    def test_recompute_submission(self):
        ungraded = Submission(id="s", student_name="Bob")
        assert recompute_submission(ungraded) is ungraded

        stale = make_result(5).model_copy(update={'total_marks_awarded': 0})
        graded = Submission(id="t", student_name="Bob", graded_result=stale)
        assert recompute_submission(graded).graded_result.total_marks_awarded == 5
