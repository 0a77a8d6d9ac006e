"""Read-only views over graded submissions for reviewers."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import DisputeStatus, GradedQuestion, Rubric, RubricQuestion
from .registry import SubmissionRegistry


@dataclass
class StudentAnswer:
    """One student's graded answer to a question, with its address in the registry."""
    student_name: str
    submission_id: str
    question_index: int
    question: GradedQuestion

    def to_dict(self) -> Dict[str, Any]:
        return {
            'student_name': self.student_name,
            'submission_id': self.submission_id,
            'question_index': self.question_index,
            'question': self.question.model_dump(mode="json"),
        }


@dataclass
class QuestionReview:
    """All graded answers to one rubric question."""
    rubric_question: RubricQuestion
    answers: List[StudentAnswer] = field(default_factory=list)

    @property
    def average_marks(self) -> float:
        if not self.answers:
            return 0
        return sum(a.question.marks_awarded for a in self.answers) / len(self.answers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rubric_question': self.rubric_question.model_dump(mode="json"),
            'average_marks': self.average_marks,
            'answers': [a.to_dict() for a in self.answers],
        }


def question_centric_review(rubric: Optional[Rubric], registry: SubmissionRegistry) -> List[QuestionReview]:
    """Group every graded answer under its rubric question.

    Graded questions whose number is not in the rubric are left out.
    """
    if rubric is None:
        return []
    reviews = []
    for rubric_question in rubric.questions:
        review = QuestionReview(rubric_question=rubric_question)
        for submission in registry:
            if submission.graded_result is None:
                continue
            for index, question in enumerate(submission.graded_result.questions):
                if question.question_number == rubric_question.question_number:
                    review.answers.append(StudentAnswer(
                        student_name=submission.student_name,
                        submission_id=submission.id,
                        question_index=index,
                        question=question,
                    ))
                    break
        reviews.append(review)
    return reviews


def disputed_answers(registry: SubmissionRegistry) -> List[StudentAnswer]:
    """Every question currently in the Disputed state, in registry order."""
    answers = []
    for submission in registry:
        if submission.graded_result is None:
            continue
        for index, question in enumerate(submission.graded_result.questions):
            if question.is_disputed:
                answers.append(StudentAnswer(submission.student_name, submission.id, index, question))
    return answers


def score_band(awarded: float, maximum: float) -> str:
    """Classify a score as high, medium or low."""
    if maximum <= 0:
        return "low"
    pct = awarded / maximum * 100
    if pct >= 80:
        return "high"
    elif pct >= 50:
        return "medium"
    else:
        return "low"


def summary_stats(registry: SubmissionRegistry) -> Dict[str, Any]:
    """Get grading summary statistics."""
    graded = [s.graded_result for s in registry if s.graded_result is not None]
    statuses = [q.dispute_status for r in graded for q in r.questions]
    stats: Dict[str, Any] = {
        "total": len(registry),
        "graded": len(graded),
        "students": len(registry.student_names()),
        "disputed": statuses.count(DisputeStatus.DISPUTED),
        "resolved": statuses.count(DisputeStatus.RESOLVED),
    }
    if not graded:
        stats.update({"average": 0, "min": 0, "max": 0})
        return stats

    scores = [r.total_marks_awarded for r in graded]
    stats.update({
        "average": sum(scores) / len(scores),
        "min": min(scores),
        "max": max(scores),
    })
    return stats
