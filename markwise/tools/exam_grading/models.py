"""Pydantic models for rubrics, graded results and submissions.

Every model is frozen: updates go through ``model_copy(update=...)`` so that
anyone holding an earlier snapshot keeps seeing the values they were given.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Tuple, Union, FrozenSet

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    """Frozen model that accepts both snake_case and camelCase keys."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class RubricStep(_Model):
    """A marked step in the expected working for a question."""
    description: str = Field(description="What the student must show for this step")
    marks: float = Field(default=0, description="Marks allocated to this step")


class RubricKeyword(_Model):
    """A keyword worth marks when it appears in the answer."""
    keyword: str = Field(description="Keyword or phrase to look for")
    marks: float = Field(default=0, description="Marks allocated to this keyword")


class RubricQuestion(_Model):
    """Grading criteria for a single exam question."""
    question_number: str = Field(description="Question label, unique within the rubric")
    max_marks: float = Field(description="Maximum marks for this question")
    expected_answer: str = Field(
        default="",
        validation_alias=AliasChoices("expected_answer", "expectedAnswer", "finalAnswer", "final_answer"),
        description="Expected final answer",
    )
    steps: Tuple[RubricStep, ...] = ()
    keywords: Tuple[RubricKeyword, ...] = ()

    @field_validator("question_number", mode="before")
    @classmethod
    def _coerce_question_number(cls, value):
        # YAML rubrics often write `questionNumber: 1`
        if isinstance(value, (int, float)):
            return str(value)
        return value


class Rubric(_Model):
    """The complete grading criteria for an exam."""
    exam_name: str
    total_marks: float
    questions: Tuple[RubricQuestion, ...] = ()

    @model_validator(mode="after")
    def _unique_question_numbers(self):
        seen = set()
        for question in self.questions:
            if question.question_number in seen:
                raise ValueError(f"Duplicate question number: {question.question_number}")
            seen.add(question.question_number)
        return self


class DisputeStatus(str, Enum):
    ACCEPTED = "accepted"
    DISPUTED = "disputed"
    RESOLVED = "resolved"


class Accepted(_Model):
    status: Literal["accepted"] = "accepted"


class Disputed(_Model):
    status: Literal["disputed"] = "disputed"


class Resolved(_Model):
    status: Literal["resolved"] = "resolved"
    comment: str

    @field_validator("comment")
    @classmethod
    def _comment_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("A resolved dispute needs a non-empty comment")
        return value


DisputeState = Annotated[Union[Accepted, Disputed, Resolved], Field(discriminator="status")]


class GradedStep(_Model):
    """How one expected step was marked."""
    step_index: int
    description: str = ""
    correct: bool = False
    marks_awarded: float = 0


class GradedQuestion(_Model):
    """The grade for one question, with its dispute state."""
    question_number: str
    marks_awarded: float
    max_marks: float
    feedback: str = ""
    steps: Tuple[GradedStep, ...] = ()
    keywords_found: FrozenSet[str] = frozenset()
    area_for_improvement: str = ""
    dispute: DisputeState = Field(default_factory=Accepted)

    @property
    def dispute_status(self) -> DisputeStatus:
        return DisputeStatus(self.dispute.status)

    @property
    def is_disputed(self) -> bool:
        return isinstance(self.dispute, Disputed)

    @property
    def resolution_comment(self) -> Optional[str]:
        if isinstance(self.dispute, Resolved):
            return self.dispute.comment
        return None


class GradedResult(_Model):
    """Scored result for a whole answer sheet."""
    total_marks_awarded: float
    total_max_marks: float
    questions: Tuple[GradedQuestion, ...] = ()

    @property
    def percentage(self) -> float:
        if self.total_max_marks == 0:
            return 0
        return (self.total_marks_awarded / self.total_max_marks) * 100


class Submission(_Model):
    """One answer sheet uploaded by a student."""
    id: str
    student_name: str
    submission_date: datetime = Field(default_factory=datetime.now)
    answer_sheet_ref: str = ""
    mime_type: str = "image/png"
    graded_result: Optional[GradedResult] = None

    @property
    def is_graded(self) -> bool:
        return self.graded_result is not None


class AppSnapshot(_Model):
    """Everything that is persisted between runs."""
    rubric: Optional[Rubric] = None
    submissions: Tuple[Submission, ...] = ()

    @model_validator(mode="after")
    def _unique_submission_ids(self):
        seen = set()
        for submission in self.submissions:
            if submission.id in seen:
                raise ValueError(f"Duplicate submission id: {submission.id}")
            seen.add(submission.id)
        return self

    def to_yaml_dict(self) -> dict:
        """Convert to a plain dictionary suitable for YAML serialization."""
        return self.model_dump(mode="json")


# Shapes the grading provider returns. The provider knows nothing about disputes.

class ProviderStep(BaseModel):
    step: int = Field(description="1-based index of the rubric step")
    description: str = Field(default="", description="Short description of the step")
    correct: bool = Field(default=False, description="Whether the student completed the step correctly")
    marks: float = Field(default=0, description="Marks awarded for this step")


class ProviderQuestion(BaseModel):
    question_number: str = Field(description="Question number exactly as written in the rubric")
    marks_awarded: float = Field(description="Marks awarded for this question")
    max_marks: float = Field(description="Maximum marks for this question")
    feedback: str = Field(default="", description="Concise feedback explaining the marks")
    steps: List[ProviderStep] = Field(default_factory=list)
    keywords_found: List[str] = Field(default_factory=list, description="Rubric keywords present in the answer")
    area_for_improvement: str = Field(default="", description="Key area where the student should improve")


class ProviderGradingOutput(BaseModel):
    total_marks_awarded: float = Field(description="Sum of marks awarded across questions")
    total_max_marks: float = Field(description="Maximum marks for the exam")
    questions: List[ProviderQuestion] = Field(default_factory=list)
