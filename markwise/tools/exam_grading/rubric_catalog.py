"""Holder for the single active rubric, plus YAML rubric loading."""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import Rubric, RubricQuestion

LOG = logging.getLogger(__name__)


class RubricCatalog:
    """Owns the active rubric. Edits replace it wholesale."""

    def __init__(self, rubric: Optional[Rubric] = None):
        self._rubric = rubric

    def set_rubric(self, rubric: Rubric) -> None:
        """Replace the active rubric. Already-graded results are not touched."""
        if self._rubric is not None:
            LOG.info("Replacing rubric '%s' with '%s'", self._rubric.exam_name, rubric.exam_name)
        self._rubric = rubric

    def get_rubric(self) -> Optional[Rubric]:
        return self._rubric

    def require_rubric(self) -> Rubric:
        """Return the active rubric or raise ValidationError."""
        if self._rubric is None:
            raise ValidationError("No grading rubric has been set up yet")
        return self._rubric

    def find_question(self, question_number: str) -> Optional[RubricQuestion]:
        """Look up a rubric question by number; unknown numbers give None."""
        if self._rubric is None:
            return None
        for question in self._rubric.questions:
            if question.question_number == question_number:
                return question
        return None

    def mark_allocation_gap(self) -> float:
        """Total marks minus the sum of per-question maximums (informational only)."""
        if self._rubric is None:
            return 0
        return self._rubric.total_marks - sum(q.max_marks for q in self._rubric.questions)


def parse_rubric(data: dict) -> Rubric:
    """Build a Rubric from a plain dict, mapping model errors to ValidationError."""
    if not isinstance(data, dict):
        raise ValidationError("Rubric must be a mapping")
    try:
        return Rubric.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid rubric: {e}") from e


def load_rubric_file(rubric_path: Path) -> Rubric:
    """
    Load a rubric from a YAML file.

    Both snake_case and camelCase keys are accepted, e.g.::

        examName: Calculus Midterm
        totalMarks: 20
        questions:
          - questionNumber: "1"
            maxMarks: 10
            finalAnswer: "x = 2"
            steps: [{description: Differentiate, marks: 4}]
            keywords: [{keyword: chain rule, marks: 1}]
    """
    try:
        content = Path(rubric_path).read_text(encoding='utf-8')
    except OSError as e:
        raise ValidationError(f"Could not read rubric file: {e}") from e
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValidationError(f"Could not parse rubric file: {e}") from e
    return parse_rubric(data)
