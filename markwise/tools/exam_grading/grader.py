"""OpenAI-based exam grader using pydantic-ai for structured output."""

import base64
import binascii
import json
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic_ai import BinaryContent

from markwise.libs.config_loader import ConfigType, get_config
from markwise.libs.llm import create_agent
from .aggregator import recompute
from .errors import ConfigurationError, ProviderError, ValidationError
from .models import (
    Accepted, GradedQuestion, GradedResult, GradedStep, ProviderGradingOutput, Rubric
)

LOG = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = ('image/png', 'image/jpeg', 'image/webp')


def create_grading_agent(configs: ConfigType,
                         model: Optional[str] = None,
                         settings_dict: Optional[Dict[str, Any]] = None) -> Any:
    """
    Create a pydantic-ai Agent that grades answer-sheet images.

    This is a wrapper around the general create_agent function with a grading-specific
    prompt and the provider output schema.

    Raises:
        ConfigurationError: If the OpenAI credentials or model are not configured
    """
    api_key = get_config("openai.api_key", configs, default=None)
    if not api_key:
        raise ConfigurationError("openai.api_key is not configured")
    if not model and not get_config("openai.model", configs, default=None):
        raise ConfigurationError("openai.model is not configured")

    system_prompt = (
        "You are an expert exam grader. Grade the student's handwritten or printed "
        "answer sheet strictly against the grading criteria you are given. Award marks "
        "according to the defined steps and keywords. If a step is only partially "
        "correct, mark it as incorrect but award partial marks where the criteria allow. "
        "Give constructive, concise feedback for each question and name one key area "
        "for improvement."
    )

    return create_agent(
        configs=configs,
        model=model,
        settings_dict=settings_dict,
        system_prompt=system_prompt,
        output_type=ProviderGradingOutput,
    )


def normalize_provider_output(output: ProviderGradingOutput) -> GradedResult:
    """Convert provider output into a GradedResult.

    Every question starts Accepted whatever the provider said, and the total is
    re-derived from the question marks.
    """
    questions = []
    for q in output.questions:
        steps = tuple(
            GradedStep(
                step_index=s.step,
                description=s.description,
                correct=s.correct,
                marks_awarded=s.marks,
            )
            for s in q.steps
        )
        questions.append(GradedQuestion(
            question_number=q.question_number,
            marks_awarded=q.marks_awarded,
            max_marks=q.max_marks,
            feedback=q.feedback,
            steps=steps,
            keywords_found=frozenset(q.keywords_found),
            area_for_improvement=q.area_for_improvement,
            dispute=Accepted(),
        ))

    result = GradedResult(
        total_marks_awarded=output.total_marks_awarded,
        total_max_marks=output.total_max_marks,
        questions=tuple(questions),
    )
    normalized = recompute(result)
    if normalized.total_marks_awarded != output.total_marks_awarded:
        LOG.warning("Provider total %s disagrees with question sum %s; using the sum",
                    output.total_marks_awarded, normalized.total_marks_awarded)
    return normalized


def read_answer_sheet(path: Path) -> Tuple[bytes, str]:
    """Read an answer-sheet image and guess its mime type."""
    mime_type, _ = mimetypes.guess_type(str(path))
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise ValidationError(f"Unsupported answer sheet type for {path}: {mime_type}")
    try:
        return Path(path).read_bytes(), mime_type
    except OSError as e:
        raise ValidationError(f"Could not read answer sheet: {e}") from e


def decode_answer_sheet(encoded: str) -> bytes:
    """Decode a base64 answer sheet, tolerating a ``data:...;base64,`` prefix."""
    if encoded.startswith('data:') and ',' in encoded:
        encoded = encoded.split(',', 1)[1]
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Answer sheet is not valid base64: {e}") from e


class ExamGrader:
    """Grade answer-sheet images against a rubric with an OpenAI model."""

    def __init__(self, configs: ConfigType,
                 model: Optional[str] = None, settings: Optional[Dict[str, Any]] = None):
        """
        Initialize the grader.

        Args:
            configs: Configuration dictionary (required)
            model: Model to use (overrides config value)
            settings: Pydantic AI settings dict (overrides config values)

        Raises:
            ConfigurationError: If provider credentials are missing
        """
        self.configs = configs
        self.model_name = model
        self.settings = settings
        self.agent = create_grading_agent(
            configs=self.configs,
            model=model,
            settings_dict=settings
        )

    async def grade_async(self, image: bytes, mime_type: str, rubric: Optional[Rubric]) -> GradedResult:
        """
        Grade an answer sheet asynchronously.

        Args:
            image: Raw image bytes
            mime_type: Declared mime type of the image
            rubric: Active rubric

        Returns:
            GradedResult with every question Accepted

        Raises:
            ValidationError: If no rubric is given
            ProviderError: If the provider call or its output fails
        """
        if rubric is None:
            raise ValidationError("Cannot grade without a rubric")

        prompt = self._build_prompt(rubric)
        try:
            result = await self.agent.run([prompt, BinaryContent(data=image, media_type=mime_type)])
        except Exception as e:
            LOG.error(f"Error calling grading provider: {e}")
            raise ProviderError(
                "Failed to grade the answer sheet. The AI model returned an error."
            ) from e

        output = getattr(result, 'output', None)
        if not isinstance(output, ProviderGradingOutput):
            LOG.error("Grading provider returned unexpected output: %r", output)
            raise ProviderError("Failed to grade the answer sheet. The AI model returned malformed output.")

        graded = normalize_provider_output(output)
        LOG.debug("Graded answer sheet: %s/%s", graded.total_marks_awarded, graded.total_max_marks)
        return graded

    def _build_prompt(self, rubric: Rubric) -> str:
        """Build the grading prompt with the rubric as JSON."""
        criteria_json = json.dumps(rubric.model_dump(mode="json", by_alias=True), indent=2)
        return f"""Grade the attached student answer sheet image against these grading criteria.

INSTRUCTIONS:
1. Analyze the student's answer sheet image.
2. Compare each answer to the grading criteria for that question.
3. Award marks based on the defined steps and keywords. Be strict.
4. Never award more than a question's maxMarks.
5. Provide constructive, concise feedback for each question.
6. Identify a key area for improvement for each question.
7. Use each question's questionNumber exactly as written in the criteria.
8. Calculate the total score.

GRADING CRITERIA:
{criteria_json}"""
