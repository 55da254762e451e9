"""
QuizMaster - Extraction Gateway
Single point of contact with the external AI service.

Two operations, both returning the service's raw (untrusted) text:
  - extract_score : read name/score/total/subject off an already-graded paper
  - grade_paper   : compute the score, either against an answer key
                    (WithReference) or from the service's own knowledge
                    (WithoutReference)
"""

import logging
from dataclasses import dataclass
from typing import Union

from prompts.scan_prompts import (
    ANSWER_KEY_LABEL,
    EXTRACT_PROMPT,
    KNOWLEDGE_GRADING_PROMPT,
    REFERENCE_GRADING_PROMPT,
)
from quizmaster.exceptions import EmptyResponseError
from quizmaster.preprocessor import PreparedImage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Extraction:
    """Read the visible score off an already-graded paper."""


@dataclass(frozen=True)
class WithReference:
    """Grade against an answer-key image."""
    reference_image: PreparedImage


@dataclass(frozen=True)
class WithoutReference:
    """Grade from the service's own subject knowledge."""


GradingMode = Union[WithReference, WithoutReference]
ScanMode = Union[Extraction, WithReference, WithoutReference]


class ExtractionGateway:
    """
    Builds the request parts for each mode and hands them to a vision provider.
    Provider errors (ConfigurationError, AuthError, ServiceError) pass through.
    """

    def __init__(self, provider):
        self._provider = provider

    # ─────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────

    def extract_score(self, paper_image: PreparedImage) -> str:
        return self._call("extract", [paper_image, EXTRACT_PROMPT])

    def grade_paper(self, mode: GradingMode, student_image: PreparedImage) -> str:
        return self._call(self.mode_name(mode), self.grading_parts(mode, student_image))

    # ─────────────────────────────────────────────────────
    # Request construction
    # ─────────────────────────────────────────────────────

    @staticmethod
    def grading_parts(mode: GradingMode, student_image: PreparedImage) -> list:
        if isinstance(mode, WithReference):
            return [mode.reference_image, ANSWER_KEY_LABEL, student_image, REFERENCE_GRADING_PROMPT]
        if isinstance(mode, WithoutReference):
            return [student_image, KNOWLEDGE_GRADING_PROMPT]
        raise TypeError(f"Unsupported grading mode: {type(mode).__name__}")

    @staticmethod
    def mode_name(mode: GradingMode) -> str:
        if isinstance(mode, WithReference):
            return "grade_with_reference"
        if isinstance(mode, WithoutReference):
            return "grade_without_reference"
        raise TypeError(f"Unsupported grading mode: {type(mode).__name__}")

    def _call(self, operation: str, parts: list) -> str:
        images = sum(1 for p in parts if isinstance(p, PreparedImage))
        logger.info("Sending %s request (%d image(s)) to %s", operation, images, self._provider.name)

        response = self._provider.generate(parts)
        if not response.text or not response.text.strip():
            raise EmptyResponseError(f"{response.provider} returned no text for {operation}")

        logger.info(
            "%s/%s answered %s in %.2fms",
            response.provider, response.model, operation, response.latency_ms,
        )
        return response.text
