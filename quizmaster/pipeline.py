"""
QuizMaster - Scan Pipeline
Drives one capture through preprocess → gateway → parser, and saves the
reviewed result.

Each stage is awaited in turn; blocking work (OpenCV, SDK round-trips, SQL)
runs in a thread pool so the event loop stays free. Nothing is persisted
until save() is called with a reviewed result, so abandoning a scan (or
cancelling its task) leaves no Student or QuizRecord behind.

Failure policy lives here, not in the parser or gateway:
  - preprocessing errors propagate (the user retakes the photo)
  - gateway/parse errors become a placeholder result the user can edit
  - storage errors propagate; nothing is retried
"""

import asyncio
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Callable, List, Optional

from quizmaster.exceptions import (
    AuthError,
    ConfigurationError,
    GatewayError,
    ParseError,
    PreprocessingError,
    QuizMasterError,
    StorageError,
)
from quizmaster.gateway import (
    Extraction, ExtractionGateway, ScanMode, WithReference, WithoutReference
)
from quizmaster.models import ExtractedResult, NewQuiz, QuizRecord, Stats
from quizmaster.preprocessor import ImagePreprocessor, PreparedImage
from quizmaster.record_store import RecordStore
from quizmaster.response_parser import parse_response
from quizmaster.stats import compute_stats

logger = logging.getLogger(__name__)


@dataclass
class ScanOutcome:
    """What the review screen needs: a result to edit, the photo, and any error."""
    result: ExtractedResult
    preview: str
    error: Optional[QuizMasterError] = None

    @property
    def fallback_used(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        return {
            "result": self.result.to_dict(),
            "preview": self.preview,
            "fallbackUsed": self.fallback_used,
            "error": None if self.error is None else {
                "code": self.error.error_code,
                "message": user_message(self.error),
            },
        }


# ─────────────────────────────────────────────────────────
# Caller-side failure policy
# ─────────────────────────────────────────────────────────

def fallback_result(error: QuizMasterError, mode: ScanMode) -> ExtractedResult:
    """
    Placeholder result offered for manual completion after extraction or
    grading failed. Only gateway and parse errors qualify.
    """
    if not isinstance(error, (GatewayError, ParseError)):
        raise error
    if isinstance(mode, Extraction):
        return ExtractedResult(student_name="Unknown", score=0, total_marks=100, subject="Quiz")
    return ExtractedResult(student_name="Unknown", score=0, total_marks=10, subject="General")


def user_message(error: Exception) -> str:
    if isinstance(error, ConfigurationError):
        return "API Key Error. Please check your setup."
    if isinstance(error, AuthError):
        return "Access Denied. Check API permissions."
    if isinstance(error, ParseError):
        return "Could not read the AI response. Please enter the result manually or try again."
    if isinstance(error, GatewayError):
        return "Analysis failed. Please try again."
    if isinstance(error, PreprocessingError):
        return "Failed to process image. Please retake the photo."
    if isinstance(error, StorageError):
        return "Failed to save record."
    return "Something went wrong. Please try again."


# ─────────────────────────────────────────────────────────
# Pipeline
# ─────────────────────────────────────────────────────────

class ScanPipeline:
    """
    Parameters
    ----------
    store           : the RecordStore results are saved to
    gateway_factory : builds the ExtractionGateway on first use, so a missing
                      credential surfaces as ConfigurationError during a scan
                      rather than at startup
    preprocessor    : ImagePreprocessor (default settings if omitted)
    executor        : thread pool for blocking stages (loop default if None)
    """

    def __init__(
        self,
        store: RecordStore,
        gateway_factory: Callable[[], ExtractionGateway],
        preprocessor: Optional[ImagePreprocessor] = None,
        executor: Optional[Executor] = None,
    ):
        self.store = store
        self._gateway_factory = gateway_factory
        self._gateway = None
        self.preprocessor = preprocessor or ImagePreprocessor()
        self._executor = executor

    @property
    def gateway(self) -> ExtractionGateway:
        if self._gateway is None:
            self._gateway = self._gateway_factory()
        return self._gateway

    async def run(self, fn, *args):
        """Run a blocking call on the pipeline's thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    # ── scanning ──────────────────────────────────────────

    async def prepare(self, image_input) -> PreparedImage:
        return await self.run(self.preprocessor.prepare, image_input)

    async def extract(self, image_input) -> ScanOutcome:
        paper = await self.prepare(image_input)
        return await self._analyse(Extraction(), paper)

    async def grade(self, student_input, reference: Optional[PreparedImage] = None) -> ScanOutcome:
        """
        Grade a student paper. Pass the prepared answer key as `reference`
        (reuse it for the whole class), or None to grade from knowledge.
        """
        student = await self.prepare(student_input)
        mode = WithReference(reference) if reference is not None else WithoutReference()
        return await self._analyse(mode, student)

    async def _analyse(self, mode: ScanMode, paper: PreparedImage) -> ScanOutcome:
        try:
            if isinstance(mode, Extraction):
                raw = await self.run(lambda: self.gateway.extract_score(paper))
            else:
                raw = await self.run(lambda: self.gateway.grade_paper(mode, paper))
            result = parse_response(raw)
        except (GatewayError, ParseError) as e:
            logger.warning("%s failed (%s): %s", type(mode).__name__, e.error_code, e)
            return ScanOutcome(result=fallback_result(e, mode), preview=paper.preview, error=e)

        logger.info(
            "%s read %r: %s/%s (%s)",
            type(mode).__name__, result.student_name, result.score, result.total_marks, result.subject,
        )
        return ScanOutcome(result=result, preview=paper.preview)

    # ── saving and reading back ───────────────────────────

    async def save(
        self,
        result: ExtractedResult,
        image_url: Optional[str] = None,
        quiz_date: Optional[str] = None,
    ) -> QuizRecord:
        new_quiz = NewQuiz.from_result(result, image_url=image_url, quiz_date=quiz_date)
        return await self.run(self.store.add_quiz, new_quiz)

    async def stats(self) -> Stats:
        quizzes: List[QuizRecord] = await self.run(self.store.list_quizzes)
        return compute_stats(quizzes)
