"""
QuizMaster - Local API
======================
FastAPI surface for the on-device app. Binds to 127.0.0.1 by default; there
is one implicit user and no authentication.

Scan flow:
  POST /scan/reference   → prepare an answer key, returns its preview to reuse
  POST /scan/extract     → read an already-graded paper
  POST /scan/grade       → grade a paper (with a reference, or from knowledge)
  POST /quizzes          → save the reviewed result

Scan endpoints answer 200 even when the AI step failed: the body then holds a
placeholder result plus the error, so the user can finish the record by hand.
An unreadable photo answers 422 so the client can offer a retake.

No app is built at import time. Run with `quizmaster` (see main()) or
`uvicorn --factory quizmaster.api:create_app`.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import date as calendar_date
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from quizmaster.config import Settings
from quizmaster.exceptions import (
    ImageDecodeError, PreprocessingError, QuizMasterError, StorageError, ValidationError
)
from quizmaster.gateway import ExtractionGateway
from quizmaster.llm_provider import provider_from_settings
from quizmaster.models import ExtractedResult
from quizmaster.pipeline import ScanPipeline, user_message
from quizmaster.preprocessor import ImagePreprocessor, PreparedImage
from quizmaster.record_store import RecordStore, SQLRecordStore
from quizmaster.stats import student_summary, subject_averages

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────
# Pydantic schemas
# ─────────────────────────────────────────────────────────

class QuizIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_name: str = Field(alias="studentName")
    score: float = Field(allow_inf_nan=False)
    total_marks: float = Field(alias="totalMarks", allow_inf_nan=False)
    subject: str
    date: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    @field_validator("student_name", "subject")
    @classmethod
    def not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("total_marks")
    @classmethod
    def positive_total(cls, v):
        if v <= 0:
            raise ValueError("totalMarks must be greater than zero")
        return v

    @field_validator("date")
    @classmethod
    def calendar_day(cls, v):
        if v is None:
            return v
        try:
            return calendar_date.fromisoformat(v.strip()).isoformat()
        except ValueError:
            raise ValueError("date must be YYYY-MM-DD")


# ─────────────────────────────────────────────────────────
# App factory
# ─────────────────────────────────────────────────────────

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RecordStore] = None,
    gateway_factory=None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        executor = ThreadPoolExecutor(max_workers=settings.workers, thread_name_prefix="scan-worker")
        record_store = store or SQLRecordStore(settings.database_url)
        app.state.pipeline = ScanPipeline(
            store=record_store,
            gateway_factory=gateway_factory or (lambda: ExtractionGateway(provider_from_settings(settings))),
            preprocessor=ImagePreprocessor(
                max_dimension=settings.max_image_dimension,
                jpeg_quality=settings.jpeg_quality,
            ),
            executor=executor,
        )
        logger.info("QuizMaster API started (provider=%s).", settings.provider)
        yield
        logger.info("QuizMaster API shutting down.")
        executor.shutdown(wait=False)
        if store is None:
            record_store.close()

    app = FastAPI(
        title="QuizMaster API",
        description="Scan quiz papers, grade them with AI, and track student scores.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    _register_routes(app)
    return app


def get_pipeline(request: Request) -> ScanPipeline:
    return request.app.state.pipeline


async def _read_upload(request: Request, file: UploadFile) -> bytes:
    data = await file.read()
    limit_mb = request.app.state.settings.max_upload_mb
    if len(data) > limit_mb * 1024 * 1024:
        raise HTTPException(413, f"File too large. Max {limit_mb} MB.")
    if not data:
        raise ImageDecodeError("Uploaded file is empty")
    return data


def _register_error_handlers(app: FastAPI):
    def _body(exc: QuizMasterError) -> dict:
        body = {"code": exc.error_code, "detail": user_message(exc)}
        field = getattr(exc, "field", None)
        if field:
            body["field"] = field
        return body

    @app.exception_handler(PreprocessingError)
    async def preprocessing_error(request: Request, exc: PreprocessingError):
        logger.warning("Image rejected: %s", exc)
        return JSONResponse(status_code=422, content=_body(exc))

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={**_body(exc), "detail": exc.message})

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError):
        return JSONResponse(status_code=500, content=_body(exc))

    @app.exception_handler(QuizMasterError)
    async def quizmaster_error(request: Request, exc: QuizMasterError):
        logger.error("Unhandled pipeline error: %s", exc)
        return JSONResponse(status_code=500, content=_body(exc))


def _register_routes(app: FastAPI):

    @app.get("/health")
    async def health():
        return {"status": "ok", "provider": app.state.settings.provider}

    # ── Scanning ──────────────────────────────────────────

    @app.post("/scan/reference", summary="Prepare an answer key for grading mode")
    async def scan_reference(
        request: Request,
        file: UploadFile = File(...),
        pipeline: ScanPipeline = Depends(get_pipeline),
    ):
        prepared = await pipeline.prepare(await _read_upload(request, file))
        return {"preview": prepared.preview, "width": prepared.width, "height": prepared.height}

    @app.post("/scan/extract", summary="Read the score off an already-graded paper")
    async def scan_extract(
        request: Request,
        file: UploadFile = File(...),
        pipeline: ScanPipeline = Depends(get_pipeline),
    ):
        outcome = await pipeline.extract(await _read_upload(request, file))
        return outcome.to_dict()

    @app.post("/scan/grade", summary="Grade a student paper")
    async def scan_grade(
        request: Request,
        file: UploadFile = File(...),
        reference: Optional[UploadFile] = File(None),
        reference_preview: Optional[str] = Form(None, alias="referencePreview"),
        pipeline: ScanPipeline = Depends(get_pipeline),
    ):
        key: Optional[PreparedImage] = None
        if reference is not None:
            key = await pipeline.prepare(await _read_upload(request, reference))
        elif reference_preview:
            key = PreparedImage.from_data_url(reference_preview)

        outcome = await pipeline.grade(await _read_upload(request, file), reference=key)
        body = outcome.to_dict()
        body["referencePreview"] = key.preview if key else None
        return body

    # ── Quizzes ───────────────────────────────────────────

    @app.post("/quizzes", status_code=201, summary="Save a reviewed quiz result")
    async def save_quiz(body: QuizIn, pipeline: ScanPipeline = Depends(get_pipeline)):
        result = ExtractedResult(
            student_name=body.student_name,
            score=body.score,
            total_marks=body.total_marks,
            subject=body.subject,
        )
        record = await pipeline.save(result, image_url=body.image_url, quiz_date=body.date)
        return record.to_dict()

    @app.get("/quizzes/recent")
    async def recent_quizzes(
        limit: int = Query(5, ge=1, le=100),
        pipeline: ScanPipeline = Depends(get_pipeline),
    ):
        quizzes = await pipeline.run(pipeline.store.recent_quizzes, limit)
        return [q.to_dict() for q in quizzes]

    # ── Students ──────────────────────────────────────────

    @app.get("/students")
    async def list_students(q: str = "", pipeline: ScanPipeline = Depends(get_pipeline)):
        students = await pipeline.run(pipeline.store.search_students, q)
        return [s.to_dict() for s in students]

    @app.get("/students/{student_id}")
    async def get_student(student_id: str, pipeline: ScanPipeline = Depends(get_pipeline)):
        student = await pipeline.run(pipeline.store.get_student, student_id)
        if student is None:
            raise HTTPException(404, "Student not found.")
        history = await pipeline.run(pipeline.store.quizzes_for_student, student_id)
        return {**student.to_dict(), **student_summary(history).to_dict()}

    @app.get("/students/{student_id}/history")
    async def student_history(student_id: str, pipeline: ScanPipeline = Depends(get_pipeline)):
        if await pipeline.run(pipeline.store.get_student, student_id) is None:
            raise HTTPException(404, "Student not found.")
        history = await pipeline.run(pipeline.store.quizzes_for_student, student_id)
        return [q.to_dict() for q in history]

    @app.delete("/students/{student_id}", summary="Delete a student and all of their quizzes")
    async def delete_student(student_id: str, pipeline: ScanPipeline = Depends(get_pipeline)):
        if not await pipeline.run(pipeline.store.delete_student_cascade, student_id):
            raise HTTPException(404, "Student not found.")
        return {"deleted": student_id}

    # ── Stats ─────────────────────────────────────────────

    @app.get("/stats")
    async def get_stats(pipeline: ScanPipeline = Depends(get_pipeline)):
        return (await pipeline.stats()).to_dict()

    @app.get("/stats/subjects", summary="Average percentage per subject")
    async def get_subject_stats(pipeline: ScanPipeline = Depends(get_pipeline)):
        return subject_averages(await pipeline.run(pipeline.store.list_quizzes))


def main():
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
