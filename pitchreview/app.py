from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Generator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from pitchreview import services
from pitchreview.config import configure_logging, get_settings
from pitchreview.db import init_db, session_generator
from pitchreview.errors import ParseError, PitchReviewError
from pitchreview.evaluator import Evaluator
from pitchreview.llm import LLMClient
from pitchreview.models import Submission
from pitchreview.repository import SqlRepository
from pitchreview.rubrics import list_rubrics
from pitchreview.schemas import (
    CompanyOut,
    EvaluateRequest,
    EvaluateResponse,
    EvaluationOut,
    RerunRequest,
    SectionSummaryRequest,
    StatsOut,
    SubmissionCreate,
    SubmissionDetail,
    SubmissionListResponse,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Pitch Review",
    version="0.1.0",
    description=(
        "LLM-assisted evaluation of startup application forms. "
        "Submissions are scored against a rubric, cached, and rolled up into company records. "
        "All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Submissions", "description": "Create and browse application form submissions."},
        {"name": "Evaluation", "description": "LLM-powered rubric scoring. Requires a provider API key."},
        {"name": "Companies", "description": "Company records derived from completed evaluations."},
        {"name": "Stats", "description": "Aggregate statistics and breakdowns."},
        {"name": "Rubrics", "description": "Available scoring rubrics."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


async def get_llm_client() -> AsyncGenerator[LLMClient, None]:
    client = LLMClient()
    try:
        yield client
    finally:
        await client.aclose()


def get_evaluator(
    session: Session = Depends(db_session),
    client: LLMClient = Depends(get_llm_client),
) -> Evaluator:
    return Evaluator(SqlRepository(session), client, persist_attempts=get_settings().persist_attempts)


def _get_or_404(session: Session, model, entity_id, label: str = "Entity"):
    obj = services.get_entity(session, model, entity_id)
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


def _error_body(message: str, error_type: str) -> dict:
    return {"success": False, "error": message, "errorType": error_type}


@app.exception_handler(PitchReviewError)
async def pitchreview_error_handler(request: Request, exc: PitchReviewError):
    # A reply the model got wrong is a soft failure; the raw text is kept for review.
    status = 200 if isinstance(exc, ParseError) else exc.status_code
    if status >= 500:
        log.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(_error_body(exc.message, exc.error_type), status_code=status)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{where}: {first.get('msg', 'invalid request')}" if where else first.get("msg", "invalid request")
    return JSONResponse(_error_body(message, "validation_error"), status_code=400)


# ---------------------------------------------------------------------------
# Routes: Submissions
# ---------------------------------------------------------------------------


@app.post("/api/submissions", response_model=SubmissionDetail, status_code=201,
          tags=["Submissions"], summary="Create a pending submission for a rubric")
async def create_submission(body: SubmissionCreate, session: Session = Depends(db_session)):
    submission = services.create_submission(session, **body.model_dump())
    session.commit()
    return services.submission_detail(submission)


@app.get("/api/submissions", response_model=SubmissionListResponse,
         tags=["Submissions"], summary="List submissions with filtering and pagination")
async def list_submissions(
    rubric: str | None = Query(None, description="Rubric key: startup, iitguwahati, eureka"),
    status: str | None = Query(None, description="Comma-separated: pending, processing, completed, failed"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    session: Session = Depends(db_session),
):
    items, total = services.list_submissions(session, rubric=rubric, status=status, page=page, per_page=per_page)
    return {"items": items, "total": total}


@app.get("/api/submissions/{submission_id}", response_model=SubmissionDetail,
         tags=["Submissions"], summary="Get a submission with its answers and stored evaluation")
async def get_submission(submission_id: str, session: Session = Depends(db_session)):
    return services.submission_detail(_get_or_404(session, Submission, submission_id, "Submission"))


# ---------------------------------------------------------------------------
# Routes: Evaluation (rerun before parameterized-looking paths)
# ---------------------------------------------------------------------------


@app.post("/api/evaluate/rerun", tags=["Evaluation"],
          summary="Force re-evaluation of several submissions, one after another")
async def rerun_evaluations(body: RerunRequest, evaluator: Evaluator = Depends(get_evaluator)):
    results = await evaluator.rerun(body.submission_ids)
    succeeded = sum(1 for r in results if r["success"])
    return {"results": results, "succeeded": succeeded, "failed": len(results) - succeeded}


@app.post("/api/evaluate", response_model=EvaluateResponse, response_model_exclude_none=True,
          tags=["Evaluation"], summary="Evaluate a submission (cached unless forceRefresh)")
async def evaluate(body: EvaluateRequest, evaluator: Evaluator = Depends(get_evaluator)):
    outcome = await evaluator.evaluate(body.submission_id, force_refresh=body.force_refresh)
    return {"success": True, "evaluation": outcome.evaluation, "cached": outcome.cached}


@app.post("/api/sections/summary", tags=["Evaluation"],
          summary="Generate a short analysis of one rubric section")
async def section_summary(body: SectionSummaryRequest, evaluator: Evaluator = Depends(get_evaluator)):
    summary = await evaluator.summarize_section(body.submission_id, body.section)
    return {"success": True, **summary}


@app.get("/api/evaluations", response_model=list[EvaluationOut],
         tags=["Evaluation"], summary="List the most recent evaluations")
async def list_evaluations(
    limit: int = Query(100, ge=1, le=500),
    session: Session = Depends(db_session),
):
    return services.latest_evaluations(session, limit=limit)


# ---------------------------------------------------------------------------
# Routes: Companies, Stats, Rubrics
# ---------------------------------------------------------------------------


@app.get("/api/companies", response_model=list[CompanyOut],
         tags=["Companies"], summary="List companies derived from evaluations")
async def list_companies(
    source: str | None = Query(None, description="Company source, e.g. startup_form"),
    owner_id: str | None = Query(None),
    session: Session = Depends(db_session),
):
    return services.list_companies(session, source=source, owner_id=owner_id)


@app.get("/api/stats", response_model=StatsOut,
         tags=["Stats"], summary="Get aggregate statistics and breakdowns")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


@app.get("/api/rubrics", tags=["Rubrics"], summary="List rubrics and their criteria")
async def get_rubrics():
    return list_rubrics()


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    configure_logging()
    settings = get_settings()
    uvicorn.run("pitchreview.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
