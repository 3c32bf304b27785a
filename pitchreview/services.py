"""Shared business logic for the Pitch Review API: serialization and queries."""
from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pitchreview.models import SUBMISSION_STATUSES, Company, Evaluation, Submission
from pitchreview.rubrics import get_rubric
from pitchreview.utils import json_parse

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

SUBMISSION_FIELDS = (
    "id", "rubric", "startup_name", "founder_name", "email", "phone",
    "industry", "linkedin", "owner_id", "source", "status", "error", "company_id",
)

COMPANY_FIELDS = (
    "id", "name", "source", "owner_id", "overall_score", "score_max",
    "scoring_reason", "industry", "email", "poc_name", "phone", "submission_id",
)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def to_display_scale(score: int | float | None, score_max: int) -> int | None:
    """Convert a stored score on its rubric scale to 0-100 for display."""
    if score is None or score_max <= 0:
        return None
    return round(score * 100 / score_max)


def evaluation_dict(evaluation: Evaluation) -> dict[str, Any]:
    return {
        "id": evaluation.id,
        "submission_id": evaluation.submission_id,
        "rubric": evaluation.rubric,
        "startup_name": evaluation.startup_name,
        "scores": json_parse(evaluation.scores_json, {}),
        "feedback": json_parse(evaluation.feedback_json, {}),
        "overall_score": evaluation.overall_score,
        "score_max": evaluation.score_max,
        "overall_summary": evaluation.overall_summary,
        "llm_model": evaluation.llm_model,
        "evaluated_at": _iso(evaluation.evaluated_at),
    }


def submission_summary(submission: Submission) -> dict[str, Any]:
    result = {f: getattr(submission, f) for f in SUBMISSION_FIELDS}
    result["created_at"] = _iso(submission.created_at)
    result["analyzed_at"] = _iso(submission.analyzed_at)
    evaluation = submission.evaluation
    result["overall_score"] = evaluation.overall_score if evaluation else None
    result["score_max"] = get_rubric(submission.rubric).score_max
    return result


def submission_detail(submission: Submission) -> dict[str, Any]:
    base = submission_summary(submission)
    base["answers"] = json_parse(submission.answers_json, {})
    base["raw_output"] = submission.raw_output
    base["evaluation"] = evaluation_dict(submission.evaluation) if submission.evaluation else None
    return base


def company_summary(company: Company) -> dict[str, Any]:
    result = {f: getattr(company, f) for f in COMPANY_FIELDS}
    result["display_score"] = to_display_scale(company.overall_score, company.score_max)
    result["updated_at"] = _iso(company.updated_at)
    return result


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def get_entity(session: Session, model, entity_id):
    return session.execute(select(model).where(model.id == entity_id)).scalars().first()


def create_submission(
    session: Session,
    *,
    rubric: str,
    startup_name: str,
    answers: dict[str, Any] | None = None,
    founder_name: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    industry: str | None = None,
    linkedin: str | None = None,
    owner_id: str | None = None,
    source: str | None = None,
) -> Submission:
    """Create a pending submission (caller must commit)."""
    spec = get_rubric(rubric)
    submission = Submission(
        rubric=spec.key,
        startup_name=startup_name.strip(),
        answers_json=json.dumps(answers or {}),
        founder_name=founder_name or "",
        email=email or "",
        phone=phone or "",
        industry=industry or "",
        linkedin=linkedin or "",
        owner_id=owner_id or "",
        source=source or spec.company_source,
        status="pending",
    )
    session.add(submission)
    session.flush()
    log.info("Submission %s created for %s (%s)", submission.id, submission.startup_name, spec.key)
    return submission


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_submissions(
    session: Session, *, rubric: str | None = None, status: str | None = None,
    page: int = 1, per_page: int = 50,
) -> tuple[list[dict], int]:
    query = select(Submission)
    if rubric:
        query = query.where(Submission.rubric == rubric.strip().lower())
    if status:
        statuses = [s.strip().lower() for s in status.split(",") if s.strip()]
        query = query.where(Submission.status.in_(statuses))
    total = session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
    rows = session.execute(
        query.order_by(Submission.created_at.desc())
        .offset((page - 1) * per_page).limit(per_page)
    ).scalars().all()
    return [submission_summary(s) for s in rows], total


def latest_evaluations(session: Session, limit: int = 100) -> list[dict]:
    rows = session.execute(
        select(Evaluation).order_by(Evaluation.evaluated_at.desc()).limit(limit)
    ).scalars().all()
    return [evaluation_dict(e) for e in rows]


def list_companies(session: Session, *, source: str | None = None, owner_id: str | None = None) -> list[dict]:
    query = select(Company)
    if source:
        query = query.where(Company.source == source)
    if owner_id is not None:
        query = query.where(Company.owner_id == owner_id)
    rows = session.execute(query.order_by(Company.overall_score.desc(), Company.name)).scalars().all()
    return [company_summary(c) for c in rows]


def compute_stats(session: Session) -> dict:
    submissions = session.execute(select(Submission)).scalars().all()
    by_status: Counter[str] = Counter({s: 0 for s in SUBMISSION_STATUSES})
    by_rubric: Counter[str] = Counter()
    display_scores: list[int] = []
    for sub in submissions:
        by_status[sub.status] += 1
        by_rubric[sub.rubric] += 1
        if sub.evaluation is not None:
            display_scores.append(to_display_scale(sub.evaluation.overall_score, sub.evaluation.score_max))
    companies = session.execute(select(func.count(Company.id))).scalar_one()
    return {
        "total": len(submissions),
        "evaluated": len(display_scores),
        "companies": companies,
        "by_status": dict(by_status),
        "by_rubric": dict(by_rubric),
        "average_score": round(sum(display_scores) / len(display_scores), 1) if display_scores else None,
    }
