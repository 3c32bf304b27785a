"""Derive the reviewable Company record from a completed evaluation."""
from __future__ import annotations

from typing import Any

from pitchreview.models import Company, Evaluation, Submission
from pitchreview.repository import Repository
from pitchreview.rubrics import get_rubric
from pitchreview.utils import normalize_name


def company_source(submission: Submission) -> str:
    return submission.source or get_rubric(submission.rubric).company_source


def company_values(submission: Submission, evaluation: Evaluation) -> dict[str, Any]:
    """Column values for the Company row denormalised from *evaluation*."""
    return {
        "name": submission.startup_name.strip(),
        "normalized_name": normalize_name(submission.startup_name),
        "source": company_source(submission),
        "owner_id": submission.owner_id or "",
        "overall_score": evaluation.overall_score,
        "score_max": evaluation.score_max,
        "scoring_reason": evaluation.overall_summary,
        "industry": submission.industry or "",
        "email": submission.email or "",
        "poc_name": submission.founder_name or "",
        "phone": submission.phone or "",
        "submission_id": submission.id,
    }


def merge_company(repo: Repository, submission: Submission, evaluation: Evaluation) -> Company:
    """Create the submission's Company on first analysis, update it afterwards."""
    return repo.upsert_company(company_values(submission, evaluation))
