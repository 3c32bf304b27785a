"""Pydantic request/response schemas for the Pitch Review API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EvaluateRequest(_CamelRequest):
    submission_id: str = Field(alias="submissionId")
    force_refresh: bool = Field(False, alias="forceRefresh")


class EvaluationOut(BaseModel):
    id: int
    submission_id: str
    rubric: str
    startup_name: str
    scores: dict[str, int]
    feedback: dict[str, str]
    overall_score: int
    score_max: int
    overall_summary: str
    llm_model: str
    evaluated_at: str | None = None


class EvaluateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    evaluation: EvaluationOut | None = None
    cached: bool | None = None
    error: str | None = None
    error_type: str | None = Field(None, alias="errorType")


class SubmissionCreate(BaseModel):
    rubric: str = "startup"
    startup_name: str
    answers: dict[str, Any] = {}
    founder_name: str = ""
    email: str = ""
    phone: str = ""
    industry: str = ""
    linkedin: str = ""
    owner_id: str = ""
    source: str = ""

    @field_validator("startup_name")
    @classmethod
    def name_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("startup_name must not be blank")
        return v


class SubmissionOut(BaseModel):
    id: str
    rubric: str
    startup_name: str
    founder_name: str
    email: str
    phone: str
    industry: str
    linkedin: str
    owner_id: str
    source: str
    status: str
    error: str
    company_id: int | None = None
    created_at: str | None = None
    analyzed_at: str | None = None
    overall_score: int | None = None
    score_max: int


class SubmissionDetail(SubmissionOut):
    answers: dict[str, Any] = {}
    raw_output: str = ""
    evaluation: EvaluationOut | None = None


class SubmissionListResponse(BaseModel):
    items: list[SubmissionOut]
    total: int


class CompanyOut(BaseModel):
    id: int
    name: str
    source: str
    owner_id: str
    overall_score: int
    score_max: int
    display_score: int | None = None
    scoring_reason: str
    industry: str
    email: str
    poc_name: str
    phone: str
    submission_id: str | None = None
    updated_at: str | None = None


class StatsOut(BaseModel):
    total: int
    evaluated: int
    companies: int
    by_status: dict[str, int]
    by_rubric: dict[str, int]
    average_score: float | None = None


class RerunRequest(_CamelRequest):
    submission_ids: list[str] = Field(alias="submissionIds")


class SectionSummaryRequest(_CamelRequest):
    submission_id: str = Field(alias="submissionId")
    section: str

    @field_validator("section")
    @classmethod
    def section_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("section is required")
        return v.strip()
