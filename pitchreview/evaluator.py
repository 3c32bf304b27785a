"""Cache-checked evaluation of a single submission.

Flow for ``Evaluator.evaluate(submission_id, force_refresh)``:

1. validate the identifier, load the submission (``NotFound`` otherwise)
2. return the stored evaluation unless ``force_refresh`` is set
3. mark the submission ``processing`` and take a run ticket (``run_seq``)
4. build the rubric prompt, make one model call
5. extract the JSON reply and score it against the rubric
6. store it (delete-then-insert, retried on ``PersistenceError``), merge
   the Company record, mark the submission ``completed``

Any failure marks the submission ``failed`` with the error message and is
re-raised. A ``ParseError`` also stores the raw model reply for review; no
placeholder scores are ever written.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Protocol, TypeVar

from pitchreview.companies import merge_company
from pitchreview.errors import (
    InputValidationError,
    NotFound,
    ParseError,
    PersistenceError,
    StaleEvaluation,
)
from pitchreview.models import Evaluation, Submission
from pitchreview.prompts import (
    EVALUATION_SYSTEM_PROMPT,
    SECTION_SYSTEM_PROMPT,
    build_evaluation_prompt,
    build_section_prompt,
    submission_fields,
)
from pitchreview.repository import Repository
from pitchreview.rubrics import Rubric, get_rubric
from pitchreview.services import evaluation_dict
from pitchreview.utils import bullet_join, extract_json, json_parse, utcnow

log = logging.getLogger(__name__)

T = TypeVar("T")

SUBMISSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ModelClient(Protocol):
    model: str

    async def complete(self, system: str, user: str, *, temperature: float = ..., max_tokens: int = ...) -> str: ...


@dataclass
class EvaluationOutcome:
    evaluation: dict[str, Any]
    cached: bool


@dataclass
class ScoredReply:
    scores: dict[str, int]
    feedback: dict[str, str]
    overall_summary: str
    overall_score: int


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def validate_submission_id(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError("submissionId is required")
    value = value.strip()
    if not SUBMISSION_ID_RE.match(value):
        raise InputValidationError("submissionId is malformed")
    return value


def aggregate_score(scores: list[int]) -> int:
    """Arithmetic mean of non-negative integer scores, rounded half up."""
    if not scores:
        raise ValueError("aggregate_score() needs at least one score")
    n = len(scores)
    return (2 * sum(scores) + n) // (2 * n)


def _coerce_score(value: Any, rubric: Rubric) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip().split("/")[0])
        except ValueError:
            return None
    if isinstance(value, int):
        rounded = max(value, 0)
    elif isinstance(value, float) and math.isfinite(value):
        rounded = int(value + 0.5) if value >= 0 else 0
    else:
        return None
    return max(rubric.score_min, min(rubric.score_max, rounded))


def _criterion_entry(data: dict[str, Any], key: str) -> tuple[Any, Any]:
    """(score, feedback) for *key*, flat ``<key>_score`` or nested sections."""
    if f"{key}_score" in data:
        return data.get(f"{key}_score"), data.get(f"{key}_feedback")
    nested = data.get("section_analysis") or data.get("sections") or {}
    entry = nested.get(key) if isinstance(nested, dict) else None
    if isinstance(entry, dict):
        return entry.get("score"), entry.get("feedback")
    return None, None


def score_reply(rubric: Rubric, data: dict[str, Any], raw_text: str = "") -> ScoredReply:
    """Validate a parsed model reply against *rubric*.

    Scores are rounded and clamped to the rubric range. A missing or
    non-numeric score raises ``ParseError``: an unscored criterion is not a
    zero.
    """
    scores: dict[str, int] = {}
    feedback: dict[str, str] = {}
    for c in rubric.criteria:
        raw_score, raw_feedback = _criterion_entry(data, c.key)
        score = _coerce_score(raw_score, rubric)
        if score is None:
            raise ParseError(f"Model reply has no usable score for {c.key!r}", raw_text=raw_text)
        scores[c.key] = score
        feedback[c.key] = bullet_join(raw_feedback)
    summary = data.get("overall_summary") or data.get("scoring_reason") or data.get("summary") or ""
    return ScoredReply(
        scores=scores,
        feedback=feedback,
        overall_summary=bullet_join(summary),
        overall_score=aggregate_score(list(scores.values())),
    )


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class Evaluator:
    def __init__(self, repo: Repository, client: ModelClient, *, persist_attempts: int = 3, persist_backoff: float = 0.2):
        self.repo = repo
        self.client = client
        self.persist_attempts = max(1, persist_attempts)
        self.persist_backoff = persist_backoff

    def _load(self, submission_id: Any) -> Submission:
        submission_id = validate_submission_id(submission_id)
        submission = self.repo.get_submission(submission_id)
        if submission is None:
            raise NotFound(f"Submission {submission_id} not found")
        return submission

    async def evaluate(self, submission_id: Any, force_refresh: bool = False) -> EvaluationOutcome:
        submission = self._load(submission_id)
        rubric = get_rubric(submission.rubric)

        if not force_refresh:
            existing = self.repo.get_evaluation(submission.id)
            if existing is not None:
                log.info("Cached evaluation for %s (%s)", submission.id, submission.startup_name)
                return EvaluationOutcome(evaluation_dict(existing), cached=True)

        run_seq = self.repo.begin_run(submission)
        log.info(
            "Evaluating %s (%s) with %s rubric, run %d",
            submission.id, submission.startup_name, rubric.key, run_seq,
        )
        try:
            evaluation = await self._compute(submission, rubric, run_seq)
            try:
                evaluation = await self._retrying("store evaluation", self.repo.save_evaluation, evaluation)
            except StaleEvaluation as exc:
                log.info("Discarding result of run %d: %s", run_seq, exc)
                newer = self.repo.get_evaluation(submission.id)
                if newer is None:
                    raise
                return EvaluationOutcome(evaluation_dict(newer), cached=False)
            company = await self._retrying("merge company", merge_company, self.repo, submission, evaluation)
            self.repo.mark_completed(submission, company.id)
        except Exception as exc:
            raw_output = exc.raw_text if isinstance(exc, ParseError) else None
            self._fail(submission, str(exc) or exc.__class__.__name__, raw_output)
            raise

        log.info(
            "Evaluation completed for %s: overall %d/%d",
            submission.startup_name, evaluation.overall_score, rubric.score_max,
        )
        return EvaluationOutcome(evaluation_dict(evaluation), cached=False)

    async def _compute(self, submission: Submission, rubric: Rubric, run_seq: int) -> Evaluation:
        prompt = build_evaluation_prompt(rubric, submission_fields(submission))
        reply = await self.client.complete(
            EVALUATION_SYSTEM_PROMPT, prompt,
            temperature=rubric.temperature, max_tokens=rubric.max_tokens,
        )
        scored = score_reply(rubric, extract_json(reply), raw_text=reply)
        return Evaluation(
            submission_id=submission.id,
            rubric=rubric.key,
            startup_name=submission.startup_name,
            scores_json=json.dumps(scored.scores),
            feedback_json=json.dumps(scored.feedback),
            overall_score=scored.overall_score,
            overall_summary=scored.overall_summary,
            score_max=rubric.score_max,
            run_seq=run_seq,
            llm_model=self.client.model,
            evaluated_at=utcnow(),
        )

    async def _retrying(self, what: str, fn: Callable[..., T], *args: Any) -> T:
        attempt = 1
        while True:
            try:
                return fn(*args)
            except PersistenceError as exc:
                if attempt >= self.persist_attempts:
                    raise
                log.warning("Failed to %s (attempt %d/%d): %s", what, attempt, self.persist_attempts, exc)
                await asyncio.sleep(self.persist_backoff * attempt)
                attempt += 1

    def _fail(self, submission: Submission, message: str, raw_output: str | None) -> None:
        log.warning("Evaluation failed for %s: %s", submission.id, message)
        try:
            self.repo.mark_failed(submission, message, raw_output)
        except PersistenceError:
            log.exception("Could not record failure for submission %s", submission.id)

    async def rerun(self, submission_ids: list[Any]) -> list[dict[str, Any]]:
        """Force re-evaluation of each submission in turn; one result per id."""
        results: list[dict[str, Any]] = []
        for submission_id in submission_ids:
            try:
                outcome = await self.evaluate(submission_id, force_refresh=True)
            except Exception as exc:
                log.warning("Re-run failed for %s: %s", submission_id, exc)
                results.append({"submissionId": submission_id, "success": False, "error": str(exc)})
                continue
            results.append({
                "submissionId": submission_id, "success": True,
                "overallScore": outcome.evaluation["overall_score"],
            })
        return results

    async def summarize_section(self, submission_id: Any, section: str) -> dict[str, Any]:
        """Short bullet analysis of one rubric section, grounded on the stored score."""
        submission = self._load(submission_id)
        rubric = get_rubric(submission.rubric)
        criterion = rubric.criterion(section)
        stored = self.repo.get_evaluation(submission.id)
        score = json_parse(stored.scores_json).get(criterion.key, 0) if stored else 0
        feedback = json_parse(stored.feedback_json).get(criterion.key, "") if stored else ""
        prompt = build_section_prompt(rubric, criterion, submission_fields(submission), score, feedback)
        summary = await self.client.complete(SECTION_SYSTEM_PROMPT, prompt, temperature=0.7, max_tokens=500)
        return {"section": criterion.label, "score": score, "score_max": rubric.score_max, "summary": summary.strip()}
