"""Prompt builders. Pure string construction from a submission and a rubric."""
from __future__ import annotations

from typing import Any

from pitchreview.models import Submission
from pitchreview.rubrics import Criterion, Rubric
from pitchreview.utils import json_parse

NOT_PROVIDED = "Not provided"

EVALUATION_SYSTEM_PROMPT = (
    "You are an expert VC analyst. Return ONLY valid JSON. No markdown. "
    "No extra text. Use double quotes for all JSON strings."
)

SECTION_SYSTEM_PROMPT = (
    "You are an expert startup evaluator. Provide concise, insightful analysis "
    "in bullet point format."
)

_SUBMISSION_COLUMNS = ("startup_name", "founder_name", "email", "phone", "industry", "linkedin")


def submission_fields(submission: Submission) -> dict[str, Any]:
    """Flatten a submission's columns and free-text answers into one mapping."""
    fields: dict[str, Any] = dict(json_parse(submission.answers_json, {}))
    for column in _SUBMISSION_COLUMNS:
        value = getattr(submission, column, None)
        if value:
            fields[column] = value
    return fields


def _render(value: Any) -> str:
    if value is None:
        return NOT_PROVIDED
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(v).strip() for v in value if str(v).strip())
    text = str(value).strip()
    return text or NOT_PROVIDED


def _field_lines(specs, fields: dict[str, Any]) -> list[str]:
    return [f"- **{label}**: {_render(fields.get(key))}" for label, key in specs]


def _output_schema(rubric: Rubric) -> str:
    lines = ["{"]
    for c in rubric.criteria:
        lines.append(f'  "{c.key}_score": <integer {rubric.score_min}-{rubric.score_max}>,')
        lines.append(f'  "{c.key}_feedback": "<2-3 bullet points>",')
    lines.append('  "overall_summary": "<Executive summary of the startup in 2-3 sentences>"')
    lines.append("}")
    return "\n".join(lines)


def build_evaluation_prompt(rubric: Rubric, fields: dict[str, Any]) -> str:
    """Render the evaluation prompt for *rubric* over the submission *fields*.

    Every field the rubric references appears exactly once, in rubric order;
    missing or blank answers are rendered as ``Not provided``.
    """
    seen: set[str] = set()
    info_specs: list[tuple[str, str]] = []
    for label, key in rubric.context_fields + tuple(f for c in rubric.criteria for f in c.fields):
        if key not in seen:
            seen.add(key)
            info_specs.append((label, key))

    n = len(rubric.criteria)
    sections = [
        f"You are {rubric.analyst_role}. Evaluate the following startup submission "
        f"based on {n} criteria. For each criterion, provide a score from "
        f"{rubric.score_min}-{rubric.score_max} and detailed feedback.",
        "",
        "## Startup Information:",
        f"- **Name**: {_render(fields.get('startup_name'))}",
        *_field_lines(info_specs, fields),
        "",
        "## Evaluation Criteria:",
    ]
    for i, c in enumerate(rubric.criteria, start=1):
        sections.append("")
        sections.append(f"### {i}. {c.label} - Score {rubric.score_min}-{rubric.score_max}")
        sections.append(f"Evaluate: {c.description}")

    sections.extend([
        "",
        "Respond ONLY with a valid JSON object in this exact format (no additional text):",
        _output_schema(rubric),
    ])
    return "\n".join(sections)


def build_section_prompt(
    rubric: Rubric,
    criterion: Criterion,
    fields: dict[str, Any],
    score: int,
    feedback: str,
) -> str:
    context = "\n".join(f"{label}: {_render(fields.get(key))}" for label, key in criterion.fields)
    return (
        f'You are analyzing a startup submission for the section "{criterion.label}".\n\n'
        f"Score: {score}/{rubric.score_max}\n"
        f"Feedback: {feedback or NOT_PROVIDED}\n\n"
        f"Context:\n{context}\n\n"
        "Generate a concise, bulleted analysis (2-3 bullet points) explaining:\n"
        "1. Why this score was given based on the submission data\n"
        "2. Key strengths or weaknesses identified\n"
        "3. Relevant industry context or benchmarks\n\n"
        "Keep each bullet point under 2 sentences. Focus on being specific and actionable."
    )
