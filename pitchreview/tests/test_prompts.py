"""Tests for rubric lookup and prompt construction."""
from __future__ import annotations

import json

import pytest

from pitchreview.errors import InputValidationError
from pitchreview.models import Submission
from pitchreview.prompts import (
    NOT_PROVIDED,
    build_evaluation_prompt,
    build_section_prompt,
    submission_fields,
)
from pitchreview.rubrics import EUREKA_RUBRIC, STARTUP_RUBRIC, get_rubric, list_rubrics


@pytest.fixture()
def startup_fields():
    return {
        "startup_name": "Acme Robotics",
        "founder_name": "Dana Lee",
        "industry": "Logistics",
        "problem_statement": "Warehouses lose 20% of picks to errors.",
        "solution": "Vision-guided picking arms.",
        "usp": "",
        "team": ["Dana (CEO)", "Sam (CTO)"],
    }


class TestRubrics:
    def test_get_rubric_case_insensitive(self):
        assert get_rubric(" Startup ") is STARTUP_RUBRIC

    def test_unknown_rubric(self):
        with pytest.raises(InputValidationError):
            get_rubric("nope")

    def test_criterion_by_label(self):
        assert STARTUP_RUBRIC.criterion("the problem").key == "problem"

    def test_unknown_criterion(self):
        with pytest.raises(InputValidationError):
            STARTUP_RUBRIC.criterion("vibes")

    def test_list_rubrics(self):
        listed = {r["key"]: r for r in list_rubrics()}
        assert set(listed) == {"startup", "iitguwahati", "eureka"}
        assert listed["eureka"]["score_max"] == 20
        assert [c["key"] for c in listed["startup"]["criteria"]] == STARTUP_RUBRIC.criterion_keys


class TestEvaluationPrompt:
    def test_contains_name_and_answers(self, startup_fields):
        prompt = build_evaluation_prompt(STARTUP_RUBRIC, startup_fields)
        assert "- **Name**: Acme Robotics" in prompt
        assert "- **Problem Statement**: Warehouses lose 20% of picks to errors." in prompt
        assert "- **Team**: Dana (CEO), Sam (CTO)" in prompt

    def test_blank_and_missing_fields_not_provided(self, startup_fields):
        prompt = build_evaluation_prompt(STARTUP_RUBRIC, startup_fields)
        assert f"- **Unique Value Proposition**: {NOT_PROVIDED}" in prompt
        assert f"- **Traction**: {NOT_PROVIDED}" in prompt

    def test_each_field_once(self, startup_fields):
        prompt = build_evaluation_prompt(STARTUP_RUBRIC, startup_fields)
        assert prompt.count("- **Founder**:") == 1
        assert prompt.count("- **Industry**:") == 1

    def test_criteria_in_order_with_range(self, startup_fields):
        prompt = build_evaluation_prompt(STARTUP_RUBRIC, startup_fields)
        positions = [prompt.index(f"### {i}. {c.label}") for i, c in enumerate(STARTUP_RUBRIC.criteria, 1)]
        assert positions == sorted(positions)
        assert "Score 0-100" in prompt

    def test_output_schema_keys(self, startup_fields):
        prompt = build_evaluation_prompt(STARTUP_RUBRIC, startup_fields)
        for key in STARTUP_RUBRIC.criterion_keys:
            assert f'"{key}_score"' in prompt
            assert f'"{key}_feedback"' in prompt
        assert '"overall_summary"' in prompt

    def test_rubric_scale_in_prompt(self):
        prompt = build_evaluation_prompt(EUREKA_RUBRIC, {"startup_name": "Tiny"})
        assert "Score 0-20" in prompt
        assert "<integer 0-20>" in prompt

    def test_deterministic(self, startup_fields):
        assert build_evaluation_prompt(STARTUP_RUBRIC, startup_fields) == build_evaluation_prompt(
            STARTUP_RUBRIC, dict(startup_fields)
        )


class TestSubmissionFields:
    def test_columns_override_answers(self):
        sub = Submission(
            rubric="startup", startup_name="Acme", founder_name="Dana", industry="",
            answers_json=json.dumps({"solution": "Arms", "industry": "Logistics"}),
        )
        fields = submission_fields(sub)
        assert fields["startup_name"] == "Acme"
        assert fields["founder_name"] == "Dana"
        assert fields["solution"] == "Arms"
        # blank column does not clobber the answer
        assert fields["industry"] == "Logistics"


def test_section_prompt(startup_fields):
    criterion = STARTUP_RUBRIC.criterion("solution")
    prompt = build_section_prompt(STARTUP_RUBRIC, criterion, startup_fields, 72, "• Solid fit")
    assert '"The Solution"' in prompt
    assert "Score: 72/100" in prompt
    assert "Feedback: • Solid fit" in prompt
    assert "Solution: Vision-guided picking arms." in prompt
    assert f"Unique Value Proposition: {NOT_PROVIDED}" in prompt
