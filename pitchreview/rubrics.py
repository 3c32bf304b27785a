"""Rubric tables: the criteria, score ranges and context each evaluation uses.

A rubric is data, not code. The prompt builder, the reply scorer and the
company merge all read these tables, so adding an evaluation family means
adding one :class:`Rubric` entry to :data:`RUBRICS`.
"""
from __future__ import annotations

from dataclasses import dataclass

from pitchreview.errors import InputValidationError

# (label, answer key) pairs
FieldSpec = tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class Criterion:
    key: str
    label: str
    description: str
    fields: FieldSpec = ()


@dataclass(frozen=True)
class Rubric:
    key: str
    title: str
    criteria: tuple[Criterion, ...]
    score_min: int = 0
    score_max: int = 100
    context_fields: FieldSpec = ()
    company_source: str = ""
    temperature: float = 0.3
    max_tokens: int = 2048
    analyst_role: str = "a venture capital analyst evaluating a startup application"

    @property
    def criterion_keys(self) -> list[str]:
        return [c.key for c in self.criteria]

    def criterion(self, key: str) -> Criterion:
        for c in self.criteria:
            if c.key == key or c.label.lower() == key.strip().lower():
                return c
        raise InputValidationError(f"Unknown section {key!r} for rubric {self.key!r}")


STARTUP_RUBRIC = Rubric(
    key="startup",
    title="Startup Application",
    score_min=0,
    score_max=100,
    company_source="startup_form",
    temperature=0.2,
    context_fields=(
        ("Founder", "founder_name"),
        ("Industry", "industry"),
    ),
    criteria=(
        Criterion(
            "problem", "The Problem",
            "Existence, severity and frequency of the pain point; how clearly the unmet need is stated.",
            (("Problem Statement", "problem_statement"),),
        ),
        Criterion(
            "solution", "The Solution",
            "Direct fit to the problem, differentiation from alternatives, feasibility and effectiveness.",
            (("Solution", "solution"), ("Unique Value Proposition", "usp")),
        ),
        Criterion(
            "market", "Market Understanding",
            "Market size and growth, timing, first customers and the competitive landscape.",
            (
                ("Market Understanding", "market_understanding"),
                ("Customer Understanding", "customer_understanding"),
                ("Competition", "competition"),
            ),
        ),
        Criterion(
            "team", "Team & Traction",
            "Founding team capability and complementarity, evidence of execution and traction.",
            (("Team", "team"), ("Traction", "traction")),
        ),
    ),
)

IITGUWAHATI_RUBRIC = Rubric(
    key="iitguwahati",
    title="IIT Guwahati Incubation",
    score_min=0,
    score_max=100,
    company_source="iitguwahati_form",
    temperature=0.3,
    analyst_role="a venture capital analyst evaluating a startup pitch deck submission",
    context_fields=(
        ("Founder", "founder_name"),
    ),
    criteria=(
        Criterion(
            "problem", "The Problem (Domain & Market Pain Point)",
            "Domain clarity, core problem definition, target audience identification, "
            "market size opportunity (TAM/SAM/SOM).",
            (("Domain & Problem", "domain_and_problem"), ("Target Market Size", "target_market_size")),
        ),
        Criterion(
            "solution", "The Solution (The Innovation)",
            "Unique proposition clarity, key differentiators, innovative leap vs alternatives.",
            (("Unique Proposition", "unique_proposition"),),
        ),
        Criterion(
            "product", "The Product (Tangible/Intangible Offering)",
            "Product/service description clarity, key features, technology stack, development stage.",
            (("Product Type & Stage", "product_type_and_stage"),),
        ),
        Criterion(
            "business_model", "Business Model (Path to Revenue Generation)",
            "Revenue streams clarity, pricing strategy, sales channels, CAC/LTV metrics.",
            (("Primary Revenue Model", "primary_revenue_model"), ("LTV/CAC Ratio", "ltv_cac_ratio")),
        ),
        Criterion(
            "finances", "Finances (Commercial Viability & Traction)",
            "Financial metrics, traction evidence, use of funds clarity.",
            (("Total Funding Sought", "total_funding_sought"), ("Key Traction Metric", "key_traction_metric")),
        ),
        Criterion(
            "patents_legalities", "Patents & Legalities (Competitive Moat & Funding Status)",
            "IP protection, regulatory compliance, funding history.",
            (("IP/Moat Status", "ip_moat_status"),),
        ),
        Criterion(
            "future_goals", "Future Goals (Vision & Roadmap)",
            "Vision statement, roadmap clarity, milestone definition.",
            (("12-Month Roadmap", "twelve_month_roadmap"),),
        ),
    ),
)

EUREKA_RUBRIC = Rubric(
    key="eureka",
    title="Eureka Application",
    score_min=0,
    score_max=20,
    company_source="eureka_form",
    temperature=0.3,
    analyst_role="an expert startup analyst evaluating a Eureka form submission",
    context_fields=(
        ("Industry", "industry"),
        ("Executive Summary", "executive_summary"),
        ("Registration Type", "company_registration_type"),
    ),
    criteria=(
        Criterion(
            "problem_solution_fit", "Problem/Solution Fit",
            "How well the proposed solution addresses a real, clearly stated problem.",
            (("Problem/Solution", "question_1"),),
        ),
        Criterion(
            "target_customers", "Target Customers",
            "Clarity of the customer segment, reachability and evidence of customer pain.",
            (("Target Customers", "question_2"),),
        ),
        Criterion(
            "competitors", "Competitors",
            "Awareness of direct competitors and substitutes, and positioning against them.",
            (("Competitors", "question_3"),),
        ),
        Criterion(
            "revenue_model", "Revenue Model",
            "Revenue streams, pricing logic and path to sustainable unit economics.",
            (("Revenue Model", "question_4"),),
        ),
        Criterion(
            "differentiation", "Differentiation",
            "Strength and defensibility of the competitive advantage.",
            (("Competitive Advantage", "question_5"),),
        ),
    ),
)

RUBRICS: dict[str, Rubric] = {
    r.key: r for r in (STARTUP_RUBRIC, IITGUWAHATI_RUBRIC, EUREKA_RUBRIC)
}


def get_rubric(key: str | None) -> Rubric:
    rubric = RUBRICS.get((key or "").strip().lower())
    if rubric is None:
        raise InputValidationError(f"Unknown rubric {key!r} (expected one of: {', '.join(RUBRICS)})")
    return rubric


def list_rubrics() -> list[dict]:
    return [
        {
            "key": r.key, "title": r.title,
            "score_min": r.score_min, "score_max": r.score_max,
            "criteria": [{"key": c.key, "label": c.label} for c in r.criteria],
        }
        for r in RUBRICS.values()
    ]
