"""Tier templates: system instructions, user brief and sampling budget per plan."""

from dataclasses import dataclass

from benchmarkai.core.config import get_settings
from benchmarkai.lifecycle.schemas import REPORT_LANGUAGES, Plan, ReportInput
from benchmarkai.services.ai_client import GenerationRequest

_STANDARD_SECTIONS = [
    '"title": string',
    '"executiveSummary": string[] (3-5 bullets)',
    '"marketOverview": string',
    '"targetSegments": string[]',
    '"competitorTable": [{"name", "url", "strengths": string[], "weaknesses": string[], "priceRange"}]',
    '"positioningMatrix": {"xAxisLabel", "yAxisLabel", "points": [{"x": 0-100, "y": 0-100, "label", "isUser"}]}',
    '"pricingRecommendations": string[]',
    '"goToMarket": {"channels": string[], "messaging": string[]}',
    '"risksAndChecks": string[]',
    '"actionPlan30_60_90": [{"timeframe": "30"|"60"|"90", "tasks": string[]}]',
    '"assumptionsAndQuestions": string[]',
    '"sources": string[]',
]

_PRO_SECTIONS = _STANDARD_SECTIONS + [
    '"swot_analysis": {"strengths", "weaknesses", "opportunities", "threats"}',
    '"competitive_intelligence": object',
    '"customer_intelligence": object',
    '"trends_analysis": object',
]

_AGENCY_SECTIONS = _PRO_SECTIONS + [
    '"financial_projections": object',
    '"detailed_roadmap": object',
    '"risk_register": [{"risk", "impact", "mitigation"}]',
    '"scoring_matrix": object',
    '"multi_market_comparison": object',
]


@dataclass(frozen=True)
class TierTemplate:
    role: str
    temperature: float
    competitor_count: str
    sections: list[str]


TIER_TEMPLATES: dict[Plan, TierTemplate] = {
    Plan.STANDARD: TierTemplate(
        role="an associate director at a strategy consulting firm",
        temperature=0.3,
        competitor_count="5-7",
        sections=_STANDARD_SECTIONS,
    ),
    Plan.PRO: TierTemplate(
        role="a principal at a tier-1 strategy consulting firm",
        temperature=0.25,
        competitor_count="8-10",
        sections=_PRO_SECTIONS,
    ),
    Plan.AGENCY: TierTemplate(
        role="a senior partner at a global strategy consulting firm",
        temperature=0.2,
        competitor_count="10-15",
        sections=_AGENCY_SECTIONS,
    ),
}


def max_tokens_for(plan: Plan) -> int:
    settings = get_settings()
    return {
        Plan.STANDARD: settings.report_max_tokens_standard,
        Plan.PRO: settings.report_max_tokens_pro,
        Plan.AGENCY: settings.report_max_tokens_agency,
    }[plan]


def build_system_instructions(plan: Plan, language: str) -> str:
    template = TIER_TEMPLATES[plan]
    language_name = REPORT_LANGUAGES[language]
    schema = ",\n  ".join(template.sections)
    return (
        f"You are {template.role} producing a competitive benchmark report.\n"
        f"REPORT LANGUAGE: {language_name}. Write the entire report in this language.\n"
        f"Analyse {template.competitor_count} competitors.\n"
        "Never invent figures: write 'data not available' instead.\n\n"
        "Return ONLY a valid JSON object, no text before or after, with these keys:\n"
        f"{{\n  {schema}\n}}"
    )


def build_user_prompt(report_input: ReportInput) -> str:
    competitors = (
        "\n".join(
            f"{i}. {c.name}" + (f" ({c.url})" if c.url else "")
            for i, c in enumerate(report_input.competitors, start=1)
        )
        or "No competitor given - identify the main players in the market"
    )
    lines = [
        "<business_context>",
        f"Business: {report_input.business_name}",
        f"Website: {report_input.website}" if report_input.website else "No website",
        f"Sector: {report_input.sector}",
        f"Location: {report_input.location.city}, {report_input.location.country}",
        f"Target: {report_input.target_customers.type} - {report_input.target_customers.persona}",
        "</business_context>",
        "<offer>",
        f"What they sell: {report_input.what_you_sell}",
        f"Price range: {report_input.price_range.min:g} - {report_input.price_range.max:g}",
        f"Differentiators: {', '.join(report_input.differentiators) or 'not specified'}",
        f"Acquisition channels: {', '.join(report_input.acquisition_channels) or 'not specified'}",
        "</offer>",
        f'<competitors count="{len(report_input.competitors)}">',
        competitors,
        "</competitors>",
        "<objectives>",
        f"Goals: {', '.join(report_input.goals) or 'full analysis'}",
        "</objectives>",
        "<constraints>",
        f"Budget: {report_input.budget_level}",
        f"Timeline: {report_input.timeline}",
        f"Tone: {report_input.tone_preference}",
    ]
    if report_input.notes:
        lines.append(f"Notes: {report_input.notes}")
    lines.append("</constraints>")
    return "\n".join(lines)


def build_generation_request(report_input: ReportInput, plan: Plan) -> GenerationRequest:
    """Assemble the AI call for a report from its questionnaire and tier."""
    return GenerationRequest(
        system_instructions=build_system_instructions(plan, report_input.language),
        user_prompt=build_user_prompt(report_input),
        max_tokens=max_tokens_for(plan),
        temperature=TIER_TEMPLATES[plan].temperature,
    )
