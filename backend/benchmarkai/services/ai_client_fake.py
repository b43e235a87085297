"""FakeReportAIClient: scenario-based test double for ReportAIClient.

Provides deterministic, instant responses for named scenarios:
- happy_path: Plain JSON report valid for every tier
- fenced: The same report wrapped in a ```json markdown fence
- malformed: Truncated JSON
- rate_limited: Provider rate limit
- unauthenticated: Provider rejects credentials
- upstream_error: Provider 5xx after retries
"""

import asyncio
import copy
import json

from benchmarkai.core.exceptions import (
    RateLimitedError,
    UpstreamError,
    UpstreamUnauthenticatedError,
)
from benchmarkai.services.ai_client import GenerationRequest

SAMPLE_REPORT: dict = {
    "title": "Benchmark concurrentiel - Atelier Lumen",
    "executiveSummary": [
        "Le marché des ateliers de céramique urbains croît de 8 % par an.",
        "Deux concurrents directs dominent le segment premium à Lyon.",
        "Un positionnement atelier + boutique en ligne est encore peu occupé.",
    ],
    "marketOverview": "Marché fragmenté, porté par la demande de loisirs créatifs en centre-ville.",
    "targetSegments": ["Actifs urbains 25-40 ans", "Comités d'entreprise"],
    "competitorTable": [
        {
            "name": "Terre & Feu",
            "url": "https://terre-et-feu.example",
            "strengths": ["Notoriété locale"],
            "weaknesses": ["Pas de réservation en ligne"],
            "priceRange": "35-60 €",
        },
        {
            "name": "Studio Argile",
            "strengths": ["Cours du soir"],
            "weaknesses": ["Capacité limitée"],
            "priceRange": "40-55 €",
        },
    ],
    "positioningMatrix": {
        "xAxisLabel": "Prix",
        "yAxisLabel": "Expérience",
        "points": [
            {"x": 60, "y": 80, "label": "Atelier Lumen", "isUser": True},
            {"x": 45, "y": 55, "label": "Terre & Feu"},
        ],
    },
    "pricingRecommendations": ["Introduire un pack 4 séances à 180 €"],
    "goToMarket": {"channels": ["Instagram", "Partenariats CE"], "messaging": ["Créer, pas consommer"]},
    "risksAndChecks": ["Saisonnalité estivale"],
    "actionPlan30_60_90": [
        {"timeframe": "30", "tasks": ["Ouvrir la réservation en ligne"]},
        {"timeframe": "60", "tasks": ["Lancer l'offre entreprises"]},
        {"timeframe": "90", "tasks": ["Mesurer la rétention"]},
    ],
    "assumptionsAndQuestions": ["Capacité de 12 places par séance"],
    "sources": ["INSEE - Dépenses de loisirs 2024"],
    "swot_analysis": {
        "strengths": ["Emplacement"],
        "weaknesses": ["Marque récente"],
        "opportunities": ["Demande B2B"],
        "threats": ["Hausse des loyers"],
    },
    "competitive_intelligence": {"summary": "Concurrence locale peu digitalisée."},
    "customer_intelligence": {"personas": ["Créatif du week-end"]},
    "trends_analysis": {"trends": ["Slow living"]},
    "financial_projections": {"year_1_revenue": 92000, "break_even_month": 14},
    "detailed_roadmap": {"q1": ["Réservation en ligne"], "q2": ["Offre B2B"]},
    "risk_register": [{"risk": "Saisonnalité", "impact": "medium", "mitigation": "Stages d'été"}],
    "scoring_matrix": {"criteria": ["Prix", "Expérience"], "scores": {"Atelier Lumen": [3, 5]}},
    "multi_market_comparison": {"markets": ["Lyon", "Grenoble"]},
}


class FakeReportAIClient:
    """Scenario-based test double for ReportAIClient.

    ``calls`` records every request so tests can assert on tier budgets.
    ``delay`` makes each call sleep first (for timeout and heartbeat tests).
    """

    VALID_SCENARIOS = {"happy_path", "fenced", "malformed", "rate_limited", "unauthenticated", "upstream_error"}

    def __init__(self, scenario: str = "happy_path", delay: float = 0.0, report: dict | None = None):
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}")
        self.scenario = scenario
        self.delay = delay
        self.report = report if report is not None else copy.deepcopy(SAMPLE_REPORT)
        self.calls: list[GenerationRequest] = []

    async def complete(self, request: GenerationRequest) -> str:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.scenario == "rate_limited":
            raise RateLimitedError("AI service rate limit reached, retry in a few minutes")
        if self.scenario == "unauthenticated":
            raise UpstreamUnauthenticatedError("Invalid AI service configuration")
        if self.scenario == "upstream_error":
            raise UpstreamError("AI service error (503)")

        body = json.dumps(self.report, ensure_ascii=False, indent=2)
        if self.scenario == "malformed":
            return body[: len(body) // 2]
        if self.scenario == "fenced":
            return f"```json\n{body}\n```"
        return body
