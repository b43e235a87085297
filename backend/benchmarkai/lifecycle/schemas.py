"""Report lifecycle enums and the questionnaire / report payload schemas."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ReportStatus(str, Enum):
    """Report lifecycle states."""

    DRAFT = "draft"
    PAID = "paid"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    ABANDONED = "abandoned"


class Plan(str, Enum):
    """Sold tiers. The plan fixes price, prompt variant and output shape."""

    STANDARD = "standard"
    PRO = "pro"
    AGENCY = "agency"


# Languages a report can be written in; anything else falls back to French
REPORT_LANGUAGES: dict[str, str] = {
    "fr": "Français",
    "en": "English",
    "es": "Español",
    "it": "Italiano",
    "de": "Deutsch",
}
DEFAULT_REPORT_LANGUAGE = "fr"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


# ── Questionnaire ───────────────────────────────────────────────────


class Location(_CamelModel):
    city: str = ""
    country: str = ""


class TargetCustomers(_CamelModel):
    type: Literal["B2B", "B2C", "Both"] = "B2B"
    persona: str = ""


class PriceRange(_CamelModel):
    min: float = 0
    max: float = 0


class CompetitorRef(_CamelModel):
    name: str
    url: str | None = None


class ReportInput(_CamelModel):
    """Wizard answers. Unknown keys are kept so newer wizard fields reach the prompt."""

    business_name: str = Field(min_length=1)
    website: str | None = None
    sector: str = Field(min_length=1)
    location: Location = Field(default_factory=Location)
    target_customers: TargetCustomers = Field(default_factory=TargetCustomers)
    what_you_sell: str = ""
    price_range: PriceRange = Field(default_factory=PriceRange)
    differentiators: list[str] = []
    acquisition_channels: list[str] = []
    goals: list[str] = []
    competitors: list[CompetitorRef] = []
    budget_level: Literal["low", "medium", "high"] = "medium"
    timeline: Literal["now", "30days", "90days"] = "30days"
    notes: str | None = None
    tone_preference: Literal["professional", "bold", "minimalist"] = "professional"
    report_language: str = DEFAULT_REPORT_LANGUAGE

    @property
    def language(self) -> str:
        return self.report_language if self.report_language in REPORT_LANGUAGES else DEFAULT_REPORT_LANGUAGE


# ── Generated report ────────────────────────────────────────────────


class Competitor(_CamelModel):
    name: str
    url: str | None = None
    strengths: list[str] = []
    weaknesses: list[str] = []
    price_range: str | None = None


class PositioningPoint(_CamelModel):
    x: float
    y: float
    label: str
    is_user: bool = False


class PositioningMatrix(_CamelModel):
    x_axis_label: str = ""
    y_axis_label: str = ""
    points: list[PositioningPoint] = []


class GoToMarket(_CamelModel):
    channels: list[str] = []
    messaging: list[str] = []


class ActionPlanItem(_CamelModel):
    timeframe: Literal["30", "60", "90"]
    tasks: list[str] = []


class StandardReport(_CamelModel):
    """Sections every tier delivers."""

    title: str = Field(min_length=1)
    executive_summary: list[str] = Field(min_length=1)
    market_overview: str = ""
    target_segments: list[str] = []
    competitor_table: list[Competitor] = []
    positioning_matrix: PositioningMatrix = Field(default_factory=PositioningMatrix)
    pricing_recommendations: list[str] = []
    go_to_market: GoToMarket = Field(default_factory=GoToMarket)
    risks_and_checks: list[str] = []
    action_plan: list[ActionPlanItem] = Field(default=[], alias="actionPlan30_60_90")
    assumptions_and_questions: list[str] = []
    sources: list[str | dict] = []


class ProReport(StandardReport):
    """Pro adds strategic analysis sections."""

    swot_analysis: dict = Field(alias="swot_analysis")
    competitive_intelligence: dict = Field(default_factory=dict, alias="competitive_intelligence")
    customer_intelligence: dict = Field(default_factory=dict, alias="customer_intelligence")
    trends_analysis: dict = Field(default_factory=dict, alias="trends_analysis")


class AgencyReport(ProReport):
    """Agency adds financial and execution planning sections."""

    financial_projections: dict = Field(alias="financial_projections")
    detailed_roadmap: dict | list = Field(default_factory=dict, alias="detailed_roadmap")
    risk_register: list[dict] = Field(default=[], alias="risk_register")
    scoring_matrix: dict = Field(default_factory=dict, alias="scoring_matrix")
    multi_market_comparison: dict | list = Field(default_factory=dict, alias="multi_market_comparison")


REPORT_SCHEMAS: dict[Plan, type[StandardReport]] = {
    Plan.STANDARD: StandardReport,
    Plan.PRO: ProReport,
    Plan.AGENCY: AgencyReport,
}
