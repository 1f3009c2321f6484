"""Analysis types and depth levels.

Every analysis type the pipeline knows about lives in ``ANALYSIS_TYPE_SPECS``:
adding a type means adding one entry here, and lookups for an unknown tag fail
loudly instead of silently falling back to a generic prompt.
"""

from dataclasses import dataclass
from enum import Enum


class AnalysisType(str, Enum):
    """Report kinds a project can be analyzed for."""

    PRD = "prd"
    DIVULGACAO = "divulgacao"  # marketing & launch plan
    CAPTACAO = "captacao"  # investor pitch / fundraising plan
    SEGURANCA = "seguranca"  # security review
    UI_THEME = "ui_theme"
    FEATURES = "features"
    DOCUMENTACAO = "documentacao"  # technical documentation
    PROMPTS = "prompts"
    QUALITY = "quality"
    PERFORMANCE = "performance"
    # Readable only: existing analyses may carry it, new jobs may not
    FERRAMENTAS = "ferramentas"


class DepthLevel(str, Enum):
    """How much repository context and which model an analysis gets."""

    CRITICAL = "critical"
    BALANCED = "balanced"
    COMPLETE = "complete"


@dataclass(frozen=True)
class AnalysisTypeSpec:
    """Static metadata for one analysis type."""

    type: AnalysisType
    title: str
    status_suffix: str
    system_prompt: str
    user_prompt: str
    legacy: bool = False

    @property
    def status_key(self) -> str:
        """Project ``analysis_status`` value shown while this type is generating."""
        return f"generating_{self.status_suffix}"


ANALYSIS_TYPE_SPECS: dict[AnalysisType, AnalysisTypeSpec] = {
    AnalysisType.PRD: AnalysisTypeSpec(
        type=AnalysisType.PRD,
        title="PRD",
        status_suffix="prd",
        system_prompt="You are a senior technical product analyst who specializes in software documentation.",
        user_prompt="Analyze the following GitHub project and write a complete Product Requirements Document.",
    ),
    AnalysisType.DIVULGACAO: AnalysisTypeSpec(
        type=AnalysisType.DIVULGACAO,
        title="Marketing & Launch",
        status_suffix="divulgacao",
        system_prompt="You are a digital marketing and growth hacking specialist.",
        user_prompt="Analyze the project and write a marketing and launch plan.",
    ),
    AnalysisType.CAPTACAO: AnalysisTypeSpec(
        type=AnalysisType.CAPTACAO,
        title="Investor Pitch",
        status_suffix="captacao",
        system_prompt="You are a startup fundraising and investment specialist.",
        user_prompt="Analyze the project and write a fundraising plan.",
    ),
    AnalysisType.SEGURANCA: AnalysisTypeSpec(
        type=AnalysisType.SEGURANCA,
        title="Security",
        status_suffix="seguranca",
        system_prompt="You are an information security and cybersecurity specialist.",
        user_prompt="Analyze the project's code and identify vulnerabilities and security improvements.",
    ),
    AnalysisType.UI_THEME: AnalysisTypeSpec(
        type=AnalysisType.UI_THEME,
        title="UI/Theme",
        status_suffix="ui",
        system_prompt="You are a UX/UI designer who specializes in modern, accessible interfaces.",
        user_prompt="Analyze the project's code and suggest visual and user experience improvements.",
    ),
    AnalysisType.FEATURES: AnalysisTypeSpec(
        type=AnalysisType.FEATURES,
        title="New Features",
        status_suffix="features",
        system_prompt="You are a visionary product manager who specializes in product innovation.",
        user_prompt="Analyze the project and suggest innovative new features.",
    ),
    AnalysisType.DOCUMENTACAO: AnalysisTypeSpec(
        type=AnalysisType.DOCUMENTACAO,
        title="Documentation",
        status_suffix="documentacao",
        system_prompt="You are a senior technical writer for open source and professional software.",
        user_prompt="Analyze the project and write complete, professional technical documentation.",
    ),
    AnalysisType.PROMPTS: AnalysisTypeSpec(
        type=AnalysisType.PROMPTS,
        title="Optimized Prompts",
        status_suffix="prompts",
        system_prompt="You are a prompt engineering and AI-assisted development specialist.",
        user_prompt="Analyze the project and write optimized, ready-to-use prompts for AI development tools.",
    ),
    AnalysisType.QUALITY: AnalysisTypeSpec(
        type=AnalysisType.QUALITY,
        title="Code Quality",
        status_suffix="quality",
        system_prompt=(
            "You are a senior software architect who specializes in code quality analysis "
            "and development tooling."
        ),
        user_prompt="Analyze the project and estimate code quality metrics, including tooling recommendations.",
    ),
    AnalysisType.PERFORMANCE: AnalysisTypeSpec(
        type=AnalysisType.PERFORMANCE,
        title="Performance",
        status_suffix="performance",
        system_prompt=(
            "You are a specialist in software performance, web application optimization and observability."
        ),
        user_prompt=(
            "Analyze the project and identify performance improvements (frontend, backend, database) "
            "and observability gaps (logs, metrics, alerts). Cover Core Web Vitals, bundle size, "
            "query optimization, caching and monitoring strategy."
        ),
    ),
    AnalysisType.FERRAMENTAS: AnalysisTypeSpec(
        type=AnalysisType.FERRAMENTAS,
        title="Tools",
        status_suffix="ferramentas",
        system_prompt="You are a developer tooling specialist.",
        user_prompt="Analyze the project and recommend tooling improvements.",
        legacy=True,
    ),
}

# Types new jobs may be created for, in display order
SELECTABLE_ANALYSIS_TYPES: list[AnalysisType] = [t for t, spec in ANALYSIS_TYPE_SPECS.items() if not spec.legacy]

ALL_DEPTHS: list[DepthLevel] = [DepthLevel.CRITICAL, DepthLevel.BALANCED, DepthLevel.COMPLETE]


def get_spec(analysis_type: AnalysisType | str) -> AnalysisTypeSpec:
    """Look up metadata for a type tag. Raises ValueError for unknown tags."""
    return ANALYSIS_TYPE_SPECS[AnalysisType(analysis_type)]


def type_label(analysis_type: str) -> str:
    """Human title for a stored type tag, or the tag itself when unknown."""
    try:
        return get_spec(analysis_type).title
    except ValueError:
        return analysis_type
