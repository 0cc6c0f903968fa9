"""Turn discovery answers (skills, time, business model...) into prompt constraints."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable


class TimeAvailable(str, Enum):
    H4_TO_8 = "4-8h"
    H10_TO_16 = "10-16h"
    H20_PLUS = "20h+"


class BusinessModel(str, Enum):
    SAAS = "saas"
    API = "api"
    ONE_TIME = "one-time"
    MARKETPLACE = "marketplace"


class TargetAudience(str, Enum):
    DEVELOPERS = "developers"
    BUSINESS = "business"
    CREATORS = "creators"
    FREELANCERS = "freelancers"


class TechApproach(str, Enum):
    LLM_BASED = "llm-based"
    LLM_ASSISTED = "llm-assisted"
    NO_LLM = "no-llm"


TIMELINE_WEEKS = {
    TimeAvailable.H4_TO_8: 1,
    TimeAvailable.H10_TO_16: 2,
    TimeAvailable.H20_PLUS: 4,
}


@dataclass
class DiscoveryAnswers:
    skills: list[str]
    time_available: TimeAvailable
    business_model: BusinessModel
    target_audience: TargetAudience
    tech_approach: TechApproach

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "DiscoveryAnswers":
        skills = payload.get("skills") or []
        if isinstance(skills, str):
            skills = skills.split(",")
        return cls(
            skills=[str(item) for item in skills],
            time_available=TimeAvailable(payload["time_available"]),
            business_model=BusinessModel(payload["business_model"]),
            target_audience=TargetAudience(payload["target_audience"]),
            tech_approach=TechApproach(payload["tech_approach"]),
        )


@dataclass
class DerivedConstraints:
    timeline_weeks: int
    required_skills: list[str] = field(default_factory=list)
    must_include: list[str] = field(default_factory=list)
    forbidden: list[str] = field(default_factory=list)


def normalize_tokens(tokens: Iterable[str]) -> list[str]:
    """Trim, lowercase, drop empties, sort and dedupe."""

    return sorted({token.strip().lower() for token in tokens if token.strip()})


def derive_constraints(answers: DiscoveryAnswers) -> DerivedConstraints:
    forbidden: list[str] = []
    if answers.tech_approach == TechApproach.NO_LLM:
        forbidden = normalize_tokens(["llm", "ai"])

    return DerivedConstraints(
        timeline_weeks=TIMELINE_WEEKS[answers.time_available],
        required_skills=normalize_tokens(answers.skills),
        must_include=normalize_tokens([answers.business_model.value, answers.target_audience.value]),
        forbidden=forbidden,
    )


def constraints_to_prompt(constraints: DerivedConstraints) -> str:
    """Render constraints as a block to append to the generation prompt."""

    lines = ["Constraints:", f"- Shippable within {constraints.timeline_weeks} week(s)."]
    if constraints.required_skills:
        lines.append(f"- Buildable with these skills: {', '.join(constraints.required_skills)}.")
    if constraints.must_include:
        lines.append(f"- Must fit: {', '.join(constraints.must_include)}.")
    if constraints.forbidden:
        lines.append(f"- Must not rely on: {', '.join(constraints.forbidden)}.")
    return "\n".join(lines)
