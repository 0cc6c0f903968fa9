"""Overall-score computation and survivor selection."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Any, Optional

from evoidea.models import CRITERIA, Idea, Scores


@dataclass
class ScoringWeights:
    """Per-criterion weights; uniform unless replaced by a fitted profile."""

    feasibility: float = 1.0
    speed_to_value: float = 1.0
    differentiation: float = 1.0
    market_size: float = 1.0
    distribution: float = 1.0
    moats: float = 1.0
    risk: float = 1.0
    clarity: float = 1.0

    def as_list(self) -> list[float]:
        return [float(getattr(self, name)) for name in CRITERIA]

    def to_dict(self) -> dict[str, float]:
        return {name: float(getattr(self, name)) for name in CRITERIA}

    @classmethod
    def from_dict(cls, payload: Any) -> "ScoringWeights":
        if not isinstance(payload, dict):
            return cls()
        values = {}
        for name in CRITERIA:
            raw = payload.get(name, 1.0)
            values[name] = float(raw) if raw is not None else 1.0
        return cls(**values)

    @classmethod
    def from_profile(cls, profile: dict[str, Any]) -> "ScoringWeights":
        """Read `derived.criterion_weights` from an exported preference profile."""

        derived = profile.get("derived") if isinstance(profile, dict) else None
        weights = derived.get("criterion_weights") if isinstance(derived, dict) else None
        if not isinstance(weights, dict):
            raise ValueError("Profile has no derived criterion_weights; run a tournament first")
        return cls.from_dict(weights)


def overall_score(scores: Scores, weights: ScoringWeights) -> float:
    """Weighted mean of the criteria, with risk inverted as (10 - risk)."""

    total_weight = sum(weights.as_list())
    if total_weight == 0:
        raise ZeroDivisionError("Scoring weights must not all be zero")

    weighted = 0.0
    for name in CRITERIA:
        value = float(getattr(scores, name))
        if name == "risk":
            value = 10.0 - value
        weighted += value * float(getattr(weights, name))
    return weighted / total_weight


def select_ideas(
    ideas: list[Idea],
    elite_count: int,
    population_size: int,
    rng: random.Random,
) -> list[str]:
    """Pick survivor ids: the elite plus a random sample from the middle rank band."""

    ranked = sorted(ideas, key=lambda idea: float(idea.overall_score or 0.0), reverse=True)
    n = len(ranked)
    elite_taken = max(0, min(elite_count, population_size, n))
    selected = [idea.id for idea in ranked[:elite_taken]]

    diversity_slots = population_size - elite_taken
    if diversity_slots > 0 and n > elite_count:
        lo = math.ceil(0.3 * n)
        hi = math.floor(0.7 * n)
        chosen = set(selected)
        band = [idea.id for idea in ranked[lo:hi] if idea.id not in chosen]
        take = min(diversity_slots, len(band))
        if take > 0:
            selected.extend(rng.sample(band, take))

    return selected


def update_stagnation(current: Optional[float], previous: Optional[float], counter: int) -> int:
    """Reset on a strict improvement or on the first recorded best, else count up."""

    if previous is None:
        return 0
    if current is not None and current > previous:
        return 0
    return counter + 1
