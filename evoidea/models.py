"""Shared data model for idea evolution runs."""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


CRITERIA: tuple[str, ...] = (
    "feasibility",
    "speed_to_value",
    "differentiation",
    "market_size",
    "distribution",
    "moats",
    "risk",
    "clarity",
)

FACET_FIELDS: tuple[str, ...] = (
    "audience",
    "jtbd",
    "differentiator",
    "monetization",
    "distribution",
    "risks",
)


class EmptyResultError(RuntimeError):
    """Raised when an operation has no ideas left to work with."""


class NoFinalistsError(EmptyResultError):
    """Final phase found no active, scored ideas."""


class InsufficientIdeasError(EmptyResultError):
    """Tournament needs at least two eligible ideas."""


class Origin(str, Enum):
    GENERATED = "generated"
    CROSSOVER = "crossover"
    MUTATED = "mutated"
    REFINED = "refined"


class IdeaStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class EventType(str, Enum):
    GENERATED = "generated"
    SCORED = "scored"
    SELECTED = "selected"
    CROSSOVER = "crossover"
    MUTATED = "mutated"
    REFINED = "refined"
    STOPPED = "stopped"


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


@dataclass
class Facets:
    """Six qualitative dimensions describing an idea."""

    audience: str = ""
    jtbd: str = ""
    differentiator: str = ""
    monetization: str = ""
    distribution: str = ""
    risks: str = ""

    def to_dict(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in FACET_FIELDS}

    @classmethod
    def from_dict(cls, payload: Any, fallback: "Facets | None" = None) -> "Facets":
        """Build facets from a mapping; missing fields come from `fallback` or stay empty."""

        base = fallback or cls()
        if not isinstance(payload, dict):
            return copy.copy(base)
        values: dict[str, str] = {}
        for name in FACET_FIELDS:
            raw = payload.get(name)
            values[name] = str(raw) if isinstance(raw, str) else getattr(base, name)
        return cls(**values)


@dataclass
class Scores:
    """Eight-criterion score vector, each conventionally in 0..10."""

    feasibility: float = 0.0
    speed_to_value: float = 0.0
    differentiation: float = 0.0
    market_size: float = 0.0
    distribution: float = 0.0
    moats: float = 0.0
    risk: float = 0.0
    clarity: float = 0.0

    def as_list(self) -> list[float]:
        return [float(getattr(self, name)) for name in CRITERIA]

    def to_dict(self) -> dict[str, float]:
        return {name: float(getattr(self, name)) for name in CRITERIA}

    @classmethod
    def from_patch(cls, payload: Any) -> "Scores":
        """Lenient parse used for LLM patches: missing criteria default to 0."""

        payload = payload if isinstance(payload, dict) else {}
        values = {}
        for name in CRITERIA:
            parsed = _as_float(payload.get(name))
            values[name] = parsed if parsed is not None else 0.0
        return cls(**values)

    @classmethod
    def from_dict(cls, payload: Any) -> "Scores | None":
        """Strict parse used for persisted state; None when any criterion is missing."""

        if not isinstance(payload, dict):
            return None
        values = {}
        for name in CRITERIA:
            parsed = _as_float(payload.get(name))
            if parsed is None:
                return None
            values[name] = parsed
        return cls(**values)


@dataclass
class Idea:
    id: str
    gen: int
    origin: Origin
    title: str
    summary: str
    parents: list[str] = field(default_factory=list)
    facets: Facets = field(default_factory=Facets)
    scores: Optional[Scores] = field(default_factory=Scores)
    overall_score: Optional[float] = None
    judge_notes: Optional[str] = None
    status: IdeaStatus = IdeaStatus.ACTIVE

    @classmethod
    def new(cls, gen: int, origin: Origin, title: str, summary: str, facets: Facets | None = None, parents: list[str] | None = None) -> "Idea":
        return cls(
            id=str(uuid.uuid4()),
            gen=int(gen),
            origin=origin,
            title=title,
            summary=summary,
            parents=list(parents or []),
            facets=facets or Facets(),
        )

    @property
    def is_active(self) -> bool:
        return self.status == IdeaStatus.ACTIVE

    @property
    def is_fully_scored(self) -> bool:
        return self.scores is not None and self.overall_score is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "gen": self.gen,
            "origin": self.origin.value,
            "parents": list(self.parents),
            "title": self.title,
            "summary": self.summary,
            "facets": self.facets.to_dict(),
            "scores": self.scores.to_dict() if self.scores is not None else None,
            "overall_score": self.overall_score,
            "judge_notes": self.judge_notes,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Idea":
        overall = payload.get("overall_score")
        return cls(
            id=str(payload["id"]),
            gen=int(payload.get("gen", 0)),
            origin=Origin(payload.get("origin", Origin.GENERATED.value)),
            parents=[str(item) for item in payload.get("parents") or []],
            title=str(payload.get("title", "")),
            summary=str(payload.get("summary", "")),
            facets=Facets.from_dict(payload.get("facets")),
            scores=Scores.from_dict(payload.get("scores")),
            overall_score=_as_float(overall),
            judge_notes=payload.get("judge_notes"),
            status=IdeaStatus(payload.get("status", IdeaStatus.ACTIVE.value)),
        )


@dataclass
class PopulationState:
    """Everything a run knows between phases: every idea ever created plus best/stagnation bookkeeping."""

    run_id: str
    iteration: int = 0
    ideas: list[Idea] = field(default_factory=list)
    best_idea_id: Optional[str] = None
    best_score: Optional[float] = None
    stagnation_counter: int = 0

    def clone(self) -> "PopulationState":
        return copy.deepcopy(self)

    def active_ideas(self) -> list[Idea]:
        return [idea for idea in self.ideas if idea.is_active]

    def find(self, idea_id: str) -> Idea | None:
        return next((idea for idea in self.ideas if idea.id == idea_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "iteration": self.iteration,
            "ideas": [idea.to_dict() for idea in self.ideas],
            "best_idea_id": self.best_idea_id,
            "best_score": self.best_score,
            "stagnation_counter": self.stagnation_counter,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PopulationState":
        return cls(
            run_id=str(payload["run_id"]),
            iteration=int(payload.get("iteration", 0)),
            ideas=[Idea.from_dict(item) for item in payload.get("ideas") or []],
            best_idea_id=payload.get("best_idea_id"),
            best_score=_as_float(payload.get("best_score")),
            stagnation_counter=int(payload.get("stagnation_counter", 0)),
        )


@dataclass
class Event:
    """One audit record in a run's history log."""

    iteration: int
    event_type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ts": self.ts,
            "iteration": self.iteration,
            "type": self.event_type.value,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Event":
        return cls(
            ts=str(payload.get("ts", "")),
            iteration=int(payload.get("iteration", 0)),
            event_type=EventType(payload["type"]),
            payload=dict(payload.get("payload") or {}),
        )


@dataclass
class RunnerUp:
    idea_id: str
    title: str
    overall_score: float

    def to_dict(self) -> dict[str, Any]:
        return {"idea_id": self.idea_id, "title": self.title, "overall_score": self.overall_score}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "RunnerUp":
        return cls(
            idea_id=str(payload["idea_id"]),
            title=str(payload.get("title", "")),
            overall_score=float(payload.get("overall_score", 0.0)),
        )


@dataclass
class FinalBest:
    idea_id: str
    title: str
    summary: str
    facets: Facets
    scores: Scores
    overall_score: float
    why_won: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "idea_id": self.idea_id,
            "title": self.title,
            "summary": self.summary,
            "facets": self.facets.to_dict(),
            "scores": self.scores.to_dict(),
            "overall_score": self.overall_score,
            "why_won": list(self.why_won),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "FinalBest":
        return cls(
            idea_id=str(payload["idea_id"]),
            title=str(payload.get("title", "")),
            summary=str(payload.get("summary", "")),
            facets=Facets.from_dict(payload.get("facets")),
            scores=Scores.from_dict(payload.get("scores")) or Scores(),
            overall_score=float(payload.get("overall_score", 0.0)),
            why_won=[str(item) for item in payload.get("why_won") or []],
        )


@dataclass
class FinalResult:
    run_id: str
    best: FinalBest
    runners_up: list[RunnerUp] = field(default_factory=list)
    iterations_completed: int = 0
    stop_reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "best": self.best.to_dict(),
            "runners_up": [item.to_dict() for item in self.runners_up],
            "iterations_completed": self.iterations_completed,
            "stop_reason": self.stop_reason,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "FinalResult":
        return cls(
            run_id=str(payload["run_id"]),
            best=FinalBest.from_dict(payload["best"]),
            runners_up=[RunnerUp.from_dict(item) for item in payload.get("runners_up") or []],
            iterations_completed=int(payload.get("iterations_completed", 0)),
            stop_reason=payload.get("stop_reason"),
        )


def validate_state_invariants(state: PopulationState) -> list[str]:
    """Report lineage and scoring invariant violations without fixing them."""

    problems: list[str] = []
    for idea in state.ideas:
        label = idea.origin.value
        if idea.origin == Origin.GENERATED and idea.parents:
            problems.append(f"Idea {idea.id} ({label}) has parents")
        if idea.origin != Origin.GENERATED and not idea.parents:
            problems.append(f"Idea {idea.id} ({label}) has no parents")
        if not idea.is_active:
            continue
        if idea.scores is None:
            problems.append(f"Idea {idea.id} (active) has missing/invalid scores")
        if idea.overall_score is None:
            problems.append(f"Idea {idea.id} (active) has missing/invalid overall_score")
    return problems


DEFAULT_ELO = 1000.0


@dataclass
class Comparison:
    idea_a: str
    idea_b: str
    winner: str

    def to_dict(self) -> dict[str, str]:
        return {"idea_a": self.idea_a, "idea_b": self.idea_b, "winner": self.winner}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Comparison":
        return cls(idea_a=str(payload["idea_a"]), idea_b=str(payload["idea_b"]), winner=str(payload["winner"]))


@dataclass
class Preferences:
    """Append-only comparison log plus current Elo ratings for one run."""

    comparisons: list[Comparison] = field(default_factory=list)
    elo_ratings: dict[str, float] = field(default_factory=dict)

    def rating(self, idea_id: str) -> float:
        return self.elo_ratings.get(idea_id, DEFAULT_ELO)

    def compared_pairs(self) -> set[frozenset[str]]:
        return {frozenset((item.idea_a, item.idea_b)) for item in self.comparisons}

    def to_dict(self) -> dict[str, Any]:
        return {
            "comparisons": [item.to_dict() for item in self.comparisons],
            "elo_ratings": dict(self.elo_ratings),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "Preferences":
        if not isinstance(payload, dict):
            raise ValueError("Preferences payload must be an object")
        ratings = payload.get("elo_ratings") or {}
        return cls(
            comparisons=[Comparison.from_dict(item) for item in payload.get("comparisons") or []],
            elo_ratings={str(key): float(value) for key, value in ratings.items()},
        )
