"""Run configuration, experiment config files, and environment lookups."""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from evoidea.scoring import ScoringWeights


DEFAULT_MODEL = "gpt-4o-mini"


def new_run_id() -> str:
    """Sortable run id: timestamp plus a short random suffix."""

    return f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"


@dataclass
class RunConfig:
    """Everything a run needs; immutable during a run except `max_rounds` on resume."""

    prompt: str
    run_id: str = field(default_factory=new_run_id)
    mode: str = "mock"
    model: str = DEFAULT_MODEL
    max_rounds: int = 6
    population_size: int = 12
    elite_count: int = 4
    score_threshold: float = 8.7
    stagnation_patience: int = 2
    refine_top_k: int = 2
    scoring_weights: ScoringWeights = field(default_factory=ScoringWeights)
    out_dir: str = "runs"
    seed: int = 42
    temperature: float = 0.7

    def validate(self) -> None:
        if not self.prompt.strip():
            raise ValueError("prompt must not be empty")
        if self.population_size < 1:
            raise ValueError(f"population_size must be >= 1, got {self.population_size}")
        if self.elite_count < 0:
            raise ValueError(f"elite_count must be >= 0, got {self.elite_count}")
        if self.max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {self.max_rounds}")
        if self.stagnation_patience < 0 or self.refine_top_k < 0:
            raise ValueError("stagnation_patience and refine_top_k must be >= 0")
        weights = self.scoring_weights.as_list()
        if any(weight < 0 for weight in weights):
            raise ValueError("scoring weights must be non-negative")
        if sum(weights) == 0:
            raise ValueError("scoring weights must not all be zero")

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "prompt": self.prompt,
            "mode": self.mode,
            "model": self.model,
            "max_rounds": self.max_rounds,
            "population_size": self.population_size,
            "elite_count": self.elite_count,
            "score_threshold": self.score_threshold,
            "stagnation_patience": self.stagnation_patience,
            "refine_top_k": self.refine_top_k,
            "scoring_weights": self.scoring_weights.to_dict(),
            "out_dir": self.out_dir,
            "seed": self.seed,
            "temperature": self.temperature,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "RunConfig":
        defaults = cls(prompt="-")
        return cls(
            prompt=str(payload["prompt"]),
            run_id=str(payload.get("run_id") or new_run_id()),
            mode=str(payload.get("mode", defaults.mode)),
            model=str(payload.get("model", defaults.model)),
            max_rounds=int(payload.get("max_rounds", defaults.max_rounds)),
            population_size=int(payload.get("population_size", defaults.population_size)),
            elite_count=int(payload.get("elite_count", defaults.elite_count)),
            score_threshold=float(payload.get("score_threshold", defaults.score_threshold)),
            stagnation_patience=int(payload.get("stagnation_patience", defaults.stagnation_patience)),
            refine_top_k=int(payload.get("refine_top_k", defaults.refine_top_k)),
            scoring_weights=ScoringWeights.from_dict(payload.get("scoring_weights")),
            out_dir=str(payload.get("out_dir", defaults.out_dir)),
            seed=int(payload.get("seed", defaults.seed)),
            temperature=float(payload.get("temperature", defaults.temperature)),
        )


def load_experiment_config(path: str | None, allow_missing: bool = False) -> dict[str, Any]:
    """Load a JSON or YAML experiment config file into a dict."""

    if not path:
        return {}

    config_path = Path(path)
    if not config_path.exists():
        if allow_missing:
            return {}
        raise FileNotFoundError(f"Config file not found: {path}")

    text = config_path.read_text(encoding="utf-8")
    if config_path.suffix.lower() == ".json":
        payload = json.loads(text)
    else:
        payload = yaml.safe_load(text)
    return payload if isinstance(payload, dict) else {}


def config_section(doc: dict[str, Any], name: str) -> dict[str, Any]:
    section = doc.get(name, {})
    return section if isinstance(section, dict) else {}


API_TIMEOUT_ENV = ("EVOIDEA_API_TIMEOUT_SECONDS", "OPENAI_API_TIMEOUT")
DEFAULT_API_TIMEOUT = 90.0


def explicit_flags(argv: Iterable[str]) -> set[str]:
    """Argparse dest names of the `--long-options` present in `argv`."""

    given: set[str] = set()
    for token in argv:
        if token.startswith("--") and len(token) > 2:
            given.add(token[2:].split("=", 1)[0].replace("-", "_"))
    return given


def load_env_file(path: str | None) -> int:
    """Copy KEY=value pairs from a dotenv file into os.environ without overriding; returns keys read."""

    if not path or not Path(path).is_file():
        return 0

    count = 0
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip().removeprefix("export ").strip()
        key, sep, value = line.partition("=")
        key, value = key.strip(), value.strip()
        if line.startswith("#") or not sep or not key:
            continue
        if value[:1] in {"'", '"'} and value[-1:] == value[:1] and len(value) >= 2:
            value = value[1:-1]
        os.environ.setdefault(key, value)
        count += 1
    return count


def first_env(*keys: str) -> Optional[str]:
    return next((os.environ[key] for key in keys if os.environ.get(key)), None)


def resolve_api_timeout(cli_value: float | None) -> float:
    """Request timeout: a positive CLI value, else a positive env value, else the default."""

    if cli_value is not None and cli_value > 0:
        return float(cli_value)
    raw = first_env(*API_TIMEOUT_ENV)
    try:
        value = float(raw) if raw is not None else 0.0
    except ValueError:
        print(f"[Warn] ignoring non-numeric API timeout {raw!r}")
        value = 0.0
    return value if value > 0 else DEFAULT_API_TIMEOUT
