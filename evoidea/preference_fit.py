"""Learn criterion weights from tournament outcomes and package them as a portable profile."""

from __future__ import annotations

import json
import math
import random
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from evoidea.models import CRITERIA, PopulationState, Preferences, Scores, now_iso
from evoidea.scoring import ScoringWeights
from evoidea.storage import RunStorage


PROFILE_VERSION = 1
FIT_METHOD = "pairwise-multiplicative-weights"
HOLDOUT_FRACTION = 0.2
FIT_SEED = 1
LEARNING_RATE = 0.05
WEIGHT_MIN = 0.1
WEIGHT_MAX = 10.0
RISK_EPSILON = 1e-6
RISK_MIN_SAMPLES = 3

RISK_INDEX = CRITERIA.index("risk")


class RiskMode(str, Enum):
    AS_BENEFIT = "as_benefit"
    INVERT = "invert"


def scores_to_features(scores: Scores, risk_mode: RiskMode) -> list[float]:
    features = scores.as_list()
    if risk_mode == RiskMode.INVERT:
        features[RISK_INDEX] = 10.0 - features[RISK_INDEX]
    return features


def infer_risk_mode(state: PopulationState) -> RiskMode:
    """Guess whether raw risk behaved as a benefit or a cost when the overall scores were produced.

    Compares the absolute error of an unweighted mean under both readings, over every idea
    with complete scores and a known overall score. Needs at least three such ideas and a
    strictly better fit before choosing inversion.
    """

    err_benefit = 0.0
    err_invert = 0.0
    n = 0
    for idea in state.ideas:
        if idea.scores is None or idea.overall_score is None:
            continue
        mean_benefit = sum(scores_to_features(idea.scores, RiskMode.AS_BENEFIT)) / len(CRITERIA)
        mean_invert = sum(scores_to_features(idea.scores, RiskMode.INVERT)) / len(CRITERIA)
        err_benefit += abs(mean_benefit - idea.overall_score)
        err_invert += abs(mean_invert - idea.overall_score)
        n += 1

    if n >= RISK_MIN_SAMPLES and err_invert + RISK_EPSILON < err_benefit:
        return RiskMode.INVERT
    return RiskMode.AS_BENEFIT


def _normalize(weights: list[float]) -> list[float]:
    total = sum(weights)
    if total <= 0:
        return [1.0 / len(weights)] * len(weights)
    return [weight / total for weight in weights]


def _dot(weights: list[float], features: list[float]) -> float:
    return sum(w * f for w, f in zip(weights, features))


def fit_on_pairs(
    pairs: list[tuple[list[float], list[float]]],
    learning_rate: float = LEARNING_RATE,
) -> list[float]:
    """Multiplicative-weights pass over (winner, loser) feature pairs, in the order given."""

    weights = [1.0] * len(CRITERIA)
    for winner, loser in pairs:
        for i, (f_w, f_l) in enumerate(zip(winner, loser)):
            weights[i] *= math.exp(learning_rate * (f_w - f_l))
            weights[i] = min(WEIGHT_MAX, max(WEIGHT_MIN, weights[i]))
        weights = _normalize(weights)
    return weights


def pairwise_accuracy(weights: list[float], pairs: list[tuple[list[float], list[float]]]) -> float:
    if not pairs:
        return 0.0
    correct = sum(1 for winner, loser in pairs if _dot(weights, winner) - _dot(weights, loser) >= 0)
    return correct / len(pairs)


def fit_weights(
    pairs: list[tuple[list[float], list[float]]],
    holdout_fraction: float = HOLDOUT_FRACTION,
    seed: int = FIT_SEED,
    learning_rate: float = LEARNING_RATE,
) -> tuple[list[float], Optional[float]]:
    """Fit on a shuffled train split to report holdout accuracy, then refit on everything.

    Returns (weights fitted on all pairs, holdout accuracy or None when the split is empty).
    """

    order = list(range(len(pairs)))
    random.Random(seed).shuffle(order)
    # Half-up rounding so 2.5 holdout pairs means 3.
    test_count = min(len(pairs), int(math.floor(len(pairs) * holdout_fraction + 0.5)))
    test = [pairs[idx] for idx in order[:test_count]]
    train = [pairs[idx] for idx in order[test_count:]]

    holdout_accuracy = None
    if test:
        holdout_accuracy = pairwise_accuracy(fit_on_pairs(train, learning_rate), test)

    weights = fit_on_pairs([pairs[idx] for idx in order], learning_rate)
    return weights, holdout_accuracy


def summarize_weights(weights: dict[str, float]) -> list[str]:
    ranked = sorted(CRITERIA, key=lambda name: weights[name], reverse=True)
    top = ranked[:2]
    bottom = list(reversed(ranked))[:2]
    return [
        f"Prioritizes {top[0]} and {top[1]} over other criteria.",
        f"De-emphasizes {bottom[0]} and {bottom[1]} relative to other criteria.",
    ]


def derive_preference_profile(prefs: Preferences, state: PopulationState) -> dict[str, Any] | None:
    """Fit criterion weights from recorded comparisons; None when nothing usable was compared."""

    if not prefs.comparisons:
        return None

    risk_mode = infer_risk_mode(state)
    scores_by_id = {idea.id: idea.scores for idea in state.ideas if idea.scores is not None}

    pairs: list[tuple[list[float], list[float]]] = []
    for comparison in prefs.comparisons:
        if comparison.winner == comparison.idea_a:
            loser = comparison.idea_b
        elif comparison.winner == comparison.idea_b:
            loser = comparison.idea_a
        else:
            continue
        if comparison.winner not in scores_by_id or loser not in scores_by_id:
            continue
        pairs.append(
            (
                scores_to_features(scores_by_id[comparison.winner], risk_mode),
                scores_to_features(scores_by_id[loser], risk_mode),
            )
        )

    if not pairs:
        return None

    fitted, holdout_accuracy = fit_weights(pairs)
    criterion_weights = dict(zip(CRITERIA, fitted))
    return {
        "criterion_weights": criterion_weights,
        "fit": {
            "method": FIT_METHOD,
            "comparisons_used": len(pairs),
            "holdout_accuracy": holdout_accuracy,
        },
        "summary": summarize_weights(criterion_weights),
        "risk_mode": risk_mode.value,
    }


def build_portable_profile(
    run_id: str,
    prefs: Preferences,
    state: PopulationState | None = None,
) -> dict[str, Any]:
    profile: dict[str, Any] = {
        "version": PROFILE_VERSION,
        "created_at": now_iso(),
        "source_run": run_id,
        "stats": {
            "comparisons": len(prefs.comparisons),
            "ideas_rated": len(prefs.elo_ratings),
        },
        "preferences": prefs.to_dict(),
    }
    if state is not None:
        derived = derive_preference_profile(prefs, state)
        if derived is not None:
            profile["derived"] = derived
    return profile


def export_profile(storage: RunStorage, run_id: str, out_path: str) -> dict[str, Any]:
    """Write a run's preferences (plus fitted weights when possible) to `out_path`."""

    if not storage.has_run(run_id):
        raise FileNotFoundError(f"Run {run_id} not found under {storage.dir}")
    prefs = storage.load_preferences(run_id)
    state = storage.load_state(run_id)
    profile = build_portable_profile(run_id, prefs, state)

    path = Path(out_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(profile, ensure_ascii=False, indent=2), encoding="utf-8")
    print(f"[Profile] exported {profile['stats']['comparisons']} comparisons from {run_id} -> {path}")
    if "derived" in profile:
        for line in profile["derived"]["summary"]:
            print(f"  {line}")
    return profile


def load_profile(path: str) -> dict[str, Any]:
    """Read and validate a portable profile file."""

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Invalid profile: expected a JSON object")
    version = payload.get("version")
    if not isinstance(version, int) or isinstance(version, bool):
        raise ValueError("Invalid profile: missing version")
    if version != PROFILE_VERSION:
        raise ValueError(f"Unsupported profile version: {version}")
    if "preferences" not in payload:
        raise ValueError("Invalid profile: missing preferences")
    return payload


def import_profile(storage: RunStorage, path: str, run_id: str) -> Preferences:
    """Seed a run's tournament preferences from a portable profile."""

    if not storage.has_run(run_id):
        raise FileNotFoundError(f"Run {run_id} not found under {storage.dir}")
    profile = load_profile(path)
    prefs = Preferences.from_dict(profile["preferences"])
    storage.save_preferences(run_id, prefs)
    print(
        f"[Profile] imported {len(prefs.comparisons)} comparisons from "
        f"{profile.get('source_run', 'unknown')} into {run_id}"
    )
    return prefs


def profile_summary(profile: dict[str, Any]) -> str:
    """Human-readable description of a loaded profile."""

    stats = profile.get("stats") or {}
    lines = [
        f"Profile v{profile.get('version')} from run {profile.get('source_run', 'unknown')}",
        f"Created: {profile.get('created_at', 'unknown')}",
        f"Comparisons: {stats.get('comparisons', 0)}  Ideas rated: {stats.get('ideas_rated', 0)}",
    ]
    derived = profile.get("derived")
    if isinstance(derived, dict):
        fit = derived.get("fit") or {}
        accuracy = fit.get("holdout_accuracy")
        lines.append(
            f"Fit: {fit.get('method')} on {fit.get('comparisons_used')} comparisons, "
            f"holdout accuracy {'n/a' if accuracy is None else f'{accuracy:.2f}'}"
        )
        weights = ScoringWeights.from_profile(profile).to_dict()
        for name in sorted(weights, key=weights.get, reverse=True):
            lines.append(f"  {name:<16} {weights[name]:.3f}")
        lines.extend(str(line) for line in derived.get("summary") or [])
    else:
        lines.append("No fitted weights (no usable comparisons).")
    return "\n".join(lines)
