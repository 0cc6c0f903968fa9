"""Pairwise tournament over a finished run's survivors, with Elo ratings."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from evoidea.models import (
    DEFAULT_ELO,
    Comparison,
    Idea,
    InsufficientIdeasError,
    PopulationState,
    Preferences,
)
from evoidea.storage import RunStorage


ELO_K = 32.0


class TournamentMode(str, Enum):
    AUTO = "auto"
    EXHAUSTIVE = "exhaustive"
    PAIRWISE = "pairwise"


class Choice(str, Enum):
    A = "a"
    B = "b"
    SKIP = "s"
    QUIT = "q"


# (idea_a, idea_b, position, limit) -> decision
Chooser = Callable[[Idea, Idea, int, int], Choice]
SaveFn = Callable[[Preferences], None]


@dataclass
class TournamentOutcome:
    mode: TournamentMode
    ranking: list[tuple[Idea, float]] = field(default_factory=list)
    comparisons_made: int = 0
    excluded: list[Idea] = field(default_factory=list)


def expected_score(rating: float, opponent: float) -> float:
    return 1.0 / (1.0 + 10.0 ** ((opponent - rating) / 400.0))


def update_elo(prefs: Preferences, winner: str, loser: str, k: float = ELO_K) -> float:
    """Zero-sum logistic update; returns the points moved from loser to winner."""

    winner_rating = prefs.rating(winner)
    loser_rating = prefs.rating(loser)
    delta = k * (1.0 - expected_score(winner_rating, loser_rating))
    prefs.elo_ratings[winner] = winner_rating + delta
    prefs.elo_ratings[loser] = loser_rating - delta
    return delta


def record_comparison(prefs: Preferences, idea_a: str, idea_b: str, winner: str) -> None:
    if winner not in (idea_a, idea_b):
        raise ValueError(f"Winner {winner} is not part of the pair ({idea_a}, {idea_b})")
    loser = idea_b if winner == idea_a else idea_a
    prefs.comparisons.append(Comparison(idea_a=idea_a, idea_b=idea_b, winner=winner))
    update_elo(prefs, winner, loser)


def pairwise_limit(n: int) -> int:
    return 2 * n


def select_next_pair(
    ids: list[str],
    ratings: dict[str, float],
    compared: set[frozenset[str]],
) -> Optional[tuple[str, str]]:
    """Closest-rated pair not yet compared; earlier index pairs win ties."""

    best: Optional[tuple[str, str]] = None
    best_gap = float("inf")
    for i, j in itertools.combinations(range(len(ids)), 2):
        pair = frozenset((ids[i], ids[j]))
        if pair in compared:
            continue
        gap = abs(ratings.get(ids[i], DEFAULT_ELO) - ratings.get(ids[j], DEFAULT_ELO))
        if gap < best_gap:
            best_gap = gap
            best = (ids[i], ids[j])
    return best


def eligible_ideas(state: PopulationState) -> tuple[list[Idea], list[Idea]]:
    """Split active ideas into (fully scored, not fully scored)."""

    eligible: list[Idea] = []
    excluded: list[Idea] = []
    for idea in state.active_ideas():
        (eligible if idea.is_fully_scored else excluded).append(idea)
    return eligible, excluded


def prompt_choice(idea_a: Idea, idea_b: Idea, position: int, limit: int) -> Choice:
    """Show both ideas on stdout and read A/B/S/Q from stdin until valid."""

    print(f"\n[Tournament] comparison {position}/{limit}")
    for label, idea in (("A", idea_a), ("B", idea_b)):
        print(f"  [{label}] {idea.title} (score {idea.overall_score:.2f})")
        print(f"      {idea.summary}")
    valid = {choice.value: choice for choice in Choice}
    while True:
        raw = input("Which is better? [A/B/S=skip/Q=quit]: ").strip().lower()
        if raw in valid:
            return valid[raw]
        print(f"[Warn] invalid choice {raw!r}; enter A, B, S or Q")


def run_auto(ideas: list[Idea]) -> list[tuple[Idea, float]]:
    """Rank by overall score; records nothing."""

    ranked = sorted(ideas, key=lambda idea: float(idea.overall_score), reverse=True)
    return [(idea, float(idea.overall_score)) for idea in ranked]


def run_exhaustive(prefs: Preferences, ideas: list[Idea], chooser: Chooser, save: SaveFn) -> int:
    """Ask about every pair not already in `prefs`; returns comparisons recorded."""

    already = prefs.compared_pairs()
    pending = [
        (a, b) for a, b in itertools.combinations(ideas, 2) if frozenset((a.id, b.id)) not in already
    ]
    made = 0
    for position, (idea_a, idea_b) in enumerate(pending, start=1):
        choice = chooser(idea_a, idea_b, position, len(pending))
        if choice == Choice.QUIT:
            break
        if choice == Choice.SKIP:
            continue
        winner = idea_a.id if choice == Choice.A else idea_b.id
        record_comparison(prefs, idea_a.id, idea_b.id, winner)
        save(prefs)
        made += 1
    return made


def run_pairwise(prefs: Preferences, ideas: list[Idea], chooser: Chooser, save: SaveFn) -> int:
    """Adaptive sampling of close-rated pairs, capped at 2n recorded comparisons."""

    by_id = {idea.id: idea for idea in ideas}
    ids = [idea.id for idea in ideas]
    limit = pairwise_limit(len(ids))
    # Skips only hide a pair for this session; they are not persisted.
    compared = prefs.compared_pairs()
    made = 0
    while made < limit:
        pair = select_next_pair(ids, prefs.elo_ratings, compared)
        if pair is None:
            break
        id_a, id_b = pair
        choice = chooser(by_id[id_a], by_id[id_b], made + 1, limit)
        if choice == Choice.QUIT:
            break
        compared.add(frozenset(pair))
        if choice == Choice.SKIP:
            continue
        winner = id_a if choice == Choice.A else id_b
        record_comparison(prefs, id_a, id_b, winner)
        save(prefs)
        made += 1
    return made


def run_tournament(
    storage: RunStorage,
    run_id: str,
    mode: TournamentMode = TournamentMode.PAIRWISE,
    chooser: Chooser | None = None,
) -> TournamentOutcome:
    """Run a tournament over a stored run; interactive modes persist after every decision."""

    state = storage.load_state(run_id)
    eligible, excluded = eligible_ideas(state)
    if excluded:
        print(f"[Warn] excluding {len(excluded)} active ideas without complete scores:")
        for idea in excluded:
            print(f"  - {idea.id} {idea.title}")
    if len(eligible) < 2:
        raise InsufficientIdeasError(
            f"Need at least 2 scored active ideas for a tournament, found {len(eligible)} in run {run_id}"
        )

    if mode == TournamentMode.AUTO:
        outcome = TournamentOutcome(mode=mode, ranking=run_auto(eligible), excluded=excluded)
        _print_ranking(outcome, "score")
        return outcome

    prefs = storage.load_preferences(run_id)
    for idea in eligible:
        prefs.elo_ratings.setdefault(idea.id, DEFAULT_ELO)
    storage.save_preferences(run_id, prefs)

    def save(current: Preferences) -> None:
        storage.save_preferences(run_id, current)

    chooser = chooser or prompt_choice
    if mode == TournamentMode.EXHAUSTIVE:
        made = run_exhaustive(prefs, eligible, chooser, save)
    else:
        made = run_pairwise(prefs, eligible, chooser, save)

    ranked = sorted(eligible, key=lambda idea: prefs.rating(idea.id), reverse=True)
    outcome = TournamentOutcome(
        mode=mode,
        ranking=[(idea, prefs.rating(idea.id)) for idea in ranked],
        comparisons_made=made,
        excluded=excluded,
    )
    print(f"[Tournament] recorded {made} comparisons ({len(prefs.comparisons)} total)")
    _print_ranking(outcome, "elo")
    return outcome


def _print_ranking(outcome: TournamentOutcome, label: str) -> None:
    print(f"[Tournament] ranking by {label}:")
    for rank, (idea, value) in enumerate(outcome.ranking, start=1):
        print(f"  {rank:>2}. {value:8.2f}  {idea.title}")
