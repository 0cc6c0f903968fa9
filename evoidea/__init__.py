"""Evolutionary idea search with preference learning."""

from evoidea.config import RunConfig, load_experiment_config
from evoidea.evolution_loop import EvolutionEngine, RunStatus, evaluate_stop
from evoidea.llm import LLMProvider, MalformedOutputError, MockLLMProvider, OpenAIProvider, get_provider
from evoidea.models import (
    EmptyResultError,
    Idea,
    InsufficientIdeasError,
    NoFinalistsError,
    PopulationState,
    Preferences,
)
from evoidea.preference_fit import build_portable_profile, derive_preference_profile, export_profile, import_profile
from evoidea.scoring import ScoringWeights, overall_score, select_ideas, update_stagnation
from evoidea.storage import RunStorage, StorageError
from evoidea.tournament import TournamentMode, run_tournament, update_elo

__all__ = [
    "RunConfig",
    "load_experiment_config",
    "EvolutionEngine",
    "RunStatus",
    "evaluate_stop",
    "LLMProvider",
    "MalformedOutputError",
    "MockLLMProvider",
    "OpenAIProvider",
    "get_provider",
    "EmptyResultError",
    "Idea",
    "InsufficientIdeasError",
    "NoFinalistsError",
    "PopulationState",
    "Preferences",
    "build_portable_profile",
    "derive_preference_profile",
    "export_profile",
    "import_profile",
    "ScoringWeights",
    "overall_score",
    "select_ideas",
    "update_stagnation",
    "RunStorage",
    "StorageError",
    "TournamentMode",
    "run_tournament",
    "update_elo",
]
