"""Round-based evolution loop with threshold, stagnation and max-rounds stopping."""

from __future__ import annotations

import random
from enum import Enum
from typing import Optional

from evoidea.config import RunConfig
from evoidea.llm import LLMProvider
from evoidea.models import EventType, FinalResult, PopulationState
from evoidea.phases import CriticPhase, FinalPhase, GeneratePhase, PhaseContext, RefinePhase, SelectPhase
from evoidea.storage import RunStorage


class RunStatus(str, Enum):
    RUNNING = "running"
    STOPPED_BY_THRESHOLD = "stopped_by_threshold"
    STOPPED_BY_STAGNATION = "stopped_by_stagnation"
    STOPPED_BY_MAX_ROUNDS = "stopped_by_max_rounds"
    FINALIZED = "finalized"


STOP_REASONS = {
    RunStatus.STOPPED_BY_THRESHOLD: "threshold",
    RunStatus.STOPPED_BY_STAGNATION: "stagnation",
    RunStatus.STOPPED_BY_MAX_ROUNDS: "max_rounds",
}


def threshold_reached(best_score: Optional[float], threshold: float) -> bool:
    return best_score is not None and best_score >= threshold


def stagnation_reached(stagnation_counter: int, patience: int) -> bool:
    return stagnation_counter >= patience


def max_rounds_reached(iteration: int, max_rounds: int) -> bool:
    return iteration >= max_rounds


def evaluate_stop(state: PopulationState, config: RunConfig) -> RunStatus:
    """First true predicate wins: threshold, then stagnation, then max rounds."""

    if threshold_reached(state.best_score, config.score_threshold):
        return RunStatus.STOPPED_BY_THRESHOLD
    if stagnation_reached(state.stagnation_counter, config.stagnation_patience):
        return RunStatus.STOPPED_BY_STAGNATION
    if max_rounds_reached(state.iteration, config.max_rounds):
        return RunStatus.STOPPED_BY_MAX_ROUNDS
    return RunStatus.RUNNING


class EvolutionEngine:
    """Drives one run from its current state to a persisted final result."""

    def __init__(
        self,
        config: RunConfig,
        llm: LLMProvider,
        storage: RunStorage,
        state: PopulationState,
    ) -> None:
        self.config = config
        self.storage = storage
        self.state = state
        self.status = RunStatus.RUNNING
        self.ctx = PhaseContext(
            config=config,
            llm=llm,
            storage=storage,
            # Offset by the round counter so resumed runs draw fresh samples.
            rng=random.Random(config.seed + state.iteration),
        )
        self.pipeline = [
            GeneratePhase(),
            CriticPhase(),
            SelectPhase(),
            RefinePhase(top_k=config.refine_top_k),
        ]

    @classmethod
    def create(cls, config: RunConfig, llm: LLMProvider, storage: RunStorage) -> "EvolutionEngine":
        """Validate the config and initialise a fresh run on disk."""

        config.validate()
        state = storage.init_run(config)
        return cls(config, llm, storage, state)

    @classmethod
    def resume(
        cls,
        run_id: str,
        storage: RunStorage,
        llm: LLMProvider,
        extra_rounds: int | None = None,
    ) -> "EvolutionEngine":
        """Reload a run; `extra_rounds` extends max_rounds past the rounds already done."""

        config = storage.load_config(run_id)
        state = storage.load_state(run_id)
        if extra_rounds is not None:
            if extra_rounds < 1:
                raise ValueError(f"extra_rounds must be >= 1, got {extra_rounds}")
            config.max_rounds = state.iteration + extra_rounds
            storage.save_config(config)
        config.validate()
        return cls(config, llm, storage, state)

    def run(self) -> FinalResult:
        """Loop rounds until a stop predicate fires, then run Final once."""

        print(
            f"[Run {self.config.run_id}] mode={self.config.mode} population={self.config.population_size} "
            f"elite={self.config.elite_count} max_rounds={self.config.max_rounds} "
            f"threshold={self.config.score_threshold} patience={self.config.stagnation_patience}"
        )

        if self.state.iteration > 0:
            # A resumed run only continues while no stop rule already holds.
            self.status = evaluate_stop(self.state, self.config)

        while self.status == RunStatus.RUNNING:
            self.state.iteration += 1
            print(f"\n[Round {self.state.iteration}] starting ({len(self.state.active_ideas())} active ideas)")
            for phase in self.pipeline:
                self.state = phase.run(self.state, self.ctx)
                self.storage.save_state(self.state)
            self.status = evaluate_stop(self.state, self.config)

        unscored = sum(1 for idea in self.state.active_ideas() if idea.overall_score is None)
        if unscored:
            # Children from the last Refine are scored before the run is closed.
            self.state = CriticPhase().run(self.state, self.ctx)
            self.storage.save_state(self.state)

        reason = STOP_REASONS[self.status]
        print(
            f"[Round {self.state.iteration}] stopped: {reason} "
            f"(best={self.state.best_score}, best_id={self.state.best_idea_id})"
        )
        self.ctx.emit(
            self.state,
            EventType.STOPPED,
            reason=reason,
            best_score=self.state.best_score,
            best_id=self.state.best_idea_id,
            rescored=unscored,
        )

        result = FinalPhase().run(self.state, self.ctx, stop_reason=reason)
        self.status = RunStatus.FINALIZED
        return result
