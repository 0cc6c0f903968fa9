"""Per-round phase pipeline: Generate -> Critic -> Select -> Refine, plus the terminal Final phase."""

from __future__ import annotations

import random
from dataclasses import dataclass

from tqdm import tqdm

from evoidea.config import RunConfig
from evoidea.llm import (
    CriticTask,
    GenerateTask,
    LLMProvider,
    RefineTask,
    apply_critic_patches,
    parse_generated_ideas,
    parse_refine_patch,
)
from evoidea.models import (
    Event,
    EventType,
    FinalBest,
    FinalResult,
    Idea,
    IdeaStatus,
    NoFinalistsError,
    Origin,
    PopulationState,
    RunnerUp,
    Scores,
)
from evoidea.scoring import overall_score, select_ideas, update_stagnation
from evoidea.storage import RunStorage


RUNNERS_UP_LIMIT = 4


@dataclass
class PhaseContext:
    """Read-only collaborators shared by every phase of a run."""

    config: RunConfig
    llm: LLMProvider
    storage: RunStorage
    rng: random.Random

    def emit(self, state: PopulationState, event_type: EventType, **payload) -> None:
        self.storage.append_event(state.run_id, Event(iteration=state.iteration, event_type=event_type, payload=payload))


class GeneratePhase:
    name = "generate"

    def run(self, state: PopulationState, ctx: PhaseContext) -> PopulationState:
        state = state.clone()
        deficit = max(0, ctx.config.population_size - len(state.active_ideas()))
        if deficit == 0:
            return state

        output = ctx.llm.generate(GenerateTask(prompt=ctx.config.prompt, count=deficit))
        fresh = parse_generated_ideas(output, gen=state.iteration)
        state.ideas.extend(fresh)
        print(f"[Round {state.iteration}] generated {len(fresh)} ideas (deficit={deficit})")
        ctx.emit(state, EventType.GENERATED, count=len(fresh))
        return state


class CriticPhase:
    name = "critic"

    def run(self, state: PopulationState, ctx: PhaseContext) -> PopulationState:
        state = state.clone()
        unscored = [idea for idea in state.active_ideas() if idea.overall_score is None]
        if unscored:
            output = ctx.llm.generate(CriticTask(ideas=[(idea.id, idea.title, idea.summary) for idea in unscored]))
            apply_critic_patches(state, output)

        # Every active idea is re-ranked so that weight changes apply retroactively.
        weights = ctx.config.scoring_weights
        for idea in state.active_ideas():
            if idea.scores is not None:
                idea.overall_score = overall_score(idea.scores, weights)

        print(f"[Round {state.iteration}] scored {len(unscored)} ideas")
        ctx.emit(state, EventType.SCORED, count=len(unscored))
        return state


class SelectPhase:
    name = "select"

    def run(self, state: PopulationState, ctx: PhaseContext) -> PopulationState:
        state = state.clone()
        candidates = [idea for idea in state.active_ideas() if idea.is_fully_scored]
        survivors = set(
            select_ideas(
                candidates,
                elite_count=ctx.config.elite_count,
                population_size=ctx.config.population_size,
                rng=ctx.rng,
            )
        )

        archived = 0
        for idea in state.active_ideas():
            if idea.id not in survivors:
                idea.status = IdeaStatus.ARCHIVED
                archived += 1

        best = _best_active(state)
        current = best.overall_score if best is not None else None
        state.stagnation_counter = update_stagnation(current, state.best_score, state.stagnation_counter)
        if best is not None:
            state.best_idea_id = best.id
            state.best_score = best.overall_score

        print(
            f"[Round {state.iteration}] selected={len(survivors)} archived={archived} "
            f"best={_fmt(state.best_score)} stagnation={state.stagnation_counter}"
        )
        ctx.emit(
            state,
            EventType.SELECTED,
            selected=len(survivors),
            archived=archived,
            best_score=state.best_score,
        )
        return state


class RefinePhase:
    name = "refine"

    def __init__(self, top_k: int = 2) -> None:
        self.top_k = top_k

    def run(self, state: PopulationState, ctx: PhaseContext) -> PopulationState:
        state = state.clone()
        candidates = [idea for idea in state.active_ideas() if idea.judge_notes]
        candidates = sorted(candidates, key=lambda idea: float(idea.overall_score or 0.0), reverse=True)[: self.top_k]

        children: list[Idea] = []
        for parent in tqdm(candidates, desc=f"refine:r{state.iteration}", leave=False):
            output = ctx.llm.generate(
                RefineTask(
                    idea_id=parent.id,
                    title=parent.title,
                    summary=parent.summary,
                    facets=parent.facets,
                    judge_notes=parent.judge_notes or "",
                )
            )
            patch = parse_refine_patch(output, parent)
            children.append(
                Idea.new(
                    gen=state.iteration,
                    origin=Origin.REFINED,
                    title=patch.title,
                    summary=patch.summary,
                    facets=patch.facets,
                    parents=[parent.id],
                )
            )

        state.ideas.extend(children)
        print(f"[Round {state.iteration}] refined {len(children)} ideas")
        ctx.emit(
            state,
            EventType.REFINED,
            count=len(children),
            children=[{"parent": child.parents[0], "child": child.id} for child in children],
        )
        return state


class FinalPhase:
    """Rank the surviving scored ideas and persist the final result."""

    name = "final"

    def run(self, state: PopulationState, ctx: PhaseContext, stop_reason: str | None = None) -> FinalResult:
        finalists = [idea for idea in state.active_ideas() if idea.overall_score is not None]
        finalists = sorted(finalists, key=lambda idea: float(idea.overall_score), reverse=True)
        if not finalists:
            raise NoFinalistsError(f"Run {state.run_id} has no active scored ideas to rank")

        top = finalists[0]
        scores = top.scores or Scores()
        result = FinalResult(
            run_id=state.run_id,
            best=FinalBest(
                idea_id=top.id,
                title=top.title,
                summary=top.summary,
                facets=top.facets,
                scores=scores,
                overall_score=float(top.overall_score),
                why_won=[
                    f"Highest overall score: {top.overall_score:.2f}",
                    f"Feasibility: {scores.feasibility:.1f}",
                    f"Low risk: {10.0 - scores.risk:.1f}",
                ],
            ),
            runners_up=[
                RunnerUp(idea_id=idea.id, title=idea.title, overall_score=float(idea.overall_score))
                for idea in finalists[1 : 1 + RUNNERS_UP_LIMIT]
            ],
            iterations_completed=state.iteration,
            stop_reason=stop_reason,
        )
        ctx.storage.save_final(result)
        print(f"[Final] best={top.title!r} score={top.overall_score:.2f} runners_up={len(result.runners_up)}")
        return result


def _best_active(state: PopulationState) -> Idea | None:
    best: Idea | None = None
    for idea in state.active_ideas():
        if idea.overall_score is None:
            continue
        if best is None or idea.overall_score > best.overall_score:
            best = idea
    return best


def _fmt(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.2f}"
