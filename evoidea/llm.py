"""LLM task descriptors, providers, and output parsing."""

from __future__ import annotations

import json
import re
import textwrap
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Union

from evoidea.models import Facets, Idea, Origin, PopulationState, Scores


class MalformedOutputError(ValueError):
    """Provider output is not JSON or lacks a required structural field."""


@dataclass
class GenerateTask:
    prompt: str
    count: int


@dataclass
class CriticTask:
    ideas: list[tuple[str, str, str]]  # (id, title, summary)


@dataclass
class RefineTask:
    idea_id: str
    title: str
    summary: str
    facets: Facets
    judge_notes: str


@dataclass
class MergeTask:
    idea_a: tuple[str, str, Facets]  # (title, summary, facets)
    idea_b: tuple[str, str, Facets]


@dataclass
class MutateTask:
    idea: tuple[str, str, Facets]
    mutation_type: str


LLMTask = Union[GenerateTask, CriticTask, RefineTask, MergeTask, MutateTask]

MUTABLE_FACETS = ("audience", "jtbd", "differentiator", "monetization", "distribution")


class LLMProvider(ABC):
    """Answers one task descriptor with a JSON object."""

    name: str = "base"

    @abstractmethod
    def generate(self, task: LLMTask) -> dict[str, Any]:
        """Return the JSON payload for `task`."""


PROVIDER_REGISTRY: dict[str, type[LLMProvider]] = {}


def register_provider(name: str):
    """Register a provider class under a mode name."""

    def decorator(cls: type[LLMProvider]) -> type[LLMProvider]:
        PROVIDER_REGISTRY[name] = cls
        cls.name = name
        return cls

    return decorator


def get_provider(mode: str, **kwargs) -> LLMProvider:
    """Instantiate the provider registered for `mode`."""

    if mode not in PROVIDER_REGISTRY:
        available = ", ".join(sorted(PROVIDER_REGISTRY)) or "<none>"
        raise ValueError(f"Unknown mode {mode}. Available: {available}")
    return PROVIDER_REGISTRY[mode](**kwargs)


@register_provider("mock")
class MockLLMProvider(LLMProvider):
    """Deterministic provider for offline runs and tests."""

    def __init__(self) -> None:
        self.gen_counter = 0

    def generate(self, task: LLMTask) -> dict[str, Any]:
        if isinstance(task, GenerateTask):
            gen = self.gen_counter
            self.gen_counter += 1
            return {"ideas": [self._mock_idea(idx, gen) for idx in range(task.count)]}
        if isinstance(task, CriticTask):
            return {"patches": [self._mock_patch(idea_id, idx) for idx, (idea_id, _, _) in enumerate(task.ideas)]}
        if isinstance(task, RefineTask):
            return {
                "patch": {
                    "id": task.idea_id,
                    "title": f"{task.title} (refined)",
                    "summary": f"{task.summary} Improvements based on: {task.judge_notes}",
                    "facets": task.facets.to_dict(),
                    "changes": ["Improved based on feedback"],
                }
            }
        if isinstance(task, MergeTask):
            title_a, summary_a, facets_a = task.idea_a
            title_b, summary_b, facets_b = task.idea_b
            return {
                "idea": {
                    "title": f"{title_a} + {title_b}",
                    "summary": f"Merged: {summary_a} and {summary_b}",
                    "facets": {
                        "audience": facets_a.audience,
                        "jtbd": facets_b.jtbd,
                        "differentiator": f"{facets_a.differentiator} with {facets_b.differentiator}",
                        "monetization": facets_a.monetization,
                        "distribution": facets_b.distribution,
                        "risks": f"{facets_a.risks} and {facets_b.risks}",
                    },
                }
            }
        if isinstance(task, MutateTask):
            title, summary, facets = task.idea
            mutated = facets.to_dict()
            if task.mutation_type in MUTABLE_FACETS:
                mutated[task.mutation_type] = f"{mutated[task.mutation_type]} (mutated)"
            return {
                "mutation_type": task.mutation_type,
                "idea": {"title": f"{title} (mutated)", "summary": summary, "facets": mutated},
            }
        raise TypeError(f"Unsupported task type: {type(task).__name__}")

    @staticmethod
    def _mock_idea(idx: int, gen: int) -> dict[str, Any]:
        return {
            "title": f"Mock Idea {idx} (gen {gen})",
            "summary": f"This is mock idea {idx} generated in generation {gen}",
            "facets": {
                "audience": "Developers",
                "jtbd": "Automate repetitive tasks",
                "differentiator": "AI-powered automation",
                "monetization": "SaaS subscription",
                "distribution": "Developer communities",
                "risks": "Competition from incumbents",
            },
        }

    @staticmethod
    def _mock_patch(idea_id: str, idx: int) -> dict[str, Any]:
        base = 7.0 + idx * 0.3
        return {
            "id": idea_id,
            "scores": {
                "feasibility": min(base, 10.0),
                "speed_to_value": max(0.0, min(10.0, base - 0.5)),
                "differentiation": min(base + 0.2, 10.0),
                "market_size": max(0.0, min(10.0, base - 0.3)),
                "distribution": min(base, 10.0),
                "moats": max(0.0, min(10.0, base - 1.0)),
                "risk": max(1.0, min(10.0, 5.0 - idx * 0.2)),
                "clarity": min(base + 0.5, 10.0),
            },
            "overall_score": min(base, 10.0),
            "judge_notes": f"Mock evaluation for idea {idea_id}",
        }


SYSTEM_PROMPT = (
    "You are a product strategist helping evolve startup and side-project ideas. "
    "Always answer with a single JSON object and nothing else."
)

FACETS_SCHEMA = (
    '{"audience": str, "jtbd": str, "differentiator": str, '
    '"monetization": str, "distribution": str, "risks": str}'
)


@register_provider("openai")
class OpenAIProvider(LLMProvider):
    """Chat-completions provider for any OpenAI-compatible endpoint."""

    def __init__(self, client=None, model: str = "gpt-4o-mini", temperature: float = 0.7) -> None:
        if client is None:
            raise ValueError("OpenAIProvider requires an OpenAI client")
        self.client = client
        self.model = model
        self.temperature = temperature

    def generate(self, task: LLMTask) -> dict[str, Any]:
        prompt = self.build_prompt(task)
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
        )
        text = response.choices[0].message.content or ""
        parsed = extract_json_from_text(text)
        if parsed is None:
            raise MalformedOutputError(f"{type(task).__name__}: model output is not a JSON object: {text[:200]!r}")
        return parsed

    def build_prompt(self, task: LLMTask) -> str:
        if isinstance(task, GenerateTask):
            return textwrap.dedent(
                """
                Propose {count} distinct ideas for the brief below.

                Brief:
                {brief}

                Respond as {{"ideas": [{{"title": str, "summary": str, "facets": {schema}}}]}}.
                Keep summaries to two or three sentences.
                """
            ).strip().format(count=task.count, brief=task.prompt, schema=FACETS_SCHEMA)
        if isinstance(task, CriticTask):
            listing = "\n".join(f"- id={idea_id} | {title}: {summary}" for idea_id, title, summary in task.ideas)
            return textwrap.dedent(
                """
                Score each idea from 0 to 10 on: feasibility, speed_to_value, differentiation,
                market_size, distribution, moats, risk (higher means riskier), clarity.

                Ideas:
                {listing}

                Respond as {{"patches": [{{"id": str, "scores": {{<criterion>: number}},
                "overall_score": number, "judge_notes": str}}]}} with one patch per idea, reusing the ids.
                """
            ).strip().format(listing=listing)
        if isinstance(task, RefineTask):
            return textwrap.dedent(
                """
                Improve this idea using the reviewer notes. Keep what works, fix what the notes criticise.

                Title: {title}
                Summary: {summary}
                Facets: {facets}
                Reviewer notes: {notes}

                Respond as {{"patch": {{"id": "{idea_id}", "title": str, "summary": str,
                "facets": {schema}, "changes": [str]}}}}.
                """
            ).strip().format(
                title=task.title,
                summary=task.summary,
                facets=json.dumps(task.facets.to_dict(), ensure_ascii=False),
                notes=task.judge_notes,
                idea_id=task.idea_id,
                schema=FACETS_SCHEMA,
            )
        if isinstance(task, MergeTask):
            return textwrap.dedent(
                """
                Combine the two ideas below into one stronger idea.

                A: {a}
                B: {b}

                Respond as {{"idea": {{"title": str, "summary": str, "facets": {schema}}}}}.
                """
            ).strip().format(a=_describe(task.idea_a), b=_describe(task.idea_b), schema=FACETS_SCHEMA)
        if isinstance(task, MutateTask):
            return textwrap.dedent(
                """
                Mutate the idea below by changing its {mutation_type} while keeping the rest coherent.

                Idea: {idea}

                Respond as {{"mutation_type": "{mutation_type}", "idea": {{"title": str, "summary": str,
                "facets": {schema}}}}}.
                """
            ).strip().format(mutation_type=task.mutation_type, idea=_describe(task.idea), schema=FACETS_SCHEMA)
        raise TypeError(f"Unsupported task type: {type(task).__name__}")


def _describe(idea: tuple[str, str, Facets]) -> str:
    title, summary, facets = idea
    return f"{title}: {summary} {json.dumps(facets.to_dict(), ensure_ascii=False)}"


def extract_json_from_text(raw: str) -> dict[str, Any] | None:
    """Extract the first JSON object from plain or fenced model output."""

    text = str(raw or "").strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()
    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    match = re.search(r"\{[\s\S]*\}", text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_generated_ideas(output: dict[str, Any], gen: int) -> list[Idea]:
    """Turn a Generate response into fresh Active ideas."""

    items = output.get("ideas") if isinstance(output, dict) else None
    if not isinstance(items, list):
        raise MalformedOutputError("Expected 'ideas' array in output")

    ideas: list[Idea] = []
    for item in items:
        item = item if isinstance(item, dict) else {}
        title = item.get("title")
        summary = item.get("summary")
        ideas.append(
            Idea.new(
                gen=gen,
                origin=Origin.GENERATED,
                title=title if isinstance(title, str) else "Untitled",
                summary=summary if isinstance(summary, str) else "",
                facets=Facets.from_dict(item.get("facets")),
            )
        )
    return ideas


def apply_critic_patches(state: PopulationState, output: dict[str, Any]) -> int:
    """Apply per-id score patches in place; returns how many ideas were patched."""

    patches = output.get("patches") if isinstance(output, dict) else None
    if not isinstance(patches, list):
        raise MalformedOutputError("Expected 'patches' array in output")

    applied = 0
    for patch in patches:
        idea_id = patch.get("id") if isinstance(patch, dict) else None
        if not isinstance(idea_id, str) or not idea_id:
            raise MalformedOutputError("Patch missing 'id'")
        idea = state.find(idea_id)
        if idea is None:
            continue
        if "scores" in patch:
            idea.scores = Scores.from_patch(patch.get("scores"))
        overall = patch.get("overall_score")
        idea.overall_score = float(overall) if isinstance(overall, (int, float)) and not isinstance(overall, bool) else None
        notes = patch.get("judge_notes")
        idea.judge_notes = notes if isinstance(notes, str) else None
        applied += 1
    return applied


@dataclass
class RefinePatch:
    title: str
    summary: str
    facets: Facets
    changes: list[str] = field(default_factory=list)


def parse_refine_patch(output: dict[str, Any], original: Idea) -> RefinePatch:
    """Read a Refine response; missing text fields fall back to the original idea."""

    patch = output.get("patch") if isinstance(output, dict) else None
    if not isinstance(patch, dict):
        raise MalformedOutputError("Expected 'patch' object in output")

    title = patch.get("title")
    summary = patch.get("summary")
    changes = patch.get("changes")
    return RefinePatch(
        title=title if isinstance(title, str) else original.title,
        summary=summary if isinstance(summary, str) else original.summary,
        facets=Facets.from_dict(patch.get("facets"), fallback=original.facets),
        changes=[str(item) for item in changes] if isinstance(changes, list) else [],
    )
