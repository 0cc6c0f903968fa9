"""Read-only views over stored runs: listings, summaries, validation, lineage trees, exports."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Callable

from evoidea.config import RunConfig
from evoidea.models import FinalResult, Idea, IdeaStatus, PopulationState, validate_state_invariants
from evoidea.storage import RunStorage, StorageError


MAX_TREE_DEPTH = 64
STATUS_MARKS = {IdeaStatus.ACTIVE: "*", IdeaStatus.ARCHIVED: "~"}


def list_runs(storage: RunStorage) -> str:
    """Table of runs, newest first."""

    run_ids = storage.list_run_ids()
    if not run_ids:
        return f"No runs found in: {storage.dir}"

    lines = [f"Runs in {storage.dir}:", f"{'RUN ID':<30} {'STATUS':<12} BEST SCORE", "-" * 55]
    for run_id in sorted(run_ids, reverse=True):
        score = "-"
        if storage.has_final(run_id):
            status = "complete"
            try:
                score = f"{storage.load_final(run_id).best.overall_score:.2f}"
            except StorageError as exc:
                print(f"[Warn] {exc}")
        elif storage.path(run_id, storage.STATE_FILE).exists():
            status = "in_progress"
        else:
            status = "unknown"
        lines.append(f"{run_id:<30} {status:<12} {score}")
    return "\n".join(lines)


def show_run(storage: RunStorage, run_id: str, fmt: str = "md") -> str:
    """Final result as JSON or markdown; progress summary for unfinished runs."""

    if not storage.has_final(run_id):
        if not storage.path(run_id, storage.STATE_FILE).exists():
            raise FileNotFoundError(f"Run {run_id} not found under {storage.dir}")
        state = storage.load_state(run_id)
        best = "-" if state.best_score is None else f"{state.best_score:.2f}"
        return "\n".join(
            [
                f"Run {run_id} has not completed yet.",
                f"Current iteration: {state.iteration}",
                f"Active ideas: {len(state.active_ideas())}",
                f"Best score: {best}",
            ]
        )

    result = storage.load_final(run_id)
    if fmt == "json":
        return json.dumps(result.to_dict(), ensure_ascii=False, indent=2)

    best = result.best
    facets = best.facets
    lines = [
        f"# Best Idea: {best.title}",
        "",
        f"**Score:** {best.overall_score:.2f}/10",
        "",
        best.summary,
        "",
        "## Details",
        "",
        f"**Audience:** {facets.audience}",
        f"**Problem:** {facets.jtbd}",
        f"**Unique:** {facets.differentiator}",
        f"**Monetization:** {facets.monetization}",
        f"**Distribution:** {facets.distribution}",
        f"**Risks:** {facets.risks}",
        "",
        "## Why It Won",
        "",
    ]
    lines.extend(f"- {reason}" for reason in best.why_won)
    if result.runners_up:
        lines.extend(["", "## Runners Up", ""])
        lines.extend(f"- {item.title} ({item.overall_score:.2f})" for item in result.runners_up)
    return "\n".join(lines)


def validate_run(storage: RunStorage, run_id: str) -> list[str]:
    """Check that a run's artifacts load and its ideas satisfy lineage/scoring invariants."""

    if not storage.run_dir(run_id).is_dir():
        raise FileNotFoundError(f"Run directory not found: {storage.run_dir(run_id)}")

    problems: list[str] = []
    for name, loader in (
        (storage.CONFIG_FILE, storage.load_config),
        (storage.HISTORY_FILE, storage.read_events),
    ):
        if not storage.path(run_id, name).exists():
            problems.append(f"{name}: MISSING")
            continue
        try:
            loader(run_id)
        except StorageError as exc:
            problems.append(str(exc))

    if not storage.path(run_id, storage.STATE_FILE).exists():
        problems.append(f"{storage.STATE_FILE}: MISSING")
    else:
        try:
            problems.extend(validate_state_invariants(storage.load_state(run_id)))
        except StorageError as exc:
            problems.append(str(exc))

    if storage.has_final(run_id):
        try:
            storage.load_final(run_id)
        except StorageError as exc:
            problems.append(str(exc))
    return problems


def build_children_index(ideas: list[Idea]) -> tuple[list[Idea], dict[str, list[Idea]]]:
    """Return (roots, parent id -> children); a multi-parent idea is listed under each parent."""

    roots: list[Idea] = []
    children: dict[str, list[Idea]] = {}
    for idea in ideas:
        if not idea.parents:
            roots.append(idea)
            continue
        for parent_id in idea.parents:
            children.setdefault(parent_id, []).append(idea)
    return roots, children


def render_tree(state: PopulationState, fmt: str = "ascii") -> str:
    if not state.ideas:
        return f"No ideas in run {state.run_id}"
    roots, children = build_children_index(state.ideas)
    if fmt == "mermaid":
        return _render_mermaid(state, children)
    if fmt != "ascii":
        raise ValueError(f"Unknown tree format {fmt}. Available: ascii, mermaid")
    return _render_ascii(state.run_id, roots, children)


def _render_ascii(run_id: str, roots: list[Idea], children: dict[str, list[Idea]]) -> str:
    lines = [f"=== Evolution Tree: {run_id} ===", ""]

    def visit(idea: Idea, prefix: str, is_last: bool, depth: int, path: frozenset[str]) -> None:
        score = idea.overall_score if idea.overall_score is not None else 0.0
        title = idea.title if len(idea.title) <= 40 else idea.title[:40] + "..."
        connector = "└── " if is_last else "├── "
        lines.append(f"{prefix}{connector}{STATUS_MARKS[idea.status]} [{score:.1f}] {idea.id} {title}")
        kids = children.get(idea.id, [])
        if depth >= MAX_TREE_DEPTH or idea.id in path:
            if kids:
                lines.append(f"{prefix}    ...")
            return
        child_prefix = prefix + ("    " if is_last else "│   ")
        for index, child in enumerate(kids):
            visit(child, child_prefix, index == len(kids) - 1, depth + 1, path | {idea.id})

    for index, root in enumerate(roots):
        visit(root, "", index == len(roots) - 1, 0, frozenset())
    lines.extend(["", "Legend: [score] id title", "  * = active, ~ = archived"])
    return "\n".join(lines)


def _render_mermaid(state: PopulationState, children: dict[str, list[Idea]]) -> str:
    def node_id(idea_id: str) -> str:
        return "n_" + idea_id.replace("-", "_")

    lines = ["```mermaid", "flowchart TD", f'    subgraph run["Evolution: {state.run_id}"]']
    for idea in state.ideas:
        label = idea.title[:25].replace('"', "'")
        score = idea.overall_score if idea.overall_score is not None else 0.0
        if idea.status == IdeaStatus.ACTIVE:
            lines.append(f'    {node_id(idea.id)}(["{label}\\n{score:.1f}"])')
        else:
            lines.append(f'    {node_id(idea.id)}["{label}\\n{score:.1f}"]')
    for parent_id, kids in children.items():
        for child in kids:
            lines.append(f"    {node_id(parent_id)} --> {node_id(child.id)}")
    lines.append("    end")
    lines.append("    classDef active fill:#90EE90,stroke:#228B22")
    lines.append("    classDef archived fill:#D3D3D3,stroke:#808080")
    for idea in state.ideas:
        lines.append(f"    class {node_id(idea.id)} {idea.status.value}")
    lines.append("```")
    return "\n".join(lines)


def _product_name(title: str) -> str:
    return title.split(":", 1)[0].strip()


def _today() -> str:
    return datetime.now().strftime("%Y-%m-%d")


def export_landing(result: FinalResult, config: RunConfig, state: PopulationState) -> str:
    best = result.best
    facets = best.facets
    tagline = best.summary.split(".", 1)[0].strip()
    return "\n".join(
        [
            f"<!-- Source: {result.run_id} | Score: {best.overall_score:.1f}/10 -->",
            f"<!-- Prompt: {config.prompt} -->",
            "",
            f"# {_product_name(best.title)}",
            "",
            f"**{tagline}**",
            "",
            "## The Problem",
            "",
            facets.jtbd,
            "",
            "## Why Choose Us",
            "",
            f"**1. Unique Approach:** {facets.differentiator}",
            "",
            f"**2. Built For:** {facets.audience}",
            "",
            f"**3. Clear Path to Value:** {facets.distribution}",
            "",
            "## Get Started",
            "",
            f"**Pricing:** {facets.monetization}",
            "",
            "## Our Commitment",
            "",
            f"We know the challenges: {facets.risks}",
            "",
            "---",
            f"*Evolution Score: {best.overall_score:.1f}/10*",
            "",
        ]
    )


def export_decision_log(result: FinalResult, config: RunConfig, state: PopulationState) -> str:
    best = result.best
    lines = [
        f"# Decision Log: {best.title}",
        "",
        f"**Date:** {_today()}",
        f"**Run ID:** `{result.run_id}`",
        "**Status:** Decided",
        "",
        "## Context",
        "",
        f"**Problem Statement:** {config.prompt}",
        "",
        f"**Target Audience:** {best.facets.audience}",
        "",
        "## Decision",
        "",
        f"**Selected:** {best.title}",
        "",
        best.summary,
        "",
        "## Rationale",
        "",
        f"- **Confidence Score:** {best.overall_score:.1f}/10",
        f"- **Key Differentiator:** {best.facets.differentiator}",
        f"- **Problem Solved:** {best.facets.jtbd}",
        "",
        "## Alternatives Considered",
        "",
        f"- **Total evaluated:** {len(state.ideas)} ideas over {result.iterations_completed} iterations",
    ]
    lines.extend(f"- **Runner-up:** {item.title} ({item.overall_score:.1f}/10)" for item in result.runners_up)
    lines.extend(
        [
            "- **Selection method:** Evolutionary algorithm with scoring",
            f"- **Stop reason:** {result.stop_reason or '-'}",
            "",
            "## Risks & Mitigations",
            "",
            best.facets.risks,
            "",
            "---",
            f"*Generated by evoidea | Run: {result.run_id} | Score: {best.overall_score:.1f}/10*",
            "",
        ]
    )
    return "\n".join(lines)


def export_stakeholder_brief(result: FinalResult, config: RunConfig, state: PopulationState) -> str:
    best = result.best
    facets = best.facets
    if best.overall_score >= 7.0:
        confidence = "High"
    elif best.overall_score >= 5.0:
        confidence = "Medium"
    else:
        confidence = "Low"
    return "\n".join(
        [
            f"# {_product_name(best.title)} - Executive Summary",
            "",
            "## The Opportunity",
            "",
            f"**Direction explored:** {config.prompt}",
            "",
            f"**Recommended approach:** {best.title}",
            "",
            best.summary,
            "",
            "## Key Points",
            "",
            "| Aspect | Details |",
            "|--------|---------|",
            f"| Target Market | {facets.audience} |",
            f"| Problem Solved | {facets.jtbd} |",
            f"| Competitive Edge | {facets.differentiator} |",
            f"| Revenue Model | {facets.monetization} |",
            f"| Go-to-Market | {facets.distribution} |",
            "",
            "## Confidence Assessment",
            "",
            f"**Overall Confidence:** {confidence} ({best.overall_score:.1f}/10)",
            "",
            "## Known Risks",
            "",
            facets.risks,
            "",
            "## Next Steps",
            "",
            "1. Review and validate assumptions with domain experts",
            "2. Conduct customer discovery interviews",
            "3. Build minimal prototype for early feedback",
            "",
            "---",
            f"*Generated by evoidea | {result.run_id} | Confidence: {best.overall_score:.1f}/10*",
            "",
        ]
    )


def export_changelog_entry(result: FinalResult, config: RunConfig, state: PopulationState) -> str:
    best = result.best
    return "\n".join(
        [
            f"## [Ideation] {_product_name(best.title)} - {_today()}",
            "",
            "### Added",
            "",
            f"- **New concept explored:** {best.title}",
            f"- **Problem space:** {config.prompt}",
            f"- **Target users:** {best.facets.audience}",
            "",
            "### Details",
            "",
            best.summary,
            "",
            f"**Core value:** {best.facets.jtbd}",
            "",
            "### Metrics",
            "",
            f"- Confidence score: {best.overall_score:.1f}/10",
            f"- Evolution iterations: {result.iterations_completed}",
            f"- Run ID: `{result.run_id}`",
            "",
            "---",
            "*Entry generated by evoidea evolutionary ideation*",
            "",
        ]
    )


ExportFn = Callable[[FinalResult, RunConfig, PopulationState], str]

EXPORT_PRESETS: dict[str, ExportFn] = {
    "landing": export_landing,
    "decision-log": export_decision_log,
    "stakeholder-brief": export_stakeholder_brief,
    "changelog-entry": export_changelog_entry,
}


def export_run(storage: RunStorage, run_id: str, preset: str) -> str:
    """Render a preset for a completed run into its exports/ directory; returns the file path."""

    if preset not in EXPORT_PRESETS:
        available = ", ".join(sorted(EXPORT_PRESETS))
        raise ValueError(f"Unknown preset {preset}. Available: {available}")
    if not storage.has_final(run_id):
        raise FileNotFoundError(f"Run {run_id} has no final result (not completed yet)")

    content = EXPORT_PRESETS[preset](
        storage.load_final(run_id),
        storage.load_config(run_id),
        storage.load_state(run_id),
    )
    return str(storage.write_export(run_id, f"{preset}.md", content))


def show_preferences(storage: RunStorage, run_id: str) -> str:
    """Comparison count and Elo leaderboard for a run's tournament."""

    if not storage.path(run_id, storage.PREFERENCES_FILE).exists():
        return (
            f"No preferences found for run {run_id}\n"
            f"Run 'evoidea-tournament tournament --run-id {run_id}' to generate preferences"
        )

    prefs = storage.load_preferences(run_id)
    state = storage.load_state(run_id)
    titles = {idea.id: idea.title for idea in state.ideas}
    lines = [
        f"=== Profile for {run_id} ===",
        "",
        f"Comparisons: {len(prefs.comparisons)}",
        f"Ideas rated: {len(prefs.elo_ratings)}",
        "",
        "Elo Rankings:",
    ]
    ranked = sorted(prefs.elo_ratings.items(), key=lambda item: item[1], reverse=True)
    for rank, (idea_id, rating) in enumerate(ranked, start=1):
        lines.append(f"  {rank}. [{rating:.0f}] {titles.get(idea_id, idea_id)}")
    return "\n".join(lines)
