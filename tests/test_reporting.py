from __future__ import annotations

import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from evoidea.config import RunConfig
from evoidea.evolution_loop import EvolutionEngine
from evoidea.llm import MockLLMProvider
from evoidea.models import Idea, IdeaStatus, Origin, PopulationState, Preferences, Scores, validate_state_invariants
from evoidea.reporting import (
    EXPORT_PRESETS,
    export_run,
    list_runs,
    render_tree,
    show_preferences,
    show_run,
    validate_run,
)
from evoidea.storage import RunStorage


def _lineage_state() -> PopulationState:
    left = Idea.new(1, Origin.GENERATED, "Left", "")
    left.overall_score = 6.0
    right = Idea.new(1, Origin.GENERATED, "Right", "")
    right.overall_score = 5.0
    right.status = IdeaStatus.ARCHIVED
    merged = Idea.new(2, Origin.CROSSOVER, "Merged", "", parents=[left.id, right.id])
    merged.overall_score = 7.0
    return PopulationState(run_id="run-tree", iteration=2, ideas=[left, right, merged])


def _finished_run(td: str) -> RunStorage:
    storage = RunStorage(td)
    config = RunConfig(
        prompt="Tools for indie hackers",
        run_id="run-r",
        max_rounds=1,
        population_size=4,
        elite_count=2,
        score_threshold=10.0,
    )
    EvolutionEngine.create(config, MockLLMProvider(), storage).run()
    return storage


class InvariantTests(unittest.TestCase):
    def test_reports_lineage_and_scoring_violations(self) -> None:
        orphan = Idea.new(2, Origin.REFINED, "Orphan", "")
        orphan.overall_score = 5.0
        adopted = Idea.new(1, Origin.GENERATED, "Adopted", "", parents=["x"])
        adopted.overall_score = 5.0
        unscored = Idea.new(1, Origin.GENERATED, "Unscored", "")
        unscored.scores = None
        archived = Idea.new(1, Origin.GENERATED, "Archived", "")
        archived.status = IdeaStatus.ARCHIVED
        state = PopulationState(run_id="r", ideas=[orphan, adopted, unscored, archived])

        problems = validate_state_invariants(state)

        self.assertIn(f"Idea {orphan.id} (refined) has no parents", problems)
        self.assertIn(f"Idea {adopted.id} (generated) has parents", problems)
        self.assertIn(f"Idea {unscored.id} (active) has missing/invalid scores", problems)
        self.assertIn(f"Idea {unscored.id} (active) has missing/invalid overall_score", problems)
        self.assertFalse(any(archived.id in problem for problem in problems))


class TreeTests(unittest.TestCase):
    def test_ascii_lists_multi_parent_child_under_each_parent(self) -> None:
        state = _lineage_state()
        merged = state.ideas[2]

        tree = render_tree(state, fmt="ascii")

        self.assertIn("=== Evolution Tree: run-tree ===", tree)
        self.assertEqual(tree.count(merged.id), 2)
        self.assertIn(f"~ [5.0] {state.ideas[1].id} Right", tree)
        self.assertIn("* = active, ~ = archived", tree)

    def test_mermaid_edges_and_classes(self) -> None:
        state = _lineage_state()
        left, right, merged = state.ideas

        tree = render_tree(state, fmt="mermaid")

        def node(idea: Idea) -> str:
            return "n_" + idea.id.replace("-", "_")

        self.assertTrue(tree.startswith("```mermaid\nflowchart TD"))
        self.assertIn(f"{node(left)} --> {node(merged)}", tree)
        self.assertIn(f"{node(right)} --> {node(merged)}", tree)
        self.assertIn(f"class {node(right)} archived", tree)

    def test_cycles_are_cut(self) -> None:
        first = Idea.new(1, Origin.GENERATED, "Root", "")
        a = Idea.new(2, Origin.REFINED, "A", "", parents=[first.id])
        b = Idea.new(2, Origin.REFINED, "B", "", parents=[a.id])
        a.parents.append(b.id)
        tree = render_tree(PopulationState(run_id="loop", ideas=[first, a, b]))
        self.assertIn("...", tree)

    def test_unknown_format(self) -> None:
        with self.assertRaises(ValueError):
            render_tree(_lineage_state(), fmt="dot")


class StoredRunTests(unittest.TestCase):
    def test_finished_run_views(self) -> None:
        with TemporaryDirectory() as td:
            storage = _finished_run(td)

            listing = list_runs(storage)
            self.assertIn("run-r", listing)
            self.assertIn("complete", listing)

            markdown = show_run(storage, "run-r")
            self.assertTrue(markdown.startswith("# Best Idea: "))
            self.assertIn("## Why It Won", markdown)
            payload = json.loads(show_run(storage, "run-r", fmt="json"))
            self.assertEqual(payload["run_id"], "run-r")

            self.assertEqual(validate_run(storage, "run-r"), [])

    def test_every_export_preset(self) -> None:
        with TemporaryDirectory() as td:
            storage = _finished_run(td)
            best_title = storage.load_final("run-r").best.title
            for preset in EXPORT_PRESETS:
                path = Path(export_run(storage, "run-r", preset))
                self.assertEqual(path, Path(td) / "run-r" / "exports" / f"{preset}.md")
                content = path.read_text(encoding="utf-8")
                self.assertTrue(content.strip())
                self.assertIn(best_title.split(":", 1)[0], content)

            with self.assertRaises(ValueError):
                export_run(storage, "run-r", "press-release")

    def test_unfinished_run(self) -> None:
        with TemporaryDirectory() as td:
            storage = RunStorage(td)
            storage.init_run(RunConfig(prompt="p", run_id="run-u"))
            self.assertIn("has not completed yet", show_run(storage, "run-u"))
            self.assertIn("in_progress", list_runs(storage))
            with self.assertRaises(FileNotFoundError):
                export_run(storage, "run-u", "landing")
            with self.assertRaises(FileNotFoundError):
                show_run(storage, "nope")

    def test_validate_reports_missing_artifacts(self) -> None:
        with TemporaryDirectory() as td:
            storage = RunStorage(td)
            storage.init_run(RunConfig(prompt="p", run_id="run-v"))
            storage.path("run-v", storage.HISTORY_FILE).unlink()
            self.assertEqual(validate_run(storage, "run-v"), ["history.ndjson: MISSING"])
            with self.assertRaises(FileNotFoundError):
                validate_run(storage, "ghost")

    def test_show_preferences(self) -> None:
        with TemporaryDirectory() as td:
            storage = RunStorage(td)
            storage.init_run(RunConfig(prompt="p", run_id="run-s"))
            empty = show_preferences(storage, "run-s")
            self.assertIn("No preferences found", empty)
            self.assertIn("evoidea-tournament tournament --run-id run-s", empty)

            idea = Idea.new(1, Origin.GENERATED, "Rated", "")
            idea.scores = Scores()
            idea.overall_score = 5.0
            storage.save_state(PopulationState(run_id="run-s", ideas=[idea]))
            storage.save_preferences("run-s", Preferences(elo_ratings={idea.id: 1016.0, "other": 984.0}))

            text = show_preferences(storage, "run-s")
            self.assertIn("1. [1016] Rated", text)
            self.assertIn("2. [984] other", text)

    def test_empty_listing(self) -> None:
        with TemporaryDirectory() as td:
            self.assertIn("No runs found", list_runs(RunStorage(str(Path(td) / "none"))))


if __name__ == "__main__":
    unittest.main()
