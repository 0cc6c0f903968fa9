from __future__ import annotations

import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from evoidea.config import RunConfig
from evoidea.models import CRITERIA, Comparison, Idea, Origin, PopulationState, Preferences, Scores
from evoidea.preference_fit import (
    RiskMode,
    build_portable_profile,
    derive_preference_profile,
    export_profile,
    fit_weights,
    import_profile,
    infer_risk_mode,
    load_profile,
    profile_summary,
    summarize_weights,
)
from evoidea.scoring import ScoringWeights
from evoidea.storage import RunStorage


def _idea(risk: float, overall: float, base: float = 5.0) -> Idea:
    idea = Idea.new(1, Origin.GENERATED, f"risk {risk}", "")
    values = {name: base for name in CRITERIA}
    values["risk"] = risk
    idea.scores = Scores(**values)
    idea.overall_score = overall
    return idea


class RiskModeTests(unittest.TestCase):
    def test_defaults_to_benefit_with_few_samples(self) -> None:
        # Overall scores match the inverted reading, but two ideas are not enough evidence.
        state = PopulationState(run_id="r", ideas=[_idea(2.0, 5.375), _idea(2.0, 5.375)])
        self.assertEqual(infer_risk_mode(state), RiskMode.AS_BENEFIT)

    def test_infers_inversion_when_it_fits_better(self) -> None:
        state = PopulationState(run_id="r", ideas=[_idea(2.0, 5.375) for _ in range(3)])
        self.assertEqual(infer_risk_mode(state), RiskMode.INVERT)

    def test_ideas_without_overall_are_ignored(self) -> None:
        unscored = _idea(2.0, 0.0)
        unscored.overall_score = None
        state = PopulationState(run_id="r", ideas=[_idea(2.0, 5.375), _idea(2.0, 5.375), unscored])
        self.assertEqual(infer_risk_mode(state), RiskMode.AS_BENEFIT)


class FitTests(unittest.TestCase):
    def test_preferring_risky_raises_risk_weight(self) -> None:
        safe = _idea(1.0, 5.0)
        risky = _idea(9.0, 5.0)
        state = PopulationState(run_id="r", ideas=[safe, risky])
        prefs = Preferences(comparisons=[Comparison(safe.id, risky.id, risky.id)])

        derived = derive_preference_profile(prefs, state)

        weights = derived["criterion_weights"]
        self.assertEqual(derived["risk_mode"], "as_benefit")
        self.assertAlmostEqual(sum(weights.values()), 1.0, places=9)
        self.assertTrue(all(weights["risk"] > weights[name] for name in CRITERIA if name != "risk"))
        self.assertEqual(derived["fit"]["comparisons_used"], 1)
        self.assertIsNone(derived["fit"]["holdout_accuracy"])

    def test_preferring_safe_under_inversion_raises_risk_weight(self) -> None:
        safe = _idea(2.0, 5.375)
        risky = _idea(8.0, 3.875)
        filler = _idea(2.0, 5.375)
        state = PopulationState(run_id="r", ideas=[safe, risky, filler])
        prefs = Preferences(comparisons=[Comparison(risky.id, safe.id, safe.id)])

        derived = derive_preference_profile(prefs, state)

        self.assertEqual(derived["risk_mode"], "invert")
        weights = derived["criterion_weights"]
        self.assertEqual(max(weights, key=weights.get), "risk")

    def test_holdout_accuracy_reported(self) -> None:
        strong = [float(idx % 3 + 5) for idx in range(8)]
        weak = [value - 1.0 for value in strong]
        pairs = [(strong, weak) for _ in range(10)]

        weights, accuracy = fit_weights(pairs)

        self.assertEqual(accuracy, 1.0)
        self.assertAlmostEqual(sum(weights), 1.0, places=9)
        self.assertTrue(all(weight > 0 for weight in weights))

    def test_fit_is_deterministic(self) -> None:
        pairs = [([float(i), 1.0] * 4, [1.0, float(i)] * 4) for i in range(7)]
        self.assertEqual(fit_weights(pairs), fit_weights(pairs))

    def test_unusable_comparisons_yield_nothing(self) -> None:
        idea = _idea(3.0, 5.0)
        state = PopulationState(run_id="r", ideas=[idea])
        self.assertIsNone(derive_preference_profile(Preferences(), state))
        prefs = Preferences(comparisons=[Comparison(idea.id, "gone", "gone"), Comparison(idea.id, "x", "nobody")])
        self.assertIsNone(derive_preference_profile(prefs, state))

    def test_summary_names_extremes(self) -> None:
        weights = {name: 1.0 for name in CRITERIA}
        weights.update(moats=5.0, clarity=4.0, risk=0.1, market_size=0.2)
        self.assertEqual(
            summarize_weights(weights),
            [
                "Prioritizes moats and clarity over other criteria.",
                "De-emphasizes risk and market_size relative to other criteria.",
            ],
        )


class PortableProfileTests(unittest.TestCase):
    def _seed_run(self, storage: RunStorage, run_id: str) -> tuple[Idea, Idea]:
        storage.init_run(RunConfig(prompt="p", run_id=run_id))
        first = _idea(1.0, 6.0, base=7.0)
        second = _idea(6.0, 4.0, base=4.0)
        storage.save_state(PopulationState(run_id=run_id, iteration=1, ideas=[first, second]))
        return first, second

    def test_export_import_roundtrip(self) -> None:
        with TemporaryDirectory() as td:
            storage = RunStorage(td)
            first, second = self._seed_run(storage, "source")
            prefs = Preferences(
                comparisons=[Comparison(first.id, second.id, first.id)],
                elo_ratings={first.id: 1016.0, second.id: 984.0},
            )
            storage.save_preferences("source", prefs)
            out_path = str(Path(td) / "profiles" / "me.json")

            exported = export_profile(storage, "source", out_path)

            self.assertEqual(exported["version"], 1)
            self.assertEqual(exported["source_run"], "source")
            self.assertEqual(exported["stats"], {"comparisons": 1, "ideas_rated": 2})
            self.assertEqual(len(exported["derived"]["summary"]), 2)
            loaded = load_profile(out_path)
            self.assertEqual(loaded["preferences"], prefs.to_dict())
            weights = ScoringWeights.from_profile(loaded)
            self.assertAlmostEqual(sum(weights.as_list()), 1.0, places=9)
            self.assertIn("Profile v1 from run source", profile_summary(loaded))

            storage.init_run(RunConfig(prompt="p", run_id="target"))
            imported = import_profile(storage, out_path, "target")
            self.assertEqual(imported, prefs)
            self.assertEqual(storage.load_preferences("target"), prefs)

    def test_profile_without_state_has_no_derived_block(self) -> None:
        profile = build_portable_profile("r", Preferences())
        self.assertNotIn("derived", profile)
        self.assertIn("No fitted weights", profile_summary(profile))

    def test_rejects_bad_versions(self) -> None:
        with TemporaryDirectory() as td:
            cases = [
                {"version": 2, "preferences": {}},
                {"preferences": {}},
                {"version": "1", "preferences": {}},
                {"version": 1},
            ]
            for idx, payload in enumerate(cases):
                path = Path(td) / f"profile_{idx}.json"
                path.write_text(json.dumps(payload), encoding="utf-8")
                with self.assertRaises(ValueError):
                    load_profile(str(path))

    def test_import_into_missing_run_fails(self) -> None:
        with TemporaryDirectory() as td:
            path = Path(td) / "profile.json"
            path.write_text(json.dumps({"version": 1, "preferences": {}}), encoding="utf-8")
            with self.assertRaises(FileNotFoundError):
                import_profile(RunStorage(td), str(path), "missing")


if __name__ == "__main__":
    unittest.main()
