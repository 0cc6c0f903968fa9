from __future__ import annotations

import unittest

from evoidea.llm import (
    CriticTask,
    GenerateTask,
    MalformedOutputError,
    MergeTask,
    MockLLMProvider,
    MutateTask,
    OpenAIProvider,
    RefineTask,
    apply_critic_patches,
    extract_json_from_text,
    get_provider,
    parse_generated_ideas,
    parse_refine_patch,
)
from evoidea.models import Facets, Idea, Origin, PopulationState


class _DummyMessage:
    def __init__(self, content: str) -> None:
        self.content = content


class _DummyChoice:
    def __init__(self, content: str) -> None:
        self.message = _DummyMessage(content)


class _DummyChatResponse:
    def __init__(self, content: str) -> None:
        self.choices = [_DummyChoice(content)]


class _DummyChatCompletions:
    def __init__(self, parent) -> None:
        self._parent = parent

    def create(self, **kwargs):
        self._parent.calls.append(kwargs)
        return _DummyChatResponse(self._parent.reply)


class _DummyChat:
    def __init__(self, parent) -> None:
        self.completions = _DummyChatCompletions(parent)


class _DummyClient:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls = []
        self.chat = _DummyChat(self)


def _state_with(*titles: str) -> PopulationState:
    state = PopulationState(run_id="r1", iteration=1)
    for title in titles:
        state.ideas.append(Idea.new(gen=1, origin=Origin.GENERATED, title=title, summary=f"{title} summary"))
    return state


class MockProviderTests(unittest.TestCase):
    def test_generate_counts_generations(self) -> None:
        provider = MockLLMProvider()
        first = provider.generate(GenerateTask(prompt="p", count=3))
        second = provider.generate(GenerateTask(prompt="p", count=1))

        self.assertEqual(len(first["ideas"]), 3)
        self.assertEqual(first["ideas"][2]["title"], "Mock Idea 2 (gen 0)")
        self.assertEqual(second["ideas"][0]["title"], "Mock Idea 0 (gen 1)")
        self.assertEqual(first["ideas"][0]["facets"]["audience"], "Developers")

    def test_critic_scores_follow_index(self) -> None:
        output = MockLLMProvider().generate(CriticTask(ideas=[("a", "A", ""), ("b", "B", "")]))
        patches = output["patches"]

        self.assertEqual([patch["id"] for patch in patches], ["a", "b"])
        self.assertAlmostEqual(patches[0]["scores"]["feasibility"], 7.0)
        self.assertAlmostEqual(patches[1]["scores"]["feasibility"], 7.3)
        self.assertAlmostEqual(patches[1]["scores"]["risk"], 4.8)
        self.assertEqual(patches[0]["judge_notes"], "Mock evaluation for idea a")

    def test_refine_merge_mutate(self) -> None:
        provider = MockLLMProvider()
        facets = Facets(audience="Devs", jtbd="ship", differentiator="fast", risks="churn")
        refined = provider.generate(RefineTask("x", "T", "S.", facets, "add pricing"))
        self.assertEqual(refined["patch"]["title"], "T (refined)")
        self.assertIn("add pricing", refined["patch"]["summary"])

        merged = provider.generate(MergeTask(("A", "sa", facets), ("B", "sb", Facets(jtbd="other"))))
        self.assertEqual(merged["idea"]["title"], "A + B")
        self.assertEqual(merged["idea"]["facets"]["jtbd"], "other")

        mutated = provider.generate(MutateTask(("A", "sa", facets), "audience"))
        self.assertEqual(mutated["idea"]["facets"]["audience"], "Devs (mutated)")
        self.assertEqual(mutated["idea"]["facets"]["jtbd"], "ship")

    def test_unknown_task_type_rejected(self) -> None:
        with self.assertRaises(TypeError):
            MockLLMProvider().generate("generate please")  # type: ignore[arg-type]


class RegistryTests(unittest.TestCase):
    def test_get_provider(self) -> None:
        self.assertIsInstance(get_provider("mock"), MockLLMProvider)
        with self.assertRaises(ValueError) as ctx:
            get_provider("codex")
        self.assertIn("Available: mock, openai", str(ctx.exception))

    def test_openai_requires_client(self) -> None:
        with self.assertRaises(ValueError):
            get_provider("openai")


class OpenAIProviderTests(unittest.TestCase):
    def test_parses_fenced_json(self) -> None:
        client = _DummyClient('```json\n{"ideas": [{"title": "X"}]}\n```')
        provider = OpenAIProvider(client=client, model="m", temperature=0.2)

        output = provider.generate(GenerateTask(prompt="Tools for bakers\nConstraints:\n- cheap", count=2))

        self.assertEqual(output, {"ideas": [{"title": "X"}]})
        call = client.calls[0]
        self.assertEqual(call["model"], "m")
        self.assertEqual(call["temperature"], 0.2)
        self.assertIn("Propose 2 distinct ideas", call["messages"][1]["content"])
        self.assertIn("Tools for bakers", call["messages"][1]["content"])

    def test_non_json_reply_is_malformed(self) -> None:
        provider = OpenAIProvider(client=_DummyClient("I cannot help with that."))
        with self.assertRaises(MalformedOutputError):
            provider.generate(CriticTask(ideas=[("a", "A", "s")]))

    def test_prompts_cover_every_task(self) -> None:
        provider = OpenAIProvider(client=_DummyClient("{}"))
        facets = Facets(audience="Devs")
        prompts = [
            provider.build_prompt(CriticTask(ideas=[("id-1", "A", "s")])),
            provider.build_prompt(RefineTask("id-2", "T", "S", facets, "notes")),
            provider.build_prompt(MergeTask(("A", "a", facets), ("B", "b", facets))),
            provider.build_prompt(MutateTask(("A", "a", facets), "monetization")),
        ]
        self.assertIn("id=id-1", prompts[0])
        self.assertIn('"id": "id-2"', prompts[1])
        self.assertIn('"idea"', prompts[2])
        self.assertIn("monetization", prompts[3])


class ParsingTests(unittest.TestCase):
    def test_extract_json_from_text(self) -> None:
        self.assertEqual(extract_json_from_text('noise {"a": 1} trailing'), {"a": 1})
        self.assertIsNone(extract_json_from_text("[1, 2]"))
        self.assertIsNone(extract_json_from_text(""))

    def test_generated_ideas_use_placeholders(self) -> None:
        ideas = parse_generated_ideas({"ideas": [{"summary": 3}, {"title": "Real", "facets": {"audience": "Ops"}}]}, gen=4)

        self.assertEqual(ideas[0].title, "Untitled")
        self.assertEqual(ideas[0].summary, "")
        self.assertEqual(ideas[1].facets.audience, "Ops")
        self.assertTrue(all(idea.gen == 4 and idea.origin == Origin.GENERATED and not idea.parents for idea in ideas))
        self.assertTrue(all(idea.overall_score is None for idea in ideas))

    def test_missing_ideas_array_fails(self) -> None:
        with self.assertRaises(MalformedOutputError):
            parse_generated_ideas({"idea": []}, gen=1)

    def test_critic_patches(self) -> None:
        state = _state_with("A", "B")
        first = state.ideas[0]
        applied = apply_critic_patches(
            state,
            {
                "patches": [
                    {"id": first.id, "scores": {"feasibility": 9}, "overall_score": 6.5, "judge_notes": "ok"},
                    {"id": "unknown-id", "scores": {}},
                ]
            },
        )

        self.assertEqual(applied, 1)
        self.assertEqual(first.scores.feasibility, 9.0)
        self.assertEqual(first.scores.clarity, 0.0)
        self.assertEqual(first.overall_score, 6.5)
        self.assertEqual(first.judge_notes, "ok")
        self.assertIsNone(state.ideas[1].overall_score)

    def test_critic_structural_failures(self) -> None:
        state = _state_with("A")
        with self.assertRaises(MalformedOutputError):
            apply_critic_patches(state, {"scores": []})
        with self.assertRaises(MalformedOutputError):
            apply_critic_patches(state, {"patches": [{"scores": {}}]})

    def test_refine_patch_falls_back_to_original(self) -> None:
        original = Idea.new(1, Origin.GENERATED, "Old", "Old summary", Facets(audience="A", risks="R"))
        patch = parse_refine_patch({"patch": {"summary": "New summary", "facets": {"risks": "Lower"}}}, original)

        self.assertEqual(patch.title, "Old")
        self.assertEqual(patch.summary, "New summary")
        self.assertEqual(patch.facets.audience, "A")
        self.assertEqual(patch.facets.risks, "Lower")

        with self.assertRaises(MalformedOutputError):
            parse_refine_patch({"title": "x"}, original)


if __name__ == "__main__":
    unittest.main()
