"""CLI entrypoint for starting or resuming an idea evolution run."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from openai import OpenAI

from evoidea.config import (
    DEFAULT_MODEL,
    RunConfig,
    config_section,
    explicit_flags,
    first_env,
    load_env_file,
    load_experiment_config,
    resolve_api_timeout,
)
from evoidea.discovery import DiscoveryAnswers, constraints_to_prompt, derive_constraints
from evoidea.evolution_loop import EvolutionEngine
from evoidea.llm import LLMProvider, get_provider
from evoidea.preference_fit import load_profile
from evoidea.scoring import ScoringWeights
from evoidea.storage import RunStorage


def build_provider(mode: str, model: str, temperature: float, args: argparse.Namespace) -> LLMProvider:
    """Resolve the mode string to a provider once, building an OpenAI client when needed."""

    if mode != "openai":
        return get_provider(mode)

    base_url = args.base_url or first_env("OPENAI_BASE_URL", "OPENAI_API_BASE")
    api_key = args.api_key or first_env("OPENAI_API_KEY", "API_KEY")
    api_timeout = resolve_api_timeout(args.api_timeout)
    if not api_key:
        raise ValueError("Please provide --api-key or set OPENAI_API_KEY/API_KEY")

    client_kwargs: dict[str, Any] = {"api_key": api_key, "timeout": api_timeout}
    if base_url:
        client_kwargs["base_url"] = base_url
    return get_provider(mode, client=OpenAI(**client_kwargs), model=model, temperature=temperature)


def main() -> None:
    parser = argparse.ArgumentParser(description="Evolve ideas for a prompt, or resume a stored run")
    default_config_path = "configs/evolution.yaml"
    parser.add_argument(
        "--config",
        default=default_config_path,
        help=f"Path to YAML/JSON experiment config (default: {default_config_path})",
    )
    parser.add_argument("--no-config", action="store_true", help="Ignore config file and use only CLI args + env vars")
    parser.add_argument("--prompt", default=None, help="Idea brief to evolve against")
    parser.add_argument("--mode", default="mock", choices=["mock", "openai"], help="LLM provider")
    parser.add_argument("--model", default=None, help="Chat model for openai mode")
    parser.add_argument("--temperature", type=float, default=0.7)
    parser.add_argument("--max-rounds", type=int, default=6)
    parser.add_argument("--population-size", type=int, default=12)
    parser.add_argument("--elite-count", type=int, default=4)
    parser.add_argument("--score-threshold", type=float, default=8.7)
    parser.add_argument("--stagnation-patience", type=int, default=2)
    parser.add_argument("--refine-top-k", type=int, default=2)
    parser.add_argument("--out-dir", default="runs", help="Directory holding one folder per run")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--weights-profile", default=None, help="Portable preference profile whose fitted weights replace the scoring weights")
    parser.add_argument("--resume", default=None, metavar="RUN_ID", help="Continue a stored run instead of starting a new one")
    parser.add_argument("--extra-rounds", type=int, default=None, help="With --resume: allow this many rounds beyond the current one")
    parser.add_argument("--skills", default=None, help="Comma-separated skills (discovery constraints)")
    parser.add_argument("--time-available", default=None, choices=["4-8h", "10-16h", "20h+"])
    parser.add_argument("--business-model", default=None, choices=["saas", "api", "one-time", "marketplace"])
    parser.add_argument("--target-audience", default=None, choices=["developers", "business", "creators", "freelancers"])
    parser.add_argument("--tech-approach", default=None, choices=["llm-based", "llm-assisted", "no-llm"])
    parser.add_argument("--env-file", default=".env", help="Path to env file (default: .env)")
    parser.add_argument("--base-url", default=None, help="Optional OpenAI-compatible base URL")
    parser.add_argument("--api-key", default=None, help="API key (fallback to OPENAI_API_KEY)")
    parser.add_argument("--api-timeout", type=float, default=None, help="Per-request API timeout in seconds")
    args = parser.parse_args()

    config_doc = (
        {}
        if args.no_config
        else load_experiment_config(args.config, allow_missing=(args.config == default_config_path))
    )
    run_cfg = config_section(config_doc, "run")
    evolution_cfg = config_section(config_doc, "evolution")
    scoring_cfg = config_section(config_doc, "scoring")
    discovery_cfg = config_section(config_doc, "discovery")

    given = explicit_flags(sys.argv[1:])

    def resolve_cli_or_config(arg_name: str, config_value: Any) -> Any:
        if arg_name in given or config_value is None:
            return getattr(args, arg_name)
        return config_value

    load_env_file(args.env_file)

    out_dir = str(resolve_cli_or_config("out_dir", run_cfg.get("out_dir")))
    storage = RunStorage(out_dir)

    if args.resume:
        stored = storage.load_config(args.resume)
        llm = build_provider(stored.mode, stored.model, stored.temperature, args)
        engine = EvolutionEngine.resume(args.resume, storage, llm, extra_rounds=args.extra_rounds)
        result = engine.run()
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
        return

    prompt = resolve_cli_or_config("prompt", run_cfg.get("prompt"))
    if not prompt:
        raise ValueError("Please provide --prompt or set run.prompt in the config file")

    discovery: dict[str, Any] = dict(discovery_cfg)
    for key in ("skills", "time_available", "business_model", "target_audience", "tech_approach"):
        value = getattr(args, key)
        if value is not None:
            discovery[key] = value
    if discovery:
        missing = [
            key
            for key in ("time_available", "business_model", "target_audience", "tech_approach")
            if not discovery.get(key)
        ]
        if missing:
            raise ValueError(f"Discovery constraints need all of: {', '.join(missing)}")
        constraints = derive_constraints(DiscoveryAnswers.from_dict(discovery))
        prompt = f"{prompt}\n\n{constraints_to_prompt(constraints)}"

    weights = ScoringWeights.from_dict(scoring_cfg.get("weights"))
    profile_path = resolve_cli_or_config("weights_profile", scoring_cfg.get("profile"))
    if profile_path:
        weights = ScoringWeights.from_profile(load_profile(str(profile_path)))
        print(f"[Config] scoring weights loaded from profile {profile_path}")

    mode = str(resolve_cli_or_config("mode", run_cfg.get("mode")))
    model = (
        resolve_cli_or_config("model", run_cfg.get("model"))
        or first_env("EVOIDEA_MODEL", "OPENAI_MODEL")
        or DEFAULT_MODEL
    )
    config = RunConfig(
        prompt=str(prompt),
        mode=mode,
        model=str(model),
        temperature=float(resolve_cli_or_config("temperature", run_cfg.get("temperature"))),
        max_rounds=int(resolve_cli_or_config("max_rounds", evolution_cfg.get("max_rounds"))),
        population_size=int(resolve_cli_or_config("population_size", evolution_cfg.get("population_size"))),
        elite_count=int(resolve_cli_or_config("elite_count", evolution_cfg.get("elite_count"))),
        score_threshold=float(resolve_cli_or_config("score_threshold", evolution_cfg.get("score_threshold"))),
        stagnation_patience=int(
            resolve_cli_or_config("stagnation_patience", evolution_cfg.get("stagnation_patience"))
        ),
        refine_top_k=int(resolve_cli_or_config("refine_top_k", evolution_cfg.get("refine_top_k"))),
        scoring_weights=weights,
        out_dir=out_dir,
        seed=int(resolve_cli_or_config("seed", run_cfg.get("seed"))),
    )
    if config.elite_count >= config.population_size:
        print(
            f"[Warn] elite_count={config.elite_count} >= population_size={config.population_size}; "
            "selection keeps only the elite and never samples the mid-rank band"
        )

    llm = build_provider(config.mode, config.model, config.temperature, args)
    engine = EvolutionEngine.create(config, llm, storage)
    result = engine.run()
    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
