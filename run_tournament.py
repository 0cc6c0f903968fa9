"""CLI entrypoint for tournaments and portable preference profiles."""

from __future__ import annotations

import argparse
from pathlib import Path

from evoidea.preference_fit import export_profile, import_profile, load_profile, profile_summary
from evoidea.reporting import show_preferences
from evoidea.storage import RunStorage
from evoidea.tournament import TournamentMode, run_tournament


def main() -> None:
    parser = argparse.ArgumentParser(description="Compare a finished run's survivors and learn criterion weights")
    parser.add_argument("--out-dir", default="runs", help="Directory holding one folder per run")
    sub = parser.add_subparsers(dest="command", required=True)

    tournament = sub.add_parser("tournament", help="Rank survivors automatically or by pairwise choices")
    tournament.add_argument("--run-id", required=True)
    tournament.add_argument(
        "--mode",
        default=TournamentMode.PAIRWISE.value,
        choices=[mode.value for mode in TournamentMode],
        help="auto: rank by score; exhaustive: every pair; pairwise: up to 2n closest-Elo pairs",
    )

    export = sub.add_parser("export", help="Write a portable profile with fitted weights")
    export.add_argument("--run-id", required=True)
    export.add_argument("--output", default=None, help="Profile path (default: <run dir>/profile.json)")

    imp = sub.add_parser("import", help="Seed a run's preferences from a profile")
    imp.add_argument("--run-id", required=True)
    imp.add_argument("--file", required=True)

    show = sub.add_parser("show", help="Show a run's preferences or a profile file")
    group = show.add_mutually_exclusive_group(required=True)
    group.add_argument("--run-id")
    group.add_argument("--file")

    args = parser.parse_args()
    storage = RunStorage(args.out_dir)

    if args.command == "tournament":
        run_tournament(storage, args.run_id, mode=TournamentMode(args.mode))
    elif args.command == "export":
        output = args.output or str(Path(storage.run_dir(args.run_id)) / "profile.json")
        export_profile(storage, args.run_id, output)
    elif args.command == "import":
        import_profile(storage, args.file, args.run_id)
    elif args.file:
        print(profile_summary(load_profile(args.file)))
    else:
        print(show_preferences(storage, args.run_id))


if __name__ == "__main__":
    main()
