"""CLI entrypoint for inspecting stored runs: list, show, validate, tree, export."""

from __future__ import annotations

import argparse
import sys

from evoidea.reporting import EXPORT_PRESETS, export_run, list_runs, render_tree, show_run, validate_run
from evoidea.storage import RunStorage


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect idea evolution runs")
    parser.add_argument("--out-dir", default="runs", help="Directory holding one folder per run")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List runs with status and best score")

    show = sub.add_parser("show", help="Show the final result of a run")
    show.add_argument("--run-id", required=True)
    show.add_argument("--format", default="md", choices=["md", "json"])

    validate = sub.add_parser("validate", help="Check run artifacts and idea invariants")
    validate.add_argument("--run-id", required=True)

    tree = sub.add_parser("tree", help="Render idea lineage")
    tree.add_argument("--run-id", required=True)
    tree.add_argument("--format", default="ascii", choices=["ascii", "mermaid"])

    export = sub.add_parser("export", help="Render a completed run with a markdown preset")
    export.add_argument("--run-id", required=True)
    export.add_argument("--preset", required=True, choices=sorted(EXPORT_PRESETS))

    args = parser.parse_args()
    storage = RunStorage(args.out_dir)

    if args.command == "list":
        print(list_runs(storage))
    elif args.command == "show":
        print(show_run(storage, args.run_id, fmt=args.format))
    elif args.command == "validate":
        problems = validate_run(storage, args.run_id)
        if not problems:
            print(f"[Validate] {args.run_id}: OK")
            return
        print(f"[Validate] {args.run_id}: {len(problems)} problem(s)")
        for problem in problems:
            print(f"  - {problem}")
        sys.exit(1)
    elif args.command == "tree":
        print(render_tree(storage.load_state(args.run_id), fmt=args.format))
    else:
        path = export_run(storage, args.run_id, args.preset)
        print(f"[Export] {args.preset} -> {path}")


if __name__ == "__main__":
    main()
