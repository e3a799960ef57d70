from __future__ import annotations

import argparse
import sys

from pagetracker.app.runner import run


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="pagetracker")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Load a page with the tracker installed and play its timeline")
    p_run.add_argument("--config", default="config/visit.yaml")

    args = parser.parse_args(argv)

    if args.cmd == "run":
        result = run(args.config)
        # minimal stdout signal
        print(
            f"installed={result.installed} visitor_id={result.visitor_id} "
            f"session_id={result.session_id} events={result.events_sent}"
        )
        for url in result.navigations:
            print(f"navigated={url}")
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
