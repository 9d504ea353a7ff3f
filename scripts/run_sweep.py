from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv(PROJECT_ROOT / ".env")

from rentcore.core.logging_config import configure_logging
from rentcore.tasks.sweeps import DEFAULT_CHUNK_SIZE, SWEEPS, Sweeper
from rentcore.utils.dates import parse_month


def _log(message: str) -> None:
    print(f"[RENTCORE-SWEEP] {message}")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one lifecycle sweep and enqueue its jobs.")
    parser.add_argument("sweep", choices=SWEEPS)
    parser.add_argument("--chunk", type=int, default=DEFAULT_CHUNK_SIZE, help="rows fetched per query")
    parser.add_argument("--dry-run", action="store_true", help="count candidates without enqueueing")
    parser.add_argument("--target", help="billing month for generate_monthly, YYYY-MM")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging()

    sweeper = Sweeper()
    if args.sweep == "generate_monthly":
        target = parse_month(args.target) if args.target else None
        report = sweeper.generate_monthly(target=target, chunk_size=args.chunk, dry_run=args.dry_run)
    else:
        if args.target:
            _log(f"--target is ignored by {args.sweep}")
        report = getattr(sweeper, args.sweep)(chunk_size=args.chunk, dry_run=args.dry_run)

    prefix = "[dry-run] " if args.dry_run else ""
    _log(f"{prefix}{args.sweep}: queued {report.queued}")
    print(json.dumps(report.as_dict()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
