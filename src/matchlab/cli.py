"""Command line entrypoint: run either engine over JSON files."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from matchlab.config import get_settings
from matchlab.data.schemas import CandidatePickSchema, DraftParlaySchema, MatchMetricsSchema
from matchlab.errors import MatchLabError
from matchlab.logging import configure_logging
from matchlab.markets.catalog import get_catalog
from matchlab.markets.engine import compute_batch
from matchlab.markets.reporting import pivot_probabilities, probabilities_frame, summarize_markets
from matchlab.parlays.constraints import ParlayConstraints, get_profile
from matchlab.parlays.engine import build_parlay_batch, build_parlays_from_pool

logger = logging.getLogger(__name__)


def _read_json(path: Path) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _cmd_catalog(args: argparse.Namespace) -> int:
    catalog = get_catalog(get_settings().catalog_path)
    _emit({"version": catalog.version, "markets": catalog.describe()})
    return 0


def _cmd_markets(args: argparse.Namespace) -> int:
    snapshots = TypeAdapter(list[MatchMetricsSchema]).validate_python(_read_json(args.snapshots))
    batch = compute_batch([s.to_metrics() for s in snapshots], max_workers=args.workers)
    records = batch.records()
    if args.table:
        frame = probabilities_frame(records)
        print(pivot_probabilities(frame).T.to_string())
        _emit(summarize_markets(frame))
    else:
        _emit(
            {
                "results": [record.to_dict() for record in records],
                "failures": [{"fixture_id": f.fixture_id, "error": f.error} for f in batch.failures],
            }
        )
    return 1 if batch.failures else 0


def _load_constraints(args: argparse.Namespace) -> ParlayConstraints:
    if args.profile:
        return get_profile(args.profile)
    return ParlayConstraints.model_validate(_read_json(args.constraints))


def _cmd_parlays(args: argparse.Namespace) -> int:
    catalog = get_catalog(get_settings().catalog_path)
    constraints = _load_constraints(args)
    payload = _read_json(args.pool)
    if args.drafts:
        drafts = TypeAdapter(list[DraftParlaySchema]).validate_python(payload)
        batch = build_parlay_batch(
            [draft.to_draft(catalog) for draft in drafts],
            constraints,
            ranked=args.ranked,
            catalog=catalog,
        )
    else:
        picks = TypeAdapter(list[CandidatePickSchema]).validate_python(payload)
        batch = build_parlays_from_pool([pick.to_pick(catalog) for pick in picks], constraints, catalog=catalog)
    _emit(batch.to_dict())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="matchlab", description="Soccer market and parlay engines")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    catalog = sub.add_parser("catalog", help="List the market catalog")
    catalog.set_defaults(func=_cmd_catalog)

    markets = sub.add_parser("markets", help="Compute market probabilities for snapshots")
    markets.add_argument("snapshots", type=Path, help="JSON list of match snapshots")
    markets.add_argument("--table", action="store_true", help="Print a fixture x market table")
    markets.add_argument("--workers", type=int, default=None, help="Thread pool size")
    markets.set_defaults(func=_cmd_markets)

    parlays = sub.add_parser("parlays", help="Validate drafts or build parlays from a pick pool")
    parlays.add_argument("pool", type=Path, help="JSON list of picks (or drafts with --drafts)")
    source = parlays.add_mutually_exclusive_group(required=True)
    source.add_argument("--profile", help="Named constraint profile")
    source.add_argument("--constraints", type=Path, help="JSON constraint file")
    parlays.add_argument("--drafts", action="store_true", help="Input holds pre-grouped drafts")
    parlays.add_argument("--ranked", action="store_true", help="Keep the input draft order")
    parlays.set_defaults(func=_cmd_parlays)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level or get_settings().log_level)
    try:
        return args.func(args)
    except (MatchLabError, ValidationError, KeyError, OSError, json.JSONDecodeError) as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
