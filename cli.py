"""
CLI entry point for pr_champion. Wires the pipeline: cached fetch -> weekly aggregation -> report
"""

import argparse
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ingest.transport import configure_retry
from normalize.models import Repository
from normalize.util import parse_date, parse_repositories
from pipeline import PRChampion, build_source, DEFAULT_DB_PATH
from report.renderer import render, FORMATS
from scoring.reactions import load_reaction_weights
from scoring.weekly import TieBreak
from storage.store import SQLiteStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _print_cache_stats(store: SQLiteStore):
    _print_json(store.stats())


def _clear_cache(store: SQLiteStore, force: bool) -> bool:
    if not force:
        confirm = input(f"Are you sure you want to clear the cache at {store.path}? This cannot be undone. [y/N]: ")
        if confirm.strip().lower() not in ("y", "yes"):
            print("Aborted cache clear.")
            return False
    store.clear()
    print(f"Cleared cache at {store.path}")
    return True


def _resolve_token(args) -> Optional[str]:
    """CLI flag takes precedence over GITHUB_TOKEN."""
    return args.token or os.getenv('GITHUB_TOKEN') or None


def _resolve_repositories(args, parser) -> List[Repository]:
    """--repos, then --owner/--repo, then GITHUB_REPOS. Duplicates are dropped, order kept."""
    try:
        if args.repos:
            repos = parse_repositories(args.repos.split(','))
        elif args.owner and args.repo:
            repos = [Repository(args.owner.strip(), args.repo.strip())]
        elif os.getenv('GITHUB_REPOS'):
            repos = parse_repositories(os.getenv('GITHUB_REPOS').split(','))
        else:
            repos = []
    except ValueError as ex:
        parser.error(str(ex))
    if not repos:
        parser.error('Specify repositories with --repos owner1/repo1,owner2/repo2, --owner and --repo, or GITHUB_REPOS')
    return list(dict.fromkeys(repos))


def _resolve_window(args, parser, now: Optional[datetime] = None):
    """Return (start, end) as aware UTC datetimes. --days wins over explicit dates."""
    now = now or datetime.now(timezone.utc)
    if args.days and args.days > 0:
        return now - timedelta(days=args.days), now
    try:
        start = parse_date(args.start) if args.start else now - timedelta(days=DEFAULT_WINDOW_DAYS)
        end = parse_date(args.end) if args.end else now
    except ValueError as ex:
        parser.error(str(ex))
    if end < start:
        parser.error('End date must not be before start date')
    return start, end


def write_output(rendered: str, out_file: str = ''):
    """Write the report to a file, or print it when no file is given."""
    if not out_file:
        print(rendered)
        return
    out_dir = os.path.dirname(out_file)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    # newline='' is safe for CSV on Windows and harmless for other formats
    with open(out_file, 'w', encoding='utf-8', newline='') as fh:
        fh.write(rendered)
    print(f"Wrote report to {out_file}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pr-champion',
        description="Rank contributors by merged PRs and reaction-weighted review comments, week by week.",
    )
    parser.add_argument("-t", "--token", type=str, default="", help="GitHub token (or set GITHUB_TOKEN)")
    parser.add_argument("-R", "--repos", type=str, default="", help="Comma-separated owner/repo list (or set GITHUB_REPOS)")
    parser.add_argument("-o", "--owner", type=str, default="", help="Repository owner (single repository mode)")
    parser.add_argument("-r", "--repo", type=str, default="", help="Repository name (single repository mode)")
    parser.add_argument("-s", "--start", type=str, default="", help="Start date (DD/MM/YYYY or YYYY-MM-DD)")
    parser.add_argument("-e", "--end", type=str, default="", help="End date (DD/MM/YYYY or YYYY-MM-DD)")
    parser.add_argument("-d", "--days", type=int, default=0, help="Analyse the last N days instead of --start/--end")
    parser.add_argument("--db", type=str, default=os.getenv("PRCHAMP_DB_PATH", DEFAULT_DB_PATH), help="SQLite cache path (or set PRCHAMP_DB_PATH)")
    parser.add_argument("-c", "--clear-database", action="store_true", help="Clear the cache before running")
    parser.add_argument("--cache-info", action="store_true", help="Show cache statistics and exit")
    parser.add_argument("--force", action="store_true", help="Do not ask for confirmation when clearing the cache")
    parser.add_argument("--output", type=str, choices=FORMATS, default="text", help="Report format")
    parser.add_argument("--out-file", type=str, default="", help="Write the report to this file instead of stdout")
    parser.add_argument("--tie-break", type=str, choices=[t.value for t in TieBreak], default=TieBreak.FIRST_SEEN.value,
                        help="How tied weekly leaders are resolved")
    parser.add_argument("--weights", type=str, default="", help="YAML file with reaction weights (or set PRCHAMP_WEIGHTS)")
    # retry knobs for rate-limited responses; PRCHAMP_MAX_RETRIES / PRCHAMP_BACKOFF_BASE set the defaults
    parser.add_argument("--max-retries", type=int, default=None, help="Attempts per HTTP request on rate limiting")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds between attempts")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log cache hits and other debug output")
    return parser


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.cache_info:
        with SQLiteStore(args.db) as store:
            _print_cache_stats(store)
        return

    configure_retry(max_retries=args.max_retries, backoff_base=args.backoff_base)

    repositories = _resolve_repositories(args, parser)
    start, end = _resolve_window(args, parser)
    try:
        weights = load_reaction_weights(args.weights or None)
    except ValueError as ex:
        parser.error(str(ex))

    token = _resolve_token(args)
    if not token:
        logger.warning("no GitHub token given; unauthenticated requests are heavily rate limited")

    source = build_source(token, args.db)
    try:
        if args.clear_database and not _clear_cache(source.store, force=args.force):
            return
        champion = PRChampion(source, repositories, start, end, tie_break=TieBreak(args.tie_break), weights=weights)
        result = champion.run()
        write_output(render(result, args.output), args.out_file.strip())
    finally:
        source.close()


if __name__ == "__main__":
    main()
