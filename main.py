"""CLI entrypoint for the resilient paginated harvester."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from dataclasses import replace

from dotenv import load_dotenv

from batch import harvest_many
from config import HarvestConfig, api_url_from_env, credential_from_env
from csv_sink import DEFAULT_CSV_OUTPUT_PATH, write_records
from errors import HarvestError
from models import QuerySpec, RecordType, SortMode
from request_builder import build_request
from result_cache import ResultCache


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Harvest paginated search results into a CSV file")
    parser.add_argument(
        "--keyword",
        action="append",
        required=True,
        help="Search keyword; repeat the flag to harvest several keywords concurrently",
    )
    parser.add_argument(
        "--record-type",
        choices=[rt.value for rt in RecordType],
        default=RecordType.SEARCH_RESULT.value,
        help="Schema used to normalize upstream items",
    )
    parser.add_argument("--start-page", type=int, default=1, help="First page to fetch (resume point)")
    parser.add_argument("--page-limit", type=int, default=None, help="Maximum pages per keyword (overrides HARVEST_PAGE_LIMIT)")
    parser.add_argument("--page-size", type=int, default=None, help="Items per page, if the upstream supports it")
    parser.add_argument("--sort", choices=[mode.value for mode in SortMode], default=SortMode.RELEVANCE.value)
    parser.add_argument(
        "--filter",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra query filter; may be repeated",
    )
    parser.add_argument(
        "--output",
        default=None,
        help=f"CSV output path (default: $CSV_OUTPUT_PATH, read after .env is loaded, else {DEFAULT_CSV_OUTPUT_PATH})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only log the requests that would be sent, without network calls",
    )
    return parser.parse_args(argv)


def _parse_filters(raw_filters: list[str]) -> dict[str, str]:
    filters: dict[str, str] = {}
    for raw in raw_filters:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise SystemExit(f"Invalid --filter {raw!r}: expected KEY=VALUE")
        filters[key.strip()] = value.strip()
    return filters


def run(args: argparse.Namespace) -> int:
    """Run one harvest cycle. Returns the process exit code."""
    config = HarvestConfig.from_env()
    if args.page_limit is not None:
        config = replace(config, page_limit=args.page_limit)

    base_url = api_url_from_env()
    credential = credential_from_env()
    filters = _parse_filters(args.filter)
    specs = [
        QuerySpec(
            keyword=keyword,
            page=args.start_page,
            filters=filters,
            sort=SortMode(args.sort),
            page_size=args.page_size,
        )
        for keyword in args.keyword
    ]

    if args.dry_run:
        for spec in specs:
            request = build_request(spec, credential, base_url)
            logging.info("[dry-run] Would request %s %s params=%s", request.method, request.url, request.params)
        return 0

    cancel_event = threading.Event()
    outcomes = harvest_many(
        specs,
        credential,
        config,
        args.record_type,
        base_url=base_url,
        cache=ResultCache(),
        cancel_event=cancel_event,
    )

    written = 0
    failed = 0
    for outcome in outcomes:
        if not outcome.ok:
            failed += 1
            logging.error("Keyword %r failed: %s", outcome.spec.keyword, outcome.error)
            continue
        result = outcome.result
        for failure in result.failures:
            logging.warning("Keyword %r page %s failed: %s", outcome.spec.keyword, failure.page, failure.error)
        if result.next_page is not None:
            logging.info("Keyword %r stopped early; resume with --start-page %s", outcome.spec.keyword, result.next_page)
        written += write_records(result.records, args.record_type, keyword=outcome.spec.keyword, csv_path=args.output)

    logging.info("Run complete. keywords=%s written=%s failed=%s", len(outcomes), written, failed)
    return 1 if failed else 0


def main() -> None:
    """Initialize config and execute the harvest."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args()

    try:
        exit_code = run(args)
    except KeyboardInterrupt:
        logging.warning("Interrupted; pending retries were cancelled")
        exit_code = 130
    except HarvestError as exc:
        logging.exception("Harvest aborted: %s", exc)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
