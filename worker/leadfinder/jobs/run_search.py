"""CLI job to run a lead search and print the merged results as JSON."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from leadfinder.core.config import ConfigError, get_settings
from leadfinder.core.planner import CATEGORY_CUSTOM, Scope, SearchValidationError
from leadfinder.core.progress import ProgressEvent
from leadfinder.core.search import get_orchestrator
from leadfinder.etl.transform import filter_by_address, filter_with_phone, filter_with_website

logger = logging.getLogger(__name__)


def log_progress(event: ProgressEvent) -> None:
    logger.info(
        "[%s] %s (variant %d/%d, found=%d, api_calls=%d)",
        event.phase.value,
        event.message,
        event.current,
        event.total,
        event.found,
        event.api_calls,
    )


def run_search_job(
    *,
    keyword: str,
    location: str,
    category: str = CATEGORY_CUSTOM,
    scope: str = Scope.CITY.value,
    sub_area: str = "",
    force_refresh: bool = False,
    with_phone: bool = False,
    with_website: bool = False,
    area: str = "",
) -> dict:
    orchestrator = get_orchestrator()
    response = orchestrator.search(
        keyword,
        category,
        location,
        scope,
        sub_area,
        log_progress,
        force_refresh=force_refresh,
    )

    leads = response.results
    if with_phone:
        leads = filter_with_phone(leads)
    if with_website:
        leads = filter_with_website(leads)
    if area:
        leads = filter_by_address(leads, area)

    payload = response.to_dict()
    payload["results"] = [lead.to_dict() for lead in leads]
    payload["count"] = len(leads)
    logger.info(
        "Completed search: results=%d api_calls=%d cached=%s",
        len(leads),
        response.api_calls,
        response.cached,
    )
    return payload


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Find businesses for a keyword in a location")
    parser.add_argument("--keyword", required=True, help="What to search for, e.g. 'bakery'")
    parser.add_argument("--location", required=True, help="Free-text location, e.g. 'Pune'")
    parser.add_argument(
        "--category",
        default=CATEGORY_CUSTOM,
        help="Business category, or 'All' / 'Custom' for the built-in query sets",
    )
    parser.add_argument(
        "--scope",
        choices=[scope.value for scope in Scope],
        default=Scope.CITY.value,
        help="Search the whole city or a sub-area of it",
    )
    parser.add_argument("--sub-area", dest="sub_area", default="", help="Neighbourhood, market or street")
    parser.add_argument("--force-refresh", dest="force_refresh", action="store_true", help="Ignore cached results")
    parser.add_argument("--with-phone", dest="with_phone", action="store_true", help="Only leads with a phone number")
    parser.add_argument("--with-website", dest="with_website", action="store_true", help="Only leads with a website")
    parser.add_argument("--area", default="", help="Only leads whose address mentions this area")
    parser.add_argument(
        "--clear-cache",
        dest="clear_cache",
        action="store_true",
        help="Expire the cached results for keyword/location instead of searching",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        get_settings()
        if args.clear_cache:
            cleared = get_orchestrator().clear_cache(args.keyword, args.location)
            print(json.dumps({"cleared": cleared}))
            return 0

        payload = run_search_job(
            keyword=args.keyword,
            location=args.location,
            category=args.category,
            scope=args.scope,
            sub_area=args.sub_area,
            force_refresh=args.force_refresh,
            with_phone=args.with_phone,
            with_website=args.with_website,
            area=args.area,
        )
    except (ConfigError, SearchValidationError) as exc:
        logger.error("Invalid search: %s", exc)
        return 2
    except Exception as exc:  # noqa: BLE001
        logger.error("Search failed: %s", exc, exc_info=True)
        return 1

    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
