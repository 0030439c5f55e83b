"""CLI job to import a Google Takeout archive and persist its lists."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from takeout_import.core.config import ConfigError, get_settings
from takeout_import.core.db import init_pool
from takeout_import.core.errors import FatalJobError
from takeout_import.jobs.controller import build_controller
from takeout_import.models import ListSelection

logger = logging.getLogger(__name__)


def run_import_job(
    *,
    archive: str,
    user_id: str,
    lists: Optional[List[str]] = None,
    skip_lookup: bool = False,
    remove_archive: bool = False,
) -> int:
    if not user_id.strip():
        raise ValueError("A user id is required")

    settings = get_settings()
    init_pool()
    controller = build_controller(settings, background=False)
    selections = [ListSelection(name=name) for name in lists or []]

    try:
        result = controller.process(
            archive,
            user_id,
            selections=selections,
            skip_lookup=skip_lookup,
            remove_archive=remove_archive,
        )
    finally:
        controller.shutdown()

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def run_analyze_job(*, archive: str) -> int:
    settings = get_settings()
    controller = build_controller(settings, background=False)
    try:
        lists = controller.analyze(archive)
    except FatalJobError as exc:
        logger.error("Archive analysis failed: %s", exc)
        return 1
    finally:
        controller.shutdown()

    print(json.dumps({"totalLists": len(lists), "lists": lists}, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import a Google Takeout archive of saved places")
    parser.add_argument("archive", help="Path to the Takeout ZIP file")
    parser.add_argument("--user", dest="user_id", help="Owner of the imported lists")
    parser.add_argument(
        "--list",
        dest="lists",
        action="append",
        metavar="NAME",
        help="Only import the named saved list (repeatable)",
    )
    parser.add_argument(
        "--no-geocode",
        dest="skip_lookup",
        action="store_true",
        help="Skip geocoding and place every place approximately",
    )
    parser.add_argument("--analyze", action="store_true", help="List the archive's lists without importing")
    parser.add_argument(
        "--remove-archive",
        action="store_true",
        help="Delete the archive once the import finishes",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.analyze and not args.user_id:
        parser.error("--user is required unless --analyze is given")

    try:
        if args.analyze:
            code = run_analyze_job(archive=args.archive)
        else:
            code = run_import_job(
                archive=args.archive,
                user_id=args.user_id,
                lists=args.lists,
                skip_lookup=args.skip_lookup,
                remove_archive=args.remove_archive,
            )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(2)
    sys.exit(code)


if __name__ == "__main__":
    main()
