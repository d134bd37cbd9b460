#!/usr/bin/env python
"""
Run one search from a JSON request file.

Usage:
    python run_search.py --user alice --request request.json
    python run_search.py --user admin --request request.json --unlimited
"""
import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from autoval.config import setup_logging
from autoval.service import SearchService


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Search used-car listings across sources")
    parser.add_argument("--user", required=True, help="Identity the search is billed to")
    parser.add_argument("--request", required=True, type=Path, help="JSON file with criteria, clientProfile, requestEnrichment")
    parser.add_argument("--unlimited", action="store_true", help="Treat the identity as unlimited tier")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    payload = json.loads(args.request.read_text(encoding="utf-8"))
    result = SearchService.from_config().handle(args.user, payload, unlimited=args.unlimited)

    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    return 1 if "error" in result else 0


if __name__ == "__main__":
    sys.exit(main())
