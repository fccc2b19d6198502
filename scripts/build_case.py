#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json

from quotecase.config import configure_logging
from quotecase.services.case_service import CaseService


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one analysis pass over a quotation case.")
    parser.add_argument("case_id")
    parser.add_argument("--user", required=True, help="id of the case owner or assignee")
    parser.add_argument("--force-refresh", action="store_true", help="re-extract even if input is unchanged")
    parser.add_argument("--show-facts", action="store_true")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()

    configure_logging(args.log_level)
    service = CaseService()
    result = service.build_case_puzzle(args.case_id, args.user, force_refresh=args.force_refresh)
    print(json.dumps(result.model_dump(), indent=2))

    if args.show_facts:
        snapshot = service.get_case_facts(args.case_id, args.user)
        print(json.dumps(snapshot.as_dict(), indent=2, default=str, ensure_ascii=False))
        gaps = service.list_open_gaps(args.case_id, args.user)
        for gap in gaps:
            flag = "BLOCKING" if gap.is_blocking else "optional"
            print(f"- [{flag}] {gap.key}: {gap.question_en}")


if __name__ == "__main__":
    main()
