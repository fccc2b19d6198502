#!/usr/bin/env python3
"""Load a tariff nomenclature CSV (code;description) into the hs_codes table."""
from __future__ import annotations

import argparse
import csv
import re
import sys
from pathlib import Path

from quotecase.infra.supabase_client import get_supabase_client


def read_rows(path: Path, delimiter: str) -> list[dict[str, str]]:
    rows: dict[str, dict[str, str]] = {}
    with path.open(newline="", encoding="utf-8-sig") as fh:
        for record in csv.reader(fh, delimiter=delimiter):
            if len(record) < 2:
                continue
            code = re.sub(r"\D", "", record[0])
            if len(code) != 10:
                continue
            rows[code] = {"code": code, "description": record[1].strip()}
    return list(rows.values())


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("csv_path", type=Path)
    parser.add_argument("--delimiter", default=";")
    parser.add_argument("--batch-size", type=int, default=500)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    rows = read_rows(args.csv_path, args.delimiter)
    print(f"parsed {len(rows)} ten-digit codes from {args.csv_path}")
    if args.dry_run or not rows:
        return 0

    client, err = get_supabase_client()
    if client is None:
        print(f"Supabase unavailable: {err}", file=sys.stderr)
        return 1

    for start in range(0, len(rows), args.batch_size):
        batch = rows[start : start + args.batch_size]
        client.table("hs_codes").upsert(batch, on_conflict="code").execute()
        print(f"upserted {start + len(batch)}/{len(rows)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
