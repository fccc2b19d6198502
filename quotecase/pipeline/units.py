from __future__ import annotations

import re
from typing import Any


# A space only separates thousands groups, so "3 5 pallets" reads as 3.
_NUMBER_RE = re.compile(r"-?(?:\d{1,3}(?:[ \xa0\u202f']\d{3})+(?!\d)|\d+)(?:[.,]\d+)*")
_TONNE_RE = re.compile(r"\d\s*(?:t|tons?|tonnes?|mt|tm)\b", re.IGNORECASE)


def parse_number(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)

    match = _NUMBER_RE.search(str(raw))
    if not match:
        return None
    s = re.sub(r"[\s'\xa0\u202f]", "", match.group(0))

    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        head, _, tail = s.rpartition(",")
        if s.count(",") > 1 or (len(tail) == 3 and head.lstrip("-") not in ("", "0")):
            s = s.replace(",", "")
        else:
            s = s.replace(",", ".")
    elif s.count(".") > 1:
        s = s.replace(".", "")

    try:
        return float(s)
    except ValueError:
        return None


def parse_weight_kg(raw: Any) -> float | None:
    value = parse_number(raw)
    if value is None:
        return None
    if isinstance(raw, str) and _TONNE_RE.search(raw):
        return value * 1000
    return value
