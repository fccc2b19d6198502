"""Source authority ranking used to arbitrate concurrent fact writes."""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from quotecase.domain.states import SourceType


SOURCE_RANK: Mapping[SourceType, int] = MappingProxyType(
    {
        SourceType.MANUAL_INPUT: 100,
        SourceType.ATTACHMENT_EXTRACTED: 80,
        SourceType.DOCUMENT_REGEX: 80,
        SourceType.HS_RESOLUTION: 80,
        SourceType.KNOWN_CONTACT_MATCH: 60,
        SourceType.AI_EXTRACTION: 40,
        SourceType.AI_ASSUMPTION: 20,
    }
)

# Sources the assumption engine must never overwrite.
PROTECTED_SOURCES: frozenset[SourceType] = frozenset(
    {
        SourceType.MANUAL_INPUT,
        SourceType.ATTACHMENT_EXTRACTED,
        SourceType.AI_EXTRACTION,
        SourceType.DOCUMENT_REGEX,
        SourceType.HS_RESOLUTION,
        SourceType.KNOWN_CONTACT_MATCH,
    }
)


class SupersedeOutcome(str, Enum):
    INSERTED = "inserted"
    SUPERSEDED = "superseded"
    UNCHANGED = "unchanged"
    REJECTED = "rejected"


def rank_of(source: SourceType | str) -> int:
    return SOURCE_RANK[SourceType(source)]


def weakest_source(*sources: SourceType) -> SourceType:
    return min(sources, key=rank_of)


def decide_supersession(
    *,
    current_source: SourceType | None,
    current_value: Any,
    new_source: SourceType,
    new_value: Any,
) -> SupersedeOutcome:
    """Decide what a write of ``new_value`` from ``new_source`` does to the current row.

    Rules:
    - no current row: insert.
    - a strictly higher-ranked current row is kept, unless the writer is an operator.
    - an identical value is a no-op unless the writer ranks strictly higher, in
      which case the provenance upgrade gets its own history row.
    """
    if current_source is None:
        return SupersedeOutcome.INSERTED

    current_rank = rank_of(current_source)
    new_rank = rank_of(new_source)

    if current_value == new_value:
        if new_rank > current_rank:
            return SupersedeOutcome.SUPERSEDED
        return SupersedeOutcome.UNCHANGED

    if new_source != SourceType.MANUAL_INPUT and current_rank > new_rank:
        return SupersedeOutcome.REJECTED

    return SupersedeOutcome.SUPERSEDED
