from __future__ import annotations

from enum import Enum


class CaseStatus(str, Enum):
    NEW = "NEW"
    FACTS_PARTIAL = "FACTS_PARTIAL"
    NEED_INFO = "NEED_INFO"
    READY_TO_PRICE = "READY_TO_PRICE"
    PRICING_RUNNING = "PRICING_RUNNING"
    PRICED_DRAFT = "PRICED_DRAFT"
    HUMAN_REVIEW = "HUMAN_REVIEW"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    ARCHIVED = "ARCHIVED"


class GapStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class SourceType(str, Enum):
    MANUAL_INPUT = "manual_input"
    ATTACHMENT_EXTRACTED = "attachment_extracted"
    DOCUMENT_REGEX = "document_regex"
    HS_RESOLUTION = "hs_resolution"
    KNOWN_CONTACT_MATCH = "known_contact_match"
    AI_EXTRACTION = "ai_extraction"
    AI_ASSUMPTION = "ai_assumption"


FROZEN_STATUSES: frozenset[CaseStatus] = frozenset(
    {CaseStatus.SENT, CaseStatus.ACCEPTED, CaseStatus.REJECTED, CaseStatus.ARCHIVED}
)


ALLOWED_TRANSITIONS: dict[CaseStatus, set[CaseStatus]] = {
    CaseStatus.NEW: {CaseStatus.FACTS_PARTIAL, CaseStatus.NEED_INFO, CaseStatus.READY_TO_PRICE, CaseStatus.ARCHIVED},
    CaseStatus.FACTS_PARTIAL: {CaseStatus.NEED_INFO, CaseStatus.READY_TO_PRICE, CaseStatus.HUMAN_REVIEW, CaseStatus.ARCHIVED},
    CaseStatus.NEED_INFO: {CaseStatus.FACTS_PARTIAL, CaseStatus.READY_TO_PRICE, CaseStatus.HUMAN_REVIEW, CaseStatus.ARCHIVED},
    CaseStatus.READY_TO_PRICE: {
        CaseStatus.FACTS_PARTIAL,
        CaseStatus.NEED_INFO,
        CaseStatus.PRICING_RUNNING,
        CaseStatus.HUMAN_REVIEW,
        CaseStatus.ARCHIVED,
    },
    CaseStatus.PRICING_RUNNING: {CaseStatus.PRICED_DRAFT, CaseStatus.READY_TO_PRICE, CaseStatus.NEED_INFO},
    CaseStatus.PRICED_DRAFT: {CaseStatus.HUMAN_REVIEW, CaseStatus.SENT, CaseStatus.NEED_INFO, CaseStatus.FACTS_PARTIAL},
    CaseStatus.HUMAN_REVIEW: {CaseStatus.PRICED_DRAFT, CaseStatus.SENT, CaseStatus.NEED_INFO, CaseStatus.READY_TO_PRICE},
    CaseStatus.SENT: {CaseStatus.ACCEPTED, CaseStatus.REJECTED, CaseStatus.ARCHIVED},
    CaseStatus.ACCEPTED: {CaseStatus.ARCHIVED},
    CaseStatus.REJECTED: {CaseStatus.ARCHIVED},
    CaseStatus.ARCHIVED: set(),
}
