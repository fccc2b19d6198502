from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import re
from threading import RLock
from typing import Any
from uuid import uuid4

from quotecase.config import settings
from quotecase.domain.authority import SupersedeOutcome, decide_supersession
from quotecase.domain.models import (
    CandidateFact,
    Fact,
    FactSnapshot,
    Gap,
    SupersedeResult,
    TimelineEvent,
    plain,
    value_to_columns,
)
from quotecase.domain.states import CaseStatus, GapStatus
from quotecase.errors import FactPersistenceError, RepositoryError
from quotecase.infra.supabase_client import get_supabase_client


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_unique_violation(message: str) -> bool:
    msg = message.lower()
    return "23505" in msg or "duplicate key" in msg


def _digits(code: str) -> str:
    return re.sub(r"\D", "", str(code or ""))


class QuoteRepository:
    def get_case(self, case_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def update_case(self, case_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def list_emails(self, thread_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def list_attachments(self, email_ids: list[str]) -> list[dict[str, Any]]:
        raise NotImplementedError

    def supersede_fact(self, case_id: str, candidate: CandidateFact) -> SupersedeResult:
        raise NotImplementedError

    def retract_fact(self, case_id: str, key: str) -> str | None:
        raise NotImplementedError

    def get_current_facts(self, case_id: str) -> FactSnapshot:
        raise NotImplementedError

    def list_fact_history(self, case_id: str, key: str) -> list[Fact]:
        raise NotImplementedError

    def list_open_gaps(self, case_id: str) -> list[Gap]:
        raise NotImplementedError

    def open_gap(self, gap: Gap) -> tuple[Gap, bool]:
        raise NotImplementedError

    def resolve_gap(self, gap_id: str, *, resolved_by_fact_id: str | None, reason: str) -> Gap:
        raise NotImplementedError

    def set_gap_blocking(self, gap_id: str, is_blocking: bool) -> Gap:
        raise NotImplementedError

    def create_timeline_event(self, event: TimelineEvent) -> dict[str, Any]:
        raise NotImplementedError

    def list_timeline_events(self, case_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def find_hs_exact(self, code: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def find_hs_by_prefix(self, prefix: str, limit: int = 20) -> list[dict[str, Any]]:
        raise NotImplementedError

    def find_known_contact(self, domain: str) -> dict[str, Any] | None:
        raise NotImplementedError


class InMemoryRepository(QuoteRepository):
    def __init__(self) -> None:
        self._lock = RLock()
        self._cases: dict[str, dict[str, Any]] = {}
        self._emails: list[dict[str, Any]] = []
        self._attachments: list[dict[str, Any]] = []
        self._facts: list[Fact] = []
        self._gaps: dict[str, Gap] = {}
        self._events: list[dict[str, Any]] = []
        self._hs_codes: dict[str, dict[str, Any]] = {}
        self._contacts: dict[str, dict[str, Any]] = {}

    # Seeding helpers used by tests, scripts and the API bootstrap.

    def add_case(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            now = _utc_now()
            item = {
                "id": row.get("id") or str(uuid4()),
                "status": CaseStatus.NEW.value,
                "request_type": None,
                "facts_count": 0,
                "gaps_count": 0,
                "puzzle_completeness": 0,
                "input_fingerprint": None,
                "created_at": now,
                "updated_at": now,
                **row,
            }
            self._cases[str(item["id"])] = item
            return dict(item)

    def add_email(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = {"id": row.get("id") or str(uuid4()), "sent_at": row.get("sent_at") or _utc_now(), **row}
            self._emails.append(item)
            return dict(item)

    def add_attachment(self, row: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = {"id": row.get("id") or str(uuid4()), **row}
            self._attachments.append(item)
            return dict(item)

    def update_attachment(self, attachment_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            for item in self._attachments:
                if str(item["id"]) == str(attachment_id):
                    item.update(updates)
                    return dict(item)
        raise RepositoryError(f"Attachment not found: {attachment_id}")

    def add_hs_code(self, code: str, description: str = "") -> None:
        with self._lock:
            digits = _digits(code)
            self._hs_codes[digits] = {"code": digits, "description": description}

    def add_known_contact(self, domain: str, client_code: str, company_name: str = "") -> None:
        with self._lock:
            self._contacts[domain.lower()] = {
                "email_domain": domain.lower(),
                "client_code": client_code,
                "company_name": company_name,
            }

    def get_case(self, case_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._cases.get(case_id)
            return dict(row) if row else None

    def update_case(self, case_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            existing = self._cases.get(case_id)
            if not existing:
                raise RepositoryError(f"Case not found: {case_id}")
            existing.update(updates)
            existing["updated_at"] = _utc_now()
            return dict(existing)

    def list_emails(self, thread_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = [e for e in self._emails if str(e.get("thread_id")) == str(thread_id)]
            rows.sort(key=lambda r: str(r.get("sent_at", "")))
            return [dict(r) for r in rows]

    def list_attachments(self, email_ids: list[str]) -> list[dict[str, Any]]:
        wanted = {str(i) for i in email_ids}
        with self._lock:
            return [dict(a) for a in self._attachments if str(a.get("email_id")) in wanted]

    def _current(self, case_id: str, key: str) -> Fact | None:
        for fact in self._facts:
            if fact.case_id == case_id and fact.key == key and fact.is_current:
                return fact
        return None

    def supersede_fact(self, case_id: str, candidate: CandidateFact) -> SupersedeResult:
        # The lock spans read-decide-write so two writers on one key serialize.
        with self._lock:
            current = self._current(case_id, candidate.key)
            outcome = decide_supersession(
                current_source=current.source_type if current else None,
                current_value=plain(current.value) if current else None,
                new_source=candidate.source_type,
                new_value=plain(candidate.value),
            )
            if outcome in (SupersedeOutcome.REJECTED, SupersedeOutcome.UNCHANGED):
                return SupersedeResult(
                    fact_id=current.id if current else None,
                    outcome=outcome,
                    previous_fact_id=current.id if current else None,
                    previous_value=plain(current.value) if current else None,
                )

            fact = Fact(
                case_id=case_id,
                key=candidate.key,
                category=candidate.category,
                value=candidate.value,
                source_type=candidate.source_type,
                confidence=candidate.confidence,
                source_reference=candidate.source_reference,
                excerpt=candidate.excerpt,
            )
            if current:
                current.is_current = False
            self._facts.append(fact)
            return SupersedeResult(
                fact_id=fact.id,
                outcome=outcome,
                previous_fact_id=current.id if current else None,
                previous_value=plain(current.value) if current else None,
            )

    def retract_fact(self, case_id: str, key: str) -> str | None:
        with self._lock:
            current = self._current(case_id, key)
            if not current:
                return None
            current.is_current = False
            return current.id

    def get_current_facts(self, case_id: str) -> FactSnapshot:
        with self._lock:
            return FactSnapshot({f.key: replace(f) for f in self._facts if f.case_id == case_id and f.is_current})

    def list_fact_history(self, case_id: str, key: str) -> list[Fact]:
        with self._lock:
            return [replace(f) for f in self._facts if f.case_id == case_id and f.key == key]

    def list_open_gaps(self, case_id: str) -> list[Gap]:
        with self._lock:
            return [g for g in self._gaps.values() if g.case_id == case_id and g.status == GapStatus.OPEN]

    def open_gap(self, gap: Gap) -> tuple[Gap, bool]:
        with self._lock:
            for existing in self._gaps.values():
                if existing.case_id == gap.case_id and existing.key == gap.key and existing.status == GapStatus.OPEN:
                    return existing, False
            self._gaps[gap.id] = gap
            return gap, True

    def resolve_gap(self, gap_id: str, *, resolved_by_fact_id: str | None, reason: str) -> Gap:
        with self._lock:
            gap = self._gaps.get(gap_id)
            if not gap:
                raise RepositoryError(f"Gap not found: {gap_id}")
            gap.status = GapStatus.RESOLVED
            gap.resolved_by_fact_id = resolved_by_fact_id
            gap.resolved_reason = reason
            gap.resolved_at = _utc_now()
            return gap

    def set_gap_blocking(self, gap_id: str, is_blocking: bool) -> Gap:
        with self._lock:
            gap = self._gaps.get(gap_id)
            if not gap:
                raise RepositoryError(f"Gap not found: {gap_id}")
            gap.is_blocking = is_blocking
            return gap

    def create_timeline_event(self, event: TimelineEvent) -> dict[str, Any]:
        with self._lock:
            item = dict(vars(event))
            self._events.append(item)
            return dict(item)

    def list_timeline_events(self, case_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(e) for e in self._events if e["case_id"] == case_id]

    def find_hs_exact(self, code: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._hs_codes.get(_digits(code))
            return dict(row) if row else None

    def find_hs_by_prefix(self, prefix: str, limit: int = 20) -> list[dict[str, Any]]:
        with self._lock:
            rows = sorted(
                (r for code, r in self._hs_codes.items() if code.startswith(prefix)),
                key=lambda r: r["code"],
            )
            return [dict(r) for r in rows[:limit]]

    def find_known_contact(self, domain: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._contacts.get(domain.lower())
            return dict(row) if row else None


class SupabaseRepository(QuoteRepository):
    def __init__(self, client: Any) -> None:
        self.client = client

    def _rows(self, query: Any, context: str) -> list[dict[str, Any]]:
        try:
            res = query.execute()
        except Exception as exc:
            raise RepositoryError(f"{context}: {exc}") from exc
        return [dict(r) for r in (res.data or [])]

    def get_case(self, case_id: str) -> dict[str, Any] | None:
        rows = self._rows(
            self.client.table("quote_cases").select("*").eq("id", case_id).limit(1),
            f"Case lookup failed for {case_id}",
        )
        return rows[0] if rows else None

    def update_case(self, case_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        payload = dict(updates)
        payload["updated_at"] = _utc_now()
        rows = self._rows(
            self.client.table("quote_cases").update(payload).eq("id", case_id),
            f"Update failed for case {case_id}",
        )
        if not rows:
            raise RepositoryError(f"Update failed for case {case_id}")
        return rows[0]

    def list_emails(self, thread_id: str) -> list[dict[str, Any]]:
        return self._rows(
            self.client.table("emails").select("*").eq("thread_id", thread_id).order("sent_at"),
            f"Email lookup failed for thread {thread_id}",
        )

    def list_attachments(self, email_ids: list[str]) -> list[dict[str, Any]]:
        if not email_ids:
            return []
        return self._rows(
            self.client.table("email_attachments").select("*").in_("email_id", list(email_ids)),
            "Attachment lookup failed",
        )

    def supersede_fact(self, case_id: str, candidate: CandidateFact) -> SupersedeResult:
        params = {
            "p_case_id": case_id,
            "p_fact_key": candidate.key,
            "p_fact_category": candidate.category,
            "p_source_type": candidate.source_type.value,
            "p_source_reference": candidate.source_reference,
            "p_source_excerpt": candidate.excerpt,
            "p_confidence": candidate.confidence,
            **{f"p_{k}": v for k, v in value_to_columns(candidate.value).items()},
        }
        try:
            res = self.client.rpc("supersede_fact", params).execute()
        except Exception as exc:
            raise FactPersistenceError(candidate.key, str(exc)) from exc
        data = res.data
        row = data[0] if isinstance(data, list) and data else data
        if not isinstance(row, dict) or not row.get("outcome"):
            raise FactPersistenceError(candidate.key, "supersede_fact returned no row")
        return SupersedeResult(
            fact_id=row.get("fact_id"),
            outcome=SupersedeOutcome(row["outcome"]),
            previous_fact_id=row.get("previous_fact_id"),
            previous_value=row.get("previous_value"),
        )

    def retract_fact(self, case_id: str, key: str) -> str | None:
        rows = self._rows(
            self.client.table("quote_facts")
            .update({"is_current": False})
            .eq("case_id", case_id)
            .eq("fact_key", key)
            .eq("is_current", True),
            f"Retract failed for {key}",
        )
        return str(rows[0]["id"]) if rows else None

    def get_current_facts(self, case_id: str) -> FactSnapshot:
        rows = self._rows(
            self.client.table("quote_facts").select("*").eq("case_id", case_id).eq("is_current", True),
            f"Fact lookup failed for case {case_id}",
        )
        facts = [Fact.from_row(r) for r in rows]
        return FactSnapshot({f.key: f for f in facts})

    def list_fact_history(self, case_id: str, key: str) -> list[Fact]:
        rows = self._rows(
            self.client.table("quote_facts")
            .select("*")
            .eq("case_id", case_id)
            .eq("fact_key", key)
            .order("created_at"),
            f"History lookup failed for {key}",
        )
        return [Fact.from_row(r) for r in rows]

    def list_open_gaps(self, case_id: str) -> list[Gap]:
        rows = self._rows(
            self.client.table("quote_gaps").select("*").eq("case_id", case_id).eq("status", GapStatus.OPEN.value),
            f"Gap lookup failed for case {case_id}",
        )
        return [Gap.from_row(r) for r in rows]

    def _find_open_gap(self, case_id: str, key: str) -> Gap | None:
        rows = self._rows(
            self.client.table("quote_gaps")
            .select("*")
            .eq("case_id", case_id)
            .eq("gap_key", key)
            .eq("status", GapStatus.OPEN.value)
            .limit(1),
            f"Gap lookup failed for {key}",
        )
        return Gap.from_row(rows[0]) if rows else None

    def open_gap(self, gap: Gap) -> tuple[Gap, bool]:
        existing = self._find_open_gap(gap.case_id, gap.key)
        if existing:
            return existing, False
        try:
            res = self.client.table("quote_gaps").insert(gap.to_row()).execute()
        except Exception as exc:
            # Partial unique index on (case_id, gap_key) where status = 'open'.
            if _is_unique_violation(str(exc)):
                winner = self._find_open_gap(gap.case_id, gap.key)
                if winner:
                    return winner, False
            raise RepositoryError(f"Gap insert failed for {gap.key}: {exc}") from exc
        if not res.data:
            raise RepositoryError(f"Gap insert failed for {gap.key}")
        return Gap.from_row(dict(res.data[0])), True

    def resolve_gap(self, gap_id: str, *, resolved_by_fact_id: str | None, reason: str) -> Gap:
        rows = self._rows(
            self.client.table("quote_gaps")
            .update(
                {
                    "status": GapStatus.RESOLVED.value,
                    "resolved_by_fact_id": resolved_by_fact_id,
                    "resolved_reason": reason,
                    "resolved_at": _utc_now(),
                }
            )
            .eq("id", gap_id),
            f"Gap resolve failed for {gap_id}",
        )
        if not rows:
            raise RepositoryError(f"Gap not found: {gap_id}")
        return Gap.from_row(rows[0])

    def set_gap_blocking(self, gap_id: str, is_blocking: bool) -> Gap:
        rows = self._rows(
            self.client.table("quote_gaps").update({"is_blocking": is_blocking}).eq("id", gap_id),
            f"Gap update failed for {gap_id}",
        )
        if not rows:
            raise RepositoryError(f"Gap not found: {gap_id}")
        return Gap.from_row(rows[0])

    def create_timeline_event(self, event: TimelineEvent) -> dict[str, Any]:
        rows = self._rows(
            self.client.table("case_timeline_events").insert(dict(vars(event))),
            f"Timeline insert failed for {event.event_type}",
        )
        return rows[0] if rows else dict(vars(event))

    def list_timeline_events(self, case_id: str) -> list[dict[str, Any]]:
        return self._rows(
            self.client.table("case_timeline_events").select("*").eq("case_id", case_id).order("created_at"),
            f"Timeline lookup failed for case {case_id}",
        )

    def find_hs_exact(self, code: str) -> dict[str, Any] | None:
        rows = self._rows(
            self.client.table("hs_codes").select("code,description").eq("code", _digits(code)).limit(1),
            "HS exact lookup failed",
        )
        return rows[0] if rows else None

    def find_hs_by_prefix(self, prefix: str, limit: int = 20) -> list[dict[str, Any]]:
        return self._rows(
            self.client.table("hs_codes").select("code,description").like("code", f"{prefix}%").order("code").limit(limit),
            "HS prefix lookup failed",
        )

    def find_known_contact(self, domain: str) -> dict[str, Any] | None:
        rows = self._rows(
            self.client.table("known_business_contacts").select("*").eq("email_domain", domain.lower()).limit(1),
            "Known contact lookup failed",
        )
        return rows[0] if rows else None


def build_repository() -> tuple[QuoteRepository, bool, str | None]:
    backend = settings.persistence_backend
    if backend == "memory":
        return InMemoryRepository(), False, "PERSISTENCE_BACKEND=memory; using in-memory repository."

    client, err = get_supabase_client()
    if client is None:
        if backend == "supabase":
            raise RepositoryError(f"Supabase required but unavailable: {err}")
        return InMemoryRepository(), False, f"{err}; using in-memory repository."

    try:
        # Connectivity + schema check on the tables every pass touches.
        client.table("quote_cases").select("id").limit(1).execute()
        client.table("quote_facts").select("id").limit(1).execute()
        return SupabaseRepository(client), True, None
    except Exception as exc:
        if backend == "supabase":
            raise RepositoryError(f"Supabase unavailable or schema mismatch: {exc}") from exc
        return (
            InMemoryRepository(),
            False,
            "Supabase unavailable or schema mismatch "
            f"({exc}). Run `supabase/schema.sql` and restart. "
            "Using in-memory repository.",
        )
