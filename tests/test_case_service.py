from unittest.mock import MagicMock

import pytest

from quotecase.domain.authority import SupersedeOutcome
from quotecase.domain.state_machine import StateMachine
from quotecase.domain.states import CaseStatus, SourceType
from quotecase.errors import AuthError, CaseNotFound, FactPersistenceError, InvalidTransitionError, OracleUnavailable
from quotecase.infra.repositories import InMemoryRepository
from quotecase.pipeline.hs_resolver import HS_FACT_KEY
from quotecase.services.case_service import CaseService

from conftest import OWNER


SEA_BODY = (
    "Hello,\nPlease quote 2 x 40HC from Shanghai to Dakar, CIF.\n"
    "Commodity: ceramic tiles\nDestination: Dakar\nInternal route code SHA-DKR\n"
)
AIR_BODY = (
    "Please quote by air CDG-DSS.\nGross weight: 5000 kg\nVolume: 20 cbm\n"
    "Commodity: spare parts\nDelivery to Dakar\n"
)


class FlakyRepository(InMemoryRepository):
    def __init__(self, failing_keys):
        super().__init__()
        self.failing_keys = set(failing_keys)

    def supersede_fact(self, case_id, candidate):
        if candidate.key in self.failing_keys:
            raise FactPersistenceError(candidate.key, "connection reset")
        return super().supersede_fact(case_id, candidate)


def _flaky_setup(failing_keys, offline_oracle):
    repo = FlakyRepository(failing_keys)
    case = repo.add_case({"thread_id": "t-flaky", "created_by": OWNER})
    repo.add_email({"thread_id": "t-flaky", "from_address": "buyer@client-co.com", "subject": "RFQ", "body_text": SEA_BODY})
    return repo, case, CaseService(repo, oracle=offline_oracle)


class TestBuildCasePuzzle:
    """End-to-end analysis passes on the in-memory store."""

    def test_sea_fcl_request(self, service, make_case, repo):
        case = make_case(SEA_BODY)

        result = service.build_case_puzzle(case["id"], OWNER)

        snapshot = repo.get_current_facts(case["id"])
        assert result.outcome == "complete"
        assert result.request_type == "SEA_FCL_IMPORT"
        assert result.new_status == "READY_TO_PRICE"
        assert result.ready_to_price is True
        assert result.facts_added == 11
        assert result.gaps_identified == 0
        assert result.completeness_pct == 100
        assert result.oracle_engine == "regex"
        assert snapshot.value("routing.transport_mode") == "SEA"
        assert snapshot.value("cargo.containers") == [{"quantity": 2, "type": "40HC"}]
        assert snapshot.source("service.package") == SourceType.AI_ASSUMPTION

        stored = repo.get_case(case["id"])
        assert stored["status"] == "READY_TO_PRICE"
        assert stored["facts_count"] == len(snapshot)
        assert stored["input_fingerprint"]

    def test_second_pass_is_idempotent(self, service, make_case):
        case = make_case(SEA_BODY)
        service.build_case_puzzle(case["id"], OWNER)

        again = service.build_case_puzzle(case["id"], OWNER)
        forced = service.build_case_puzzle(case["id"], OWNER, force_refresh=True)

        assert (again.facts_added, again.facts_updated) == (0, 0)
        assert again.oracle_engine == "skipped"
        assert (forced.facts_added, forced.facts_updated) == (0, 0)
        assert forced.oracle_engine == "regex"
        assert forced.new_status == "READY_TO_PRICE"

    def test_late_attachment_extraction_is_picked_up(self, service, make_case, repo):
        case = make_case(SEA_BODY, attachments=[{"id": "att-pl", "filename": "packing_list.pdf"}])
        service.build_case_puzzle(case["id"], OWNER)
        repo.update_attachment("att-pl", {"extracted_data": {"Gross weight": "12 t"}})

        result = service.build_case_puzzle(case["id"], OWNER)

        snapshot = repo.get_current_facts(case["id"])
        assert result.oracle_engine == "regex"
        assert result.facts_added == 1
        assert snapshot.value("cargo.weight_kg") == pytest.approx(12000.0)
        assert snapshot.source("cargo.weight_kg") == SourceType.ATTACHMENT_EXTRACTED

    def test_oracle_assumptions_do_not_flip_rule_defaults(self, repo, make_case):
        oracle = MagicMock()
        oracle.enabled = True
        oracle.extract_facts.return_value = [
            {"key": "routing.origin_port", "value": "Shanghai", "confidence": 0.9},
            {"key": "routing.destination_city", "value": "Dakar", "confidence": 0.9},
            {"key": "routing.incoterm", "value": "CIF", "confidence": 0.9},
            {"key": "cargo.description", "value": "ceramic tiles", "confidence": 0.9},
            {"key": "pricing.currency", "value": "EUR", "confidence": 0.3, "isAssumption": True},
        ]
        service = CaseService(repo, oracle=oracle)
        case = make_case(SEA_BODY)
        service.build_case_puzzle(case["id"], OWNER)

        reruns = [service.build_case_puzzle(case["id"], OWNER, force_refresh=True) for _ in range(2)]

        assert [(r.facts_added, r.facts_updated) for r in reruns] == [(0, 0), (0, 0)]
        history = repo.list_fact_history(case["id"], "pricing.currency")
        assert [h.value.value for h in history] == ["EUR", "XOF"]
        assert repo.get_current_facts(case["id"]).value("pricing.currency") == "XOF"

    def test_air_request_gets_chargeable_weight(self, service, make_case, repo):
        case = make_case(AIR_BODY)

        result = service.build_case_puzzle(case["id"], OWNER)

        snapshot = repo.get_current_facts(case["id"])
        assert snapshot.value("routing.transport_mode") == "AIR"
        assert snapshot.value("cargo.chargeable_weight_kg") == pytest.approx(5000.0)
        assert snapshot.value("cargo.chargeable_weight_rule") == "IATA_167"
        assert snapshot.source("cargo.chargeable_weight_kg") == SourceType.AI_EXTRACTION
        assert result.request_type == "UNKNOWN"
        assert snapshot.value("service.package") == "IMPORT_AIR_STANDARD"

    def test_volumetric_weight_dominates(self, service, make_case, repo):
        case = make_case("Please quote by air CDG-DSS.\nGross weight: 300 kg\nVolume: 3 cbm\n")

        service.build_case_puzzle(case["id"], OWNER)

        assert repo.get_current_facts(case["id"]).value("cargo.chargeable_weight_kg") == pytest.approx(501.0)

    def test_frozen_case_keeps_its_status(self, service, make_case, repo):
        case = make_case(SEA_BODY, status="SENT")

        result = service.build_case_puzzle(case["id"], OWNER)

        stored = repo.get_case(case["id"])
        assert result.new_status == "SENT"
        assert stored["status"] == "SENT"
        assert stored["facts_count"] > 0
        events = [e["event_type"] for e in repo.list_timeline_events(case["id"])]
        assert "status_changed" not in events

    def test_oracle_outage_falls_back(self, repo, make_case):
        oracle = MagicMock()
        oracle.enabled = True
        oracle.extract_facts.side_effect = OracleUnavailable("timeout")
        case = make_case(SEA_BODY)

        result = CaseService(repo, oracle=oracle).build_case_puzzle(case["id"], OWNER)

        assert result.oracle_engine == "regex_fallback"
        assert result.request_type == "SEA_FCL_IMPORT"

    def test_known_contact_is_matched(self, service, make_case, repo):
        repo.add_known_contact("client-co.com", "CLI-042", "Client Co")
        case = make_case(SEA_BODY)

        service.build_case_puzzle(case["id"], OWNER)

        snapshot = repo.get_current_facts(case["id"])
        assert snapshot.value("contacts.client_code") == "CLI-042"
        assert snapshot.source("contacts.client_code") == SourceType.KNOWN_CONTACT_MATCH

    def test_attachment_beats_email_text(self, service, make_case, repo):
        case = make_case(
            SEA_BODY,
            attachments=[{"filename": "quote.xlsx", "extracted_data": {"Incoterm": "FOB", "Origin port": "Ningbo"}}],
        )

        service.build_case_puzzle(case["id"], OWNER)

        snapshot = repo.get_current_facts(case["id"])
        assert snapshot.value("routing.incoterm") == "FOB"
        assert snapshot.source("routing.incoterm") == SourceType.ATTACHMENT_EXTRACTED
        assert snapshot.value("routing.origin_port") == "Ningbo"
        assert len(repo.list_fact_history(case["id"], "routing.incoterm")) == 1

    def test_timeline_records_the_pass(self, service, make_case, repo):
        case = make_case(SEA_BODY)

        service.build_case_puzzle(case["id"], OWNER)

        events = [e["event_type"] for e in repo.list_timeline_events(case["id"])]
        for expected in ("fact_added", "flow_classified", "assumption_injected", "status_changed", "puzzle_built"):
            assert expected in events
        assert events[-1] == "puzzle_built"


class TestHsCodes:
    def test_unique_prefix_is_stored(self, service, make_case, repo):
        repo.add_hs_code("8525500000", "Transmission apparatus")
        case = make_case(SEA_BODY + "HS code: 8525.50\n")

        service.build_case_puzzle(case["id"], OWNER)

        fact = repo.get_current_facts(case["id"]).get(HS_FACT_KEY)
        assert fact.value.value == "8525500000"
        assert fact.source_type == SourceType.HS_RESOLUTION
        assert fact.confidence == pytest.approx(0.98)

    def test_ambiguous_code_opens_a_blocking_gap(self, service, make_case, repo):
        for code in ("8471300000", "8471410000", "8471490000"):
            repo.add_hs_code(code)
        case = make_case(SEA_BODY + "HS code: 8471\n")

        result = service.build_case_puzzle(case["id"], OWNER)

        assert HS_FACT_KEY not in repo.get_current_facts(case["id"])
        [gap] = [g for g in repo.list_open_gaps(case["id"]) if g.key == HS_FACT_KEY]
        assert gap.is_blocking is True
        assert gap.origin == "hs_resolver"
        assert len(gap.hint["candidates"]) == 3
        assert result.new_status == "NEED_INFO"
        assert result.ready_to_price is False

        again = service.build_case_puzzle(case["id"], OWNER, force_refresh=True)
        assert len([g for g in repo.list_open_gaps(case["id"]) if g.key == HS_FACT_KEY]) == 1
        assert again.gaps_identified == 0


class TestPartialPasses:
    def test_critical_write_failure_is_partial(self, offline_oracle):
        repo, case, service = _flaky_setup({"routing.incoterm"}, offline_oracle)

        result = service.build_case_puzzle(case["id"], OWNER)

        assert result.outcome == "partial"
        assert result.new_status == "FACTS_PARTIAL"
        assert [(e.key, e.is_critical) for e in result.fact_errors] == [("routing.incoterm", True)]
        assert repo.get_case(case["id"])["input_fingerprint"] is None
        events = [e["event_type"] for e in repo.list_timeline_events(case["id"])]
        assert "fact_insert_failed" in events

    def test_non_critical_failure_stays_complete(self, offline_oracle):
        repo, case, service = _flaky_setup({"routing.transport_mode"}, offline_oracle)

        result = service.build_case_puzzle(case["id"], OWNER)

        assert result.outcome == "complete"
        assert result.request_type == "SEA_FCL_IMPORT"
        assert [(e.key, e.is_critical) for e in result.fact_errors] == [("routing.transport_mode", False)]
        # the failed write is retried on the next pass
        assert repo.get_case(case["id"])["input_fingerprint"] is None


class TestOperatorFacts:
    def test_operator_value_survives_analysis(self, service, make_case, repo):
        case = make_case(SEA_BODY)
        service.set_case_fact(case["id"], OWNER, "routing.incoterm", "DAP")

        result = service.build_case_puzzle(case["id"], OWNER)

        snapshot = repo.get_current_facts(case["id"])
        assert snapshot.value("routing.incoterm") == "DAP"
        assert snapshot.source("routing.incoterm") == SourceType.MANUAL_INPUT
        assert len(repo.list_fact_history(case["id"], "routing.incoterm")) == 1
        assert result.facts_skipped >= 1

    def test_operator_value_is_not_replaced_by_assumption(self, service, make_case, repo):
        case = make_case(SEA_BODY)
        service.set_case_fact(case["id"], OWNER, "routing.destination_port", "Ziguinchor")

        service.build_case_puzzle(case["id"], OWNER)

        assert repo.get_current_facts(case["id"]).value("routing.destination_port") == "Ziguinchor"

    def test_set_fact_records_operator_event(self, service, make_case, repo):
        case = make_case(SEA_BODY)

        result = service.set_case_fact(case["id"], OWNER, "cargo.weight_kg", "1200", "number")

        assert result.outcome == SupersedeOutcome.INSERTED
        fact = repo.get_current_facts(case["id"]).get("cargo.weight_kg")
        assert fact.value.value == pytest.approx(1200.0)
        assert fact.confidence == 1.0
        assert fact.source_reference == OWNER
        [event] = repo.list_timeline_events(case["id"])
        assert event["event_type"] == "fact_injected_manual"
        assert event["actor_type"] == "operator"
        assert repo.get_case(case["id"])["facts_count"] == 1

    @pytest.mark.parametrize(
        "key, value, value_type",
        [("Routing.Incoterm", "FOB", "text"), ("incoterm", "FOB", "text"), ("cargo.weight_kg", "heavy", "number")],
    )
    def test_invalid_input_is_rejected(self, service, make_case, key, value, value_type):
        case = make_case(SEA_BODY)

        with pytest.raises(ValueError):
            service.set_case_fact(case["id"], OWNER, key, value, value_type)


class TestAccessAndStatus:
    def test_unknown_case(self, service):
        with pytest.raises(CaseNotFound):
            service.build_case_puzzle("missing", OWNER)

    def test_stranger_is_refused(self, service, make_case):
        case = make_case(SEA_BODY)

        with pytest.raises(AuthError):
            service.get_case_facts(case["id"], "someone-else")

    def test_assignee_has_access(self, service, repo):
        case = repo.add_case({"thread_id": "t-x", "created_by": OWNER, "assigned_to": "agent-9"})

        assert len(service.get_case_facts(case["id"], "agent-9")) == 0

    def test_case_without_emails(self, service, repo):
        case = repo.add_case({"thread_id": "t-empty", "created_by": OWNER})

        with pytest.raises(ValueError):
            service.build_case_puzzle(case["id"], OWNER)

    def test_transition(self, service, make_case, repo):
        case = make_case(SEA_BODY)

        updated = service.transition_status(case["id"], OWNER, "archived")

        assert updated["status"] == "ARCHIVED"
        [event] = repo.list_timeline_events(case["id"])
        assert event["event_data"] == {"from": "NEW", "to": "ARCHIVED", "reason": "operator"}

    def test_invalid_transition(self, service, make_case):
        case = make_case(SEA_BODY)

        with pytest.raises(InvalidTransitionError):
            service.transition_status(case["id"], OWNER, "SENT")
        with pytest.raises(ValueError):
            service.transition_status(case["id"], OWNER, "LOST")


class TestStateMachine:
    @pytest.mark.parametrize(
        "kwargs, expected",
        [
            ({"open_gaps": 0, "open_blocking_gaps": 0, "current_facts": 3}, CaseStatus.READY_TO_PRICE),
            ({"open_gaps": 2, "open_blocking_gaps": 0, "current_facts": 3}, CaseStatus.READY_TO_PRICE),
            ({"open_gaps": 2, "open_blocking_gaps": 1, "current_facts": 3}, CaseStatus.NEED_INFO),
            ({"open_gaps": 0, "open_blocking_gaps": 0, "current_facts": 0}, CaseStatus.FACTS_PARTIAL),
            ({"open_gaps": 0, "open_blocking_gaps": 0, "current_facts": 3, "critical_errors": 1}, CaseStatus.FACTS_PARTIAL),
        ],
    )
    def test_derive(self, kwargs, expected):
        assert StateMachine().derive(CaseStatus.NEW, **kwargs) == expected

    def test_frozen_statuses_never_derive(self):
        sm = StateMachine()
        for status in (CaseStatus.SENT, CaseStatus.ACCEPTED, CaseStatus.REJECTED, CaseStatus.ARCHIVED):
            assert sm.derive(status, open_gaps=5, open_blocking_gaps=5, current_facts=0, critical_errors=2) == status
