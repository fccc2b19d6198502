from unittest.mock import MagicMock

import pytest

from quotecase.domain.states import SourceType
from quotecase.errors import OracleUnavailable
from quotecase.pipeline.extraction import FactExtractionModule


THREAD = (
    "From: buyer@client-co.com\nSubject: Quotation request\n\n"
    "Please quote 1 x 40HC, Terms: CIF, deliver to Almadies, Dakar\n"
)


def _oracle(facts=None, error=None):
    oracle = MagicMock()
    oracle.enabled = True
    if error is not None:
        oracle.extract_facts.side_effect = error
    else:
        oracle.extract_facts.return_value = facts or []
    return oracle


class TestFactExtractionModule:
    """Oracle output is validated and reconciled with deterministic rules."""

    def test_regex_engine_without_oracle(self):
        outcome = FactExtractionModule().extract(THREAD, source_reference="mail-1")

        assert outcome.engine == "regex"
        assert outcome.transport_mode == "SEA"
        by_key = {c.key: c for c in outcome.candidates}
        assert by_key["routing.transport_mode"].value.value == "SEA"
        assert by_key["routing.incoterm"].value.value == "CIF"
        assert by_key["routing.destination_city"].value.value == "Dakar"
        assert all(c.source_reference == "mail-1" for c in outcome.candidates)

    def test_oracle_output_is_reconciled(self):
        oracle = _oracle(
            [
                {"key": "routing.origin_airport", "value": "PVG", "confidence": 0.6},
                {"key": "routing.incoterm", "value": "FOB", "confidence": 0.7},
                {"key": "routing.destination_city", "value": "Almadies, Dakar"},
                {"key": "cargo.description", "value": "tiles", "isAssumption": True},
                {"key": "Bad Key", "value": "x"},
                {"key": "cargo.weight_kg", "value": "", "valueType": "number"},
            ]
        )
        outcome = FactExtractionModule(oracle=oracle).extract(THREAD)
        by_key = {c.key: c for c in outcome.candidates}

        assert outcome.engine == "groq"
        # containers in the text make this a sea request
        assert "routing.origin_airport" not in by_key
        assert by_key["cargo.containers"].value.value == [{"quantity": 1, "type": "40HC"}]
        assert by_key["routing.incoterm"].value.value == "CIF"
        assert by_key["routing.destination_city"].value.value == "Dakar"
        assert by_key["cargo.description"].source_type == SourceType.AI_ASSUMPTION
        assert by_key["routing.incoterm"].source_type == SourceType.AI_EXTRACTION
        assert set(outcome.skipped) == {"Bad Key", "cargo.weight_kg"}

    def test_oracle_failure_falls_back_to_regex(self):
        oracle = _oracle(error=OracleUnavailable("timeout"))
        outcome = FactExtractionModule(oracle=oracle).extract(THREAD)

        assert outcome.engine == "regex_fallback"
        assert oracle.extract_facts.call_count == 1
        assert "routing.incoterm" in {c.key for c in outcome.candidates}

    def test_disabled_oracle_is_not_called(self, offline_oracle):
        outcome = FactExtractionModule(oracle=offline_oracle).extract(THREAD)

        assert outcome.engine == "regex"
        offline_oracle.extract_facts.assert_not_called()

    @pytest.mark.parametrize("proposed, expected", [("cif", "CIF"), ("XYZ", None)])
    def test_oracle_incoterm_validated_when_text_is_silent(self, proposed, expected):
        oracle = _oracle([{"key": "routing.incoterm", "value": proposed}])
        outcome = FactExtractionModule(oracle=oracle).extract("Please quote a shipment to Dakar")
        by_key = {c.key: c for c in outcome.candidates}

        if expected is None:
            assert "routing.incoterm" not in by_key
        else:
            assert by_key["routing.incoterm"].value.value == expected

    def test_lodging_destination_is_dropped(self):
        oracle = _oracle([{"key": "routing.destination_city", "value": "Hotel Le Lagon"}])
        outcome = FactExtractionModule(oracle=oracle).extract("Please quote")

        assert "routing.destination_city" not in {c.key for c in outcome.candidates}

    def test_air_pair_fills_airports(self):
        outcome = FactExtractionModule().extract("From: a@b.com\n\nPlease quote by air CDG-DSS, 300 kg")
        by_key = {c.key: c.value.value for c in outcome.candidates}

        assert by_key["routing.transport_mode"] == "AIR"
        assert by_key["routing.origin_airport"] == "CDG"
        assert by_key["routing.destination_airport"] == "DSS"
