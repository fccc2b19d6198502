import pytest

from quotecase.pipeline.regex_extractor import (
    RegexFactExtractor,
    clean_destination_city,
    detect_mode,
    parse_containers,
    pick_incoterm,
)
from quotecase.pipeline.units import parse_number, parse_weight_kg


THREAD_SEA = (
    "From: buyer@client-co.com\nSubject: Quotation request\n\n"
    "Hello,\nPlease quote 2 x 40HC from Shanghai to Dakar, CIF.\n"
    "Commodity: ceramic tiles\nDestination: Dakar\nInternal route code SHA-DKR\n"
)


class TestUnits:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1,250", 1250.0),
            ("12,5", 12.5),
            ("0,250", 0.25),
            ("1.234,56", 1234.56),
            ("1,234.56", 1234.56),
            ("5 000", 5000.0),
            ("12 345,67", 12345.67),
            ("3 5 pallets", 3.0),
            ("1.234.567", 1234567.0),
            (42, 42.0),
        ],
    )
    def test_parse_number(self, raw, expected):
        assert parse_number(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", [None, "abc", True])
    def test_parse_number_rejects(self, raw):
        assert parse_number(raw) is None

    def test_weight_tonnes_are_converted(self):
        assert parse_weight_kg("12,5 t") == pytest.approx(12500.0)
        assert parse_weight_kg("12.5 tonnes") == pytest.approx(12500.0)
        assert parse_weight_kg("800 kg") == pytest.approx(800.0)


class TestIncoterm:
    def test_last_token_wins(self):
        assert pick_incoterm("We usually buy FOB but this time CIF please") == "CIF"

    def test_labelled_term_wins(self):
        assert pick_incoterm("Terms: DAP\nlast year we priced CIF") == "DAP"
        assert pick_incoterm("Incoterm: FOB, previous offer was CFR") == "FOB"

    def test_no_term(self):
        assert pick_incoterm("no trade term in this message") is None


class TestContainersAndMode:
    def test_parse_containers(self):
        assert parse_containers("2 x 40HC and 1x20'") == [
            {"quantity": 2, "type": "40HC"},
            {"quantity": 1, "type": "20DV"},
        ]

    def test_containers_force_sea(self):
        assert detect_mode("ship CDG-DSS", [{"quantity": 1, "type": "40HC"}]) == ("SEA", None)

    def test_air_with_airport_pair(self):
        assert detect_mode("Please ship by air CDG-DSS") == ("AIR", ("CDG", "DSS"))

    def test_airport_pair_alone_means_air(self):
        assert detect_mode("ship ABJ to DSS") == ("AIR", ("ABJ", "DSS"))

    def test_incoterm_pairs_are_not_airports(self):
        assert detect_mode("Offer FOB-CIF comparison") == (None, None)

    def test_maritime_keyword_beats_air_trigger(self):
        mode, pair = detect_mode("by air or sea freight, whichever is cheaper")
        assert mode == "SEA"
        assert pair is None


class TestDestinationCity:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Hotel Radisson Dakar", "Dakar"),
            ("thies", "Thiès"),
            ("Kolda region", "Kolda"),
            ("Kribi", "Kribi"),
        ],
    )
    def test_kept(self, raw, expected):
        assert clean_destination_city(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        ["Hotel Terrou-Bi", "14.6928, -17.4467", "Rue 10, Zone industrielle", ""],
    )
    def test_discarded(self, raw):
        assert clean_destination_city(raw) is None


class TestRegexFactExtractor:
    def test_sea_thread(self):
        facts = {f["key"]: f for f in RegexFactExtractor().extract_facts(THREAD_SEA)}

        assert set(facts) == {
            "contacts.client_email",
            "routing.incoterm",
            "cargo.containers",
            "routing.origin_port",
            "routing.destination_city",
            "cargo.description",
        }
        assert facts["contacts.client_email"]["value"] == "buyer@client-co.com"
        assert facts["routing.incoterm"]["value"] == "CIF"
        assert facts["cargo.containers"]["value"] == [{"quantity": 2, "type": "40HC"}]
        assert facts["routing.origin_port"]["value"] == "Shanghai"
        assert facts["cargo.description"]["value"] == "ceramic tiles"
        assert all(f["isAssumption"] is False for f in facts.values())

    def test_air_thread_numbers(self):
        text = (
            "From: ops@importer.sn\n\nPlease quote by air CDG-DSS.\n"
            "Gross weight: 1 250 kg\nVolume: 3,5 cbm\n12 cartons\nHS code: 8525.50\n"
            "Ready date: 15/04/2026\n"
        )
        facts = {f["key"]: f["value"] for f in RegexFactExtractor().extract_facts(text)}

        assert facts["cargo.weight_kg"] == pytest.approx(1250.0)
        assert facts["cargo.volume_cbm"] == pytest.approx(3.5)
        assert facts["cargo.pieces_count"] == 12
        assert facts["cargo.hs_code"] == "8525.50"
        assert facts["routing.origin_airport"] == "CDG"
        assert facts["routing.destination_airport"] == "DSS"
        assert facts["timing.loading_date"] == "2026-04-15"
