import pytest

from quotecase.domain.models import Fact, FactSnapshot, make_value
from quotecase.domain.states import SourceType
from quotecase.pipeline import classify_flow


def _snapshot(source=SourceType.AI_EXTRACTION, **facts):
    """Keys use ``__`` for the dot: routing__destination_city -> routing.destination_city."""
    out = {}
    for name, raw in facts.items():
        key = name.replace("__", ".")
        if isinstance(raw, bool) or raw is None:
            raise TypeError(name)
        value_type = "number" if isinstance(raw, (int, float)) else "json" if isinstance(raw, list) else "text"
        out[key] = Fact(
            case_id="c1",
            key=key,
            category=key.split(".", 1)[0],
            value=make_value(raw, value_type),
            source_type=source,
            confidence=0.8,
        )
    return FactSnapshot(out)


FCL = [{"quantity": 2, "type": "40HC"}]


class TestClassifyFlow:
    @pytest.mark.parametrize(
        "facts, expected",
        [
            ({"routing__destination_city": "Bamako"}, "TRANSIT_MALI"),
            ({"routing__destination_country": "Mali", "routing__destination_city": "Dakar"}, "TRANSIT_MALI"),
            ({"routing__origin_port": "Dakar", "routing__destination_port": "Abidjan"}, "EXPORT_SENEGAL"),
            ({"routing__destination_city": "Dakar", "cargo__weight_kg": 45000}, "BREAKBULK_PROJECT"),
            (
                {"routing__destination_city": "Dakar", "cargo__weight_kg": 2000, "cargo__description": "200t transformer"},
                "BREAKBULK_PROJECT",
            ),
            ({"routing__destination_city": "Dakar", "cargo__containers": FCL}, "SEA_FCL_IMPORT"),
            (
                {"routing__destination_city": "Dakar", "cargo__weight_kg": 8000, "routing__transport_mode": "AIR"},
                "AIR_IMPORT",
            ),
            ({"routing__destination_city": "Dakar", "cargo__weight_kg": 12000}, "SEA_BREAKBULK_IMPORT"),
            ({"routing__destination_airport": "DSS", "cargo__weight_kg": 800}, "UNKNOWN"),
            ({}, "UNKNOWN"),
        ],
    )
    def test_rules(self, facts, expected):
        assert classify_flow(_snapshot(**facts)).request_type == expected

    def test_weak_import_escalates_with_attachment_content(self):
        snap = _snapshot(routing__destination_city="Dakar", cargo__weight_kg=800)

        assert classify_flow(snap, has_attachment_content=False).request_type == "UNKNOWN"
        escalated = classify_flow(snap, has_attachment_content=True)
        assert escalated.request_type == "SEA_BREAKBULK_IMPORT"
        assert any("PENDING" in line for line in escalated.trace)

    def test_air_mode_drives_assumptions_when_unknown(self):
        result = classify_flow(_snapshot(routing__transport_mode="AIR"))

        assert result.request_type == "UNKNOWN"
        assert result.assumption_flow == "AIR_IMPORT"

    def test_assumptions_do_not_classify(self):
        facts = _snapshot(cargo__containers=FCL)
        assumed = _snapshot(SourceType.AI_ASSUMPTION, routing__destination_port="Dakar")
        merged = FactSnapshot({k: facts.get(k) or assumed.get(k) for k in [*facts, *assumed]})

        assert classify_flow(merged).request_type == "UNKNOWN"

    def test_trace_explains_the_rule(self):
        result = classify_flow(_snapshot(routing__destination_city="Dakar", cargo__containers=FCL))

        assert result.destination_country == "SENEGAL"
        assert any(line.startswith("rule 4") for line in result.trace)
