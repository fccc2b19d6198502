import pytest

from quotecase.domain.states import SourceType
from quotecase.pipeline.attachment_mapper import AttachmentFactMapper


def _mapped(attachments):
    return {c.key: c for c in AttachmentFactMapper().map_attachments(attachments)}


class TestStructuredFields:
    def test_packing_list_fields(self):
        facts = _mapped(
            [
                {
                    "id": "att-1",
                    "filename": "packing.xlsx",
                    "extracted_data": {
                        "Port of Loading": "Antwerp",
                        "Gross Weight": "12,5 t",
                        "Measurement": "40,5",
                        "Incoterms": "fob",
                        "Place of delivery": "Hotel Savana",
                        "Containers": "1 x 40HC",
                    },
                }
            ]
        )

        assert facts["routing.origin_port"].value.value == "Antwerp"
        assert facts["cargo.weight_kg"].value.value == pytest.approx(12500.0)
        assert facts["cargo.volume_cbm"].value.value == pytest.approx(40.5)
        assert facts["routing.incoterm"].value.value == "FOB"
        assert facts["cargo.containers"].value.value == [{"quantity": 1, "type": "40HC"}]
        assert "routing.destination_city" not in facts
        assert facts["cargo.weight_kg"].source_type == SourceType.ATTACHMENT_EXTRACTED
        assert facts["cargo.weight_kg"].source_reference == "att-1"

    def test_first_attachment_wins(self):
        facts = _mapped(
            [
                {"id": "a", "extracted_data": {"Gross weight": "900 kg"}},
                {"id": "b", "extracted_data": {"Gross weight": "1 400 kg"}},
            ]
        )

        assert facts["cargo.weight_kg"].value.value == pytest.approx(900.0)
        assert facts["cargo.weight_kg"].source_reference == "a"

    def test_priced_line_items_become_articles_detail(self):
        facts = _mapped(
            [
                {
                    "id": "inv",
                    "extracted_data": {
                        "articles": [
                            {"Code": "A1", "Amount": "1 200,50", "Currency": "eur", "Designation": "Pump"},
                            {"ref": "B2", "total": 300, "devise": "EUR", "libelle": "Valve"},
                            {"code": "C3", "description": "no price"},
                        ]
                    },
                }
            ]
        )

        assert facts["cargo.articles_detail"].value.value == [
            {"code": "A1", "value": 1200.5, "currency": "EUR", "description": "Pump"},
            {"code": "B2", "value": 300.0, "currency": "EUR", "description": "Valve"},
        ]

    def test_single_priced_item_is_not_a_breakdown(self):
        facts = _mapped([{"id": "inv", "extracted_data": {"items": [{"code": "A1", "value": 10}]}}])

        assert "cargo.articles_detail" not in facts


class TestTextScan:
    def test_document_patterns(self):
        text = "BILL OF LADING\nB/L No: MEDU1234567\nHS Code: 8525.50\nGross weight: 2 350 kg\n"
        facts = _mapped([{"id": "bl", "extracted_text": text}])

        assert facts["cargo.hs_code"].value.value == "8525.50"
        assert facts["cargo.weight_kg"].value.value == pytest.approx(2350.0)
        assert facts["documents.bl_number"].value.value == "MEDU1234567"
        assert {f.source_type for f in facts.values()} == {SourceType.DOCUMENT_REGEX}

    def test_structured_value_beats_text_scan(self):
        facts = _mapped(
            [
                {
                    "id": "pl",
                    "extracted_data": {"Gross weight": "900 kg"},
                    "extracted_text": "Gross weight: 1000 kg",
                }
            ]
        )

        assert facts["cargo.weight_kg"].value.value == pytest.approx(900.0)
        assert facts["cargo.weight_kg"].source_type == SourceType.ATTACHMENT_EXTRACTED
