from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import ValidationError

from quotecase.contracts.payloads import AttachmentLineItem
from quotecase.domain.models import CandidateFact, make_value
from quotecase.domain.states import SourceType
from quotecase.pipeline.reference_data import INCOTERMS
from quotecase.pipeline.regex_extractor import clean_destination_city, parse_containers
from quotecase.pipeline.units import parse_number, parse_weight_kg


logger = logging.getLogger(__name__)


def _norm_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", str(key).strip().lower()).strip("_")


# normalized field name -> (fact key, value type)
# Covers both the packing-list / bill-of-lading layout and the quotation-sheet layout.
FIELD_MAP: Mapping[str, tuple[str, str]] = MappingProxyType(
    {
        # packing list / B/L
        "port_of_loading": ("routing.origin_port", "text"),
        "pol": ("routing.origin_port", "text"),
        "port_of_discharge": ("routing.destination_port", "text"),
        "pod": ("routing.destination_port", "text"),
        "place_of_delivery": ("routing.destination_city", "text"),
        "gross_weight": ("cargo.weight_kg", "weight"),
        "gross_weight_kg": ("cargo.weight_kg", "weight"),
        "total_gross_weight": ("cargo.weight_kg", "weight"),
        "measurement": ("cargo.volume_cbm", "number"),
        "number_of_packages": ("cargo.pieces_count", "number"),
        "total_packages": ("cargo.pieces_count", "number"),
        "description_of_goods": ("cargo.description", "text"),
        "bl_number": ("documents.bl_number", "text"),
        "b_l_number": ("documents.bl_number", "text"),
        "bill_of_lading_number": ("documents.bl_number", "text"),
        "vessel": ("routing.vessel", "text"),
        "vessel_name": ("routing.vessel", "text"),
        "shipper": ("contacts.shipper", "text"),
        "consignee": ("contacts.consignee", "text"),
        "containers": ("cargo.containers", "containers"),
        "container_list": ("cargo.containers", "containers"),
        # quotation sheet
        "origin_port": ("routing.origin_port", "text"),
        "port_chargement": ("routing.origin_port", "text"),
        "destination_port": ("routing.destination_port", "text"),
        "destination": ("routing.destination_city", "text"),
        "final_destination": ("routing.destination_city", "text"),
        "lieu_livraison": ("routing.destination_city", "text"),
        "origin_country": ("routing.origin_country", "text"),
        "pays_origine": ("routing.origin_country", "text"),
        "destination_country": ("routing.destination_country", "text"),
        "pays_destination": ("routing.destination_country", "text"),
        "incoterm": ("routing.incoterm", "incoterm"),
        "incoterms": ("routing.incoterm", "incoterm"),
        "total_weight": ("cargo.weight_kg", "weight"),
        "weight_kg": ("cargo.weight_kg", "weight"),
        "poids_brut": ("cargo.weight_kg", "weight"),
        "volume": ("cargo.volume_cbm", "number"),
        "volume_cbm": ("cargo.volume_cbm", "number"),
        "total_volume": ("cargo.volume_cbm", "number"),
        "cbm": ("cargo.volume_cbm", "number"),
        "nb_colis": ("cargo.pieces_count", "number"),
        "pieces": ("cargo.pieces_count", "number"),
        "packages": ("cargo.pieces_count", "number"),
        "description": ("cargo.description", "text"),
        "goods_description": ("cargo.description", "text"),
        "designation": ("cargo.description", "text"),
        "commodity": ("cargo.description", "text"),
        "hs_code": ("cargo.hs_code", "text"),
        "code_sh": ("cargo.hs_code", "text"),
        "tariff_code": ("cargo.hs_code", "text"),
        "total_value": ("cargo.value", "number"),
        "invoice_value": ("cargo.value", "number"),
        "cargo_value": ("cargo.value", "number"),
        "valeur_totale": ("cargo.value", "number"),
        "currency": ("cargo.currency", "currency"),
        "devise": ("cargo.currency", "currency"),
        "client_email": ("contacts.client_email", "text"),
        "loading_date": ("timing.loading_date", "date"),
        "date_chargement": ("timing.loading_date", "date"),
    }
)

LINE_ITEM_FIELDS = ("articles", "line_items", "items", "lignes")

_ITEM_ALIASES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "code": ("code", "article", "ref", "reference", "hs_code", "part_number"),
        "value": ("value", "amount", "total", "price", "montant", "valeur"),
        "currency": ("currency", "devise"),
        "description": ("description", "designation", "libelle", "name"),
    }
)

_DOC_PATTERNS: tuple[tuple[str, str, re.Pattern[str]], ...] = (
    ("cargo.hs_code", "text", re.compile(r"(?:\bHS\s*code|code\s*SH|tariff\s*code)\s*[:#]?\s*(\d{4}[\d. ]{0,10})", re.IGNORECASE)),
    (
        "cargo.weight_kg",
        "weight",
        re.compile(r"(?:gross\s*weight|poids\s*brut|G\.W\.)\s*[:=]?\s*(\d[\d .,\xa0]*\s*(?:kgs?|t|tons?|tonnes?|mt)\b)", re.IGNORECASE),
    ),
    (
        "documents.bl_number",
        "text",
        re.compile(r"(?:B/L|BL|bill of lading)\s*(?:no\.?|n°|number|#)\s*[:=]?\s*([A-Z0-9-]{6,25})", re.IGNORECASE),
    ),
)


def _coerce(raw: Any, kind: str) -> tuple[Any, str] | None:
    """Normalize a raw field into (value, value type), or None when unusable."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    if kind == "weight":
        kg = parse_weight_kg(raw)
        return (kg, "number") if kg else None
    if kind == "number":
        num = parse_number(raw)
        return (num, "number") if num is not None else None
    if kind == "incoterm":
        token = str(raw).strip().upper()[:3]
        return (token, "text") if token in INCOTERMS else None
    if kind == "currency":
        code = re.sub(r"\s", "", str(raw)).upper()
        return ({"FCFA": "XOF", "€": "EUR", "$": "USD"}.get(code, code), "text")
    if kind == "containers":
        if isinstance(raw, list):
            items = [c for c in raw if isinstance(c, dict)]
            return (items, "json") if items else None
        parsed = parse_containers(str(raw))
        return (parsed, "json") if parsed else None
    if kind == "date":
        return (raw, "date")
    return (str(raw).strip(), "text")


def _line_items(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    items: list[dict[str, Any]] = []
    for row in raw:
        if not isinstance(row, dict):
            continue
        normalized = {_norm_key(k): v for k, v in row.items()}
        picked: dict[str, Any] = {}
        for field_name, aliases in _ITEM_ALIASES.items():
            picked[field_name] = next((normalized[a] for a in aliases if normalized.get(a) not in (None, "")), None)
        picked["value"] = parse_number(picked["value"])
        for text_field in ("code", "currency", "description"):
            if picked[text_field] is not None:
                picked[text_field] = str(picked[text_field]).strip()
        try:
            item = AttachmentLineItem.model_validate(picked)
        except ValidationError as exc:
            logger.info("Skipping malformed line item: %s", exc)
            continue
        if item.value is not None:
            items.append(item.model_dump())
    return items


@dataclass
class AttachmentFactMapper:
    confidence: float = 0.9
    regex_confidence: float = 0.85

    def map_attachments(self, attachments: list[dict[str, Any]]) -> list[CandidateFact]:
        found: dict[str, CandidateFact] = {}

        for att in attachments:
            att_id = str(att.get("id") or "") or None
            name = str(att.get("filename") or att.get("file_name") or "attachment")
            data = att.get("extracted_data")
            if isinstance(data, dict):
                self._map_structured(data, att_id, name, found)

        # Free-text scan only fills keys the structured data left empty.
        for att in attachments:
            text = att.get("extracted_text")
            if isinstance(text, str) and text.strip():
                self._scan_text(text, str(att.get("id") or "") or None, found)

        return list(found.values())

    def _put(self, found: dict[str, CandidateFact], candidate: CandidateFact) -> None:
        # First matching attachment wins per key within one pass.
        if candidate.key not in found:
            found[candidate.key] = candidate

    def _map_structured(
        self,
        data: dict[str, Any],
        att_id: str | None,
        name: str,
        found: dict[str, CandidateFact],
    ) -> None:
        for raw_key, raw_value in data.items():
            norm = _norm_key(raw_key)
            if norm in LINE_ITEM_FIELDS:
                items = _line_items(raw_value)
                if len(items) >= 2:
                    self._put(
                        found,
                        CandidateFact(
                            key="cargo.articles_detail",
                            category="cargo",
                            value=make_value(items, "json"),
                            source_type=SourceType.ATTACHMENT_EXTRACTED,
                            confidence=self.confidence,
                            excerpt=f"{name}: {len(items)} priced line items",
                            source_reference=att_id,
                        ),
                    )
                continue

            mapping = FIELD_MAP.get(norm)
            if not mapping:
                continue
            fact_key, kind = mapping
            coerced = _coerce(raw_value, kind)
            if coerced is None:
                continue
            value, value_type = coerced
            if fact_key == "routing.destination_city":
                value = clean_destination_city(str(value))
                if not value:
                    continue
            try:
                fact_value = make_value(value, value_type)
            except ValueError as exc:
                logger.info("Skipping attachment field %s from %s: %s", raw_key, name, exc)
                continue
            self._put(
                found,
                CandidateFact(
                    key=fact_key,
                    category=fact_key.split(".", 1)[0],
                    value=fact_value,
                    source_type=SourceType.ATTACHMENT_EXTRACTED,
                    confidence=self.confidence,
                    excerpt=f"{name}: {raw_key}={str(raw_value)[:120]}",
                    source_reference=att_id,
                ),
            )

    def _scan_text(self, text: str, att_id: str | None, found: dict[str, CandidateFact]) -> None:
        for fact_key, kind, pattern in _DOC_PATTERNS:
            if fact_key in found:
                continue
            match = pattern.search(text)
            if not match:
                continue
            coerced = _coerce(match.group(1).strip(" ."), kind)
            if coerced is None:
                continue
            value, value_type = coerced
            self._put(
                found,
                CandidateFact(
                    key=fact_key,
                    category=fact_key.split(".", 1)[0],
                    value=make_value(value, value_type),
                    source_type=SourceType.DOCUMENT_REGEX,
                    confidence=self.regex_confidence,
                    excerpt=match.group(0)[:200],
                    source_reference=att_id,
                ),
            )
