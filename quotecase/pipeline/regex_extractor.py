from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from quotecase.pipeline.reference_data import (
    AIR_TRIGGERS,
    CONTAINER_TYPE_ALIASES,
    IATA_WHITELIST,
    INCOTERMS,
    MARITIME_KEYWORDS,
    PORT_COUNTRY,
    city_lookup,
    fold,
)
from quotecase.pipeline.units import parse_number, parse_weight_kg


_INCOTERM_ALT = "|".join(INCOTERMS)
_INCOTERM_LABEL_RE = re.compile(r"\b(?:TERMS?|INCOTERMS?)\s*[:=]\s*([A-Za-z]{3})\b", re.IGNORECASE)
_INCOTERM_TOKEN_RE = re.compile(rf"\b({_INCOTERM_ALT})\b")
_CONTAINER_RE = re.compile(r"(\d+)\s*[xX×]\s*(20|40|45)\s*'?\s*(HC|DV|OT|FR|RF|GP|DC|DRY)?\b", re.IGNORECASE)
_IATA_PAIR_RE = re.compile(r"\b([A-Z]{3})\s*(?:->|-|/|>|to)\s*([A-Z]{3})\b")
_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_FROM_RE = re.compile(r"^From:\s*.*?([\w.+-]+@[\w-]+(?:\.[\w-]+)+)", re.IGNORECASE | re.MULTILINE)

_WEIGHT_RE = re.compile(
    r"(?:gross\s*weight|poids\s*brut|G\.?W\.?|weight|poids)\s*[:=]?\s*(\d[\d .,\xa0]*)\s*(kgs?|kilos?|t|tons?|tonnes?|mt)\b",
    re.IGNORECASE,
)
_VOLUME_RE = re.compile(r"(\d[\d .,\xa0]*)\s*(?:cbm|m3|m³|mc)\b", re.IGNORECASE)
_PIECES_RE = re.compile(
    r"\b(\d+)\s*(?:pieces|pcs|colis|packages|pkgs|cartons|crates|caisses|pallets|palettes)\b",
    re.IGNORECASE,
)
_ORIGIN_PORT_RE = re.compile(
    r"\b(?:POL|port of loading|port de chargement|origine?|from|depuis|ex)\b\s*[:=]?\s*([A-Za-z][A-Za-z .'-]{2,30})",
    re.IGNORECASE,
)
_DEST_PORT_RE = re.compile(r"(?:\bPOD\b|port of discharge|port de d[ée]chargement)\s*[:=]?\s*([A-Za-z][A-Za-z .'-]{2,30})", re.IGNORECASE)
_DEST_CITY_RE = re.compile(
    r"(?:final destination|destination finale|destination|deliver(?:y)? to|livraison(?:\s+[àa])?|lieu de livraison)\s*[:=]?\s*([^\n;]{2,80})",
    re.IGNORECASE,
)
_TO_CITY_RE = re.compile(r"\b(?:to|vers|[àa])\s+([A-Za-zÀ-ÿ'-]{3,30})", re.IGNORECASE)
_DESCRIPTION_RE = re.compile(r"(?:commodity|description|marchandises?|goods|nature)\s*[:=]\s*([^\n]{3,120})", re.IGNORECASE)
_VALUE_RE = re.compile(
    r"(?:invoice value|valeur facture|cargo value|declared value|valeur|value)\s*[:=]?\s*"
    r"(EUR|USD|XOF|FCFA|€|\$)?\s*(\d[\d .,\xa0]*)\s*(EUR|USD|XOF|FCFA|€|\$)?",
    re.IGNORECASE,
)
_HS_RE = re.compile(r"(?:\bHS\s*(?:code)?|code\s*SH|tariff\s*code|nomenclature)\s*[:=#]?\s*(\d{4}[\d. ]{0,10})", re.IGNORECASE)
_LOADING_DATE_RE = re.compile(
    r"(?:loading date|date de chargement|ready date|ETD)\s*[:=]?\s*(\d{4}-\d{2}-\d{2}|\d{2}/\d{2}/\d{4})",
    re.IGNORECASE,
)

_COORDINATE_RE = re.compile(r"-?\d{1,3}[.,]\d+\s*°?\s*[NSEW]?\s*[,;/ ]\s*-?\d{1,3}[.,]\d+\s*°?\s*[NSEW]?|\d+\s*°")
_LODGING_RE = re.compile(r"\b(hotel|h[ôo]tel|resort|lodge|residence|r[ée]sidence|auberge|campement)\b", re.IGNORECASE)
_ADDRESS_RE = re.compile(
    r"(^\d+[\s,])|\b(rue|avenue|av\.|boulevard|bd|route de|street|st\.|road|km\s*\d+|lot|villa|b\.?p\.?\s*\d+|zone industrielle)\b",
    re.IGNORECASE,
)
_CURRENCY_ALIASES = {"€": "EUR", "$": "USD", "FCFA": "XOF"}


def has_keyword(lowered: str, keywords: tuple[str, ...]) -> bool:
    return any(re.search(rf"(?<![a-z0-9]){re.escape(kw)}(?![a-z0-9])", lowered) for kw in keywords)


def parse_containers(text: str) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for qty, size, kind in _CONTAINER_RE.findall(text or ""):
        out.append({"quantity": int(qty), "type": f"{size}{CONTAINER_TYPE_ALIASES.get((kind or 'DV').upper(), 'DV')}"})
    return out


def pick_incoterm(text: str) -> str | None:
    label = _INCOTERM_LABEL_RE.search(text or "")
    if label and label.group(1).upper() in INCOTERMS:
        return label.group(1).upper()
    tokens = _INCOTERM_TOKEN_RE.findall(text or "")
    return tokens[-1] if tokens else None


def find_airport_pair(text: str) -> tuple[str, str] | None:
    for origin, destination in _IATA_PAIR_RE.findall(text or ""):
        if origin != destination and origin in IATA_WHITELIST and destination in IATA_WHITELIST:
            return origin, destination
    return None


def detect_mode(text: str, containers: list[dict[str, Any]] | None = None) -> tuple[str | None, tuple[str, str] | None]:
    """Return (mode, airport pair). Maritime evidence always wins over air signals."""
    lowered = (text or "").lower()
    if containers or has_keyword(lowered, MARITIME_KEYWORDS):
        return "SEA", None
    pair = find_airport_pair(text)
    if has_keyword(lowered, AIR_TRIGGERS) or pair:
        return "AIR", pair
    return None, None


def clean_destination_city(raw: str) -> str | None:
    value = _COORDINATE_RE.sub(" ", str(raw or "")).strip(" ,;-")
    if not value:
        return None
    known = city_lookup(value)
    if known:
        return known[0]
    if _LODGING_RE.search(value) or _ADDRESS_RE.search(value):
        return None
    if len(value) <= 30 and len(value.split()) <= 3 and re.fullmatch(r"[A-Za-zÀ-ÿ' -]+", value):
        return value.title()
    return None


def _known_port(raw: str) -> str | None:
    folded = fold(raw)
    hits: list[tuple[int, str]] = []
    for port in PORT_COUNTRY:
        m = re.search(rf"\b{port}\b", folded)
        if m:
            hits.append((m.start(), port))
    return min(hits)[1].title() if hits else None


def _fact(key: str, category: str, value: Any, value_type: str, confidence: float, excerpt: str) -> dict[str, Any]:
    return {
        "key": key,
        "category": category,
        "value": value,
        "valueType": value_type,
        "confidence": confidence,
        "sourceExcerpt": excerpt.strip()[:200],
        "isAssumption": False,
    }


class RegexFactExtractor:
    """Deterministic extractor used when the AI oracle is not available."""

    engine = "regex"

    def extract_facts(self, thread_text: str, attachment_text: str = "") -> list[dict[str, Any]]:
        text = thread_text or ""
        facts: list[dict[str, Any]] = []

        sender = _FROM_RE.search(text) or _EMAIL_RE.search(text)
        if sender:
            email = sender.group(1) if sender.re is _FROM_RE else sender.group(0)
            facts.append(_fact("contacts.client_email", "contacts", email.lower(), "text", 0.9, sender.group(0)))

        incoterm = pick_incoterm(text)
        if incoterm:
            facts.append(_fact("routing.incoterm", "routing", incoterm, "text", 0.85, incoterm))

        containers = parse_containers(text)
        if containers:
            excerpt = ", ".join(m.group(0) for m in _CONTAINER_RE.finditer(text))
            facts.append(_fact("cargo.containers", "cargo", containers, "json", 0.85, excerpt))

        weight = _WEIGHT_RE.search(text)
        if weight:
            kg = parse_weight_kg(f"{weight.group(1)} {weight.group(2)}")
            if kg:
                facts.append(_fact("cargo.weight_kg", "cargo", kg, "number", 0.8, weight.group(0)))

        volume = _VOLUME_RE.search(text)
        if volume:
            cbm = parse_number(volume.group(1))
            if cbm:
                facts.append(_fact("cargo.volume_cbm", "cargo", cbm, "number", 0.8, volume.group(0)))

        pieces = _PIECES_RE.search(text)
        if pieces:
            facts.append(_fact("cargo.pieces_count", "cargo", int(pieces.group(1)), "number", 0.75, pieces.group(0)))

        for match in _ORIGIN_PORT_RE.finditer(text):
            port = _known_port(match.group(1))
            if port:
                facts.append(_fact("routing.origin_port", "routing", port, "text", 0.75, match.group(0)))
                break

        dest_port = _DEST_PORT_RE.search(text)
        if dest_port and _known_port(dest_port.group(1)):
            facts.append(
                _fact("routing.destination_port", "routing", _known_port(dest_port.group(1)), "text", 0.75, dest_port.group(0))
            )

        dest = _DEST_CITY_RE.search(text)
        if dest:
            facts.append(_fact("routing.destination_city", "routing", dest.group(1).strip(), "text", 0.7, dest.group(0)))
        else:
            for match in _TO_CITY_RE.finditer(text):
                if city_lookup(match.group(1)):
                    facts.append(_fact("routing.destination_city", "routing", match.group(1), "text", 0.6, match.group(0)))
                    break

        pair = find_airport_pair(text)
        if pair:
            facts.append(_fact("routing.origin_airport", "routing", pair[0], "text", 0.7, f"{pair[0]}-{pair[1]}"))
            facts.append(_fact("routing.destination_airport", "routing", pair[1], "text", 0.7, f"{pair[0]}-{pair[1]}"))

        description = _DESCRIPTION_RE.search(text)
        if description:
            facts.append(_fact("cargo.description", "cargo", description.group(1).strip(), "text", 0.7, description.group(0)))

        value = _VALUE_RE.search(text)
        if value:
            amount = parse_number(value.group(2))
            currency = (value.group(1) or value.group(3) or "").upper()
            if amount:
                facts.append(_fact("cargo.value", "cargo", amount, "number", 0.7, value.group(0)))
            if currency:
                currency = _CURRENCY_ALIASES.get(currency, currency)
                facts.append(_fact("cargo.currency", "cargo", currency, "text", 0.7, value.group(0)))

        hs = _HS_RE.search(text) or _HS_RE.search(attachment_text or "")
        if hs:
            facts.append(_fact("cargo.hs_code", "cargo", hs.group(1).strip(" ."), "text", 0.7, hs.group(0)))

        loading = _LOADING_DATE_RE.search(text)
        if loading:
            raw = loading.group(1)
            try:
                iso = raw if "-" in raw else datetime.strptime(raw, "%d/%m/%Y").date().isoformat()
            except ValueError:
                iso = None
            if iso:
                facts.append(_fact("timing.loading_date", "timing", iso, "date", 0.7, loading.group(0)))

        return facts
