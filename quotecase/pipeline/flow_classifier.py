from __future__ import annotations

from dataclasses import dataclass

from quotecase.domain.models import FactSnapshot
from quotecase.pipeline.reference_data import (
    HEAVY_LIFT_KEYWORDS,
    HOME_COUNTRY,
    TRANSIT_HUBS,
    city_lookup,
    country_from_alias,
    country_from_port,
)
from quotecase.pipeline.regex_extractor import has_keyword


PENDING = "PENDING"
UNKNOWN = "UNKNOWN"
EXPORT_FLOW = f"EXPORT_{HOME_COUNTRY}"
BREAKBULK_PROJECT = "BREAKBULK_PROJECT"
AIR_IMPORT = "AIR_IMPORT"
SEA_FCL_IMPORT = "SEA_FCL_IMPORT"
SEA_BREAKBULK_IMPORT = "SEA_BREAKBULK_IMPORT"

PROJECT_WEIGHT_KG = 30_000
IMPORT_WEIGHT_KG = 5_000


@dataclass(frozen=True)
class FlowClassification:
    request_type: str
    assumption_flow: str
    origin_country: str | None
    destination_country: str | None
    transport_mode: str | None
    trace: tuple[str, ...]


def resolve_country(snapshot: FactSnapshot, side: str) -> tuple[str | None, str]:
    """Country for ``side`` ("origin"/"destination") and how it was found."""
    direct = snapshot.text(f"routing.{side}_country")
    country = country_from_alias(direct) if direct else None
    if country:
        return country, "country"

    for key in (f"routing.{side}_port", f"routing.{side}_airport"):
        value = snapshot.text(key)
        country = country_from_port(value) if value else None
        if country:
            return country, key.split(".", 1)[1]

    city = snapshot.text(f"routing.{side}_city")
    hit = city_lookup(city) if city else None
    if hit:
        return hit[1], "city"
    return None, "unresolved"


def _import_variant(mode: str | None, has_containers: bool) -> str:
    if mode == "AIR":
        return AIR_IMPORT
    if has_containers:
        return SEA_FCL_IMPORT
    return SEA_BREAKBULK_IMPORT


def classify_flow(snapshot: FactSnapshot, has_attachment_content: bool = False) -> FlowClassification:
    # Assumption-sourced facts never feed classification.
    facts = snapshot.without_assumptions()
    origin, origin_via = resolve_country(facts, "origin")
    destination, destination_via = resolve_country(facts, "destination")
    containers = facts.containers()
    weight = facts.number("cargo.weight_kg") or 0.0
    mode = facts.text("routing.transport_mode").upper() or None
    heavy = has_keyword(facts.text("cargo.description").lower(), HEAVY_LIFT_KEYWORDS)

    trace = [
        f"origin={origin or '-'} via {origin_via}",
        f"destination={destination or '-'} via {destination_via}",
        f"containers={len(containers)} weight_kg={weight:g} mode={mode or '-'} heavy_lift={heavy}",
    ]

    if destination in TRANSIT_HUBS:
        request_type = f"TRANSIT_{destination}"
        trace.append(f"rule 1: destination is transit hub -> {request_type}")
    elif origin == HOME_COUNTRY and destination and destination != HOME_COUNTRY:
        request_type = EXPORT_FLOW
        trace.append(f"rule 2: origin home, destination abroad -> {request_type}")
    elif not containers and (weight > PROJECT_WEIGHT_KG or heavy):
        request_type = BREAKBULK_PROJECT
        trace.append(f"rule 3: no containers and heavy cargo -> {request_type}")
    elif destination == HOME_COUNTRY and (weight > IMPORT_WEIGHT_KG or containers):
        request_type = _import_variant(mode, bool(containers))
        trace.append(f"rule 4: import to home -> {request_type}")
    elif destination == HOME_COUNTRY:
        trace.append(f"rule 5: import to home, weak signals -> {PENDING}")
        if has_attachment_content:
            request_type = _import_variant(mode, bool(containers))
            trace.append(f"{PENDING} escalated by attachment content -> {request_type}")
        else:
            request_type = UNKNOWN
            trace.append(f"{PENDING} without attachment content -> {UNKNOWN}")
    else:
        request_type = UNKNOWN
        trace.append(f"rule 6: no rule matched -> {UNKNOWN}")

    assumption_flow = request_type
    if request_type == UNKNOWN and mode == "AIR":
        assumption_flow = AIR_IMPORT
        trace.append(f"air mode detected, assumptions use {AIR_IMPORT}")

    return FlowClassification(
        request_type=request_type,
        assumption_flow=assumption_flow,
        origin_country=origin,
        destination_country=destination,
        transport_mode=mode,
        trace=tuple(trace),
    )
