"""Static geography, vocabulary and code tables shared by the pipeline stages."""

from __future__ import annotations

import re
import unicodedata
from types import MappingProxyType
from typing import Mapping


HOME_COUNTRY = "SENEGAL"

TRANSIT_HUBS: tuple[str, ...] = ("MALI", "MAURITANIE", "GUINEE", "BURKINA", "NIGER", "GAMBIE")

INCOTERMS: tuple[str, ...] = (
    "EXW", "FCA", "FAS", "FOB", "CFR", "CIF", "CPT", "CIP", "DAP", "DPU", "DDP", "DAT",
)

CONTAINER_TYPE_ALIASES: Mapping[str, str] = MappingProxyType(
    {"HC": "HC", "DV": "DV", "GP": "DV", "DC": "DV", "DRY": "DV", "OT": "OT", "FR": "FR", "RF": "RF"}
)

VOLUMETRIC_FACTOR = 167
CHARGEABLE_WEIGHT_RULE = "IATA_167"


def fold(text: str) -> str:
    """Uppercase, strip accents and collapse punctuation to single spaces."""
    decomposed = unicodedata.normalize("NFKD", str(text or ""))
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"[^A-Z0-9]+", " ", ascii_only.upper()).strip()


COUNTRY_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "SENEGAL": "SENEGAL",
        "SN": "SENEGAL",
        "MALI": "MALI",
        "ML": "MALI",
        "MAURITANIE": "MAURITANIE",
        "MAURITANIA": "MAURITANIE",
        "GUINEE": "GUINEE",
        "GUINEA": "GUINEE",
        "GUINEE CONAKRY": "GUINEE",
        "BURKINA": "BURKINA",
        "BURKINA FASO": "BURKINA",
        "NIGER": "NIGER",
        "GAMBIE": "GAMBIE",
        "GAMBIA": "GAMBIE",
        "THE GAMBIA": "GAMBIE",
        "FRANCE": "FRANCE",
        "BELGIQUE": "BELGIUM",
        "BELGIUM": "BELGIUM",
        "NETHERLANDS": "NETHERLANDS",
        "PAYS BAS": "NETHERLANDS",
        "GERMANY": "GERMANY",
        "ALLEMAGNE": "GERMANY",
        "SPAIN": "SPAIN",
        "ESPAGNE": "SPAIN",
        "ITALY": "ITALY",
        "ITALIE": "ITALY",
        "CHINA": "CHINA",
        "CHINE": "CHINA",
        "INDIA": "INDIA",
        "INDE": "INDIA",
        "TURKEY": "TURKEY",
        "TURQUIE": "TURKEY",
        "UAE": "UAE",
        "UNITED ARAB EMIRATES": "UAE",
        "EMIRATS ARABES UNIS": "UAE",
        "USA": "USA",
        "UNITED STATES": "USA",
        "ETATS UNIS": "USA",
        "MOROCCO": "MOROCCO",
        "MAROC": "MOROCCO",
        "COTE D IVOIRE": "COTE D IVOIRE",
        "IVORY COAST": "COTE D IVOIRE",
    }
)

PORT_COUNTRY: Mapping[str, str] = MappingProxyType(
    {
        "DAKAR": "SENEGAL",
        "ZIGUINCHOR": "SENEGAL",
        "KAOLACK": "SENEGAL",
        "NOUAKCHOTT": "MAURITANIE",
        "NOUADHIBOU": "MAURITANIE",
        "CONAKRY": "GUINEE",
        "BANJUL": "GAMBIE",
        "ABIDJAN": "COTE D IVOIRE",
        "ANTWERP": "BELGIUM",
        "ANVERS": "BELGIUM",
        "ROTTERDAM": "NETHERLANDS",
        "LE HAVRE": "FRANCE",
        "MARSEILLE": "FRANCE",
        "FOS": "FRANCE",
        "HAMBURG": "GERMANY",
        "BREMERHAVEN": "GERMANY",
        "VALENCIA": "SPAIN",
        "ALGECIRAS": "SPAIN",
        "BARCELONA": "SPAIN",
        "GENOA": "ITALY",
        "GENES": "ITALY",
        "SHANGHAI": "CHINA",
        "NINGBO": "CHINA",
        "SHENZHEN": "CHINA",
        "QINGDAO": "CHINA",
        "TIANJIN": "CHINA",
        "XIAMEN": "CHINA",
        "GUANGZHOU": "CHINA",
        "NHAVA SHEVA": "INDIA",
        "MUNDRA": "INDIA",
        "MERSIN": "TURKEY",
        "ISTANBUL": "TURKEY",
        "JEBEL ALI": "UAE",
        "CASABLANCA": "MOROCCO",
        "HOUSTON": "USA",
        "NEW YORK": "USA",
    }
)

AIRPORT_COUNTRY: Mapping[str, str] = MappingProxyType(
    {
        "DSS": "SENEGAL",
        "BKO": "MALI",
        "NKC": "MAURITANIE",
        "CKY": "GUINEE",
        "OUA": "BURKINA",
        "NIM": "NIGER",
        "BJL": "GAMBIE",
        "ABJ": "COTE D IVOIRE",
        "CDG": "FRANCE",
        "ORY": "FRANCE",
        "LYS": "FRANCE",
        "BRU": "BELGIUM",
        "LGG": "BELGIUM",
        "AMS": "NETHERLANDS",
        "FRA": "GERMANY",
        "MAD": "SPAIN",
        "FCO": "ITALY",
        "MXP": "ITALY",
        "IST": "TURKEY",
        "DXB": "UAE",
        "DWC": "UAE",
        "PVG": "CHINA",
        "PEK": "CHINA",
        "CAN": "CHINA",
        "SZX": "CHINA",
        "BOM": "INDIA",
        "DEL": "INDIA",
        "JFK": "USA",
        "ORD": "USA",
        "CMN": "MOROCCO",
    }
)

# Airport codes accepted as an air-mode signal. Anything spelled like an incoterm is excluded.
IATA_WHITELIST: frozenset[str] = frozenset(AIRPORT_COUNTRY) - frozenset(INCOTERMS)

SENEGAL_CITIES: tuple[str, ...] = (
    "Dakar", "Pikine", "Guédiawaye", "Rufisque", "Thiès", "Mbour", "Tivaouane", "Diamniadio",
    "Diourbel", "Touba", "Mbacké", "Kaolack", "Fatick", "Kaffrine", "Saint-Louis", "Richard-Toll",
    "Louga", "Ziguinchor", "Kolda", "Sédhiou", "Tambacounda", "Kédougou", "Bakel", "Matam",
    "Sandiara", "Bargny", "Mboro",
)

MALI_CITIES: tuple[str, ...] = (
    "Bamako", "Sikasso", "Kayes", "Kati", "Koulikoro", "Ségou", "Mopti", "Gao", "Tombouctou",
    "Kidal", "Koutiala", "Niono", "Djenné", "Kéniéba", "Kita", "Sadiola", "Morila",
)

OTHER_HUB_CITIES: Mapping[str, str] = MappingProxyType(
    {
        "Nouakchott": "MAURITANIE",
        "Nouadhibou": "MAURITANIE",
        "Zouerate": "MAURITANIE",
        "Conakry": "GUINEE",
        "Kankan": "GUINEE",
        "Boké": "GUINEE",
        "Ouagadougou": "BURKINA",
        "Bobo-Dioulasso": "BURKINA",
        "Niamey": "NIGER",
        "Banjul": "GAMBIE",
        "Serekunda": "GAMBIE",
    }
)


def _build_city_index() -> Mapping[str, tuple[str, str]]:
    index: dict[str, tuple[str, str]] = {}
    for name in SENEGAL_CITIES:
        index[fold(name)] = (name, HOME_COUNTRY)
    for name in MALI_CITIES:
        index[fold(name)] = (name, "MALI")
    for name, country in OTHER_HUB_CITIES.items():
        index[fold(name)] = (name, country)
    return MappingProxyType(index)


# folded city name -> (canonical display name, country)
CITY_INDEX: Mapping[str, tuple[str, str]] = _build_city_index()

MARITIME_KEYWORDS: tuple[str, ...] = (
    "container", "conteneur", "fcl", "lcl", "vessel", "navire", "bill of lading", "b/l",
    "ocean freight", "sea freight", "fret maritime", "by sea", "par mer", "port of loading",
    "port de chargement", "20dv", "40dv", "40hc", "20'", "40'",
)

AIR_TRIGGERS: tuple[str, ...] = (
    "by air", "air freight", "airfreight", "air waybill", "awb", "air cargo", "par avion",
    "fret aerien", "fret aérien",
)

HEAVY_LIFT_KEYWORDS: tuple[str, ...] = (
    "heavy lift", "heavy-lift", "project cargo", "breakbulk", "break bulk", "out of gauge",
    "oog", "hors gabarit", "colis lourd", "transformer", "transformateur", "crane", "grue",
    "excavator", "pelle hydraulique", "generator set", "groupe electrogene",
)


def country_from_alias(value: str) -> str | None:
    return COUNTRY_ALIASES.get(fold(value))


def country_from_port(value: str) -> str | None:
    folded = fold(value)
    if folded in AIRPORT_COUNTRY:
        return AIRPORT_COUNTRY[folded]
    for port, country in PORT_COUNTRY.items():
        if re.search(rf"\b{port}\b", folded):
            return country
    return None


def city_lookup(value: str) -> tuple[str, str] | None:
    """Return (canonical name, country) for the first known city inside ``value``."""
    folded = fold(value)
    if folded in CITY_INDEX:
        return CITY_INDEX[folded]
    for key, hit in CITY_INDEX.items():
        if re.search(rf"\b{key}\b", folded):
            return hit
    return None
