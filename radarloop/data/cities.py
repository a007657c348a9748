from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class City:
    name: str
    lat: float
    lon: float
    province: str


CITIES: Tuple[City, ...] = (
    City("Montreal", 45.50884, -73.58781, "QC"),
    City("Quebec City", 46.813878, -71.207981, "QC"),
    City("Amos", 48.574, -78.116, "QC"),
    City("Gatineau", 45.4765, -75.7013, "QC"),
    City("Sherbrooke", 45.4042, -71.8929, "QC"),
    City("Trois-Rivieres", 46.3430, -72.5421, "QC"),
    City("Saguenay", 48.4280, -71.0686, "QC"),
    City("Rimouski", 48.4490, -68.5230, "QC"),
    City("Sept-Iles", 50.2120, -66.3760, "QC"),
    City("Val-d'Or", 48.0970, -77.7828, "QC"),
    City("Toronto", 43.6532, -79.3832, "ON"),
    City("Ottawa", 45.4215, -75.6972, "ON"),
    City("Vancouver", 49.2827, -123.1207, "BC"),
    City("Victoria", 48.4284, -123.3656, "BC"),
    City("Calgary", 51.0447, -114.0719, "AB"),
    City("Edmonton", 53.5461, -113.4938, "AB"),
    City("Winnipeg", 49.8951, -97.1384, "MB"),
    City("Halifax", 44.6488, -63.5752, "NS"),
)

_ALIASES: Dict[str, str] = {
    "quebec": "Quebec City",
    "ville de quebec": "Quebec City",
}


def _normalize(name: str) -> str:
    decomposed = unicodedata.normalize("NFKD", name or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.lower().replace("_", " ").split())


@lru_cache(maxsize=1)
def _index() -> Dict[str, City]:
    index = {_normalize(city.name): city for city in CITIES}
    for alias, target in _ALIASES.items():
        index[alias] = index[_normalize(target)]
    return index


def find_city(name: str) -> Optional[City]:
    return _index().get(_normalize(name))


def city_coordinates(name: str) -> Optional[Tuple[float, float]]:
    city = find_city(name)
    if city is None:
        return None
    return city.lat, city.lon
