# listing_sync/matcher.py
"""Fuzzy matching of feed addresses to buildings in the catalog."""
import json
import re
from typing import Dict, List, Optional

from pydantic import BaseModel
from rapidfuzz.distance import Levenshtein

from . import config
from .utils import logger


class Building(BaseModel):
    slug: str
    name: str
    address: str


def load_buildings(path: str = None) -> List[Building]:
    path = path or config.BUILDINGS_FILE
    with open(path, "r", encoding="utf-8") as fh:
        return [Building.model_validate(item) for item in json.load(fh)]


_INTERSTATE = re.compile(r"\b(interstate\s+highway|interstate\s+hwy|interstate)\b", re.I)
_SUFFIXES = re.compile(r"\b(avenue|ave|street|st|road|rd|drive|dr|boulevard|blvd|lane|ln|court|ct|place|pl|way)\b", re.I)
# only a 1-2 letter direction right after the street number
_DIRECTION = re.compile(r"^(\d+)\s+\b(ne|nw|se|sw|n|s|e|w)\b", re.I)
# unit numbers leak into addresses
_UNIT = re.compile(r"(\b(unit|apt|apartment|number|no|ste|suite)\b|#).*", re.I)


def normalize_address(addr: str) -> str:
    addr = addr.lower()
    addr = _INTERSTATE.sub("ih", addr)
    addr = _SUFFIXES.sub("", addr)
    addr = _DIRECTION.sub(r"\1", addr)
    addr = _UNIT.sub("", addr)
    addr = re.sub(r"[^\w\s]", "", addr)
    return re.sub(r"\s+", " ", addr).strip()


def _similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def _street_number(addr: str) -> Optional[str]:
    m = re.match(r"^(\d+)", addr.strip())
    return m.group(1) if m else None


def _streets_share_word(a: str, b: str) -> bool:
    words_a = {w for w in a.split() if len(w) > 1}
    words_b = {w for w in b.split() if len(w) > 1}
    return bool(words_a & words_b)


class AddressMatcher:
    """Maps a listing's address (and optional building name) to a building slug.

    Name and address are each compared to every building with normalized
    Levenshtein similarity; the best score above `threshold` wins. When
    nothing clears the threshold, a building with the same street number
    and at least one shared street word is accepted.
    """

    def __init__(self, buildings: List[Building], threshold: float = config.MATCH_THRESHOLD):
        self.buildings = list(buildings)
        self.threshold = threshold
        self._by_slug: Dict[str, Building] = {b.slug: b for b in self.buildings}

    def display_name(self, group_key: str) -> Optional[str]:
        building = self._by_slug.get(group_key)
        return building.name if building else None

    def match(self, address: str, name_hint: Optional[str] = None) -> Optional[str]:
        normalized_addr = normalize_address(address or "")
        normalized_name = normalize_address(name_hint) if name_hint else ""

        best_slug, best_score = None, 0.0
        for building in self.buildings:
            score = max(
                _similarity(normalized_name, normalize_address(building.name)),
                _similarity(normalized_addr, normalize_address(building.address)),
            )
            if score > self.threshold and score > best_score:
                best_slug, best_score = building.slug, score

        if best_slug is None:
            best_slug = self._match_street_number(address or "")

        if best_slug is None:
            logger.debug("Unmatched address=%r building=%r", address, name_hint)
        return best_slug

    def _match_street_number(self, address: str) -> Optional[str]:
        number = _street_number(address)
        if not number:
            return None
        street = re.sub(r"^\d+\s*", "", normalize_address(address))
        for building in self.buildings:
            if _street_number(building.address) != number:
                continue
            building_street = re.sub(r"^\d+\s*", "", normalize_address(building.address))
            if _streets_share_word(street, building_street):
                return building.slug
        return None
