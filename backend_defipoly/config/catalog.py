"""
Static property catalog: properties, sets, yields, cooldowns, set bonuses.

Loaded once at startup and treated as read-only. The built-in catalog mirrors
the deployed program's configuration (22 properties in 8 colour sets); a JSON
file can override it via PROPERTY_CATALOG_PATH.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from backend_defipoly.core.exceptions import CatalogError, UnknownPropertyError

BPS_DENOMINATOR = 10_000
DEFAULT_SET_BONUS_BPS = 4000  # 40%


@dataclass(frozen=True)
class Property:
    """One purchasable property."""

    id: int
    set_id: int
    price: int
    """Price per slot in the token's smallest unit."""
    yield_bps: int
    """Daily yield on price, in basis points."""
    cooldown_hours: int
    name: str = ""

    @property
    def cooldown_seconds(self) -> int:
        return self.cooldown_hours * 3600

    @property
    def steal_cooldown_seconds(self) -> int:
        """Steal cooldown is half of the buy cooldown, per property."""
        return self.cooldown_seconds // 2


@dataclass(frozen=True)
class PropertySet:
    """A colour group; owning a slot in every member property grants the bonus."""

    id: int
    property_ids: tuple[int, ...]
    bonus_bps: int = DEFAULT_SET_BONUS_BPS
    name: str = ""

    @property
    def member_count(self) -> int:
        return len(self.property_ids)


class PropertyCatalog:
    """Read-only lookup over properties and sets."""

    def __init__(self, properties: Iterable[Property], sets: Iterable[PropertySet]) -> None:
        self._properties: dict[int, Property] = {}
        for prop in properties:
            if prop.id in self._properties:
                raise CatalogError(f"Duplicate property id {prop.id}")
            if prop.price < 0 or prop.yield_bps < 0 or prop.cooldown_hours < 0:
                raise CatalogError(f"Property {prop.id} has a negative price, yield, or cooldown")
            self._properties[prop.id] = prop
        self._sets: dict[int, PropertySet] = {s.id: s for s in sets}
        for prop in self._properties.values():
            pset = self._sets.get(prop.set_id)
            if pset is None:
                raise CatalogError(f"Property {prop.id} references unknown set {prop.set_id}")
            if prop.id not in pset.property_ids:
                raise CatalogError(f"Set {pset.id} does not list member property {prop.id}")
        for pset in self._sets.values():
            for pid in pset.property_ids:
                if pid not in self._properties:
                    raise CatalogError(f"Set {pset.id} lists unknown property {pid}")

    def __contains__(self, property_id: object) -> bool:
        return property_id in self._properties

    def __len__(self) -> int:
        return len(self._properties)

    @property
    def properties(self) -> list[Property]:
        return [self._properties[k] for k in sorted(self._properties)]

    @property
    def sets(self) -> list[PropertySet]:
        return [self._sets[k] for k in sorted(self._sets)]

    def get(self, property_id: int) -> Property:
        try:
            return self._properties[property_id]
        except KeyError:
            raise UnknownPropertyError(f"Unknown property id {property_id}") from None

    def get_set(self, set_id: int) -> PropertySet:
        try:
            return self._sets[set_id]
        except KeyError:
            raise UnknownPropertyError(f"Unknown set id {set_id}") from None

    def set_of(self, property_id: int) -> PropertySet:
        return self._sets[self.get(property_id).set_id]

    def set_cooldown_seconds(self, set_id: int) -> int:
        """Buy cooldown for a set: the cooldown of its first member property."""
        pset = self.get_set(set_id)
        return self._properties[pset.property_ids[0]].cooldown_seconds


def _build(rows: list[tuple[int, int, int, int, int, str]], set_names: dict[int, str]) -> PropertyCatalog:
    properties = [
        Property(id=pid, set_id=sid, price=price, yield_bps=bps, cooldown_hours=hours, name=name)
        for pid, sid, price, bps, hours, name in rows
    ]
    members: dict[int, list[int]] = {}
    for prop in properties:
        members.setdefault(prop.set_id, []).append(prop.id)
    sets = [
        PropertySet(id=sid, property_ids=tuple(pids), name=set_names.get(sid, ""))
        for sid, pids in members.items()
    ]
    return PropertyCatalog(properties, sets)


_DEFAULT_ROWS: list[tuple[int, int, int, int, int, str]] = [
    (0, 0, 1_500_000_000_000, 600, 6, "Mediterranean Avenue"),
    (1, 0, 1_500_000_000_000, 600, 6, "Baltic Avenue"),
    (2, 1, 3_500_000_000_000, 650, 8, "Oriental Avenue"),
    (3, 1, 3_500_000_000_000, 650, 8, "Vermont Avenue"),
    (4, 1, 3_500_000_000_000, 650, 8, "Connecticut Avenue"),
    (5, 2, 7_500_000_000_000, 700, 10, "St. Charles Place"),
    (6, 2, 7_500_000_000_000, 700, 10, "States Avenue"),
    (7, 2, 7_500_000_000_000, 700, 10, "Virginia Avenue"),
    (8, 3, 15_000_000_000_000, 750, 12, "St. James Place"),
    (9, 3, 15_000_000_000_000, 750, 12, "Tennessee Avenue"),
    (10, 3, 15_000_000_000_000, 750, 12, "New York Avenue"),
    (11, 4, 30_000_000_000_000, 800, 16, "Kentucky Avenue"),
    (12, 4, 30_000_000_000_000, 800, 16, "Indiana Avenue"),
    (13, 4, 30_000_000_000_000, 800, 16, "Illinois Avenue"),
    (14, 5, 60_000_000_000_000, 850, 20, "Atlantic Avenue"),
    (15, 5, 60_000_000_000_000, 850, 20, "Ventnor Avenue"),
    (16, 5, 60_000_000_000_000, 850, 20, "Marvin Gardens"),
    (17, 6, 120_000_000_000_000, 900, 24, "Pacific Avenue"),
    (18, 6, 120_000_000_000_000, 900, 24, "North Carolina Avenue"),
    (19, 6, 120_000_000_000_000, 900, 24, "Pennsylvania Avenue"),
    (20, 7, 250_000_000_000_000, 1000, 24, "Park Place"),
    (21, 7, 250_000_000_000_000, 1000, 24, "Boardwalk"),
]

_DEFAULT_SET_NAMES = {
    0: "Brown",
    1: "Light Blue",
    2: "Pink",
    3: "Orange",
    4: "Red",
    5: "Yellow",
    6: "Green",
    7: "Dark Blue",
}


def default_catalog() -> PropertyCatalog:
    """Return the built-in catalog."""
    return _build(_DEFAULT_ROWS, _DEFAULT_SET_NAMES)


def catalog_from_dict(data: dict[str, Any]) -> PropertyCatalog:
    """
    Build a catalog from a JSON-style mapping:

        {"properties": [{"id": 0, "setId": 0, "price": 100, "yieldBps": 600, "cooldownHours": 6}],
         "sets": [{"id": 0, "bonusBps": 4000}]}

    Set members are derived from the properties; "sets" only carries per-set bonus and name.
    """
    try:
        raw_props = data["properties"]
        properties = [
            Property(
                id=int(p["id"]),
                set_id=int(p.get("setId", p.get("set_id"))),
                price=int(p["price"]),
                yield_bps=int(p.get("yieldBps", p.get("yield_bps"))),
                cooldown_hours=int(p.get("cooldownHours", p.get("cooldown_hours", 24))),
                name=str(p.get("name", "")),
            )
            for p in raw_props
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise CatalogError(f"Invalid property entry: {e}") from e
    overrides = {int(s["id"]): s for s in data.get("sets") or [] if "id" in s}
    members: dict[int, list[int]] = {}
    for prop in properties:
        members.setdefault(prop.set_id, []).append(prop.id)
    sets = []
    for sid, pids in members.items():
        extra = overrides.get(sid, {})
        sets.append(
            PropertySet(
                id=sid,
                property_ids=tuple(pids),
                bonus_bps=int(extra.get("bonusBps", extra.get("bonus_bps", DEFAULT_SET_BONUS_BPS))),
                name=str(extra.get("name", "")),
            )
        )
    return PropertyCatalog(properties, sets)


def load_catalog(path: str | Path | None = None) -> PropertyCatalog:
    """Load the catalog from a JSON file, or the built-in one when path is None."""
    if path is None:
        return default_catalog()
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogError(f"Could not read property catalog {path}: {e}") from e
    return catalog_from_dict(data)
