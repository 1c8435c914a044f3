# tiles.py: catalog parsing, expansion and symmetry checks
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple

from config import CFG
from models import Cell, DIRECTIONS, Direction, Possibility, Rotation, Size3, Tile, Tileset
from solver.errors import CatalogError, ConfigurationError

log = logging.getLogger(__name__)

WILDCARD = "*"
DEFAULT_BORDER = "border"

_FLAG_KEYS: Dict[str, Tuple[str, ...]] = {
    "allow_rotation": ("allow_rotation", "allowRotation"),
    "allow_free_rotation": ("allow_free_rotation", "allowFreeRotation"),
    "same_rotation_when_stacked": ("same_rotation_when_stacked", "sameRotationWhenStacked"),
    "dont_instantiate": ("dont_instantiate", "dontInstantiate"),
}
_SIZE_KEYS = ("size", "footprint", "custom_size", "customSize")


def _to_float(x: Any) -> Optional[float]:
    try:
        return float(x)
    except Exception:
        return None


def _to_bool(x: Any) -> bool:
    if isinstance(x, str):
        return x.strip().lower() not in ("", "0", "false", "no", "off")
    return bool(x)


def _as_listish(val: Any) -> List[Any]:
    if val is None:
        return []
    if isinstance(val, (list, tuple, set, frozenset)):
        return list(val)
    if isinstance(val, str):
        return [p.strip() for p in val.split(",") if p.strip()]
    return [val]


def _first(entry: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for k in keys:
        if k in entry:
            return entry[k]
    return None


def _parse_size(raw: Any, name: str) -> Size3:
    if raw is None:
        return Size3()
    if isinstance(raw, Mapping):
        parts = [raw.get("x", 1), raw.get("y", 1), raw.get("z", 1)]
    else:
        parts = _as_listish(raw)
    if len(parts) != 3:
        raise CatalogError(f"tile {name!r}: size must have three extents, got {raw!r}")
    try:
        x, y, z = (int(p) for p in parts)
    except (TypeError, ValueError):
        raise CatalogError(f"tile {name!r}: size must be integers, got {raw!r}") from None
    if min(x, y, z) < 1:
        raise CatalogError(f"tile {name!r}: size extents must be at least 1, got {raw!r}")
    return Size3(x, y, z)


def _allowed_names(entry: Mapping[str, Any], direction: Direction) -> List[str]:
    """Neighbour names for one direction, from any of the accepted shapes."""
    label = direction.name.lower()
    nested = entry.get("allowed")
    if isinstance(nested, Mapping):
        for k, v in nested.items():
            if str(k).strip().lower() == label:
                return [str(n) for n in _as_listish(v)]
    titled = label.capitalize()
    for key in (f"allowed_{label}", f"allowed{titled}", f"allowed{titled}List"):
        if key in entry:
            return [str(n) for n in _as_listish(entry[key])]
    return []


def parse_catalog(data: Mapping[str, Any], *, symmetry_check: Optional[str] = None) -> Tileset:
    """Build a :class:`Tileset` from a JSON-like mapping.

    Shape::

        {"border": "border",
         "tiles": [{"name": "floor", "weight": 0.5, "allow_rotation": true,
                    "size": [1, 1, 1],
                    "allowed": {"above": ["air"], "east": ["*"], ...}}]}

    ``"*"`` stands for every tile plus the border.
    """
    if not isinstance(data, Mapping):
        raise CatalogError("catalog must be a mapping")
    entries = data.get("tiles")
    if not isinstance(entries, (list, tuple)) or not entries:
        raise CatalogError("catalog has no tiles")

    border_raw = data.get("border", DEFAULT_BORDER)
    if isinstance(border_raw, Mapping):
        border_raw = border_raw.get("name", DEFAULT_BORDER)
    border = Tile(name=str(border_raw or DEFAULT_BORDER))

    tiles: List[Tile] = []
    names: Dict[str, Tile] = {}
    for entry in entries:
        if not isinstance(entry, Mapping):
            raise CatalogError(f"tile entry must be a mapping, got {type(entry).__name__}")
        name = str(entry.get("name") or "").strip()
        if not name:
            raise CatalogError("tile entry without a name")
        if name in names:
            raise CatalogError(f"duplicate tile name {name!r}")
        if name == border.name:
            raise CatalogError(f"tile name {name!r} collides with the border")

        weight = _to_float(entry.get("weight", 0.5))
        if weight is None or weight <= 0:
            raise CatalogError(f"tile {name!r}: weight must be > 0, got {entry.get('weight')!r}")

        flags = {attr: _to_bool(_first(entry, keys)) for attr, keys in _FLAG_KEYS.items()}
        tile = Tile(
            name=name,
            weight=weight,
            size=_parse_size(_first(entry, _SIZE_KEYS), name),
            **flags,
        )
        tiles.append(tile)
        names[name] = tile

    lookup = dict(names)
    lookup[border.name] = border
    for entry, tile in zip(entries, tiles):
        for d in DIRECTIONS:
            for ref in _allowed_names(entry, d):
                if ref == WILDCARD:
                    tile.allow(d, border, *tiles)
                    continue
                other = lookup.get(ref)
                if other is None:
                    raise CatalogError(f"tile {tile.name!r}: unknown neighbour {ref!r} ({d.name})")
                tile.allow(d, other)

    tileset = Tileset(tiles=tiles, border=border)
    check_symmetry(tileset, mode=symmetry_check)
    return tileset


def catalog_to_dict(tileset: Tileset) -> Dict[str, Any]:
    out_tiles = []
    for t in tileset.tiles:
        out_tiles.append({
            "name": t.name,
            "weight": t.weight,
            "allow_rotation": t.allow_rotation,
            "allow_free_rotation": t.allow_free_rotation,
            "same_rotation_when_stacked": t.same_rotation_when_stacked,
            "dont_instantiate": t.dont_instantiate,
            "size": list(t.size.as_tuple()),
            "allowed": {
                d.name.lower(): [n.name for n in _ordered(tileset, t.allowed[d])]
                for d in DIRECTIONS
            },
        })
    return {"border": tileset.border.name, "tiles": out_tiles}


def _ordered(tileset: Tileset, subset: Iterable[Tile]) -> List[Tile]:
    members = set(subset)
    order = [tileset.border] + list(tileset.tiles)
    return [t for t in order if t in members]


# ---------- expansion ----------

def possibilities_from_tiles(tiles: Iterable[Tile]) -> List[Possibility]:
    """Every (tile, rotation) pair the tiles allow, in the order given."""
    out: List[Possibility] = []
    seen = set()
    for tile in tiles:
        for rot in tile.rotations():
            p = Possibility(tile, rot)
            if p not in seen:
                seen.add(p)
                out.append(p)
    return out


def _rotation_from(raw: Any) -> Rotation:
    value = _to_float(raw if raw is not None else 0)
    if value is None:
        raise ConfigurationError(f"bad rotation {raw!r}")
    if value != int(value):
        raise ConfigurationError(f"rotation must be a multiple of 90 degrees, got {raw!r}")
    degrees = int(value) % 360
    if degrees % 90:
        raise ConfigurationError(f"rotation must be a multiple of 90 degrees, got {raw!r}")
    return Rotation(degrees // 90)


def parse_preplaced(tileset: Tileset, records: Iterable[Mapping[str, Any]]) -> List[Tuple[Cell, Possibility]]:
    """Turn ``{"x", "y", "z", "tile", "rotation"}`` records into placements.

    ``rotation`` is in degrees.
    """
    out: List[Tuple[Cell, Possibility]] = []
    for rec in records or ():
        try:
            cell = (int(rec["x"]), int(rec["y"]), int(rec["z"]))
        except (KeyError, TypeError, ValueError):
            raise ConfigurationError(f"pre-placement needs integer x, y, z: {rec!r}") from None
        name = str(rec.get("tile") or "")
        tile = tileset.by_name(name)
        if tile is None or tile is tileset.border:
            raise ConfigurationError(f"pre-placement names unknown tile {name!r}")
        out.append((cell, Possibility(tile, _rotation_from(rec.get("rotation")))))
    return out


# ---------- symmetry ----------

class Asymmetry(NamedTuple):
    tile: Tile
    direction: Direction
    neighbour: Tile

    def describe(self) -> str:
        return (
            f"{self.tile.name} allows {self.neighbour.name} {self.direction.name} "
            f"but {self.neighbour.name} does not allow {self.tile.name} {self.direction.opposite.name}"
        )


def find_asymmetries(tileset: Tileset) -> List[Asymmetry]:
    """One-sided declarations between catalog tiles (unrotated tables).

    The border is skipped: it never holds a cell and has no rules of its own.
    """
    out: List[Asymmetry] = []
    for tile in tileset.tiles:
        for d in DIRECTIONS:
            for other in _ordered(tileset, tile.allowed[d]):
                if other is tileset.border:
                    continue
                if tile not in other.allowed[d.opposite]:
                    out.append(Asymmetry(tile, d, other))
    return out


def check_symmetry(tileset: Tileset, *, mode: Optional[str] = None) -> List[Asymmetry]:
    mode = (mode or CFG.SYMMETRY_CHECK or "warn").lower()
    if mode == "off":
        return []
    found = find_asymmetries(tileset)
    if not found:
        return found
    if mode == "error":
        raise CatalogError(
            f"{len(found)} one-sided adjacency declaration(s); first: {found[0].describe()}"
        )
    for a in found:
        log.warning("Asymmetric adjacency: %s", a.describe())
    return found


def mirror_adjacency(tileset: Tileset) -> int:
    """Authoring helper: add the missing reverse of every one-sided allowance.

    Returns how many declarations were added.  The engine never calls this.
    """
    added = 0
    for a in find_asymmetries(tileset):
        if a.tile not in a.neighbour.allowed[a.direction.opposite]:
            a.neighbour.allow(a.direction.opposite, a.tile)
            added += 1
    return added


__all__ = [
    "Asymmetry",
    "catalog_to_dict",
    "check_symmetry",
    "find_asymmetries",
    "mirror_adjacency",
    "parse_catalog",
    "parse_preplaced",
    "possibilities_from_tiles",
]
