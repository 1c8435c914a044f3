from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Set, Tuple

log = logging.getLogger(__name__)

Cell = Tuple[int, int, int]


class Direction(IntEnum):
    NORTH = 0
    EAST = 1
    SOUTH = 2
    WEST = 3
    ABOVE = 4
    BELOW = 5

    @property
    def offset(self) -> Cell:
        return _OFFSETS[self]

    @property
    def opposite(self) -> "Direction":
        return _OPPOSITES[self]

    @property
    def is_vertical(self) -> bool:
        return self >= Direction.ABOVE


_OFFSETS: Dict[Direction, Cell] = {
    Direction.ABOVE: (0, 1, 0),
    Direction.BELOW: (0, -1, 0),
    Direction.NORTH: (0, 0, 1),
    Direction.EAST: (1, 0, 0),
    Direction.SOUTH: (0, 0, -1),
    Direction.WEST: (-1, 0, 0),
}

_OPPOSITES: Dict[Direction, Direction] = {
    Direction.ABOVE: Direction.BELOW,
    Direction.BELOW: Direction.ABOVE,
    Direction.NORTH: Direction.SOUTH,
    Direction.EAST: Direction.WEST,
    Direction.SOUTH: Direction.NORTH,
    Direction.WEST: Direction.EAST,
}

# Canonical iteration order used everywhere directions are walked.
DIRECTIONS: Tuple[Direction, ...] = (
    Direction.ABOVE,
    Direction.BELOW,
    Direction.NORTH,
    Direction.EAST,
    Direction.SOUTH,
    Direction.WEST,
)

CARDINALS: Tuple[Direction, ...] = (
    Direction.NORTH,
    Direction.EAST,
    Direction.SOUTH,
    Direction.WEST,
)


class Rotation(IntEnum):
    ZERO = 0
    NINETY = 1
    ONE_EIGHTY = 2
    TWO_SEVENTY = 3

    @property
    def degrees(self) -> int:
        return int(self) * 90


ALL_ROTATIONS: Tuple[Rotation, ...] = tuple(Rotation)


@dataclass(frozen=True)
class Size3:
    x: int = 1
    y: int = 1
    z: int = 1

    @property
    def volume(self) -> int:
        return self.x * self.y * self.z

    def as_tuple(self) -> Cell:
        return (self.x, self.y, self.z)


UNIT = Size3(1, 1, 1)


@dataclass(eq=False)
class Tile:
    """A catalog entry: one kind of grid content plus its adjacency rules.

    ``allowed`` holds, per direction, the tiles this tile accepts as its
    neighbour on that side (the border tile included).  Declarations are
    one-sided; nothing here mirrors them.
    """

    name: str
    weight: float = 0.5
    allow_rotation: bool = False
    allow_free_rotation: bool = False
    same_rotation_when_stacked: bool = False
    dont_instantiate: bool = False
    size: Size3 = UNIT
    allowed: Dict[Direction, Set["Tile"]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for d in DIRECTIONS:
            self.allowed.setdefault(d, set())
        if self.allow_free_rotation and self.allow_rotation:
            log.warning(
                "Tile %s has both allow_free_rotation and allow_rotation set; "
                "dropping allow_free_rotation", self.name,
            )
            self.allow_free_rotation = False

    def __repr__(self) -> str:
        return f"Tile({self.name!r})"

    @property
    def is_custom_size(self) -> bool:
        return self.size != UNIT

    def rotations(self) -> Tuple[Rotation, ...]:
        return ALL_ROTATIONS if self.allow_rotation else (Rotation.ZERO,)

    def get_allowed(self, direction: Direction, rotation: Rotation = Rotation.ZERO) -> Set["Tile"]:
        if direction.is_vertical:
            return self.allowed[direction]
        return self.allowed[CARDINALS[(int(direction) + int(rotation)) % 4]]

    def rotated_size(self, rotation: Rotation = Rotation.ZERO) -> Size3:
        if rotation in (Rotation.NINETY, Rotation.TWO_SEVENTY):
            return Size3(self.size.z, self.size.y, self.size.x)
        return self.size

    def allow(self, direction: Direction, *tiles: "Tile") -> "Tile":
        self.allowed[direction].update(tiles)
        return self


@dataclass
class Tileset:
    """An ordered collection of tiles plus the border tile.

    The border never occupies a cell; it stands for everything outside the
    grid and is only consulted when a neighbour lookup leaves the bounds.
    """

    tiles: List[Tile]
    border: Tile

    def __contains__(self, tile: object) -> bool:
        return any(t is tile for t in self.tiles)

    def by_name(self, name: str) -> Optional[Tile]:
        for t in self.tiles:
            if t.name == name:
                return t
        if self.border.name == name:
            return self.border
        return None


@dataclass(frozen=True)
class Possibility:
    tile: Tile
    rotation: Rotation = Rotation.ZERO

    @property
    def name(self) -> str:
        return self.tile.name

    def __repr__(self) -> str:
        return f"Possibility({self.tile.name!r}, {self.rotation.degrees})"


@dataclass
class Placement:
    """What the engine reports for a resolved cell."""

    cell: Cell
    possibility: Possibility
    root: bool = True
    placed: bool = True
    free_angle: Optional[float] = None

    @property
    def tile(self) -> Tile:
        return self.possibility.tile

    @property
    def rotation(self) -> Rotation:
        return self.possibility.rotation

    def to_dict(self) -> Dict[str, object]:
        x, y, z = self.cell
        return {
            "x": x,
            "y": y,
            "z": z,
            "tile": self.tile.name,
            "rotation": self.rotation.degrees,
            "root": self.root,
            "instantiate": not self.tile.dont_instantiate,
            "free_angle": self.free_angle,
        }
