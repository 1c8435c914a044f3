# solver/geometry.py
from __future__ import annotations

from typing import Iterator, List, Tuple

from models import Cell, Direction, DIRECTIONS, Possibility


def offset(cell: Cell, direction: Direction) -> Cell:
    dx, dy, dz = direction.offset
    return (cell[0] + dx, cell[1] + dy, cell[2] + dz)


def iterate_3d(width: int, height: int, length: int) -> Iterator[Cell]:
    for x in range(width):
        for y in range(height):
            for z in range(length):
                yield (x, y, z)


def scan_order(width: int, height: int, length: int) -> Iterator[Cell]:
    """Resolution order: height-major, then depth, then width."""
    for y in range(height):
        for z in range(length):
            for x in range(width):
                yield (x, y, z)


def footprint_offsets(possibility: Possibility) -> Iterator[Cell]:
    size = possibility.tile.rotated_size(possibility.rotation)
    for i in range(size.x):
        for j in range(size.y):
            for k in range(size.z):
                yield (i, j, k)


def footprint_cells(origin: Cell, possibility: Possibility) -> List[Cell]:
    x, y, z = origin
    return [(x + i, y + j, z + k) for i, j, k in footprint_offsets(possibility)]


def neighbours(origin: Cell, possibility: Possibility, direction: Direction) -> List[Cell]:
    """Cells touching the footprint placed at ``origin`` on its ``direction`` face.

    For a 1x1x1 tile that is the single adjacent cell.
    """
    if not possibility.tile.is_custom_size:
        return [offset(origin, direction)]

    size = possibility.tile.rotated_size(possibility.rotation)
    x, y, z = origin
    xs = range(x, x + size.x)
    ys = range(y, y + size.y)
    zs = range(z, z + size.z)

    if direction == Direction.ABOVE:
        return [(i, y + size.y, k) for i in xs for k in zs]
    if direction == Direction.BELOW:
        return [(i, y - 1, k) for i in xs for k in zs]
    if direction == Direction.NORTH:
        return [(i, j, z + size.z) for i in xs for j in ys]
    if direction == Direction.SOUTH:
        return [(i, j, z - 1) for i in xs for j in ys]
    if direction == Direction.EAST:
        return [(x + size.x, j, k) for j in ys for k in zs]
    return [(x - 1, j, k) for j in ys for k in zs]


def all_neighbours(cell: Cell) -> List[Tuple[Direction, Cell]]:
    return [(d, offset(cell, d)) for d in DIRECTIONS]
