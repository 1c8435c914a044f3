# solver/domain.py
"""Per-cell domains for the synthesis grid.

Each cell maps the possibilities still allowed there to that cell's ``root``
flag.  The mapping keeps insertion order, which is catalog order, so any walk
over a domain is reproducible.  ``placed`` is kept per cell: a cell is placed
exactly when it has been collapsed to its final possibility.
"""
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from models import Cell, Possibility, Tile

Domain = Dict[Possibility, bool]


class DomainGrid:
    def __init__(self, width: int, height: int, length: int, initial: Sequence[Possibility]) -> None:
        self.width = width
        self.height = height
        self.length = length
        count = width * height * length
        # Fresh dict per cell; the root flags are never shared between cells.
        self._domains: List[Domain] = [dict.fromkeys(initial, True) for _ in range(count)]
        self._placed: List[bool] = [False] * count

    def __len__(self) -> int:
        return len(self._domains)

    @property
    def dims(self):
        return (self.width, self.height, self.length)

    def in_grid(self, cell: Cell) -> bool:
        x, y, z = cell
        return 0 <= x < self.width and 0 <= y < self.height and 0 <= z < self.length

    def _index(self, cell: Cell) -> int:
        x, y, z = cell
        return (x * self.height + y) * self.length + z

    def domain(self, cell: Cell) -> Domain:
        return self._domains[self._index(cell)]

    def size(self, cell: Cell) -> int:
        return len(self._domains[self._index(cell)])

    def is_placed(self, cell: Cell) -> bool:
        return self._placed[self._index(cell)]

    def is_resolved(self, cell: Cell) -> bool:
        i = self._index(cell)
        return self._placed[i] and len(self._domains[i]) == 1

    def only(self, cell: Cell) -> Optional[Possibility]:
        dom = self._domains[self._index(cell)]
        if len(dom) != 1:
            return None
        return next(iter(dom))

    def tiles(self, cell: Cell) -> Iterator[Tile]:
        return (p.tile for p in self._domains[self._index(cell)])

    def roots(self, cell: Cell) -> List[Possibility]:
        return [p for p, root in self._domains[self._index(cell)].items() if root]

    def has_root(self, cell: Cell, possibility: Possibility) -> bool:
        return bool(self._domains[self._index(cell)].get(possibility, False))

    def collapse(self, cell: Cell, possibility: Possibility, root: bool) -> None:
        i = self._index(cell)
        self._domains[i] = {possibility: root}
        self._placed[i] = True

    def restrict(self, cell: Cell, keep: Iterable[Possibility]) -> int:
        """Drop everything not in ``keep``; return how many were removed."""
        i = self._index(cell)
        dom = self._domains[i]
        keep_set = keep if isinstance(keep, (set, frozenset, dict)) else set(keep)
        doomed = [p for p in dom if p not in keep_set]
        for p in doomed:
            del dom[p]
        return len(doomed)

    def discard(self, cell: Cell, possibilities: Iterable[Possibility]) -> int:
        dom = self._domains[self._index(cell)]
        removed = 0
        for p in possibilities:
            if p in dom:
                del dom[p]
                removed += 1
        return removed
