# solver/propagation.py
"""Worklist arc-consistency over the domain grid.

A popped cell is narrowed against its neighbours, then its multi-cell
candidates are re-checked.  Only a cell whose domain actually shrank pushes
its unresolved neighbours back onto the worklist, so the cascade stays local
to where something changed.

The worklist carries, per cell, the directions a change arrived from.  Cells
seeded without a single arrival direction (the global pass, external
frontiers) are relaxed against all six sides.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from models import Cell, Direction, DIRECTIONS, Possibility, Tile, Tileset
from solver.domain import DomainGrid
from solver.errors import Contradiction
from solver.geometry import footprint_cells, footprint_offsets, iterate_3d, neighbours, offset
from solver.instrumentation import Instrumentation, NullInstrumentation

FrontierItem = Tuple[Cell, Optional[Iterable[Direction]]]


class Worklist:
    """Stack of pending cells, unique per cell.

    Pushing a cell that is already pending merges the arrival directions;
    ``None`` means "all directions" and absorbs anything merged into it.
    """

    def __init__(self) -> None:
        self._stack: List[Cell] = []
        self._pending: Dict[Cell, Optional[Set[Direction]]] = {}

    def __len__(self) -> int:
        return len(self._stack)

    def __contains__(self, cell: object) -> bool:
        return cell in self._pending

    def push(self, cell: Cell, directions: Optional[Iterable[Direction]] = None) -> None:
        if cell in self._pending:
            current = self._pending[cell]
            if current is None:
                return
            if directions is None:
                self._pending[cell] = None
            else:
                current.update(directions)
            return
        self._pending[cell] = None if directions is None else set(directions)
        self._stack.append(cell)

    def pop(self) -> Tuple[Cell, Optional[Set[Direction]]]:
        cell = self._stack.pop()
        return cell, self._pending.pop(cell)


class Propagator:
    def __init__(
        self,
        grid: DomainGrid,
        tileset: Tileset,
        *,
        direction_aware: bool = True,
        instrumentation: Optional[Instrumentation] = None,
        stats: Optional[Dict[str, int]] = None,
    ) -> None:
        self.grid = grid
        self.border: Tile = tileset.border
        self.direction_aware = direction_aware
        self.instrumentation = instrumentation or NullInstrumentation()
        self.stats = stats if stats is not None else {}
        for key in ("cells_propagated", "possibilities_removed", "propagations"):
            self.stats.setdefault(key, 0)

    # ---------- entry points ----------

    def propagate_all(self) -> None:
        """Global pass: every unresolved cell, relaxed in all directions."""
        frontier = [
            (cell, None)
            for cell in iterate_3d(self.grid.width, self.grid.height, self.grid.length)
            if not self.grid.is_placed(cell)
        ]
        self.propagate(frontier)

    def propagate(
        self,
        frontier: Sequence[FrontierItem],
        *,
        origin: Optional[Cell] = None,
        attempted: Optional[Possibility] = None,
    ) -> None:
        work = Worklist()
        for cell, directions in frontier:
            work.push(cell, directions)

        self.stats["propagations"] += 1
        with self.instrumentation.measure("propagate"):
            while work:
                cell, directions = work.pop()
                self._process(cell, directions, work, origin, attempted)

    # ---------- one worklist step ----------

    def _process(
        self,
        cell: Cell,
        directions: Optional[Set[Direction]],
        work: Worklist,
        origin: Optional[Cell],
        attempted: Optional[Possibility],
    ) -> None:
        grid = self.grid
        self.stats["cells_propagated"] += 1
        before = grid.size(cell)

        for d in DIRECTIONS:
            if directions is None or d in directions:
                self._constrain(cell, d)
        self._maintain_footprints(cell)

        after = grid.size(cell)
        self.stats["possibilities_removed"] += before - after
        if after == 0:
            raise Contradiction(cell, origin, attempted)

        if after < before:
            for d in DIRECTIONS:
                n = offset(cell, d)
                if not grid.in_grid(n) or grid.is_placed(n):
                    continue
                # n sees the change coming from its opposite side
                work.push(n, (d.opposite,) if self.direction_aware else None)

    def _constrain(self, cell: Cell, d: Direction) -> None:
        grid = self.grid
        dom = grid.domain(cell)
        if not dom:
            return
        n = offset(cell, d)

        if not grid.in_grid(n):
            border = self.border
            doomed = [p for p in dom if border not in p.tile.get_allowed(d, p.rotation)]
            grid.discard(cell, doomed)
            return

        n_dom = grid.domain(n)
        n_tiles = {q.tile for q in n_dom}
        carry = len(n_dom) > 1

        opposite = d.opposite
        allowed_by_n: Set[Tile] = set()
        for q in n_dom:
            allowed_by_n |= q.tile.get_allowed(opposite, q.rotation)

        # stacking lock, seen from the upper cell (BELOW) or the lower one (ABOVE)
        locked_rotation = None
        locked_from_above = False
        if d.is_vertical and grid.is_placed(n):
            q = grid.only(n)
            if q is not None and d == Direction.BELOW and q.tile.same_rotation_when_stacked:
                locked_rotation = q.rotation
            elif q is not None and d == Direction.ABOVE and q.tile.allow_rotation:
                locked_rotation = q.rotation
                locked_from_above = True

        doomed = []
        for p in dom:
            if carry and p.tile.is_custom_size and p in n_dom:
                # may be two cells of the same footprint; settled below
                continue
            if p.tile not in allowed_by_n:
                doomed.append(p)
            elif p.tile.get_allowed(d, p.rotation).isdisjoint(n_tiles):
                doomed.append(p)
            elif (
                locked_rotation is not None
                and p.rotation != locked_rotation
                and (p.tile.same_rotation_when_stacked if locked_from_above else p.tile.allow_rotation)
            ):
                doomed.append(p)
        grid.discard(cell, doomed)

    # ---------- multi-cell tiles ----------

    def _maintain_footprints(self, cell: Cell) -> None:
        grid = self.grid
        dom = grid.domain(cell)
        doomed = []
        for p in list(dom):
            if not p.tile.is_custom_size:
                continue
            if dom[p]:
                dom[p] = self.fits(cell, p) and self.can_be_placed(cell, p)
            if not dom[p] and not self._has_anchor(cell, p):
                doomed.append(p)
        grid.discard(cell, doomed)

    def refresh_roots(self, cell: Cell) -> None:
        """Re-check the root flags at ``cell`` against the current grid.

        Flags only ever go from True to False; nothing is removed here.
        """
        dom = self.grid.domain(cell)
        for p, root in dom.items():
            if root and p.tile.is_custom_size:
                dom[p] = self.fits(cell, p) and self.can_be_placed(cell, p)

    def fits(self, origin: Cell, p: Possibility) -> bool:
        """Every footprint cell is in the grid, still offers ``p`` and is not placed."""
        grid = self.grid
        for f in footprint_cells(origin, p):
            if not grid.in_grid(f) or p not in grid.domain(f) or grid.is_placed(f):
                return False
        return True

    def can_be_placed(self, origin: Cell, p: Possibility) -> bool:
        """Adjacency checked both ways over the whole footprint boundary."""
        grid = self.grid
        tile = p.tile
        for d in DIRECTIONS:
            allowed = tile.get_allowed(d, p.rotation)
            opposite = d.opposite
            for n in neighbours(origin, p, d):
                if not grid.in_grid(n):
                    if self.border not in allowed:
                        return False
                    continue
                if allowed.isdisjoint(grid.tiles(n)):
                    return False
                if not any(tile in q.tile.get_allowed(opposite, q.rotation) for q in grid.domain(n)):
                    return False
        return True

    def _has_anchor(self, cell: Cell, p: Possibility) -> bool:
        grid = self.grid
        x, y, z = cell
        for i, j, k in footprint_offsets(p):
            a = (x - i, y - j, z - k)
            if grid.in_grid(a) and grid.has_root(a, p):
                return True
        return False
