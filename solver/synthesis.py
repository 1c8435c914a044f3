# solver/synthesis.py
"""Model synthesis over a 3D grid.

Cells are visited in a fixed order (y, then z, then x).  Each unresolved cell
is collapsed to one weighted-random root possibility, its footprint is
written into the grid and the change is propagated outward.  There is no
backtracking: a contradiction ends the run.
"""
from __future__ import annotations

import logging
import random
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from config import CFG
from models import Cell, DIRECTIONS, Direction, Placement, Possibility, Tileset
from solver.domain import DomainGrid
from solver.errors import (
    ConfigurationError,
    Contradiction,
    EngineStateError,
    SelectionFailure,
    SynthesisError,
)
from solver.geometry import footprint_cells, offset, scan_order
from solver.instrumentation import Instrumentation, NullInstrumentation
from solver.propagation import FrontierItem, Propagator
from tiles import possibilities_from_tiles

log = logging.getLogger(__name__)

PlaceListener = Callable[[Cell, Placement], None]
FinishListener = Callable[[], None]


class SynthesisState(Enum):
    UNINITIALIZED = "uninitialized"
    PROPAGATING = "propagating"
    SCANNING = "scanning"
    OBSERVING = "observing"
    FINISHED = "finished"
    FAILED = "failed"


class ModelSynthesis:
    def __init__(
        self,
        tileset: Tileset,
        width: int,
        length: int,
        height: int,
        seed: int,
        *,
        instrumentation: Optional[Instrumentation] = None,
        direction_aware: Optional[bool] = None,
    ) -> None:
        for label, value in (("width", width), ("length", length), ("height", height)):
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigurationError(
                    f"width, height and length must be greater than 0 (got {label}={value!r})"
                )
        if not tileset.tiles:
            raise ConfigurationError("tileset has no tiles")

        self.tileset = tileset
        self.width = width
        self.length = length
        self.height = height
        self.seed = seed

        self.random = random.Random(seed)
        self.instrumentation = instrumentation or NullInstrumentation()
        self.state = SynthesisState.UNINITIALIZED
        self.stats: Dict[str, int] = {"placements": 0}
        # footprint cell -> the root Placement that covers it
        self._placements: Dict[Cell, Placement] = {}

        self.on_place_tile: List[PlaceListener] = []
        self.on_finish: List[FinishListener] = []

        self.grid = DomainGrid(width, height, length, possibilities_from_tiles(tileset.tiles))
        self.propagator = Propagator(
            self.grid,
            tileset,
            direction_aware=CFG.DIRECTION_AWARE if direction_aware is None else direction_aware,
            instrumentation=self.instrumentation,
            stats=self.stats,
        )

    # ---------- pre-placement ----------

    def place_tile(self, x: int, y: int, z: int, possibility: Possibility) -> None:
        """Force ``possibility`` at (x, y, z) without propagating.

        Only valid before :meth:`synthesize`; the global pass at the start of
        the run takes pre-placed cells into account.
        """
        if self.state is not SynthesisState.UNINITIALIZED:
            raise EngineStateError(f"place_tile is not allowed while {self.state.value}")
        self._check_placement((x, y, z), possibility)
        self._place((x, y, z), possibility)

    def _check_placement(self, cell: Cell, possibility: Possibility) -> None:
        if not self.grid.in_grid(cell):
            raise ConfigurationError(f"cell {cell} is outside the {self.width}x{self.height}x{self.length} grid")
        if possibility.tile not in self.tileset:
            raise ConfigurationError(f"tile {possibility.tile.name!r} is not part of the tileset")
        if possibility.rotation not in possibility.tile.rotations():
            raise ConfigurationError(
                f"tile {possibility.tile.name!r} cannot be rotated {possibility.rotation.degrees} degrees"
            )
        for f in footprint_cells(cell, possibility):
            if not self.grid.in_grid(f):
                raise ConfigurationError(
                    f"footprint of {possibility.tile.name!r} at {cell} leaves the grid at {f}"
                )
            if self.grid.is_placed(f):
                raise ConfigurationError(f"cell {f} is already placed")
        self._check_against_placed(cell, possibility)

    def _check_against_placed(self, cell: Cell, possibility: Possibility) -> None:
        """Pre-placed footprints must agree with the border and with each other."""
        tile, rotation = possibility.tile, possibility.rotation
        own = set(footprint_cells(cell, possibility))
        for f in own:
            for d in DIRECTIONS:
                n = offset(f, d)
                if n in own:
                    continue
                if not self.grid.in_grid(n):
                    if self.tileset.border not in tile.get_allowed(d, rotation):
                        raise ConfigurationError(
                            f"{tile.name!r} at {f} may not face the border on its {d.name} side"
                        )
                    continue
                if not self.grid.is_placed(n):
                    continue
                q = self.grid.only(n)
                if (
                    q.tile not in tile.get_allowed(d, rotation)
                    or tile not in q.tile.get_allowed(d.opposite, q.rotation)
                ):
                    raise ConfigurationError(
                        f"{tile.name!r} at {f} and {q.tile.name!r} at {n} do not allow each other ({d.name})"
                    )
                lower, upper = (possibility, q) if d == Direction.ABOVE else (q, possibility)
                if (
                    d.is_vertical
                    and lower.tile.same_rotation_when_stacked
                    and upper.tile.allow_rotation
                    and upper.rotation != lower.rotation
                ):
                    raise ConfigurationError(
                        f"{upper.tile.name!r} above {lower.tile.name!r} must share its rotation"
                    )

    def _place(self, cell: Cell, possibility: Possibility) -> List[Cell]:
        cells = footprint_cells(cell, possibility)
        for f in cells:
            self.grid.collapse(f, possibility, root=(f == cell))
        return cells

    # ---------- main loop ----------

    def synthesize(self) -> None:
        if self.state is not SynthesisState.UNINITIALIZED:
            raise EngineStateError(f"synthesize already ran (state: {self.state.value})")
        try:
            with self.instrumentation.measure("synthesize"):
                self.state = SynthesisState.PROPAGATING
                self.propagator.propagate_all()

                self.state = SynthesisState.SCANNING
                for cell in scan_order(self.width, self.height, self.length):
                    if self.grid.size(cell) == 0:
                        raise Contradiction(cell)
                    if self.grid.is_placed(cell):
                        continue
                    self.state = SynthesisState.OBSERVING
                    placement = self.observe(cell)
                    self._propagate_from_footprint(cell, placement.possibility)
                    self.state = SynthesisState.SCANNING
                    self.stats["placements"] += 1
                    for listener in list(self.on_place_tile):
                        listener(cell, placement)
        except SynthesisError as exc:
            self.state = SynthesisState.FAILED
            log.error("Synthesis failed (seed=%s): %s", self.seed, exc)
            raise

        self.state = SynthesisState.FINISHED
        for listener in list(self.on_finish):
            listener()

    def observe(self, cell: Cell) -> Placement:
        with self.instrumentation.measure("observe"):
            # a root may have gone stale if a distant footprint cell got placed
            self.propagator.refresh_roots(cell)
            chosen = self.pick_weighted(cell)
            self._place(cell, chosen)
        free_angle = None
        if chosen.tile.allow_free_rotation:
            free_angle = self.random.uniform(0.0, 360.0)
        placement = Placement(cell=cell, possibility=chosen, root=True, placed=True, free_angle=free_angle)
        for f in footprint_cells(cell, chosen):
            self._placements[f] = placement
        return placement

    def pick_weighted(self, cell: Cell) -> Possibility:
        """Weighted draw over the cell's root possibilities, in domain order."""
        candidates = self.grid.roots(cell)
        total = sum(p.tile.weight for p in candidates)
        if not candidates or total <= 0:
            raise SelectionFailure(cell, len(candidates), total)

        draw = self.random.random() * total
        running = 0.0
        for p in candidates:
            running += p.tile.weight
            if draw <= running:
                return p
        raise SelectionFailure(cell, len(candidates), total)

    def _propagate_from_footprint(self, cell: Cell, possibility: Possibility) -> None:
        self.propagator.propagate(
            self.frontier_for(cell, possibility),
            origin=cell,
            attempted=possibility,
        )

    def frontier_for(self, cell: Cell, possibility: Possibility) -> List[FrontierItem]:
        """Unplaced in-grid cells touching the footprint, with arrival directions."""
        arrivals: Dict[Cell, set] = {}
        for f in footprint_cells(cell, possibility):
            for d in DIRECTIONS:
                n = offset(f, d)
                if not self.grid.in_grid(n) or self.grid.is_placed(n):
                    continue
                arrivals.setdefault(n, set()).add(d.opposite)
        return [(n, dirs) for n, dirs in arrivals.items()]

    # ---------- inspection ----------

    def resolved(self, cell: Cell) -> Optional[Placement]:
        if not self.grid.is_resolved(cell):
            return None
        p = self.grid.only(cell)
        observed = self._placements.get(cell)
        free_angle = observed.free_angle if observed is not None else None
        return Placement(
            cell=cell,
            possibility=p,
            root=self.grid.has_root(cell, p),
            placed=True,
            free_angle=free_angle,
        )

    def snapshot(self) -> List[Tuple[Cell, List[Possibility]]]:
        return [
            (cell, list(self.grid.domain(cell)))
            for cell in scan_order(self.width, self.height, self.length)
        ]


__all__ = ["ModelSynthesis", "SynthesisState"]
