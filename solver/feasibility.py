# solver/feasibility.py
"""Exact satisfiability check for a catalog on a given grid (CP-SAT).

The model uses the same local rules the synthesis engine propagates, with no
greedy order.  "Proven infeasible" therefore means no seed can succeed, and
"feasible" after a failed run means the contradiction came from the order in
which cells were collapsed.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ortools.sat.python import cp_model as _cp

from config import CFG
from models import Cell, DIRECTIONS, Direction, Possibility, Tileset
from solver.errors import ConfigurationError
from solver.geometry import footprint_cells, iterate_3d, offset
from tiles import possibilities_from_tiles

log = logging.getLogger(__name__)

INFEASIBLE_REASON = "Proven infeasible under current constraints"
TIMEBOX_REASON = "Stopped before solution (timebox)"

# cell -> (tile name, rotation in degrees); plain data so it can cross a process boundary
Assignment = Dict[Cell, Tuple[str, int]]
FeasibilityResult = Tuple[Optional[bool], Assignment, Optional[str]]


def _compatible(p: Possibility, d: Direction, q: Possibility) -> bool:
    """``q`` may sit on ``p``'s ``d`` side, judged from both ends."""
    return (
        q.tile in p.tile.get_allowed(d, p.rotation)
        and p.tile in q.tile.get_allowed(d.opposite, q.rotation)
    )


def estimate_literals(tileset: Tileset, width: int, length: int, height: int) -> int:
    poss = possibilities_from_tiles(tileset.tiles)
    multi = sum(1 for p in poss if p.tile.is_custom_size)
    return width * height * length * (len(poss) + multi)


def check_feasible(
    tileset: Tileset,
    width: int,
    length: int,
    height: int,
    preplaced: Sequence[Tuple[Cell, Possibility]] = (),
    max_seconds: Optional[float] = None,
) -> FeasibilityResult:
    """Returns ``(status, assignment, reason)``.

    ``status`` is True when a full grid exists, False when none can exist and
    None when the solver gave up (time box, literal cap, invalid model).
    """
    seconds = float(CFG.FEASIBILITY_SECONDS if max_seconds is None else max_seconds)
    cap = int(CFG.FEASIBILITY_MAX_LITERALS)
    estimate = estimate_literals(tileset, width, length, height)
    if cap > 0 and estimate > cap:
        reason = f"Model capped: ~{estimate} literals exceeds MS_FEASIBILITY_MAX_LITERALS={cap}"
        log.info(reason)
        return None, {}, reason

    def in_grid(c: Cell) -> bool:
        return 0 <= c[0] < width and 0 <= c[1] < height and 0 <= c[2] < length

    poss = possibilities_from_tiles(tileset.tiles)
    cells = list(iterate_3d(width, height, length))
    m = _cp.CpModel()

    # anchors[(origin, p)]: an instance of multi-cell p has its root at origin
    anchors: Dict[Tuple[Cell, Possibility], _cp.IntVar] = {}
    covering: Dict[Tuple[Cell, Possibility], List[Cell]] = defaultdict(list)
    for p in poss:
        if not p.tile.is_custom_size:
            continue
        for o in cells:
            fp = footprint_cells(o, p)
            if not all(in_grid(f) for f in fp):
                continue
            anchors[(o, p)] = m.new_bool_var(f"a_{o}_{p.name}_{p.rotation.degrees}")
            for f in fp:
                covering[(f, p)].append(o)

    x: Dict[Tuple[Cell, Possibility], _cp.IntVar] = {}
    for c in cells:
        row = []
        for p in poss:
            if p.tile.is_custom_size and not covering.get((c, p)):
                continue
            v = m.new_bool_var(f"x_{c}_{p.name}_{p.rotation.degrees}")
            x[(c, p)] = v
            row.append(v)
            if p.tile.is_custom_size:
                m.add(v == sum(anchors[(o, p)] for o in covering[(c, p)]))
        if not row:
            return False, {}, INFEASIBLE_REASON
        m.add_exactly_one(row)

    border = tileset.border
    for (c, p), v in x.items():
        for d in DIRECTIONS:
            n = offset(c, d)
            if not in_grid(n):
                if border not in p.tile.get_allowed(d, p.rotation):
                    m.add(v == 0)
                continue
            support = [x[(n, q)] for q in poss if (n, q) in x and _compatible(p, d, q)]
            if p.tile.is_custom_size:
                # n belongs to the same instance as c
                shared = set(covering[(c, p)]) & set(covering.get((n, p), ()))
                support.extend(anchors[(o, p)] for o in sorted(shared))
            if support:
                m.add_bool_or(support).only_enforce_if(v)
            else:
                m.add(v == 0)

    for (c, p), v in x.items():
        if not p.tile.allow_rotation:
            continue
        below = offset(c, Direction.BELOW)
        if not in_grid(below):
            continue
        for q in poss:
            if not q.tile.same_rotation_when_stacked or q.rotation == p.rotation:
                continue
            w = x.get((below, q))
            if w is not None:
                m.add(v + w <= 1)

    for cell, p in preplaced:
        if p.tile.is_custom_size:
            lit = anchors.get((tuple(cell), p))
        else:
            lit = x.get((tuple(cell), p))
        if lit is None:
            raise ConfigurationError(f"pre-placement {p!r} at {cell} cannot be expressed on this grid")
        m.add(lit == 1)

    solver = _cp.CpSolver()
    solver.parameters.max_time_in_seconds = seconds
    solver.parameters.max_memory_in_mb = int(CFG.MAX_MEMORY_MB)
    solver.parameters.num_workers = max(1, int(CFG.WORKERS))
    solver.parameters.log_search_progress = False

    res = solver.solve(m)
    log.info(
        "Feasibility check %dx%dx%d: %s (%.2fs, %d literals)",
        width, height, length, solver.status_name(res), solver.wall_time, len(x) + len(anchors),
    )
    if res in (_cp.OPTIMAL, _cp.FEASIBLE):
        assignment: Assignment = {}
        for (c, p), v in x.items():
            if solver.boolean_value(v):
                assignment[c] = (p.name, p.rotation.degrees)
        return True, assignment, None
    if res == _cp.INFEASIBLE:
        return False, {}, INFEASIBLE_REASON
    if res == _cp.MODEL_INVALID:
        return None, {}, "Model invalid"
    return None, {}, TIMEBOX_REASON


def assignment_records(assignment: Assignment) -> List[Dict[str, object]]:
    return [
        {"x": c[0], "y": c[1], "z": c[2], "tile": name, "rotation": deg}
        for c, (name, deg) in sorted(assignment.items(), key=lambda kv: (kv[0][1], kv[0][2], kv[0][0]))
    ]


def preplaced_records(preplaced: Iterable[Tuple[Cell, Possibility]]) -> List[Dict[str, object]]:
    return [
        {"x": c[0], "y": c[1], "z": c[2], "tile": p.name, "rotation": p.rotation.degrees}
        for c, p in preplaced
    ]


__all__ = [
    "INFEASIBLE_REASON",
    "TIMEBOX_REASON",
    "assignment_records",
    "check_feasible",
    "estimate_literals",
    "preplaced_records",
]
