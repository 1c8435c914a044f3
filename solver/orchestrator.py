# Orchestrator: run policy around one synthesis (parse, retry, diagnose)
from __future__ import annotations

import logging
import time
import traceback
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from config import CFG
from models import Cell, Placement, Possibility, Tileset
from progress import (
    log_attempt_detail,
    set_attempt,
    set_cells_resolved,
    set_grid,
    set_message,
    set_phase,
    set_seed,
    set_status,
)
from solver.errors import ConfigurationError, Contradiction, SelectionFailure, SynthesisError
from solver.instrumentation import Instrumentation, PerformanceMeasurement
from solver.synthesis import ModelSynthesis
from tiles import catalog_to_dict, parse_catalog, parse_preplaced

log = logging.getLogger(__name__)

PlaceCallback = Callable[[Cell, Placement], None]
RunResult = Tuple[bool, List[Placement], Optional[str], Dict[str, Any]]

SUCCESS_MESSAGE = "Every cell resolved"


# ---------- helpers ----------

def _coerce_tileset(catalog: Union[Tileset, Mapping[str, Any]]) -> Tileset:
    if isinstance(catalog, Tileset):
        return catalog
    return parse_catalog(catalog)


def _coerce_preplaced(
    tileset: Tileset, preplaced: Sequence[Any]
) -> List[Tuple[Cell, Possibility]]:
    """Accept either ``(cell, Possibility)`` pairs or JSON-like records."""
    out: List[Tuple[Cell, Possibility]] = []
    records: List[Mapping[str, Any]] = []
    for item in preplaced or ():
        if isinstance(item, Mapping):
            records.append(item)
        else:
            cell, p = item
            out.append((tuple(cell), p))
    out.extend(parse_preplaced(tileset, records))
    return out


def _check_dims(width: Any, length: Any, height: Any) -> None:
    for label, value in (("width", width), ("length", length), ("height", height)):
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigurationError(
                f"width, height and length must be greater than 0 (got {label}={value!r})"
            )
    cells = width * length * height
    if CFG.MAX_CELLS > 0 and cells > CFG.MAX_CELLS:
        raise ConfigurationError(
            f"grid of {cells} cells exceeds MS_MAX_CELLS={CFG.MAX_CELLS}"
        )


def _contradiction_meta(exc: SynthesisError) -> Dict[str, Any]:
    if isinstance(exc, Contradiction):
        return {
            "kind": "contradiction",
            "cell": list(exc.cell),
            "origin": list(exc.origin) if exc.origin is not None else None,
            "attempted": exc.attempted.name if exc.attempted is not None else None,
        }
    if isinstance(exc, SelectionFailure):
        return {"kind": "selection", "cell": list(exc.cell), "origin": None, "attempted": None}
    return {"kind": type(exc).__name__, "cell": None, "origin": None, "attempted": None}


def diagnose_failure(
    tileset: Tileset,
    width: int,
    length: int,
    height: int,
    preplaced: Sequence[Tuple[Cell, Possibility]] = (),
    *,
    isolate: Optional[bool] = None,
    max_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    """Run the CP-SAT check and summarise it for ``meta["feasibility"]``."""
    seconds = float(CFG.FEASIBILITY_SECONDS if max_seconds is None else max_seconds)
    isolate = CFG.FEASIBILITY_ISOLATE if isolate is None else isolate
    t0 = time.time()
    crash_note = None
    if isolate:
        from solver.cp_isolate import run_feasibility_isolated
        from solver.feasibility import assignment_records, preplaced_records
        status, assignment, reason, crash_note = run_feasibility_isolated(
            catalog_to_dict(tileset), width, length, height,
            preplaced_records(preplaced), seconds,
        )
    else:
        from solver.feasibility import assignment_records, check_feasible
        status, assignment, reason = check_feasible(
            tileset, width, length, height, preplaced, seconds
        )
    out = {
        "status": status,
        "reason": reason,
        "elapsed": time.time() - t0,
        "crash": crash_note,
        "assignment": assignment_records(assignment),
    }
    log_attempt_detail(
        "Feasibility check",
        status=status,
        reason=reason,
        crash=crash_note,
        duration=f"{out['elapsed']:.2f}s",
    )
    return out


def _explain(exc: SynthesisError, feasibility: Optional[Dict[str, Any]]) -> str:
    reason = str(exc)
    if not feasibility:
        return reason
    status = feasibility.get("status")
    if status is False:
        return f"{reason}. {feasibility.get('reason')}"
    if status is True:
        return f"{reason}. A solution exists; this seed's greedy order failed"
    return reason


# ---------- entry point ----------

def run_synthesis(
    catalog: Union[Tileset, Mapping[str, Any]],
    width: int,
    length: int,
    height: int,
    seed: int,
    preplaced: Sequence[Any] = (),
    *,
    on_place: Optional[PlaceCallback] = None,
    retries: Optional[int] = None,
    diagnose: Optional[bool] = None,
    instrumentation: Optional[Instrumentation] = None,
) -> RunResult:
    """
    Returns: (ok, placements, reason, meta)
    ``placements`` lists every resolved cell in scan order; it is empty on
    failure.  ``reason`` is None on success.
    """
    t0 = time.time()
    retries = CFG.SEED_RETRIES if retries is None else max(0, int(retries))
    diagnose = CFG.DIAGNOSE_CONTRADICTIONS if diagnose is None else diagnose
    meta: Dict[str, Any] = {
        "seed": seed,
        "attempts": 0,
        "stats": {},
        "contradiction": None,
        "elapsed": 0.0,
        "feasibility": None,
    }

    try:
        _check_dims(width, length, height)
        tileset = _coerce_tileset(catalog)
        fixed = _coerce_preplaced(tileset, preplaced)
    except ConfigurationError as e:
        set_status("Error")
        set_message(str(e))
        log_attempt_detail("Bad request", reason=str(e))
        meta["elapsed"] = time.time() - t0
        return False, [], str(e), meta

    total_cells = width * length * height
    set_status("Solving")
    set_grid(width, height, length)
    log_attempt_detail(
        "Run setup",
        grid=f"{width}x{height}x{length}",
        tiles=len(tileset.tiles),
        seed=seed,
        retries=retries,
        preplaced=len(fixed),
    )

    if instrumentation is None and CFG.PROFILE:
        instrumentation = PerformanceMeasurement()

    last_exc: Optional[SynthesisError] = None
    for attempt in range(retries + 1):
        attempt_seed = seed + attempt
        meta["seed"] = attempt_seed
        meta["attempts"] = attempt + 1
        set_attempt(f"{attempt + 1}/{retries + 1}")
        set_seed(attempt_seed)

        try:
            engine = ModelSynthesis(
                tileset, width, length, height, attempt_seed,
                instrumentation=instrumentation,
            )
            for cell, p in fixed:
                engine.place_tile(cell[0], cell[1], cell[2], p)
        except ConfigurationError as e:
            set_status("Error")
            set_message(str(e))
            log_attempt_detail("Bad pre-placement", reason=str(e))
            meta["elapsed"] = time.time() - t0
            return False, [], str(e), meta

        resolved = [sum(_placed_cells(p) for _, p in fixed)]
        set_cells_resolved(resolved[0])

        def _on_place(cell: Cell, placement: Placement) -> None:
            resolved[0] += _placed_cells(placement.possibility)
            set_cells_resolved(resolved[0])
            if on_place is not None:
                on_place(cell, placement)

        engine.on_place_tile.append(_on_place)

        set_phase("propagating")
        try:
            _run_engine(engine)
        except SynthesisError as e:
            last_exc = e
            meta["stats"] = dict(engine.stats)
            meta["contradiction"] = _contradiction_meta(e)
            log_attempt_detail(
                "Attempt failed",
                attempt=attempt + 1,
                seed=attempt_seed,
                error=type(e).__name__,
                cell=getattr(e, "cell", None),
                origin=getattr(e, "origin", None),
                placements=engine.stats.get("placements"),
            )
            if attempt < retries:
                log.info("Retrying with seed %s after: %s", attempt_seed + 1, e)
            continue

        meta["stats"] = dict(engine.stats)
        meta["contradiction"] = None
        meta["elapsed"] = time.time() - t0
        if isinstance(instrumentation, PerformanceMeasurement):
            meta["profile"] = instrumentation.report()
        placements = [engine.resolved(cell) for cell, _ in engine.snapshot()]
        set_cells_resolved(total_cells)
        set_status("Solved")
        set_message(SUCCESS_MESSAGE)
        log_attempt_detail(
            "Attempt succeeded",
            attempt=attempt + 1,
            seed=attempt_seed,
            placements=engine.stats.get("placements"),
            propagations=engine.stats.get("propagations"),
            duration=f"{meta['elapsed']:.2f}s",
        )
        return True, placements, None, meta

    assert last_exc is not None
    if diagnose and isinstance(last_exc, Contradiction):
        set_phase("diagnosing")
        try:
            meta["feasibility"] = diagnose_failure(tileset, width, length, height, fixed)
        except Exception as e:
            # Diagnosis is advisory; the run already failed for its own reason.
            note = f"diagnosis exception: {type(e).__name__}: {e}"
            log.warning(note)
            traceback.print_exc()
            meta["feasibility"] = {
                "status": None, "reason": note, "elapsed": 0.0, "crash": None, "assignment": [],
            }

    reason = _explain(last_exc, meta["feasibility"])
    meta["elapsed"] = time.time() - t0
    if isinstance(instrumentation, PerformanceMeasurement):
        meta["profile"] = instrumentation.report()
    set_status("Error")
    set_message(reason)
    return False, [], reason, meta


def _run_engine(engine: ModelSynthesis) -> None:
    """synthesize(), reporting "scanning" from the first observed cell on."""
    def _scanning(cell: Cell, placement: Placement) -> None:
        set_phase("scanning")
        engine.on_place_tile.remove(_scanning)

    engine.on_place_tile.insert(0, _scanning)
    engine.synthesize()


def _placed_cells(p: Possibility) -> int:
    return p.tile.rotated_size(p.rotation).volume


__all__ = ["run_synthesis", "diagnose_failure", "SUCCESS_MESSAGE"]
