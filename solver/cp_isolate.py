# solver/cp_isolate.py
import multiprocessing as mp
import traceback
from typing import Any, Dict, List, Optional, Tuple


# Worker must be top-level (picklable on Windows spawn)
def _feasibility_worker(q, catalog: Dict[str, Any], W: int, L: int, H: int,
                        preplaced: List[Dict[str, Any]], max_seconds: float):
    try:
        # import inside child
        from solver.feasibility import check_feasible
        from tiles import parse_catalog, parse_preplaced
        tileset = parse_catalog(catalog, symmetry_check="off")
        status, assignment, reason = check_feasible(
            tileset, W, L, H, parse_preplaced(tileset, preplaced), max_seconds
        )
        q.put(("ok", status, assignment, reason))
    except MemoryError:
        q.put(("err", None, {}, "Child ran out of memory"))
    except Exception as e:
        q.put(("exc", None, {}, f"{e}\n{traceback.format_exc()}"))


def run_feasibility_isolated(
    catalog: Dict[str, Any],
    W: int,
    L: int,
    H: int,
    preplaced: List[Dict[str, Any]],
    max_seconds: float,
) -> Tuple[Optional[bool], Dict, Optional[str], Optional[str]]:
    """
    Returns (status, assignment, reason, crash_note).
    ``catalog`` and ``preplaced`` are plain records (see tiles.catalog_to_dict).
    crash_note is non-empty only if the child crashed/was killed/timed out.
    """
    ctx = mp.get_context("spawn")
    q = ctx.Queue()
    p = ctx.Process(
        target=_feasibility_worker,
        args=(q, catalog, int(W), int(L), int(H), list(preplaced), float(max_seconds)),
    )
    p.daemon = True
    p.start()

    # Allow a small buffer beyond model time for teardown
    timeout = float(max_seconds) + 5.0
    try:
        tag, status, assignment, reason = q.get(timeout=timeout)
    except Exception:
        tag = None
    p.join(2.0)

    if tag is None:
        if p.is_alive():
            p.terminate()
            p.join(2.0)
            return None, {}, "Stopped before solution (timebox)", "killed: timeout"
        if p.exitcode not in (0, None):
            return None, {}, f"Stopped before solution (child exit {p.exitcode})", "child crashed"
        return None, {}, "No result from child process", "no-result"

    if p.is_alive():
        p.terminate()
    if tag == "ok":
        return status, assignment, reason, None
    return None, {}, reason, None
