from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

# ------------------------------
# Shared run state for /progress
# ------------------------------

PROGRESS_LOCK = threading.Lock()

_BLANK: Dict[str, Any] = {
    "status": "Idle",          # Idle | Solving | Solved | Error
    "phase": "",               # propagating | scanning | diagnosing
    "attempt": "",             # e.g. "1/3"
    "grid": "",                # e.g. "10 × 5 × 10"
    "seed": None,              # seed of the current attempt
    "cells_total": 0,
    "cells_resolved": 0,
    "percent": 0.0,            # 0..100, derived from cells_resolved
    "elapsed_start": None,     # wall clock when the run timer started
    "elapsed": 0.0,
    "message": "",
    "done": False,
    "ok": None,
    "result_url": "",
}

PROGRESS: Dict[str, Any] = dict(_BLANK, run_id=0)

_HERE = Path(__file__).resolve().parent
STATE_FILE = Path(os.environ.get("PROGRESS_STATE_FILE") or _HERE / "logs" / "progress_state.json")
STATE_FILE_TMP = STATE_FILE.with_name(STATE_FILE.name + ".tmp")
_LAST_STATE_MTIME: float = 0.0


# ------------------------------
# Run log
# ------------------------------

def _init_logger() -> logging.Logger:
    logger = logging.getLogger("synthesis.run_log")
    if logger.handlers:
        return logger
    log_path = _HERE / "logs" / "synthesis_runs.log"
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        return logger
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


RUN_LOGGER = _init_logger()


def _log_enabled() -> bool:
    return bool(RUN_LOGGER.handlers)


def _emit_log(event: str, **fields: Any) -> None:
    if not _log_enabled():
        return
    pairs = " ".join(f"{k}={v}" for k, v in fields.items() if v is not None and v != "")
    if pairs:
        RUN_LOGGER.info("%s | %s", event, pairs)
    else:
        RUN_LOGGER.info("%s", event)


def log_attempt_detail(event: str, **fields: Any) -> None:
    """Free-form run log line (retries, contradictions, diagnostics)."""
    _emit_log(event, **fields)


def _seconds(value: Optional[float]) -> Optional[str]:
    return None if value is None else f"{max(0.0, value):.2f}s"


# Open spans for the run log: name and start time of the current phase/attempt.
_SPANS: Dict[str, Dict[str, Any]] = {
    "run": {"name": "", "start": None},
    "phase": {"name": "", "start": None},
    "attempt": {"name": "", "start": None},
}


def _close_span_locked(kind: str, now: float, **fields: Any) -> None:
    span = _SPANS[kind]
    if not span["name"]:
        return
    start = span["start"]
    _emit_log(
        f"{kind.capitalize()} finished",
        **{kind: span["name"]},
        duration=_seconds(now - start if start is not None else None),
        **fields,
    )
    span.update(name="", start=None)


def _switch_span_locked(kind: str, name: str, **fields: Any) -> None:
    if _SPANS[kind]["name"] == name:
        return
    now = time.time()
    _close_span_locked(kind, now)
    if name:
        _SPANS[kind].update(name=name, start=now)
        _emit_log(f"{kind.capitalize()} started", **{kind: name}, **fields)


# ------------------------------
# Persistence
# ------------------------------

def _persist_locked() -> None:
    global _LAST_STATE_MTIME
    try:
        STATE_FILE.parent.mkdir(parents=True, exist_ok=True)
        STATE_FILE_TMP.write_text(
            json.dumps(PROGRESS, ensure_ascii=False, separators=(",", ":")), encoding="utf-8"
        )
        STATE_FILE_TMP.replace(STATE_FILE)
        _LAST_STATE_MTIME = STATE_FILE.stat().st_mtime
    except (OSError, TypeError, ValueError):
        # A read-only disk must not stop the run.
        pass


def _load_persisted_locked(force: bool = False) -> None:
    """Pick up state written by another process if the file is newer."""
    global _LAST_STATE_MTIME
    try:
        mtime = STATE_FILE.stat().st_mtime
        if not force and mtime <= _LAST_STATE_MTIME:
            return
        data = json.loads(STATE_FILE.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return
    if isinstance(data, dict):
        PROGRESS.update({k: data[k] for k in PROGRESS if k in data})
        _LAST_STATE_MTIME = mtime


def _update(**fields: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS.update(fields)
        _persist_locked()


def _touch_elapsed_locked() -> None:
    t0 = PROGRESS.get("elapsed_start")
    if t0 is not None:
        PROGRESS["elapsed"] = time.time() - float(t0)


def _fmt_elapsed(seconds: float) -> str:
    seconds = int(max(0.0, float(seconds)))
    m, s = divmod(seconds, 60)
    h, m = divmod(m, 60)
    if h:
        return f"{h}h {m}m"
    if m:
        return f"{m}m {s}s"
    return f"{s}s"


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# ------------------------------
# Run lifecycle
# ------------------------------

def reset() -> int:
    """Clear the state for a new run; returns the new run id."""
    with PROGRESS_LOCK:
        now = time.time()
        for kind in ("attempt", "phase", "run"):
            _close_span_locked(kind, now, reason="reset")
        run_id = _as_int(PROGRESS.get("run_id")) + 1
        PROGRESS.clear()
        PROGRESS.update(_BLANK, run_id=run_id)
        _emit_log("Progress reset", run_id=run_id)
        _persist_locked()
        return run_id


def start_timer() -> None:
    with PROGRESS_LOCK:
        now = time.time()
        PROGRESS["elapsed_start"] = now
        PROGRESS["elapsed"] = 0.0
        _SPANS["run"].update(name=str(PROGRESS["run_id"]), start=now)
        _emit_log("Run timer started", run_id=PROGRESS["run_id"])
        _persist_locked()


def set_status(v: Any) -> None:
    _update(status=str(v))


def set_phase(v: Any) -> None:
    phase = "" if v is None else str(v)
    with PROGRESS_LOCK:
        PROGRESS["phase"] = phase
        _switch_span_locked("phase", phase, attempt=PROGRESS["attempt"])
        _persist_locked()


def set_attempt(v: Any) -> None:
    attempt = "" if v is None else str(v)
    with PROGRESS_LOCK:
        PROGRESS["attempt"] = attempt
        _switch_span_locked("attempt", attempt, seed=PROGRESS["seed"], grid=PROGRESS["grid"])
        _persist_locked()


def set_grid(width: Any, height: Any, length: Any) -> None:
    dims = [_as_int(width, -1), _as_int(height, -1), _as_int(length, -1)]
    if min(dims) < 0:
        _update(grid="", cells_total=0)
        return
    w, h, l = dims
    _update(grid=f"{w} × {h} × {l}", cells_total=w * h * l)


def set_seed(seed: Any) -> None:
    _update(seed=seed)


def set_cells_resolved(n: Any) -> None:
    """Update the resolved count and derive ``percent`` from it."""
    with PROGRESS_LOCK:
        total = _as_int(PROGRESS.get("cells_total"))
        done = max(0, _as_int(n))
        if total:
            done = min(done, total)
        PROGRESS["cells_resolved"] = done
        PROGRESS["percent"] = 100.0 * done / total if total else 0.0
        _touch_elapsed_locked()
        _persist_locked()


def set_elapsed(seconds: Any) -> None:
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        value = 0.0
    _update(elapsed=max(0.0, value))


def set_message(msg: Any) -> None:
    _update(message="" if msg is None else str(msg))


def set_result_url(url: Any) -> None:
    _update(result_url="" if url is None else str(url))


def set_done(ok: Any = None, *, reason: Any = None, message: Any = None) -> None:
    """Mark the run complete.

    ``ok`` decides the final status ("Solved" / "Error") when given; otherwise
    the status is left alone, or becomes "Solved" if nothing was ever set.
    ``reason`` and ``message`` both land in the ``message`` field.
    """
    text = message if message is not None else reason
    with PROGRESS_LOCK:
        _touch_elapsed_locked()
        if ok is not None:
            PROGRESS["ok"] = bool(ok)
            PROGRESS["status"] = "Solved" if ok else "Error"
        elif PROGRESS.get("status") in ("", "Idle", None):
            PROGRESS["ok"] = True
            PROGRESS["status"] = "Solved"
        if text is not None:
            PROGRESS["message"] = str(text)
        PROGRESS["percent"] = 100.0
        PROGRESS["done"] = True

        now = time.time()
        _close_span_locked("attempt", now, reason="run_complete")
        _close_span_locked("phase", now)
        _close_span_locked(
            "run",
            now,
            status=PROGRESS["status"],
            ok=PROGRESS["ok"],
            grid=PROGRESS["grid"],
            seed=PROGRESS["seed"],
            resolved=f"{PROGRESS['cells_resolved']}/{PROGRESS['cells_total']}",
            message=PROGRESS["message"],
        )
        _persist_locked()


# ------------------------------
# Snapshots for the UI
# ------------------------------

def snapshot() -> Dict[str, Any]:
    with PROGRESS_LOCK:
        _load_persisted_locked()
        if not PROGRESS.get("done"):
            _touch_elapsed_locked()
        snap = {k: v for k, v in PROGRESS.items() if k != "elapsed_start"}
        snap["elapsed_str"] = _fmt_elapsed(PROGRESS["elapsed"])
        return snap


def as_json() -> Dict[str, Any]:
    # Alias used by /progress
    return snapshot()


with PROGRESS_LOCK:
    _load_persisted_locked(force=True)
