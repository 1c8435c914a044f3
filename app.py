# app.py: synthesis runs on a worker thread; progress no-cache
from __future__ import annotations
import os
import time
import threading
from typing import Any, Dict, List, Optional, Tuple

from flask import Flask, request, send_from_directory, jsonify, url_for

from solver.errors import ConfigurationError
from solver.orchestrator import run_synthesis
from tiles import parse_catalog, parse_preplaced
from config import CFG
from io_files import write_placements, write_layers_view
from models import Cell, Placement, Tileset

from progress import (
    reset as progress_reset,
    as_json as progress_json,
    start_timer as progress_start,
    set_status, set_elapsed, set_done, set_result_url,
)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _resolve_output_paths(configured: str, fallback: str) -> Tuple[str, str, str]:
    name = (configured or "").strip() or fallback
    if os.path.isabs(name):
        full_path = name
    else:
        full_path = os.path.abspath(os.path.join(BASE_DIR, name))
    directory = os.path.dirname(full_path) or BASE_DIR
    filename = os.path.basename(full_path) or fallback
    return full_path, directory, filename


_PLACEMENTS_FULL_PATH, PLACEMENTS_DIR, PLACEMENTS_FILENAME = _resolve_output_paths(
    CFG.PLACEMENTS_OUT, "placements.txt"
)
_LAYERS_FULL_PATH, LAYERS_DIR, LAYERS_FILENAME = _resolve_output_paths(
    CFG.LAYERS_OUT, "layers.txt"
)

# Guards LAST_RESULT and the worker handle; engine state never leaves the worker.
RESULT_LOCK = threading.Lock()
WORKER: Optional[threading.Thread] = None

LAST_RESULT: Dict[str, Any] = {
    "ok": False,
    "run_id": 0,
    "reason": "No run yet",
    "dims": [0, 0, 0],
    "seed": None,
    "placed_count": 0,
    "placements": [],
    "stats": {},
    "feasibility": None,
    "elapsed_str": "0s",
    "placements_filename": PLACEMENTS_FILENAME,
    "layers_filename": LAYERS_FILENAME,
}

app = Flask(__name__)


@app.after_request
def _no_cache_progress(resp):
    if request.path in ("/progress", "/result/latest"):
        resp.headers["Cache-Control"] = "no-store, max-age=0"
        resp.headers["Pragma"] = "no-cache"
        resp.headers["Expires"] = "0"
    return resp


def _fmt_elapsed(seconds: float) -> str:
    if seconds < 1:
        return "0s"
    m, s = divmod(int(seconds), 60)
    if m == 0:
        return f"{s}s"
    h, m = divmod(m, 60)
    if h == 0:
        return f"{m}m {s}s"
    return f"{h}h {m}m {s}s"


def _int_field(payload: Dict[str, Any], key: str, default: int) -> int:
    raw = payload.get(key, default)
    if isinstance(raw, bool):
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from None


def _parse_request(payload: Any) -> Tuple[Tileset, int, int, int, int, List[Tuple[Cell, Any]]]:
    """Validate a run request up front so bad input is a 400, not a failed run."""
    if not isinstance(payload, dict):
        raise ConfigurationError("request body must be a JSON object")
    width = _int_field(payload, "width", CFG.WIDTH)
    length = _int_field(payload, "length", CFG.LENGTH)
    height = _int_field(payload, "height", CFG.HEIGHT)
    seed = _int_field(payload, "seed", CFG.SEED)
    if min(width, length, height) <= 0:
        raise ConfigurationError(
            f"width, height and length must be greater than 0 (got {width}x{height}x{length})"
        )
    cells = width * length * height
    if CFG.MAX_CELLS > 0 and cells > CFG.MAX_CELLS:
        raise ConfigurationError(f"grid of {cells} cells exceeds MS_MAX_CELLS={CFG.MAX_CELLS}")
    catalog = payload.get("catalog")
    if not isinstance(catalog, dict):
        raise ConfigurationError("catalog must be a JSON object")
    tileset = parse_catalog(catalog)
    preplaced = parse_preplaced(tileset, payload.get("preplaced") or [])
    return tileset, width, length, height, seed, preplaced


def _finalize_run_progress(ok_flag: bool, reason_text: str) -> None:
    """Write the terminal run status without clobbering failure states."""

    set_status("Solved" if ok_flag else "Error")
    set_done(ok_flag, reason=reason_text)


def _run_job(run_id: int, tileset: Tileset, width: int, length: int, height: int,
             seed: int, preplaced: List[Tuple[Cell, Any]]) -> Dict[str, Any]:
    t0 = time.time()

    def _on_place(cell: Cell, placement: Placement) -> None:
        with RESULT_LOCK:
            if LAST_RESULT.get("run_id") == run_id:
                LAST_RESULT["placed_count"] = int(LAST_RESULT.get("placed_count") or 0) + 1

    with RESULT_LOCK:
        LAST_RESULT.update({
            "ok": False,
            "run_id": run_id,
            "reason": "Running",
            "dims": [width, height, length],
            "seed": seed,
            "placed_count": 0,
            "placements": [],
            "stats": {},
            "feasibility": None,
        })

    try:
        ok, placements, reason, meta = run_synthesis(
            tileset, width, length, height, seed, preplaced, on_place=_on_place
        )
    except Exception as e:
        ok, placements, meta = False, [], {}
        reason = f"orchestrator exception: {type(e).__name__}: {e}"

    dims = (width, height, length)
    placements_name, layers_name = PLACEMENTS_FILENAME, LAYERS_FILENAME
    try:
        placements_name = os.path.basename(write_placements(placements, dims, BASE_DIR)) or PLACEMENTS_FILENAME
        layers_name = os.path.basename(write_layers_view(placements, dims, BASE_DIR)) or LAYERS_FILENAME
    except OSError as e:
        app.logger.warning("Could not write output files: %s", e)

    reason_text = reason or "Every cell resolved"
    _finalize_run_progress(ok, reason_text)
    set_elapsed(time.time() - t0)

    with RESULT_LOCK:
        LAST_RESULT.update({
            "ok": bool(ok),
            "run_id": run_id,
            "reason": reason_text,
            "dims": list(dims),
            "seed": meta.get("seed", seed),
            "attempts": meta.get("attempts", 0),
            "placed_count": len(placements),
            "placements": [p.to_dict() for p in placements],
            "stats": meta.get("stats", {}),
            "contradiction": meta.get("contradiction"),
            "feasibility": meta.get("feasibility"),
            "elapsed_str": _fmt_elapsed(time.time() - t0),
            "placements_filename": placements_name,
            "layers_filename": layers_name,
        })
        return dict(LAST_RESULT)


def _worker_busy() -> bool:
    return WORKER is not None and WORKER.is_alive()


@app.route("/synthesize", methods=["POST"])
def synthesize():
    global WORKER
    try:
        job = _parse_request(request.get_json(silent=True))
    except ConfigurationError as e:
        return jsonify({"ok": False, "reason": str(e)}), 400

    with RESULT_LOCK:
        if _worker_busy():
            return jsonify({"ok": False, "reason": "A run is already in progress"}), 409

        run_id = progress_reset()
        progress_start()
        set_status("Solving")
        set_result_url(url_for("result_latest"))

        wait = request.args.get("wait", "").strip().lower() in ("1", "true", "yes")
        if not wait:
            WORKER = threading.Thread(target=_run_job, args=(run_id, *job), daemon=True)
            WORKER.start()
            return jsonify({"run_id": run_id, "status": "Solving"}), 202

    result = _run_job(run_id, *job)
    return jsonify(result)


@app.route("/progress")
def progress():
    return jsonify(progress_json())


@app.route("/result/latest")
def result_latest():
    with RESULT_LOCK:
        return jsonify(dict(LAST_RESULT))


@app.route("/feasibility", methods=["POST"])
def feasibility():
    from solver.orchestrator import diagnose_failure
    try:
        tileset, width, length, height, _seed, preplaced = _parse_request(request.get_json(silent=True))
    except ConfigurationError as e:
        return jsonify({"status": None, "reason": str(e)}), 400
    seconds = request.args.get("seconds", type=float)
    out = diagnose_failure(tileset, width, length, height, preplaced, max_seconds=seconds)
    return jsonify({
        "status": out["status"],
        "reason": out["reason"],
        "elapsed": out["elapsed"],
        "assignment": out["assignment"],
    })


@app.route("/download/placements")
def download_placements():
    return send_from_directory(PLACEMENTS_DIR, PLACEMENTS_FILENAME, as_attachment=True)


@app.route("/download/layers")
def download_layers():
    return send_from_directory(LAYERS_DIR, LAYERS_FILENAME, as_attachment=True)


if __name__ == "__main__":
    app.run(debug=False)
