"""Helpers for writing synthesis outputs to disk."""

from __future__ import annotations

import os
from typing import Dict, List, Sequence, Tuple

from config import CFG
from models import Cell, Placement

EMPTY_LABEL = "."


def _resolve_output_path(base_dir: str, configured_name: str, fallback: str) -> str:
    """Return the absolute path where an output artifact should be written."""

    name = (configured_name or "").strip() or fallback
    if os.path.isabs(name):
        return name
    return os.path.join(base_dir, name)


def _placement_line(p: Placement) -> str:
    x, y, z = p.cell
    line = f"{p.tile.name} rot={p.rotation.degrees} @ ({x},{y},{z})"
    if p.root:
        line += " root"
    if p.tile.dont_instantiate:
        line += " hidden"
    if p.free_angle is not None:
        line += f" free={p.free_angle:.1f}"
    return line


def write_placements(placements: Sequence[Placement], dims: Tuple[int, int, int], base_dir: str) -> str:
    """Write one line per resolved cell to the configured text file.

    ``dims`` is (width, height, length).
    """

    path = _resolve_output_path(base_dir, CFG.PLACEMENTS_OUT, "placements.txt")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        if not placements:
            f.write("No solution\n")
        else:
            w, h, l = dims
            f.write(f"# grid {w} x {h} x {l}, {len(placements)} cells\n")
            for p in placements:
                f.write(_placement_line(p) + "\n")
    return path


def _labels(placements: Sequence[Placement]) -> Dict[str, str]:
    """Shortest distinct prefix per tile name (at least one character)."""
    names = sorted({p.tile.name for p in placements})
    out: Dict[str, str] = {}
    for name in names:
        for n in range(1, len(name) + 1):
            cand = name[:n]
            if not any(o != name and o.startswith(cand) for o in names):
                out[name] = cand
                break
        else:
            out[name] = name
    return out


def layers_view(placements: Sequence[Placement], dims: Tuple[int, int, int]) -> List[str]:
    """Text rows for each y layer, north at the top."""
    w, h, l = dims
    labels = _labels(placements)
    width = max((len(v) for v in labels.values()), default=1)
    by_cell: Dict[Cell, str] = {}
    for p in placements:
        if p.tile.dont_instantiate:
            continue
        by_cell[p.cell] = labels[p.tile.name]

    lines: List[str] = []
    for y in range(h):
        lines.append(f"y={y}")
        for z in reversed(range(l)):
            row = [by_cell.get((x, y, z), EMPTY_LABEL).ljust(width) for x in range(w)]
            lines.append(" ".join(row).rstrip())
        lines.append("")
    if labels:
        lines.append("legend: " + ", ".join(f"{v}={k}" for k, v in sorted(labels.items())))
    return lines


def write_layers_view(placements: Sequence[Placement], dims: Tuple[int, int, int], base_dir: str) -> str:
    """Write the per-layer text view to the configured file."""

    path = _resolve_output_path(base_dir, CFG.LAYERS_OUT, "layers.txt")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    with open(path, "w", encoding="utf-8") as vf:
        if not placements:
            vf.write("No solution\n")
        else:
            vf.write("\n".join(layers_view(placements, dims)) + "\n")
    return path


__all__ = ["layers_view", "write_layers_view", "write_placements"]
