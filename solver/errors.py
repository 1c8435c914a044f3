# solver/errors.py
from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from models import Cell, Possibility


class SynthesisError(Exception):
    """Base class for everything the engine raises on purpose."""


class ConfigurationError(SynthesisError, ValueError):
    """Bad input detected before any solve work: dimensions, pre-placements."""


class CatalogError(ConfigurationError):
    """The catalog itself is malformed."""


class EngineStateError(SynthesisError, RuntimeError):
    """An operation was called in a state that does not allow it."""


class Contradiction(SynthesisError):
    """A cell's domain became empty during propagation."""

    def __init__(
        self,
        cell: "Cell",
        origin: Optional["Cell"] = None,
        attempted: Optional["Possibility"] = None,
    ) -> None:
        self.cell = tuple(cell)
        self.origin = tuple(origin) if origin is not None else None
        self.attempted = attempted
        msg = f"No possibilities left at {self.cell}"
        if self.origin is not None:
            msg += f". Originally propagating from {self.origin}"
        if attempted is not None:
            msg += f". Tried to place {attempted.tile.name} at {attempted.rotation.degrees} deg"
        super().__init__(msg)


class SelectionFailure(SynthesisError):
    """Weighted sampling found no candidate among the root possibilities."""

    def __init__(self, cell: "Cell", candidates: int = 0, total_weight: float = 0.0) -> None:
        self.cell = tuple(cell)
        self.candidates = candidates
        self.total_weight = total_weight
        super().__init__(
            f"Failed to pick a possibility at {self.cell} "
            f"({candidates} root candidates, total weight {total_weight:g})"
        )


__all__ = [
    "SynthesisError",
    "ConfigurationError",
    "CatalogError",
    "EngineStateError",
    "Contradiction",
    "SelectionFailure",
]
