import os

# ======= Default run parameters (HTTP surface) =======
SEED   = int(os.getenv("MS_SEED", "1234"))
WIDTH  = int(os.getenv("MS_WIDTH", "10"))
LENGTH = int(os.getenv("MS_LENGTH", "10"))
HEIGHT = int(os.getenv("MS_HEIGHT", "5"))

# Requests above this many cells are rejected before any work starts.
MAX_CELLS = int(os.getenv("MS_MAX_CELLS", "20000"))

# ======= Propagation =======
# 1 = worklist of (cell, arrival direction); 0 = relax all six directions on
# every pop.  Both reach the same fixpoint.
DIRECTION_AWARE = int(os.getenv("MS_DIRECTION_AWARE", "1")) != 0

# ======= Catalog checks =======
# warn | error | off
SYMMETRY_CHECK = os.getenv("MS_SYMMETRY_CHECK", "warn").strip().lower()

# ======= Run policy =======
SEED_RETRIES            = int(os.getenv("MS_SEED_RETRIES", "0"))
DIAGNOSE_CONTRADICTIONS = int(os.getenv("MS_DIAGNOSE_CONTRADICTIONS", "1")) != 0
PROFILE                 = int(os.getenv("MS_PROFILE", "0")) != 0

# ======= CP-SAT feasibility diagnosis =======
FEASIBILITY_SECONDS      = float(os.getenv("MS_FEASIBILITY_SECONDS", "10"))
FEASIBILITY_MAX_LITERALS = int(os.getenv("MS_FEASIBILITY_MAX_LITERALS", "400000"))
FEASIBILITY_ISOLATE      = int(os.getenv("MS_FEASIBILITY_ISOLATE", "1")) != 0
WORKERS                  = int(os.getenv("MS_WORKERS", "1"))
MAX_MEMORY_MB            = int(os.getenv("MS_MAX_MEMORY_MB", "2048"))

# ======= Output names =======
PLACEMENTS_OUT = os.getenv("MS_PLACEMENTS_OUT", "placements.txt")
LAYERS_OUT     = os.getenv("MS_LAYERS_OUT", "layers.txt")

class CFG:
    SEED   = SEED
    WIDTH  = WIDTH
    LENGTH = LENGTH
    HEIGHT = HEIGHT

    MAX_CELLS = MAX_CELLS

    DIRECTION_AWARE = DIRECTION_AWARE
    SYMMETRY_CHECK  = SYMMETRY_CHECK

    SEED_RETRIES            = SEED_RETRIES
    DIAGNOSE_CONTRADICTIONS = DIAGNOSE_CONTRADICTIONS
    PROFILE                 = PROFILE

    FEASIBILITY_SECONDS      = FEASIBILITY_SECONDS
    FEASIBILITY_MAX_LITERALS = FEASIBILITY_MAX_LITERALS
    FEASIBILITY_ISOLATE      = FEASIBILITY_ISOLATE
    WORKERS                  = WORKERS
    MAX_MEMORY_MB            = MAX_MEMORY_MB

    PLACEMENTS_OUT = PLACEMENTS_OUT
    LAYERS_OUT     = LAYERS_OUT

__all__ = ["CFG"]
