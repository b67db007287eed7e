from __future__ import annotations

from pathlib import Path

# ============================== PROJECT DEFAULTS =============================

# Where a survey/model pair lives (code can override this)
DATA_ROOT: Path = Path(".data_scans/site")

# Filenames inside DATA_ROOT
CLOUD_NAME: str = "scan.ply"  # PLY / LAS / LAZ / PCD / XYZ
MESH_NAME: str = "model.ply"  # triangulated building model
REPORT_DIR_NAME: str = "report"

# Geometry tolerances (meters)
COVERAGE_TOL: float = 0.02
DEGENERATE_AREA: float = 1e-12

# BVH leaves hold at most this many triangles
BVH_LEAF_SIZE: int = 8

# Seed used when a caller does not inject a random generator (None = entropy)
DEFAULT_SEED: int | None = None
