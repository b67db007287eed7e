# scankit/export.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Sequence

import numpy as np

from utils.logger import Logger

from .coverage import CoverageMap, coverage_table
from .primitives import DetectedPrimitive, PlanePrimitive

LOG = Logger.get_logger("export")


def _vec(v) -> List[float]:
    return [float(c) for c in np.asarray(v).reshape(-1)]


def primitive_to_dict(p: DetectedPrimitive, with_inliers: bool = False) -> Dict:
    """JSON-ready description of a primitive (inlier indices optional)."""
    if isinstance(p, PlanePrimitive):
        out = {"normal": _vec(p.normal), "point": _vec(p.point)}
    else:
        out = {
            "axis_point": _vec(p.axis_point),
            "direction": _vec(p.direction),
            "radius": float(p.radius),
        }
    out = {"id": p.id, "kind": p.kind, **out}
    out["inlier_count"] = int(len(p.inliers))
    out["confidence"] = float(p.confidence)
    if with_inliers:
        out["inliers"] = [int(i) for i in p.inliers]
    return out


def _write_json(path: Path, data) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))
    return path


def save_primitives(
    primitives: Sequence[DetectedPrimitive], path: Path, with_inliers: bool = False
) -> Path:
    out = _write_json(path, [primitive_to_dict(p, with_inliers) for p in primitives])
    LOG.info(f"saved {len(primitives)} primitives: {out}")
    return out


def save_coverage(coverage: CoverageMap, path: Path) -> Path:
    """Coverage rows; an undefined (zero-area) coverage is written as null."""
    out = _write_json(path, coverage_table(coverage))
    LOG.info(f"saved coverage for {len(coverage)} elements: {out}")
    return out


def save_transform(T: np.ndarray, path: Path, **meta) -> Path:
    data = {"matrix": np.asarray(T, dtype=float).reshape(4, 4).tolist(), **meta}
    out = _write_json(path, data)
    LOG.info(f"saved transform: {out}")
    return out
