"""
Per-element progress estimate: how many scanned points sit on each building
element, normalized by the element's surface area.

``coverage_percent = matched_points / element_area * 100`` is a density
(points per square meter, scaled), not the fraction of the surface that was
observed. Small, densely scanned elements can report more than 100.
Elements with zero area report ``None`` instead of a number.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from utils import config as ucfg
from utils.logger import Logger

from .bvh import MeshBVH
from .cloud import PointsLike, as_array
from .mesh import TriangleMesh

LOG = Logger.get_logger("coverage")


@dataclass(frozen=True)
class CoverageEntry:
    matched_points: int
    coverage_percent: Optional[float]  # None: element has zero area


CoverageMap = Dict[str, CoverageEntry]


def compute_coverage(
    points: PointsLike,
    index: Union[MeshBVH, TriangleMesh],
    tolerance: float = ucfg.COVERAGE_TOL,
) -> CoverageMap:
    """
    Count points closer than ``tolerance`` to the model, per element id.
    Points farther away (noise, off-model geometry) are ignored.
    """
    if isinstance(index, TriangleMesh):
        index = index.index()
    P = as_array(points)
    if len(P) == 0 or index.is_empty:
        return {}

    mesh = index.mesh
    _, dist, tri = index.closest_points(P)
    hit = (tri >= 0) & (dist < tolerance)
    counts = Counter(mesh.element_key(t) for t in tri[hit])

    areas = mesh.element_areas()
    out: CoverageMap = {}
    for key in sorted(counts):
        n = counts[key]
        area = areas.get(key, 0.0)
        pct = n / area * 100.0 if area > 0.0 else None
        if pct is None:
            LOG.warning(f"[COV] element {key}: zero area, coverage undefined")
        out[key] = CoverageEntry(n, pct)

    LOG.info(
        f"[COV] {int(hit.sum())}/{len(P)} pts within {tolerance:g} m "
        f"-> {len(out)} elements"
    )
    return out


def coverage_table(coverage: CoverageMap) -> List[dict]:
    """Rows for a progress table / JSON report, sorted by element id."""

    def _key(k: str):
        return (0, int(k), k) if k.lstrip("-").isdigit() else (1, 0, k)

    return [
        {
            "element": k,
            "matched_points": coverage[k].matched_points,
            "coverage_percent": coverage[k].coverage_percent,
        }
        for k in sorted(coverage, key=_key)
    ]
