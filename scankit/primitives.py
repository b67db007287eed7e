# scankit/primitives.py
"""
RANSAC extraction of planes and cylinders from an unstructured point set.

Planes are taken first (building scans are dominated by walls and slabs),
cylinders are searched on whatever the planes left over. Both counts are
capped so a large cloud has a bounded worst case.

Inlier indices always refer to the exact array passed to the detection
call. Confidence is ``inliers / pool size when the primitive was found``;
two primitives found at different pool sizes cannot be compared by it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Literal, Optional, Tuple, Union

import numpy as np
from scipy.spatial import cKDTree

from utils.helpers import EPS
from utils.logger import Logger

from .cloud import PointsLike, as_array
from .config import DetectionParams

LOG = Logger.get_logger("ransac")

MIN_RADIUS = 0.01  # candidates thinner than this are numerically degenerate
COLLINEAR_SIN = 1e-6


@dataclass(frozen=True, eq=False)
class PlanePrimitive:
    normal: np.ndarray  # unit
    point: np.ndarray
    inliers: np.ndarray
    confidence: float
    id: str = "plane"
    kind: Literal["plane"] = "plane"


@dataclass(frozen=True, eq=False)
class CylinderPrimitive:
    axis_point: np.ndarray
    direction: np.ndarray  # unit
    radius: float
    inliers: np.ndarray
    confidence: float
    id: str = "cylinder"
    kind: Literal["cylinder"] = "cylinder"


DetectedPrimitive = Union[PlanePrimitive, CylinderPrimitive]
Cylinder = Tuple[np.ndarray, np.ndarray, float]


# ============================== GEOMETRY =====================================


def estimate_normals(P: np.ndarray, knn: int) -> np.ndarray:
    """Unit normals from the smallest PCA axis of each k-neighbourhood."""
    P = np.asarray(P, dtype=float).reshape(-1, 3)
    if len(P) < 3:
        return np.full(P.shape, np.nan)
    k = min(int(knn), len(P))
    _, J = cKDTree(P).query(P, k=k)
    nb = P[J.reshape(len(P), -1)]
    X = nb - nb.mean(axis=1, keepdims=True)
    C = np.einsum("nki,nkj->nij", X, X)
    _, V = np.linalg.eigh(C)
    return V[:, :, 0]


def axis_distance(P: np.ndarray, axis_point: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """Perpendicular distance of each point to the line (axis_point, direction)."""
    v = np.asarray(P, dtype=float) - axis_point
    perp = v - np.outer(v @ direction, direction)
    return np.linalg.norm(perp, axis=1)


def _plane_basis(d: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    ref = np.array([0.0, 0.0, 1.0]) if abs(d[2]) < 0.9 else np.array([1.0, 0.0, 0.0])
    u = np.cross(d, ref)
    u /= np.linalg.norm(u) + EPS
    v = np.cross(d, u)
    return u, v


def fit_plane_3pt(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray) -> Optional[np.ndarray]:
    """Unit normal through three points; None for (near-)collinear triples."""
    v1, v2 = p2 - p1, p3 - p1
    cr = np.cross(v1, v2)
    nc = float(np.linalg.norm(cr))
    scale = float(np.linalg.norm(v1) * np.linalg.norm(v2))
    if scale <= EPS or nc <= COLLINEAR_SIN * scale:
        return None
    return cr / nc


def fit_cylinder_chord(p: np.ndarray) -> Optional[Cylinder]:
    """Axis p0->p1, radius = distance of p2 to that line."""
    d = p[1] - p[0]
    nd = float(np.linalg.norm(d))
    if nd <= EPS:
        return None
    d = d / nd
    r = float(axis_distance(p[2:3], p[0], d)[0])
    if r < MIN_RADIUS:
        return None
    return p[0].copy(), d, r


def fit_cylinder_normals(p: np.ndarray, n: np.ndarray) -> Optional[Cylinder]:
    """
    Axis direction from the normals of p0 and p1, axis position and radius
    from the circle through the three points seen along that direction.
    """
    d = np.cross(n[0], n[1])
    nd = float(np.linalg.norm(d))
    if not np.isfinite(nd) or nd < 1e-3:
        return None
    d = d / nd
    u, v = _plane_basis(d)
    q = np.stack([(p - p[0]) @ u, (p - p[0]) @ v], axis=1)
    (bx, by), (cx, cy) = q[1], q[2]
    D = 2.0 * (bx * cy - by * cx)
    if abs(D) <= EPS:
        return None
    b2, c2 = bx * bx + by * by, cx * cx + cy * cy
    ux = (cy * b2 - by * c2) / D
    uy = (bx * c2 - cx * b2) / D
    r = float(np.hypot(ux, uy))
    if r < MIN_RADIUS:
        return None
    axis_point = p[0] + ux * u + uy * v
    return axis_point, d, r


def snap_point(position, primitive: DetectedPrimitive) -> np.ndarray:
    """Project a world position onto the surface of a detected primitive."""
    x = np.asarray(position, dtype=float).reshape(3)
    if isinstance(primitive, PlanePrimitive):
        n = primitive.normal
        return x - n * float(n @ (x - primitive.point))
    a, d = primitive.axis_point, primitive.direction
    w = x - a
    along = d * float(d @ w)
    radial = w - along
    nr = float(np.linalg.norm(radial))
    if nr > 0.0:
        radial = radial / nr * primitive.radius
    return a + along + radial


# ============================== DETECTOR =====================================


class PrimitiveDetector:
    """Sequential RANSAC: up to ``max_planes`` planes, then cylinders."""

    def __init__(
        self,
        params: Optional[DetectionParams] = None,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
    ) -> None:
        self.params = (params or DetectionParams()).validate()
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    # ---------------------------------------------------------------- planes
    def _best_plane(
        self, P: np.ndarray, pool: np.ndarray, tag: str, cancel
    ) -> Optional[PlanePrimitive]:
        prm = self.params
        Q = P[pool]
        if len(Q) < 3:
            return None
        best_cnt, best = 0, None
        for _ in range(prm.max_iterations):
            if cancel is not None and cancel.is_set():
                break
            s = self.rng.choice(len(Q), 3, replace=False)
            n = fit_plane_3pt(Q[s[0]], Q[s[1]], Q[s[2]])
            if n is None:
                continue
            mask = np.abs((Q - Q[s[0]]) @ n) < prm.distance_threshold
            cnt = int(mask.sum())
            if cnt > best_cnt:
                best_cnt, best = cnt, (n, Q[s[0]].copy(), mask)
        if best is None:
            return None
        n, p0, mask = best
        return PlanePrimitive(n, p0, pool[mask], best_cnt / len(pool), tag)

    # ------------------------------------------------------------- cylinders
    def _candidate(self, Q: np.ndarray, N: Optional[np.ndarray], s: np.ndarray) -> Optional[Cylinder]:
        if self.params.cylinder_model == "chord":
            return fit_cylinder_chord(Q[s[:3]])
        return fit_cylinder_normals(Q[s[:3]], N[s[:3]])

    def _best_cylinder(
        self,
        P: np.ndarray,
        normals: Optional[np.ndarray],
        pool: np.ndarray,
        tag: str,
        cancel,
    ) -> Optional[CylinderPrimitive]:
        prm = self.params
        Q = P[pool]
        N = None if normals is None else normals[pool]
        if len(Q) < 5:
            return None
        best_cnt, best = 0, None
        for _ in range(prm.max_iterations // 2):
            if cancel is not None and cancel.is_set():
                break
            s = self.rng.choice(len(Q), 5, replace=False)
            cyl = self._candidate(Q, N, s)
            if cyl is None:
                continue
            a, d, r = cyl
            if r < prm.cylinder_min_radius or r > prm.cylinder_max_radius:
                continue
            mask = np.abs(axis_distance(Q, a, d) - r) < prm.distance_threshold
            cnt = int(mask.sum())
            if cnt > best_cnt:
                best_cnt, best = cnt, (a, d, r, mask)
        if best is None:
            return None
        a, d, r, mask = best
        return CylinderPrimitive(a, d, r, pool[mask], best_cnt / len(pool), tag)

    # ------------------------------------------------------------------ API
    def detect_all(
        self, points: PointsLike, cancel: Optional[threading.Event] = None
    ) -> List[DetectedPrimitive]:
        P = as_array(points)
        if len(P) == 0:
            return []
        prm = self.params
        found: List[DetectedPrimitive] = []
        pool = np.arange(len(P))

        if prm.plane_enabled:
            for k in range(prm.max_planes):
                if len(pool) <= prm.min_inliers:
                    break
                plane = self._best_plane(P, pool, f"plane_{k}", cancel)
                if plane is None or len(plane.inliers) == 0 or len(plane.inliers) < prm.min_inliers:
                    break
                found.append(plane)
                pool = np.setdiff1d(pool, plane.inliers, assume_unique=True)
                LOG.info(
                    f"[RANSAC] plane#{k}: {len(plane.inliers)} inliers "
                    f"conf={plane.confidence:.3f} left={len(pool)}"
                )

        if prm.cylinder_enabled and len(pool) > prm.min_inliers:
            normals = None
            if prm.cylinder_model == "normals":
                normals = np.full(P.shape, np.nan)
                normals[pool] = estimate_normals(P[pool], prm.normal_knn)
            for k in range(prm.max_cylinders):
                if len(pool) <= prm.min_inliers:
                    break
                cyl = self._best_cylinder(P, normals, pool, f"cylinder_{k}", cancel)
                if cyl is None or len(cyl.inliers) == 0 or len(cyl.inliers) < prm.min_inliers:
                    break
                found.append(cyl)
                pool = np.setdiff1d(pool, cyl.inliers, assume_unique=True)
                LOG.info(
                    f"[RANSAC] cylinder#{k}: r={cyl.radius:.3f} "
                    f"{len(cyl.inliers)} inliers conf={cyl.confidence:.3f}"
                )

        LOG.info(f"[RANSAC] {len(found)} primitives from {len(P)} pts")
        return found


def detect_primitives(
    points: PointsLike,
    params: Optional[DetectionParams] = None,
    *,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> List[DetectedPrimitive]:
    """Planes then cylinders; ``[]`` for an empty input."""
    return PrimitiveDetector(params, rng=rng, seed=seed).detect_all(points, cancel)
