"""
Point-to-point ICP: rigid alignment of a source cloud onto a target cloud or
onto a mesh surface, starting from a rough prior alignment.

The engine is synchronous. Each call runs until it converges, hits the
iteration cap or sees the optional cancel event.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple, Union

import numpy as np
from scipy.spatial import cKDTree

from utils.error_tracker import InvalidInputError
from utils.helpers import apply_T, fmt_array, make_T
from utils.logger import Logger

from .bvh import MeshBVH
from .cloud import PointsLike, as_array
from .config import IcpOptions
from .mesh import TriangleMesh

LOG = Logger.get_logger("icp")

Target = Union[PointsLike, MeshBVH, TriangleMesh]
Matcher = Callable[[np.ndarray], Tuple[np.ndarray, np.ndarray]]


class IcpStatus(str, Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class IcpResult:
    """
    transform  : 4x4 source -> target, rotation block is a proper rotation
    iterations : completed iterations
    error      : last mean residual (relative convergence indicator only);
                 nan when no iteration had 3 correspondences
    """

    transform: np.ndarray
    iterations: int
    error: float
    status: IcpStatus

    @property
    def converged(self) -> bool:
        return self.status is IcpStatus.CONVERGED

    def apply(self, points: PointsLike) -> np.ndarray:
        return apply_T(self.transform, as_array(points))


# ============================== LEAST SQUARES ================================


def best_fit_transform(src: np.ndarray, dst: np.ndarray) -> Optional[np.ndarray]:
    """
    Rigid T minimizing sum |T(src_i) - dst_i|^2 (Kabsch / SVD).
    Returns None when fewer than 3 pairs are given or the cross-covariance
    cannot be decomposed.
    """
    src = np.asarray(src, dtype=float).reshape(-1, 3)
    dst = np.asarray(dst, dtype=float).reshape(-1, 3)
    if len(src) < 3 or len(src) != len(dst):
        return None
    cs = src.mean(axis=0)
    cd = dst.mean(axis=0)
    H = (src - cs).T @ (dst - cd)
    if not np.all(np.isfinite(H)):
        return None
    try:
        U, S, Vt = np.linalg.svd(H)
    except np.linalg.LinAlgError:
        return None

    if S[0] <= 1e-15:
        # coincident points: only the translation is defined
        R = np.eye(3)
    else:
        R = Vt.T @ U.T
        if np.linalg.det(R) < 0.0:
            # reflection: flip the singular vector of the smallest singular value
            Vt[2, :] *= -1.0
            R = Vt.T @ U.T
    t = cd - R @ cs
    if not (np.all(np.isfinite(R)) and np.all(np.isfinite(t))):
        return None
    return make_T(R, t)


def _orthonormalize(T: np.ndarray) -> np.ndarray:
    """Project the rotation block back onto SO(3) (drift from composition)."""
    U, _, Vt = np.linalg.svd(T[:3, :3])
    R = U @ Vt
    if np.linalg.det(R) < 0.0:
        U[:, 2] *= -1.0
        R = U @ Vt
    out = T.copy()
    out[:3, :3] = R
    return out


# ============================== MATCHERS =====================================


def _point_matcher(target: np.ndarray) -> Matcher:
    tree = cKDTree(target)

    def match(P: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        d, j = tree.query(P, k=1)
        return target[j], np.asarray(d, dtype=float)

    return match


def _mesh_matcher(index: MeshBVH) -> Matcher:
    def match(P: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        Q, d, _ = index.closest_points(P)
        return Q, d

    return match


def _make_matcher(target: Target) -> Tuple[Matcher, str]:
    if isinstance(target, TriangleMesh):
        target = target.index()
    if isinstance(target, MeshBVH):
        if target.is_empty:
            raise InvalidInputError("target mesh index has no triangles")
        return _mesh_matcher(target), f"mesh[{len(target.mesh)} tris]"
    tgt = as_array(target)
    if len(tgt) == 0:
        raise InvalidInputError("target point set is empty")
    return _point_matcher(tgt), f"cloud[{len(tgt)} pts]"


# ============================== ENGINE =======================================


def register_icp(
    source: PointsLike,
    target: Target,
    options: Optional[IcpOptions] = None,
    *,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
    init: Optional[np.ndarray] = None,
    cancel: Optional[threading.Event] = None,
) -> IcpResult:
    """
    Align ``source`` onto ``target`` (points, mesh, or mesh index).

    Each iteration moves the source by the accumulated transform, samples
    correspondences (``sample_ratio``), solves the closed-form rigid fit and
    composes it in front of the accumulated transform. Stops when the mean
    residual changes by less than ``tolerance``.
    """
    opts = (options or IcpOptions()).validate()
    src = as_array(source)
    if len(src) == 0:
        raise InvalidInputError("source point set is empty")
    match, tgt_desc = _make_matcher(target)
    if rng is None:
        rng = np.random.default_rng(seed)

    T = np.eye(4) if init is None else np.asarray(init, dtype=float).reshape(4, 4).copy()
    status = IcpStatus.MAX_ITERATIONS
    prev_error: Optional[float] = None
    error = float("nan")
    iterations = 0
    LOG.info(
        f"[ICP] src={len(src)} pts -> {tgt_desc} "
        f"max_it={opts.max_iterations} tol={opts.tolerance:g} ratio={opts.sample_ratio:g}"
    )

    for it in range(opts.max_iterations):
        if cancel is not None and cancel.is_set():
            status = IcpStatus.CANCELLED
            LOG.warning(f"[ICP] cancelled after {iterations} iterations")
            break
        iterations = it + 1

        moved = apply_T(T, src)
        if opts.sample_ratio < 1.0:
            moved = moved[rng.random(len(moved)) <= opts.sample_ratio]
        if len(moved) < 3:
            LOG.debug(f"[ICP it{iterations}] {len(moved)} correspondences -> skip")
            continue

        matched, dist = match(moved)
        before = float(dist.mean())
        delta = best_fit_transform(moved, matched)
        if delta is None:
            LOG.debug(f"[ICP it{iterations}] degenerate covariance -> keep T")
            error = before
        else:
            T = delta @ T
            error = float(np.linalg.norm(apply_T(delta, moved) - matched, axis=1).mean())

        if prev_error is None:
            prev_error = before
        LOG.debug(f"[ICP it{iterations}] n={len(moved)} err {prev_error:.6f} -> {error:.6f}")
        if abs(prev_error - error) < opts.tolerance:
            status = IcpStatus.CONVERGED
            break
        prev_error = error

    T = _orthonormalize(T)
    LOG.info(
        f"[ICP] {status.value} after {iterations} it, err={error:.6f} "
        f"t={fmt_array(T[:3, 3])}"
    )
    return IcpResult(T, iterations, error, status)
