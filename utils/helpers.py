# utils/helpers.py
from __future__ import annotations

import math
from typing import Tuple

import numpy as np

np.set_printoptions(suppress=True, precision=6, linewidth=180)

EPS = 1e-12


# ============================================================================ #
# Rotations
# ============================================================================ #
def _axis_R(axis: str, deg: float) -> np.ndarray:
    c, s = math.cos(math.radians(deg)), math.sin(math.radians(deg))
    i, j = {"X": (1, 2), "Y": (2, 0), "Z": (0, 1)}[axis]
    R = np.eye(3)
    R[i, i], R[i, j] = c, -s
    R[j, i], R[j, j] = s, c
    return R


def euler_deg_to_R(
    rx: float, ry: float, rz: float, order: str = "XYZ"
) -> np.ndarray:
    """Euler angles in degrees -> 3x3 rotation; axes applied left to right."""
    angles = dict(X=rx, Y=ry, Z=rz)
    R = np.eye(3)
    for ch in order:
        R = _axis_R(ch, angles[ch]) @ R
    return R


def is_proper_rotation(R: np.ndarray, atol: float = 1e-6) -> bool:
    """Orthonormal with det +1 (no reflection)."""
    R = np.asarray(R, dtype=float)[:3, :3]
    if not np.all(np.isfinite(R)):
        return False
    ortho = np.allclose(R.T @ R, np.eye(3), atol=atol)
    return bool(ortho and np.linalg.det(R) > 0.0)


# ============================================================================ #
# Rigid 4x4 transforms
# ============================================================================ #
def make_T(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """4x4 from R (3x3) and t (3,)."""
    T = np.eye(4, dtype=float)
    T[:3, :3] = R
    T[:3, 3] = np.asarray(t, dtype=float).reshape(3)
    return T


def split_T(T: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    T = np.asarray(T, dtype=float)
    return T[:3, :3].copy(), T[:3, 3].copy()


def apply_T(T: np.ndarray, P: np.ndarray) -> np.ndarray:
    """Transform (N,3) points; row-vector convention."""
    P = np.asarray(P, dtype=float).reshape(-1, 3)
    return P @ T[:3, :3].T + T[:3, 3]


def invert_rigid(T: np.ndarray) -> np.ndarray:
    R, t = split_T(T)
    return make_T(R.T, -R.T @ t)


# ============================================================================ #
# Vectors / formatting
# ============================================================================ #
def unit(v: np.ndarray) -> np.ndarray:
    """v / |v|; the zero vector stays zero."""
    v = np.asarray(v, dtype=float)
    n = float(np.linalg.norm(v))
    return v / n if n > EPS else np.zeros_like(v)


def fmt_array(v) -> str:
    """numpy one-liner for log messages."""
    return np.array2string(np.asarray(v), separator=", ")
