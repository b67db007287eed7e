"""Shared fixtures: quiet logging into a temp dir, seeded rng, small meshes."""

from __future__ import annotations

import tempfile

import numpy as np
import pytest

from utils.logger import Logger

# before any scankit module binds its logger
Logger.configure(level="WARNING", log_dir=tempfile.mkdtemp(prefix="scankit_logs_"), json_format=False)

from scankit.mesh import TriangleMesh  # noqa: E402


def cube_triangles(size: float = 1.0) -> np.ndarray:
    """12 outward-facing triangles of the axis-aligned cube [0, size]^3."""
    s = float(size)
    V = np.array(
        [
            [0, 0, 0], [s, 0, 0], [s, s, 0], [0, s, 0],
            [0, 0, s], [s, 0, s], [s, s, s], [0, s, s],
        ],
        dtype=float,
    )
    F = np.array(
        [
            [0, 2, 1], [0, 3, 2],  # z = 0
            [4, 5, 6], [4, 6, 7],  # z = s
            [0, 1, 5], [0, 5, 4],  # y = 0
            [3, 7, 6], [3, 6, 2],  # y = s
            [0, 4, 7], [0, 7, 3],  # x = 0
            [1, 2, 6], [1, 6, 5],  # x = s
        ]
    )
    return V[F]


def sample_on_triangles(tris: np.ndarray, n: int, rng: np.random.Generator) -> np.ndarray:
    """Area-weighted uniform samples on a triangle soup."""
    a, b, c = tris[:, 0], tris[:, 1], tris[:, 2]
    area = 0.5 * np.linalg.norm(np.cross(b - a, c - a), axis=1)
    k = rng.choice(len(tris), n, p=area / area.sum())
    u, v = rng.random(n), rng.random(n)
    flip = u + v > 1.0
    u[flip], v[flip] = 1.0 - u[flip], 1.0 - v[flip]
    return a[k] + u[:, None] * (b[k] - a[k]) + v[:, None] * (c[k] - a[k])


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def unit_cube() -> TriangleMesh:
    """Unit cube; faces x=0/x=1 are element 1/2, the rest element 3."""
    ids = np.array([3, 3, 3, 3, 3, 3, 3, 3, 1, 1, 2, 2])
    return TriangleMesh(cube_triangles(), ids)


@pytest.fixture
def random_soup(rng) -> TriangleMesh:
    centers = rng.uniform(-5.0, 5.0, size=(500, 1, 3))
    tris = centers + rng.normal(scale=0.4, size=(500, 3, 3))
    return TriangleMesh(tris, rng.integers(0, 10, size=500))
