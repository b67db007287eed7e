"""Triangle mesh with per-triangle element ids and a lazily built index."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Dict, Optional

import numpy as np

from utils.logger import Logger

if TYPE_CHECKING:
    from .bvh import MeshBVH

LOG = Logger.get_logger("mesh")


def triangle_areas(tris: np.ndarray) -> np.ndarray:
    """Area of each (3,3) triangle; winding independent."""
    tris = np.asarray(tris, dtype=float).reshape(-1, 3, 3)
    cr = np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])
    return 0.5 * np.linalg.norm(cr, axis=1)


class TriangleMesh:
    """
    Triangle soup: ``triangles`` (T,3,3) plus optional ``element_ids`` (T,).

    Positions are read-only. Moving vertices means building a new mesh with
    ``with_positions``; the spatial index of the old mesh is never reused.
    """

    def __init__(
        self, triangles: np.ndarray, element_ids: Optional[np.ndarray] = None
    ) -> None:
        tris = np.array(triangles, dtype=np.float64, copy=True).reshape(-1, 3, 3)
        tris.setflags(write=False)
        self.triangles = tris
        self.element_ids: Optional[np.ndarray] = None
        if element_ids is not None:
            ids = np.array(element_ids, dtype=np.int64, copy=True).reshape(-1)
            if len(ids) != len(tris):
                raise ValueError(
                    f"element_ids has {len(ids)} entries for {len(tris)} triangles"
                )
            ids.setflags(write=False)
            self.element_ids = ids
        self._index: Optional["MeshBVH"] = None
        self._index_lock = threading.Lock()

    @classmethod
    def from_indexed(
        cls,
        vertices: np.ndarray,
        faces: np.ndarray,
        element_ids: Optional[np.ndarray] = None,
    ) -> "TriangleMesh":
        """Build from a vertex array and (T,3) face indices."""
        V = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        F = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        return cls(V[F], element_ids)

    def __len__(self) -> int:
        return len(self.triangles)

    def __repr__(self) -> str:
        n_el = 0 if self.element_ids is None else len(np.unique(self.element_ids))
        return f"TriangleMesh({len(self)} tris, {n_el} elements)"

    # ------------------------------------------------------------- geometry
    def triangle_areas(self) -> np.ndarray:
        return triangle_areas(self.triangles)

    def element_key(self, tri: int) -> str:
        """String element id of a triangle ("0" when the mesh carries none)."""
        if self.element_ids is None:
            return "0"
        return str(int(self.element_ids[tri]))

    def element_areas(self) -> Dict[str, float]:
        """Summed surface area per element id (string keys)."""
        areas = self.triangle_areas()
        if self.element_ids is None:
            return {"0": float(areas.sum())}
        uniq, inv = np.unique(self.element_ids, return_inverse=True)
        sums = np.bincount(inv, weights=areas, minlength=len(uniq))
        return {str(int(k)): float(s) for k, s in zip(uniq, sums)}

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        if len(self) == 0:
            return np.zeros(3), np.zeros(3)
        P = self.triangles.reshape(-1, 3)
        return P.min(0), P.max(0)

    def with_positions(self, triangles: np.ndarray) -> "TriangleMesh":
        """New mesh with moved vertices; element ids are carried over."""
        return TriangleMesh(triangles, self.element_ids)

    def transformed(self, T: np.ndarray) -> "TriangleMesh":
        T = np.asarray(T, dtype=float)
        P = self.triangles.reshape(-1, 3) @ T[:3, :3].T + T[:3, 3]
        return self.with_positions(P.reshape(-1, 3, 3))

    # ---------------------------------------------------------------- index
    def index(self) -> "MeshBVH":
        """Spatial index for this mesh, built on first use and cached."""
        idx = self._index
        if idx is not None:
            return idx
        with self._index_lock:
            if self._index is None:
                from .bvh import MeshBVH

                self._index = MeshBVH.build(self)
            return self._index

    def has_index(self) -> bool:
        return self._index is not None
