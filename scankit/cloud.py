"""Point and point-cloud value types shared by registration and detection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Sequence, Union

import numpy as np

from utils.helpers import apply_T


@dataclass(frozen=True)
class Color:
    r: int
    g: int
    b: int


@dataclass(frozen=True)
class Point:
    """One scanned sample: position in meters, optional color / intensity."""

    x: float
    y: float
    z: float
    color: Optional[Color] = None
    intensity: Optional[float] = None

    def xyz(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)


def _frozen(a: Optional[np.ndarray]) -> Optional[np.ndarray]:
    if a is None:
        return None
    a = np.array(a, copy=True)
    a.setflags(write=False)
    return a


class PointCloud:
    """
    Ordered, immutable set of points stored as arrays.

    xyz       : (N,3) float64 positions
    colors    : (N,3) uint8 or None
    intensity : (N,) float64 or None

    Array position is the only identity of a point; anything that stores
    indices (primitive inliers) refers to this exact order.
    """

    __slots__ = ("xyz", "colors", "intensity")

    def __init__(
        self,
        xyz: np.ndarray,
        colors: Optional[np.ndarray] = None,
        intensity: Optional[np.ndarray] = None,
    ) -> None:
        P = np.asarray(xyz, dtype=np.float64).reshape(-1, 3)
        n = len(P)
        if colors is not None:
            colors = np.clip(np.asarray(colors), 0, 255).astype(np.uint8)
            if colors.shape != (n, 3):
                raise ValueError(f"colors shape {colors.shape} != ({n}, 3)")
        if intensity is not None:
            intensity = np.asarray(intensity, dtype=np.float64).reshape(-1)
            if intensity.shape != (n,):
                raise ValueError(f"intensity shape {intensity.shape} != ({n},)")
        self.xyz = _frozen(P)
        self.colors = _frozen(colors)
        self.intensity = _frozen(intensity)

    # ------------------------------------------------------------------ basics
    def __len__(self) -> int:
        return len(self.xyz)

    def __getitem__(self, i: int) -> Point:
        x, y, z = (float(c) for c in self.xyz[i])
        color = None
        if self.colors is not None:
            r, g, b = (int(c) for c in self.colors[i])
            color = Color(r, g, b)
        inten = None if self.intensity is None else float(self.intensity[i])
        return Point(x, y, z, color, inten)

    def __iter__(self) -> Iterator[Point]:
        for i in range(len(self)):
            yield self[i]

    def __repr__(self) -> str:
        extras = []
        if self.colors is not None:
            extras.append("rgb")
        if self.intensity is not None:
            extras.append("intensity")
        tail = f" +{'+'.join(extras)}" if extras else ""
        return f"PointCloud({len(self)} pts{tail})"

    @classmethod
    def from_points(cls, points: Iterable[Point]) -> "PointCloud":
        pts = list(points)
        xyz = np.array([[p.x, p.y, p.z] for p in pts], dtype=float).reshape(-1, 3)
        colors = None
        if pts and all(p.color is not None for p in pts):
            colors = np.array([[p.color.r, p.color.g, p.color.b] for p in pts])
        intensity = None
        if pts and all(p.intensity is not None for p in pts):
            intensity = np.array([p.intensity for p in pts], dtype=float)
        return cls(xyz, colors, intensity)

    # -------------------------------------------------------------- derived
    def _with_xyz(self, xyz: np.ndarray) -> "PointCloud":
        return PointCloud(xyz, self.colors, self.intensity)

    def _select(self, idx: np.ndarray) -> "PointCloud":
        return PointCloud(
            self.xyz[idx],
            None if self.colors is None else self.colors[idx],
            None if self.intensity is None else self.intensity[idx],
        )

    def bbox_center(self) -> np.ndarray:
        if len(self) == 0:
            return np.zeros(3)
        return 0.5 * (self.xyz.min(0) + self.xyz.max(0))

    def centered(self) -> "PointCloud":
        """Copy translated so the bounding-box center sits at the origin."""
        if len(self) == 0:
            return self
        return self._with_xyz(self.xyz - self.bbox_center())

    def downsampled(self, ratio: float) -> "PointCloud":
        """Keep every round(1/ratio)-th point; ratio outside (0,1) is a no-op."""
        if not (0.0 < ratio < 1.0):
            return self
        step = max(1, int(round(1.0 / ratio)))
        return self._select(np.arange(0, len(self), step))

    def transformed(self, T: np.ndarray) -> "PointCloud":
        """Copy with a 4x4 rigid transform applied to the positions."""
        return self._with_xyz(apply_T(np.asarray(T, dtype=float), self.xyz))


PointsLike = Union[PointCloud, np.ndarray, Sequence[Point], Sequence[Sequence[float]]]


def as_array(points: PointsLike) -> np.ndarray:
    """(N,3) float64 view of any accepted point container."""
    if isinstance(points, PointCloud):
        return points.xyz
    if isinstance(points, np.ndarray):
        return np.asarray(points, dtype=np.float64).reshape(-1, 3)
    seq = list(points)
    if not seq:
        return np.empty((0, 3), np.float64)
    if isinstance(seq[0], Point):
        return np.array([[p.x, p.y, p.z] for p in seq], dtype=np.float64)
    return np.asarray(seq, dtype=np.float64).reshape(-1, 3)
