"""Loaders for scans and model meshes (PLY / LAS / LAZ / OBJ / PCD / XYZ)."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
import open3d as o3d

from utils.helpers import fmt_array
from utils.logger import Logger

from .cloud import PointCloud
from .config import CloudFormat
from .mesh import TriangleMesh

LOG = Logger.get_logger("io")

_O3D_CLOUD_SUFFIXES = {"ply", "pcd", "xyz", "xyzn", "xyzrgb", "pts"}


def _quiet() -> o3d.utility.VerbosityContextManager:
    """Only errors from Open3D readers reach the console."""
    return o3d.utility.VerbosityContextManager(o3d.utility.VerbosityLevel.Error)


def infer_format(path: Path, fmt: CloudFormat = "auto") -> str:
    """Explicit format, else the file suffix (lower-case, without dot)."""
    if fmt != "auto":
        return fmt
    suffix = Path(path).suffix.lower().lstrip(".")
    if suffix in ("las", "laz", "obj") or suffix in _O3D_CLOUD_SUFFIXES:
        return suffix
    raise ValueError(f"Unsupported point cloud format: {path}")


def _colors_to_u8(C: np.ndarray) -> np.ndarray:
    """Scale 0-1 floats, 8-bit or 16-bit channels to 0-255."""
    C = np.asarray(C, dtype=np.float64)
    if C.size == 0:
        return C.astype(np.uint8)
    mx = float(C.max())
    if mx <= 1.0:
        C = C * 255.0
    elif mx > 255.0:
        C = C / 257.0
    return np.clip(np.round(C), 0, 255).astype(np.uint8)


def _read_las(path: Path) -> PointCloud:
    import laspy  # lazy: only LAS/LAZ inputs need it

    las = laspy.read(str(path))
    xyz = np.vstack((las.x, las.y, las.z)).T
    dims = set(las.point_format.dimension_names)
    colors = None
    if {"red", "green", "blue"} <= dims:
        colors = _colors_to_u8(np.vstack((las.red, las.green, las.blue)).T)
    intensity = None
    if "intensity" in dims:
        intensity = np.asarray(las.intensity, dtype=np.float64)
    return PointCloud(xyz, colors, intensity)


def _read_o3d_cloud(path: Path) -> PointCloud:
    with _quiet():
        pc = o3d.io.read_point_cloud(str(path))
    xyz = np.asarray(pc.points)
    colors = _colors_to_u8(np.asarray(pc.colors)) if pc.has_colors() else None
    return PointCloud(xyz, colors)


def _read_obj_vertices(path: Path) -> PointCloud:
    with _quiet():
        m = o3d.io.read_triangle_mesh(str(path))
    xyz = np.asarray(m.vertices)
    colors = None
    if m.has_vertex_colors():
        colors = _colors_to_u8(np.asarray(m.vertex_colors))
    return PointCloud(xyz, colors)


def load_point_cloud(
    path: Path | str,
    fmt: CloudFormat = "auto",
    downsample: float = 0.0,
    center: bool = True,
) -> PointCloud:
    """
    Read a scan, center it on its bounding-box center, then step-downsample.
    Returns an empty cloud when the file holds no points.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Point cloud not found: {path}")
    kind = infer_format(path, fmt)
    if kind in ("las", "laz"):
        cloud = _read_las(path)
    elif kind == "obj":
        cloud = _read_obj_vertices(path)
    elif kind in _O3D_CLOUD_SUFFIXES:
        cloud = _read_o3d_cloud(path)
    else:
        raise ValueError(f"Unsupported point cloud format: {kind}")

    LOG.info(f"[LOAD] {path.name}: {len(cloud)} pts ({kind})")
    if len(cloud) == 0:
        LOG.warning(f"[LOAD] {path.name} has no points")
        return cloud
    if center:
        c = cloud.bbox_center()
        cloud = cloud.centered()
        LOG.info(f"[LOAD] centered (shift {fmt_array(-c)})")
    if 0.0 < downsample < 1.0:
        n0 = len(cloud)
        cloud = cloud.downsampled(downsample)
        LOG.info(f"[LOAD] downsample {n0} -> {len(cloud)}")
    return cloud


def _read_element_ids(path: Path, n_tris: int) -> np.ndarray:
    if path.suffix.lower() == ".npy":
        ids = np.load(path)
    else:
        ids = np.loadtxt(path, dtype=np.int64, ndmin=1)
    ids = np.asarray(ids, dtype=np.int64).reshape(-1)
    if len(ids) != n_tris:
        raise ValueError(
            f"{path.name}: {len(ids)} element ids for {n_tris} triangles"
        )
    return ids


def load_mesh(
    path: Path | str, element_ids: Optional[Path | str] = None
) -> TriangleMesh:
    """
    Read a triangle mesh via Open3D. Per-triangle element ids come from an
    optional side file (.npy or whitespace separated text, one id per face).
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Mesh not found: {path}")
    with _quiet():
        m = o3d.io.read_triangle_mesh(str(path))
    V = np.asarray(m.vertices)
    F = np.asarray(m.triangles)
    ids = None
    if element_ids is not None:
        ids = _read_element_ids(Path(element_ids), len(F))
    mesh = TriangleMesh.from_indexed(V, F, ids)
    LOG.info(f"[LOAD] {path.name}: {mesh!r}")
    return mesh


def to_o3d(cloud: PointCloud) -> o3d.geometry.PointCloud:
    pc = o3d.geometry.PointCloud()
    pc.points = o3d.utility.Vector3dVector(np.asarray(cloud.xyz, dtype=np.float64))
    if cloud.colors is not None:
        pc.colors = o3d.utility.Vector3dVector(cloud.colors.astype(np.float64) / 255.0)
    return pc


def save_cloud(cloud: PointCloud, path: Path | str) -> Path:
    """Write a cloud (format from suffix); logs instead of raising on failure."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ok = o3d.io.write_point_cloud(str(path), to_o3d(cloud))
    if ok:
        LOG.info(f"[SAVE] wrote {len(cloud)} points to {path}")
    else:
        LOG.warning(f"[SAVE] failed: {path}")
    return path
