from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import numpy as np

from utils.error_tracker import InvalidInputError
from utils.helpers import fmt_array, make_T
from utils.logger import Logger

from .bvh import build_index
from .cloud import PointCloud
from .config import PipelineCfg
from .coverage import CoverageMap, compute_coverage
from .export import save_coverage, save_primitives, save_transform
from .icp import IcpResult, register_icp
from .mesh import TriangleMesh
from .primitives import DetectedPrimitive, detect_primitives

LOG = Logger.get_logger("pipeline")


@dataclass(frozen=True)
class ProgressReport:
    cloud: PointCloud  # registered into model coordinates
    icp: Optional[IcpResult]
    primitives: List[DetectedPrimitive]
    coverage: CoverageMap

    @property
    def transform(self) -> np.ndarray:
        return np.eye(4) if self.icp is None else self.icp.transform


# ============================== HELPERS ======================================


def _model_center(mesh: TriangleMesh) -> np.ndarray:
    mn, mx = mesh.bounds()
    return 0.5 * (mn + mx)


def write_report(report: ProgressReport, out_dir: Path) -> Path:
    """Transform, primitives and coverage as JSON files under ``out_dir``."""
    out_dir = Path(out_dir)
    meta = {}
    if report.icp is not None:
        err = report.icp.error
        meta = dict(
            iterations=report.icp.iterations,
            error=float(err) if np.isfinite(err) else None,  # strict JSON
            status=report.icp.status.value,
        )
    save_transform(report.transform, out_dir / "transform.json", **meta)
    save_primitives(report.primitives, out_dir / "primitives.json")
    save_coverage(report.coverage, out_dir / "coverage.json")
    return out_dir


# ============================== PIPELINE =====================================


def run_progress_on(
    cloud: PointCloud,
    mesh: TriangleMesh,
    cfg: Optional[PipelineCfg] = None,
    *,
    init: Optional[np.ndarray] = None,
    cancel: Optional[threading.Event] = None,
) -> ProgressReport:
    """Register -> detect primitives -> coverage, on in-memory inputs."""
    cfg = cfg or PipelineCfg()
    if len(cloud) == 0:
        raise InvalidInputError("scan has no points")
    rng = np.random.default_rng(cfg.seed)
    index = build_index(mesh)

    icp = None
    if cfg.register:
        with Logger.stage(LOG, "ICP"):
            icp = register_icp(cloud, index, cfg.icp, rng=rng, init=init, cancel=cancel)
        cloud = cloud.transformed(icp.transform)
    elif init is not None:
        cloud = cloud.transformed(init)

    primitives: List[DetectedPrimitive] = []
    if cfg.detect_primitives:
        with Logger.stage(LOG, "RANSAC"):
            primitives = detect_primitives(cloud, cfg.detection, rng=rng, cancel=cancel)

    with Logger.stage(LOG, "COV"):
        coverage = compute_coverage(cloud, index, cfg.coverage.tolerance)
    LOG.info(
        f"[RUN] {len(cloud)} pts, {len(primitives)} primitives, "
        f"{len(coverage)} covered elements"
    )
    return ProgressReport(cloud, icp, primitives, coverage)


def run_progress(
    cfg: PipelineCfg, cancel: Optional[threading.Event] = None
) -> ProgressReport:
    """File-based run: load scan + model from ``cfg.data_root`` and report."""
    from .io import load_mesh, load_point_cloud  # lazy: pulls in Open3D

    cloud = load_point_cloud(
        cfg.cloud_path(),
        fmt=cfg.loader.fmt,
        downsample=cfg.loader.downsample,
        center=cfg.loader.center,
    )
    mesh = load_mesh(cfg.mesh_path())

    init = None
    if cfg.loader.center and len(mesh):
        # the scan was centered on load: start from the model's center
        c = _model_center(mesh)
        init = make_T(np.eye(3), c)
        LOG.info(f"[RUN] initial shift to model center {fmt_array(c)}")

    report = run_progress_on(cloud, mesh, cfg, init=init, cancel=cancel)
    if cfg.write_report:
        write_report(report, cfg.report_dir())
    return report
