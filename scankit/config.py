from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

from utils import config as ucfg
from utils.error_tracker import InvalidInputError

CylinderModel = Literal["normals", "chord"]
CloudFormat = Literal["auto", "ply", "las", "laz", "obj", "pcd", "xyz"]

# ============================== CONFIG TYPES =================================


@dataclass(frozen=True)
class IcpOptions:
    """Iteration cap, convergence tolerance and correspondence sampling."""

    max_iterations: int = 20
    tolerance: float = 1e-4
    sample_ratio: float = 1.0  # (0, 1]; 1 uses every source point

    def validate(self) -> "IcpOptions":
        if int(self.max_iterations) <= 0:
            raise InvalidInputError(f"max_iterations must be > 0, got {self.max_iterations}")
        if not self.tolerance > 0.0:
            raise InvalidInputError(f"tolerance must be > 0, got {self.tolerance}")
        if not 0.0 < self.sample_ratio <= 1.0:
            raise InvalidInputError(f"sample_ratio must be in (0, 1], got {self.sample_ratio}")
        return self


@dataclass(frozen=True)
class DetectionParams:
    """RANSAC plane / cylinder extraction knobs (distances in meters)."""

    max_iterations: int = 1000
    distance_threshold: float = 0.1
    min_inliers: int = 100
    plane_enabled: bool = True
    cylinder_enabled: bool = True
    cylinder_min_radius: float = 0.1
    cylinder_max_radius: float = 5.0
    max_planes: int = 3
    max_cylinders: int = 2
    # "normals": axis from PCA normals + circumcircle, "chord": p1->p2 line
    cylinder_model: CylinderModel = "normals"
    normal_knn: int = 12

    def validate(self) -> "DetectionParams":
        if self.max_iterations < 0:
            raise InvalidInputError("max_iterations must be >= 0")
        if not self.distance_threshold > 0.0:
            raise InvalidInputError("distance_threshold must be > 0")
        if self.min_inliers < 0:
            raise InvalidInputError("min_inliers must be >= 0")
        if not 0.0 <= self.cylinder_min_radius <= self.cylinder_max_radius:
            raise InvalidInputError(
                f"cylinder radius bounds [{self.cylinder_min_radius}, "
                f"{self.cylinder_max_radius}] are inverted"
            )
        if self.cylinder_model not in ("normals", "chord"):
            raise InvalidInputError(f"unknown cylinder_model {self.cylinder_model!r}")
        if self.normal_knn < 3:
            raise InvalidInputError("normal_knn must be >= 3")
        return self


@dataclass(frozen=True)
class CoverageCfg:
    tolerance: float = ucfg.COVERAGE_TOL


@dataclass(frozen=True)
class LoaderCfg:
    fmt: CloudFormat = "auto"
    downsample: float = 0.0  # (0,1) keeps every round(1/ratio)-th point
    center: bool = True


@dataclass(frozen=True)
class PipelineCfg:
    """Top-level knobs for the scan-vs-model progress run."""

    # I/O
    data_root: Path = ucfg.DATA_ROOT
    cloud_name: str = ucfg.CLOUD_NAME
    mesh_name: str = ucfg.MESH_NAME
    report_dir_name: str = ucfg.REPORT_DIR_NAME
    write_report: bool = True

    # Stages
    register: bool = True
    detect_primitives: bool = True

    # Randomness (ICP sampling, RANSAC)
    seed: Optional[int] = ucfg.DEFAULT_SEED

    loader: LoaderCfg = LoaderCfg()
    icp: IcpOptions = IcpOptions()
    detection: DetectionParams = DetectionParams()
    coverage: CoverageCfg = CoverageCfg()

    def cloud_path(self) -> Path:
        return Path(self.data_root) / self.cloud_name

    def mesh_path(self) -> Path:
        return Path(self.data_root) / self.mesh_name

    def report_dir(self) -> Path:
        return Path(self.data_root) / self.report_dir_name
