"""Tests for RANSAC plane / cylinder detection and snapping."""

from __future__ import annotations

import threading

import numpy as np
import pytest

from scankit.config import DetectionParams
from scankit.primitives import (
    CylinderPrimitive,
    PlanePrimitive,
    PrimitiveDetector,
    axis_distance,
    detect_primitives,
    estimate_normals,
    fit_cylinder_chord,
    fit_cylinder_normals,
    fit_plane_3pt,
    snap_point,
)
from utils.error_tracker import InvalidInputError
from utils.helpers import unit


def plane_scene(rng, n_plane=500, n_noise=50) -> np.ndarray:
    xy = rng.uniform(-2.0, 2.0, size=(n_plane, 2))
    plane = np.column_stack([xy, np.zeros(n_plane)])
    noise = rng.uniform(-2.0, 2.0, size=(n_noise, 3))
    return np.vstack([plane, noise])


def cylinder_points(rng, n, radius, axis_point, direction, height) -> np.ndarray:
    d = unit(direction)
    ref = np.array([1.0, 0.0, 0.0]) if abs(d[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    u = unit(np.cross(d, ref))
    v = np.cross(d, u)
    ang = rng.uniform(0.0, 2.0 * np.pi, n)
    h = rng.uniform(0.0, height, n)
    return (
        np.asarray(axis_point, dtype=float)
        + h[:, None] * d
        + radius * (np.cos(ang)[:, None] * u + np.sin(ang)[:, None] * v)
    )


# ── geometry helpers ─────────────────────────────────────────────────────────

class TestGeometry:

    def test_plane_from_three_points(self):
        n = fit_plane_3pt(np.zeros(3), np.array([1.0, 0, 0]), np.array([0, 1.0, 0]))
        assert np.allclose(np.abs(n), [0, 0, 1])

    def test_collinear_points_rejected(self):
        assert fit_plane_3pt(np.zeros(3), np.ones(3), 2 * np.ones(3)) is None

    def test_chord_cylinder(self):
        p = np.array([[0, 0, 0], [0, 0, 1.0], [1.0, 0, 0]])
        a, d, r = fit_cylinder_chord(p)
        assert np.allclose(np.abs(d), [0, 0, 1])
        assert r == pytest.approx(1.0)

    def test_chord_cylinder_degenerate(self):
        p = np.array([[0, 0, 0], [0, 0, 0], [1.0, 0, 0]])
        assert fit_cylinder_chord(p) is None

    def test_normals_cylinder_exact(self):
        ang = np.array([0.0, 2.0, 4.0])
        p = np.column_stack([2.0 * np.cos(ang) + 1.0, 2.0 * np.sin(ang), [0.0, 3.0, -1.0]])
        n = np.column_stack([np.cos(ang), np.sin(ang), np.zeros(3)])
        a, d, r = fit_cylinder_normals(p, n)
        assert r == pytest.approx(2.0)
        assert abs(d @ [0, 0, 1]) == pytest.approx(1.0)
        assert axis_distance(np.array([[1.0, 0.0, 7.0]]), a, d)[0] == pytest.approx(0.0, abs=1e-9)

    def test_parallel_normals_rejected(self):
        p = np.array([[1.0, 0, 0], [1.0, 0, 1.0], [0, 1.0, 0]])
        n = np.array([[1.0, 0, 0], [1.0, 0, 0], [0, 1.0, 0]])
        assert fit_cylinder_normals(p, n) is None

    def test_estimate_normals_on_plane(self, rng):
        P = np.column_stack([rng.uniform(-1, 1, (200, 2)), np.zeros(200)])
        N = estimate_normals(P, 10)
        assert np.allclose(np.abs(N[:, 2]), 1.0, atol=1e-9)


# ── detection ────────────────────────────────────────────────────────────────

class TestDetectPlanes:

    def test_single_plane_with_outliers(self, rng):
        P = plane_scene(rng)
        prims = detect_primitives(P, DetectionParams(), rng=rng)
        assert len(prims) == 1
        plane = prims[0]
        assert isinstance(plane, PlanePrimitive)
        assert plane.kind == "plane"
        assert plane.id == "plane_0"
        assert abs(plane.normal @ [0, 0, 1]) > 0.99
        assert 500 <= len(plane.inliers) <= 510
        assert plane.confidence == pytest.approx(len(plane.inliers) / len(P))

    def test_inliers_index_the_input_array(self, rng):
        P = plane_scene(rng)
        plane = detect_primitives(P, rng=rng)[0]
        assert len(set(range(500)) & set(plane.inliers.tolist())) >= 495
        assert plane.inliers.max() < len(P)
        d = np.abs((P[plane.inliers] - plane.point) @ plane.normal)
        assert np.all(d < DetectionParams().distance_threshold)

    def test_plane_disabled(self, rng):
        prims = detect_primitives(
            plane_scene(rng), DetectionParams(plane_enabled=False, cylinder_enabled=False), rng=rng
        )
        assert prims == []

    def test_min_inliers_not_reached(self, rng):
        P = plane_scene(rng, n_plane=40, n_noise=10)
        assert detect_primitives(P, DetectionParams(min_inliers=100), rng=rng) == []

    def test_same_seed_same_result(self):
        P = plane_scene(np.random.default_rng(5))
        a = detect_primitives(P, seed=11)
        b = detect_primitives(P, seed=11)
        assert len(a) == len(b) == 1
        assert np.array_equal(a[0].inliers, b[0].inliers)
        assert np.array_equal(a[0].normal, b[0].normal)


class TestDetectCylinders:

    def test_tilted_cylinder(self, rng):
        axis = unit(np.array([0.3, -0.2, 1.0]))
        P = cylinder_points(rng, 800, 1.0, [0.5, -1.0, 2.0], axis, 4.0)
        prm = DetectionParams(plane_enabled=False, max_cylinders=1)
        prims = detect_primitives(P, prm, rng=rng)
        assert len(prims) == 1
        cyl = prims[0]
        assert isinstance(cyl, CylinderPrimitive)
        assert cyl.id == "cylinder_0"
        assert cyl.radius == pytest.approx(1.0, abs=0.1)
        assert abs(cyl.direction @ axis) > 0.99
        assert len(cyl.inliers) > 400

    def test_plane_then_cylinder_disjoint(self, rng):
        xy = rng.uniform(-3.0, 3.0, size=(600, 2))
        floor = np.column_stack([xy, np.zeros(600)])
        column = cylinder_points(rng, 400, 0.5, [0.0, 0.0, 0.5], [0, 0, 1], 2.5)
        P = np.vstack([floor, column])
        prm = DetectionParams(max_planes=1, max_cylinders=1)
        prims = detect_primitives(P, prm, rng=rng)
        assert [p.kind for p in prims] == ["plane", "cylinder"]
        plane, cyl = prims
        assert not set(plane.inliers.tolist()) & set(cyl.inliers.tolist())
        assert cyl.radius == pytest.approx(0.5, abs=0.1)
        assert cyl.confidence == pytest.approx(len(cyl.inliers) / (len(P) - len(plane.inliers)))

    def test_radius_bounds_filter_candidates(self, rng):
        P = cylinder_points(rng, 500, 1.0, [0, 0, 0], [0, 0, 1], 3.0)
        prm = DetectionParams(
            plane_enabled=False, cylinder_min_radius=2.0, cylinder_max_radius=4.0
        )
        for cyl in detect_primitives(P, prm, rng=rng):
            assert 2.0 <= cyl.radius <= 4.0

    def test_chord_model_respects_radius_bounds(self, rng):
        P = cylinder_points(rng, 300, 1.0, [0, 0, 0], [0, 0, 1], 3.0)
        prm = DetectionParams(
            plane_enabled=False, cylinder_model="chord", min_inliers=10,
            cylinder_min_radius=0.2, cylinder_max_radius=3.0,
        )
        for cyl in detect_primitives(P, prm, rng=rng):
            assert 0.2 <= cyl.radius <= 3.0
            assert np.linalg.norm(cyl.direction) == pytest.approx(1.0)


class TestDetectorEdges:

    def test_empty_input(self, rng):
        assert detect_primitives(np.empty((0, 3)), rng=rng) == []

    def test_cancel_stops_search(self, rng):
        cancel = threading.Event()
        cancel.set()
        det = PrimitiveDetector(DetectionParams(), rng=rng)
        assert det.detect_all(plane_scene(rng), cancel=cancel) == []

    def test_inverted_radius_bounds_rejected(self):
        with pytest.raises(InvalidInputError):
            PrimitiveDetector(DetectionParams(cylinder_min_radius=3.0, cylinder_max_radius=1.0))

    def test_unknown_cylinder_model_rejected(self):
        with pytest.raises(InvalidInputError):
            DetectionParams(cylinder_model="cone").validate()


# ── snapping ─────────────────────────────────────────────────────────────────

class TestSnap:

    def test_snap_to_plane(self):
        plane = PlanePrimitive(
            np.array([0.0, 0.0, 1.0]), np.array([0.0, 0.0, 2.0]), np.arange(3), 1.0
        )
        assert np.allclose(snap_point([1.0, -4.0, 7.5], plane), [1.0, -4.0, 2.0])

    def test_snap_to_cylinder(self):
        cyl = CylinderPrimitive(
            np.zeros(3), np.array([0.0, 0.0, 1.0]), 2.0, np.arange(3), 1.0
        )
        assert np.allclose(snap_point([3.0, 4.0, 1.5], cyl), [1.2, 1.6, 1.5])

    def test_snap_on_axis_stays_on_axis(self):
        cyl = CylinderPrimitive(
            np.zeros(3), np.array([0.0, 0.0, 1.0]), 2.0, np.arange(3), 1.0
        )
        assert np.allclose(snap_point([0.0, 0.0, 5.0], cyl), [0.0, 0.0, 5.0])
