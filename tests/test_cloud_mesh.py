"""Tests for the point cloud and triangle mesh value types."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import cube_triangles
from scankit.cloud import Color, Point, PointCloud, as_array
from scankit.mesh import TriangleMesh, triangle_areas
from utils.helpers import euler_deg_to_R, make_T


class TestPointCloud:

    def test_points_round_trip_attributes(self):
        pts = [
            Point(0.0, 1.0, 2.0, Color(255, 0, 10), 0.5),
            Point(3.0, 4.0, 5.0, Color(1, 2, 3), 0.25),
        ]
        cloud = PointCloud.from_points(pts)
        assert len(cloud) == 2
        assert list(cloud) == pts
        assert cloud[1].color == Color(1, 2, 3)

    def test_optional_attributes_dropped_when_partial(self):
        cloud = PointCloud.from_points([Point(0, 0, 0, Color(1, 1, 1)), Point(1, 1, 1)])
        assert cloud.colors is None
        assert cloud.intensity is None
        assert "rgb" not in repr(cloud)

    def test_arrays_are_read_only(self):
        cloud = PointCloud(np.zeros((3, 3)))
        with pytest.raises(ValueError):
            cloud.xyz[0, 0] = 1.0

    def test_shape_mismatch_rejected(self):
        with pytest.raises(ValueError):
            PointCloud(np.zeros((3, 3)), colors=np.zeros((2, 3)))

    def test_centered_on_bbox(self):
        cloud = PointCloud([[0, 0, 0], [2, 4, 6], [1, 1, 1]])
        c = cloud.centered()
        assert np.allclose(c.bbox_center(), 0.0)
        assert np.allclose(c.xyz[1], [1, 2, 3])

    def test_downsample_keeps_every_nth(self):
        cloud = PointCloud(np.arange(30, dtype=float).reshape(10, 3))
        half = cloud.downsampled(0.5)
        assert len(half) == 5
        assert np.allclose(half.xyz[:, 0], [0, 6, 12, 18, 24])
        assert cloud.downsampled(1.0) is cloud

    def test_transformed_keeps_attributes(self):
        cloud = PointCloud([[1.0, 0.0, 0.0]], colors=[[9, 9, 9]], intensity=[2.0])
        T = make_T(euler_deg_to_R(0, 0, 90), [0, 0, 1])
        moved = cloud.transformed(T)
        assert np.allclose(moved.xyz[0], [0.0, 1.0, 1.0])
        assert moved.colors.tolist() == [[9, 9, 9]]
        assert moved.intensity.tolist() == [2.0]

    def test_as_array_accepts_containers(self):
        ref = np.array([[1.0, 2.0, 3.0]])
        assert np.array_equal(as_array([Point(1, 2, 3)]), ref)
        assert np.array_equal(as_array([[1, 2, 3]]), ref)
        assert np.array_equal(as_array(PointCloud(ref)), ref)
        assert as_array([]).shape == (0, 3)


class TestTriangleMesh:

    def test_element_areas(self, unit_cube):
        areas = unit_cube.element_areas()
        assert areas == {"1": pytest.approx(1.0), "2": pytest.approx(1.0), "3": pytest.approx(4.0)}

    def test_areas_without_ids(self):
        mesh = TriangleMesh(cube_triangles(2.0))
        assert mesh.element_areas() == {"0": pytest.approx(24.0)}
        assert mesh.element_key(5) == "0"

    def test_from_indexed(self):
        V = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [1, 1, 0]], dtype=float)
        F = np.array([[0, 1, 2], [1, 3, 2]])
        mesh = TriangleMesh.from_indexed(V, F, [7, 8])
        assert len(mesh) == 2
        assert np.allclose(mesh.triangles[1], V[[1, 3, 2]])
        assert mesh.element_key(1) == "8"

    def test_id_count_mismatch(self):
        with pytest.raises(ValueError):
            TriangleMesh(cube_triangles(), [1, 2, 3])

    def test_triangle_area_degenerate_is_zero(self):
        tri = np.array([[[0, 0, 0], [1, 1, 1], [2, 2, 2]]], dtype=float)
        assert triangle_areas(tri)[0] == 0.0

    def test_bounds(self, unit_cube):
        mn, mx = unit_cube.bounds()
        assert np.allclose(mn, 0.0)
        assert np.allclose(mx, 1.0)

    def test_with_positions_keeps_ids(self, unit_cube):
        moved = unit_cube.with_positions(unit_cube.triangles * 2.0)
        assert moved.element_areas()["3"] == pytest.approx(16.0)
        assert np.array_equal(moved.element_ids, unit_cube.element_ids)
