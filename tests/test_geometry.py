import unittest

import numpy as np

from gardenpack.geometry import clamp_to_shape, golden_spiral, inside_shape, shape_outline
from gardenpack.models import Bed


class TestRectangle(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.bed = Bed(40, 20)

    def test_inside(self):
        self.assertTrue(inside_shape(self.bed, (5, 5), 5))
        self.assertFalse(inside_shape(self.bed, (4.9, 5), 5))
        self.assertFalse(inside_shape(self.bed, (20, 16), 5))

    def test_clamp(self):
        np.testing.assert_allclose(clamp_to_shape(self.bed, (-3, 30), 2), [2, 18])
        np.testing.assert_allclose(clamp_to_shape(self.bed, (10, 10), 2), [10, 10])

    def test_disk_taller_than_bed_is_centered_vertically_and_stays_outside(self):
        xy = clamp_to_shape(self.bed, (3, 3), 15)
        np.testing.assert_allclose(xy, [15, 10])
        self.assertFalse(inside_shape(self.bed, xy, 15))

    def test_vectorized(self):
        xy = np.array([[5, 5], [-1, 5], [20, 25]], float)
        r = np.array([5, 1, 2], float)
        np.testing.assert_array_equal(inside_shape(self.bed, xy, r), [True, False, False])
        np.testing.assert_allclose(clamp_to_shape(self.bed, xy, r), [[5, 5], [1, 5], [20, 18]])


class TestCircle(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.bed = Bed(40, 40, "circle")

    def test_inside(self):
        self.assertTrue(inside_shape(self.bed, (20, 20), 20))
        self.assertTrue(inside_shape(self.bed, (35, 20), 5))
        # corner of the bounding square is outside the circle
        self.assertFalse(inside_shape(self.bed, (3, 3), 2))

    def test_clamp_scales_onto_inner_circle(self):
        np.testing.assert_allclose(clamp_to_shape(self.bed, (50, 20), 2), [38, 20])
        np.testing.assert_allclose(clamp_to_shape(self.bed, (20, 20), 2), [20, 20])


class TestPill(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.horizontal = Bed(60, 20, "pill")
        cls.vertical = Bed(20, 60, "pill")

    def test_middle_zone(self):
        self.assertTrue(inside_shape(self.horizontal, (30, 5), 3))
        self.assertFalse(inside_shape(self.horizontal, (30, 1), 3))
        np.testing.assert_allclose(clamp_to_shape(self.horizontal, (30, 1), 3), [30, 3])

    def test_caps(self):
        # inside the bounding box but outside the rounded end
        self.assertFalse(inside_shape(self.horizontal, (2, 2), 1))
        self.assertTrue(inside_shape(self.horizontal, (5, 10), 3))
        self.assertFalse(inside_shape(self.horizontal, (58, 18), 1))

        xy = clamp_to_shape(self.horizontal, (2, 2), 3)
        offset = xy - np.array([10, 10])
        self.assertAlmostEqual(float(np.linalg.norm(offset)), 7.0)
        self.assertTrue(inside_shape(self.horizontal, xy, 3))

    def test_vertical_orientation(self):
        self.assertFalse(self.vertical.is_horizontal)
        self.assertTrue(inside_shape(self.vertical, (5, 30), 3))
        self.assertFalse(inside_shape(self.vertical, (2, 2), 1))
        np.testing.assert_allclose(clamp_to_shape(self.vertical, (1, 30), 3), [3, 30])

        xy = clamp_to_shape(self.vertical, (18, 58), 3)
        self.assertAlmostEqual(float(np.linalg.norm(xy - np.array([10, 50]))), 7.0)
        self.assertTrue(inside_shape(self.vertical, xy, 3))

    def test_disk_wider_than_pill(self):
        xy = clamp_to_shape(self.horizontal, (30, 10), 15)
        np.testing.assert_allclose(xy, [30, 10])
        self.assertFalse(inside_shape(self.horizontal, xy, 15))


def test_clamped_disks_are_always_inside():
    rng = np.random.RandomState(3)
    for bed in [Bed(60, 20, "pill"), Bed(20, 60, "pill"), Bed(40, 40, "circle"), Bed(30, 50)]:
        xy = rng.uniform(-30, 90, size=(500, 2))
        r = rng.uniform(0.5, 0.95 * bed.cap_radius, size=500)
        clamped = clamp_to_shape(bed, xy, r)
        assert clamped.shape == (500, 2)
        assert np.all(inside_shape(bed, clamped, r))


def test_inside_points_are_left_alone():
    bed = Bed(60, 20, "pill")
    xy = np.array([[30, 10], [10, 10], [50, 10], [20, 15]], float)
    r = np.full(4, 2.0)
    assert np.all(inside_shape(bed, xy, r))
    np.testing.assert_allclose(clamp_to_shape(bed, xy, r), xy)


def test_golden_spiral_distance_never_decreases():
    points = golden_spiral((5, 5), 50, 3.0)
    np.testing.assert_allclose(points[0], [5, 5])
    dist = np.linalg.norm(points - np.array([5, 5]), axis=1)
    assert np.all(np.diff(dist) >= 0)


def test_shape_outline_is_closed():
    for bed in [Bed(60, 20, "pill"), Bed(20, 60, "pill"), Bed(40, 40, "circle"), Bed(30, 50)]:
        outline = shape_outline(bed)
        np.testing.assert_allclose(outline[0], outline[-1], atol=1e-9)
        assert np.all(outline >= -1e-9)
        assert np.all(outline[:, 0] <= bed.width + 1e-9)
        assert np.all(outline[:, 1] <= bed.height + 1e-9)
