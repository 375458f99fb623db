#!/usr/bin/env python3
"""
Tests for the occupancy grid
============================
- Byte buffer snapshot / restore
- Ray casting
- Fusion: free space, obstacle band, saturation, clipping
"""

import math
import unittest
import sys
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from gridslam import OccupancyGrid, ConfigurationError, OCCUPIED_THRESHOLD, evidence_steps


class TestEvidenceSteps(unittest.TestCase):
    """Tests for the quality -> nudge mapping."""

    def test_reference_quality(self):
        """Test the default quality."""
        self.assertEqual(evidence_steps(50), (64, 16))

    def test_inverse_scaling(self):
        """Test that higher quality gives smaller steps."""
        low_hit, low_miss = evidence_steps(10)
        high_hit, high_miss = evidence_steps(200)
        self.assertGreater(low_hit, high_hit)
        self.assertGreater(low_miss, high_miss)

    def test_bounds(self):
        """Test that steps stay within a byte."""
        for quality in (-5, 0, 1, 255, 1000):
            hit, miss = evidence_steps(quality)
            self.assertTrue(1 <= hit <= 255)
            self.assertTrue(1 <= miss <= 255)


class TestGridBuffer(unittest.TestCase):
    """Tests for getmap / setmap style access."""

    def setUp(self):
        self.grid = OccupancyGrid(50, 10.0)

    def test_geometry(self):
        """Test size in meters and coordinate conversion."""
        self.assertAlmostEqual(self.grid.size_meters, 5.0)
        self.assertEqual(self.grid.world_to_map(1.05, 2.34), (10, 23))
        self.assertEqual(self.grid.world_to_map(-0.01, 0.0), (-1, 0))
        x, y = self.grid.map_to_world(10, 23)
        self.assertAlmostEqual(x, 1.05)
        self.assertAlmostEqual(y, 2.35)

    def test_initial_state(self):
        """Test that a new grid is all zeros."""
        self.assertEqual(self.grid.get_bytes(), bytearray(2500))

    def test_round_trip(self):
        """Test that restoring a snapshot is a no-op."""
        data = bytearray(i % 256 for i in range(2500))
        self.grid.set_bytes(data)
        self.assertEqual(self.grid.get_bytes(), data)

        snapshot = self.grid.get_bytes()
        self.grid.set_bytes(snapshot)
        self.assertEqual(self.grid.get_bytes(), snapshot)

    def test_row_major(self):
        """Test that the buffer is row-major."""
        data = bytearray(2500)
        data[3 * 50 + 7] = 200
        self.grid.set_bytes(data)
        self.assertEqual(self.grid.copy_array()[3, 7], 200)
        self.assertTrue(self.grid.in_bounds(7, 3))
        self.assertFalse(self.grid.in_bounds(50, 3))

    def test_numpy_buffer(self):
        """Test snapshots into uint8 arrays, flat or 2D."""
        data = bytearray(i % 256 for i in range(2500))
        self.grid.set_bytes(data)

        flat = np.zeros(2500, dtype=np.uint8)
        self.assertIs(self.grid.get_bytes(flat), flat)
        self.assertEqual(flat.tobytes(), bytes(data))

        square = np.zeros((50, 50), dtype=np.uint8)
        self.grid.get_bytes(square)
        self.assertEqual(square[3, 7], (3 * 50 + 7) % 256)

        self.grid.clear()
        self.grid.set_bytes(flat)
        self.assertEqual(self.grid.get_bytes(), data)

        with self.assertRaises(ValueError):
            self.grid.get_bytes(np.zeros(2499, dtype=np.uint8))

    def test_wrong_length(self):
        """Test that wrong-sized buffers are rejected."""
        with self.assertRaises(ValueError):
            self.grid.set_bytes(bytearray(2499))
        with self.assertRaises(ValueError):
            self.grid.get_bytes(bytearray(10))

    def test_out_of_range_values(self):
        """Test that non-byte values are rejected."""
        with self.assertRaises(ValueError):
            self.grid.set_bytes(np.full(2500, 300))

    def test_invalid_construction(self):
        """Test that bad sizes fail fast."""
        with self.assertRaises(ConfigurationError):
            OccupancyGrid(0, 10.0)
        with self.assertRaises(ConfigurationError):
            OccupancyGrid(10, -1.0)
        with self.assertRaises(ConfigurationError):
            OccupancyGrid(10.5, 1.0)

    def test_clear(self):
        """Test reset to zero."""
        self.grid.set_bytes(bytearray([9] * 2500))
        self.grid.clear()
        self.assertEqual(self.grid.get_bytes(), bytearray(2500))


class TestRayCast(unittest.TestCase):
    """Tests for expected ranges."""

    def setUp(self):
        # 10m x 10m, wall on column 60 (x in [6.0, 6.1))
        self.grid = OccupancyGrid(100, 10.0)
        cells = np.zeros((100, 100), dtype=np.uint8)
        cells[:, 60] = 255
        self.grid.set_bytes(cells)

    def test_hit(self):
        """Test a beam toward the wall, stopping where it enters the wall cell."""
        ranges = self.grid.ray_cast(3.05, 5.05, np.array([0.0]), max_range=5.0)
        self.assertAlmostEqual(ranges[0], 2.95)

    def test_miss(self):
        """Test a beam away from the wall."""
        ranges = self.grid.ray_cast(3.05, 5.05, np.array([math.pi]), max_range=2.0)
        self.assertAlmostEqual(ranges[0], 2.0)

    def test_beyond_max_range(self):
        """Test that far walls are not seen."""
        ranges = self.grid.ray_cast(3.05, 5.05, np.array([0.0]), max_range=1.0)
        self.assertAlmostEqual(ranges[0], 1.0)

    def test_below_threshold(self):
        """Test that weak evidence does not stop a beam."""
        cells = np.zeros((100, 100), dtype=np.uint8)
        cells[:, 60] = OCCUPIED_THRESHOLD - 1
        self.grid.set_bytes(cells)
        ranges = self.grid.ray_cast(3.05, 5.05, np.array([0.0]), max_range=5.0)
        self.assertAlmostEqual(ranges[0], 5.0)

    def test_leaving_the_grid(self):
        """Test beams leaving the map."""
        ranges = self.grid.ray_cast(0.5, 0.5, np.array([-math.pi / 2, math.pi]), max_range=3.0)
        np.testing.assert_allclose(ranges, [3.0, 3.0])

    def test_empty_fan(self):
        """Test no beams at all."""
        self.assertEqual(self.grid.ray_cast(1.0, 1.0, np.array([]), 3.0).size, 0)

    def test_thin_diagonal_wall(self):
        """Test that no beam slips through a one pixel anti-diagonal wall."""
        grid = OccupancyGrid(200, 10.0)
        cells = np.zeros((200, 200), dtype=np.uint8)
        index = np.arange(200)
        cells[index, 199 - index] = 255
        grid.set_bytes(cells)

        angles = np.radians(np.arange(90.0))
        ranges = grid.ray_cast(5.05, 5.05, angles, max_range=20.0)

        # Wall cells cover col + row = 199, i.e. x + y in [19.9, 20.1] m
        slope = np.cos(angles) + np.sin(angles)
        self.assertTrue(np.all(ranges >= (19.9 - 10.1) / slope - 1e-9))
        self.assertTrue(np.all(ranges <= (20.1 - 10.1) / slope + 1e-9))


class TestFusion(unittest.TestCase):
    """Tests for scan fusion."""

    def setUp(self):
        self.grid = OccupancyGrid(100, 10.0)

    def test_band_and_free_space(self):
        """Test one beam: free before the band, occupied inside it."""
        self.grid.fuse(2.02, 5.02, np.array([0.0]), np.array([3.0]),
                       hole_width=0.4, max_range=5.0, quality=50)

        cells = self.grid.copy_array()
        # Band: 2.8 m to 3.2 m along the beam, x in [4.82, 5.22]
        self.assertEqual(cells[50, 50], 64)
        self.assertEqual(cells[50, 51], 64)
        # Nothing after the band
        self.assertEqual(cells[50, 55], 0)
        # Other rows untouched
        self.assertEqual(np.count_nonzero(cells[49]), 0)

    def test_free_space_lowers_evidence(self):
        """Test that pass-through cells are nudged down."""
        self.grid.set_bytes(bytearray([100] * 10000))
        self.grid.fuse(2.02, 5.02, np.array([0.0]), np.array([3.0]),
                       hole_width=0.4, max_range=5.0, quality=50)

        cells = self.grid.copy_array()
        self.assertEqual(cells[50, 30], 100 - 16)
        self.assertEqual(cells[50, 50], 100 + 64)
        self.assertEqual(cells[50, 90], 100)

    def test_saturation_high(self):
        """Test that repeated hits stop at 255."""
        for _ in range(20):
            self.grid.fuse(2.02, 5.02, np.array([0.0]), np.array([3.0]),
                           hole_width=0.4, max_range=5.0, quality=50)
        cells = self.grid.copy_array()
        self.assertEqual(cells[50, 50], 255)
        self.assertEqual(cells.max(), 255)

    def test_saturation_low(self):
        """Test that repeated misses stop at 0."""
        self.grid.set_bytes(bytearray([5] * 10000))
        for _ in range(3):
            self.grid.fuse(2.02, 5.02, np.array([0.0]), np.array([3.0]),
                           hole_width=0.4, max_range=5.0, quality=50)
        self.assertEqual(self.grid.copy_array()[50, 30], 0)

    def test_no_wraparound_near_full(self):
        """Test a single large nudge on a nearly full cell."""
        self.grid.set_bytes(bytearray([250] * 10000))
        self.grid.fuse(2.02, 5.02, np.array([0.0]), np.array([3.0]),
                       hole_width=0.4, max_range=5.0, quality=0)
        self.assertEqual(self.grid.copy_array()[50, 50], 255)

    def test_max_range_cap(self):
        """Test that the band is cut at max range."""
        self.grid.fuse(2.02, 5.02, np.array([0.0]), np.array([3.0]),
                       hole_width=1.0, max_range=3.0, quality=50)
        cells = self.grid.copy_array()
        # Band would reach 3.5 m; col 50 is entered at 2.98 m, col 51 past the cap
        self.assertEqual(cells[50, 50], 64)
        self.assertEqual(cells[50, 51], 0)

    def test_rays_leaving_grid(self):
        """Test that out of bounds cells are skipped."""
        touched = self.grid.fuse(0.22, 0.22, np.array([math.pi, -math.pi / 2, 0.0]),
                                 np.array([2.0, 2.0, 2.0]),
                                 hole_width=0.6, max_range=4.0, quality=50)
        self.assertGreater(touched, 0)
        self.assertEqual(self.grid.copy_array()[2, 22], 64)

    def test_slanted_ray_touches_every_cell(self):
        """Test that a 30 degree ray updates every cell it crosses."""
        self.grid.set_bytes(bytearray([100] * 10000))
        angle = math.radians(30.0)
        x, y = 1.02, 1.03
        self.grid.fuse(x, y, np.array([angle]), np.array([6.0]),
                       hole_width=0.4, max_range=10.0, quality=50)
        cells = self.grid.copy_array()

        def crossed(start, stop):
            d = np.arange(start, stop, 0.001)
            cols = np.floor((x + d * math.cos(angle)) * 10).astype(int)
            rows = np.floor((y + d * math.sin(angle)) * 10).astype(int)
            return set(zip(rows.tolist(), cols.tolist()))

        # Left at least one cell diagonal before the band starts at 5.8 m
        free = crossed(0.0, 5.6)
        self.assertGreater(len(free), 60)
        self.assertEqual({int(cells[r, c]) for r, c in free}, {100 - 16})

        band = crossed(5.801, 6.199)
        self.assertEqual({int(cells[r, c]) for r, c in band}, {100 + 64})

    def test_empty_scan(self):
        """Test fusing nothing."""
        before = self.grid.get_bytes()
        self.assertEqual(self.grid.fuse(1.0, 1.0, np.array([]), np.array([]),
                                        0.6, 4.0, 50), 0)
        self.assertEqual(self.grid.get_bytes(), before)


if __name__ == "__main__":
    unittest.main(verbosity=2)
