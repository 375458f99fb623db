"""
Scan Matching Likelihood Model

Scores a pose hypothesis by ray casting the sensor's beams through the
current grid and comparing the expected ranges with the observed scan.

Error metric:
- only beams flagged valid by preprocess() take part
- expected range = first occupied cell + half the wall band width, since
  fusion writes walls as bands centered on the measured surface
- per-beam residual |observed - expected|, truncated at the no-detection
  distance so one wild beam cannot dominate
- error = mean squared residual (m^2)
- likelihood = exp(-error / (2 sigma^2)), sigma = hole_width / 2

Smaller error means higher likelihood. The wall band used when fusing has
the same width, so a scan that lands inside the mapped walls scores close
to 1.
"""

import math
from typing import Tuple

import numpy as np

from .occupancy_grid import OccupancyGrid
from .sensors import SensorProfile

# Lower bound for the range standard deviation (meters)
MIN_RANGE_SIGMA = 0.01


class ScanMatcher:
    """Pre-processing and likelihood evaluation for one sensor."""

    def __init__(self, sensor: SensorProfile):
        self.sensor = sensor
        self._ray_angles_deg = sensor.ray_angles_degrees()

        margin = sensor.detection_margin
        self._margin_mask = np.zeros(sensor.scan_size, dtype=bool)
        self._margin_mask[margin:sensor.scan_size - margin] = True

    def preprocess(self, scan) -> Tuple[np.ndarray, np.ndarray]:
        """
        Validate a raw scan.

        Beams at or beyond the no-detection distance, non-positive or
        non-finite readings, and the detection_margin beams at each edge
        are flagged invalid.

        Args:
            scan: Sequence of scan_size ranges (meters)

        Returns:
            (ranges, valid) arrays of length scan_size
        """
        ranges = np.asarray(scan, dtype=np.float64).ravel()
        if ranges.size != self.sensor.scan_size:
            raise ValueError(
                f"scan has {ranges.size} values, sensor expects {self.sensor.scan_size}")

        with np.errstate(invalid='ignore'):
            valid = (np.isfinite(ranges)
                     & (ranges > 0.0)
                     & (ranges < self.sensor.distance_no_detection_meters)
                     & self._margin_mask)
        return ranges, valid

    def beam_angles(self, rotation_rate_dps: float = 0.0) -> np.ndarray:
        """
        Beam angles relative to the heading at the start of the sweep.

        Args:
            rotation_rate_dps: Robot turn rate (degrees/second); beam i is
                shifted by the rotation accumulated since the sweep started
        """
        if rotation_rate_dps == 0.0:
            return self._ray_angles_deg

        n = self.sensor.scan_size
        sweep_time = np.arange(n) / (n * self.sensor.scan_rate_hz)
        return self._ray_angles_deg + rotation_rate_dps * sweep_time

    def sensor_origin(self, x: float, y: float, theta_degrees: float) -> Tuple[float, float]:
        """Sensor position for a robot pose."""
        theta_rad = math.radians(theta_degrees)
        offset = self.sensor.offset_meters
        return x + offset * math.cos(theta_rad), y + offset * math.sin(theta_rad)

    def range_sigma(self, hole_width_meters: float) -> float:
        return max(hole_width_meters / 2.0, MIN_RANGE_SIGMA)

    def error(self, grid: OccupancyGrid, pose: np.ndarray, ranges: np.ndarray,
              valid: np.ndarray, beam_angles_deg: np.ndarray,
              hole_width_meters: float) -> float:
        """
        Mean squared range residual for one hypothesis.

        Args:
            grid: Map to ray cast against
            pose: [x_meters, y_meters, theta_degrees]
            ranges, valid: Output of preprocess()
            beam_angles_deg: Output of beam_angles()
            hole_width_meters: Width of the wall bands in the map

        Returns:
            Error in m^2, or inf when no beam is valid
        """
        if not valid.any():
            return math.inf

        x, y, theta = float(pose[0]), float(pose[1]), float(pose[2])
        sx, sy = self.sensor_origin(x, y, theta)

        max_range = self.sensor.distance_no_detection_meters
        angles = np.radians(theta + beam_angles_deg[valid])

        expected = grid.ray_cast(sx, sy, angles, max_range)

        # A beam stops at the near edge of a wall band; the surface is mid-band
        half = grid.band_half_width(hole_width_meters)
        expected = np.where(expected < max_range,
                            np.minimum(expected + half, max_range), max_range)
        residual = np.minimum(np.abs(ranges[valid] - expected), max_range)

        return float(np.mean(residual ** 2))

    def likelihood_from_error(self, error, hole_width_meters: float):
        """Turn error (scalar or array) into likelihood; inf error gives 0."""
        sigma = self.range_sigma(hole_width_meters)
        return np.exp(-np.asarray(error, dtype=np.float64) / (2.0 * sigma * sigma))

    def likelihood(self, grid: OccupancyGrid, pose: np.ndarray, ranges: np.ndarray,
                   valid: np.ndarray, beam_angles_deg: np.ndarray,
                   hole_width_meters: float) -> float:
        """Likelihood of one hypothesis, see module docstring."""
        error = self.error(grid, pose, ranges, valid, beam_angles_deg, hole_width_meters)
        return float(self.likelihood_from_error(error, hole_width_meters))
