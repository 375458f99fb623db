"""
Particle Cloud

Weighted pose hypotheses for CoreSLAM's search.

Each update the cloud is either moved by odometry (motion model + Gaussian
noise) or re-seeded around the previous best pose (pure local search), then
scored by the scan matcher and resampled.

Conventions:
- poses are stored as an Nx3 array [x_meters, y_meters, theta_degrees]
- theta is clockwise from the map +x axis, wrapped to [-180, 180)
- row 0 is always the noise-free anchor: the previous best pose, moved by
  the odometry when there is some

References:
- Probabilistic Robotics (Thrun, Burgard, Fox), low variance sampler
- F1Tenth particle filter (systematic resampling)
"""

import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np


@dataclass
class PoseEstimate:
    """Robot pose in the map frame."""
    x_meters: float         # Distance from the left edge of the map
    y_meters: float         # Distance from the top edge of the map
    theta_degrees: float    # Clockwise rotation from three o'clock (east)
    likelihood: float = 1.0 # Relative weight within one update

    def to_tuple(self):
        return (self.x_meters, self.y_meters, self.theta_degrees)

    def describe(self) -> str:
        return (f"<x_meters={self.x_meters:.3f} y_meters={self.y_meters:.3f} "
                f"theta_degrees={self.theta_degrees:.1f} likelihood={self.likelihood:.4g}>")

    def __str__(self) -> str:
        return self.describe()


def wrap_degrees(theta):
    """Wrap angles (scalar or array) to [-180, 180)."""
    return np.mod(np.asarray(theta, dtype=np.float64) + 180.0, 360.0) - 180.0


def move_pose(x: float, y: float, theta_degrees: float,
              dxy_meters: float, dtheta_degrees: float):
    """Advance a pose along its own heading, then turn."""
    theta_rad = math.radians(theta_degrees)
    return (x + dxy_meters * math.cos(theta_rad),
            y + dxy_meters * math.sin(theta_rad),
            float(wrap_degrees(theta_degrees + dtheta_degrees)))


class ParticleCloud:
    """
    Fixed-size set of pose hypotheses.

    The random generator is owned by the caller so that one seed drives
    the whole engine; every draw happens here, in a fixed order.
    """

    def __init__(self, num_particles: int, rng: np.random.Generator,
                 initial_pose: Optional[PoseEstimate] = None):
        if num_particles <= 0:
            raise ValueError(f"num_particles must be positive, got {num_particles}")

        self.num_particles = int(num_particles)
        self._rng = rng

        self.particles = np.zeros((self.num_particles, 3))
        self.likelihoods = np.zeros(self.num_particles)

        if initial_pose is not None:
            self.particles[:] = initial_pose.to_tuple()

    def __len__(self) -> int:
        return self.num_particles

    def _add_noise(self, sigma_xy: float, sigma_theta: float):
        """Gaussian noise on every hypothesis except the anchor."""
        n = self.num_particles - 1
        if n <= 0:
            return

        sigma_xy = max(0.0, sigma_xy)
        sigma_theta = max(0.0, sigma_theta)

        self.particles[1:, 0] += self._rng.normal(0.0, sigma_xy, n)
        self.particles[1:, 1] += self._rng.normal(0.0, sigma_xy, n)
        self.particles[1:, 2] += self._rng.normal(0.0, sigma_theta, n)
        self.particles[:, 2] = wrap_degrees(self.particles[:, 2])

    def seed_around(self, pose: PoseEstimate, sigma_xy: float, sigma_theta: float):
        """
        Spread the cloud around a pose (no odometry available).

        Args:
            pose: Center of the search
            sigma_xy: Position standard deviation (meters)
            sigma_theta: Heading standard deviation (degrees)
        """
        self.particles[:] = pose.to_tuple()
        self._add_noise(sigma_xy, sigma_theta)
        self.likelihoods[:] = 0.0

    def propagate(self, dxy_meters: float, dtheta_degrees: float,
                  sigma_xy: float, sigma_theta: float, anchor: PoseEstimate):
        """
        Motion update.

        Args:
            dxy_meters: Forward travel, applied along each hypothesis' heading
            dtheta_degrees: Heading change
            sigma_xy: Position noise standard deviation (meters)
            sigma_theta: Heading noise standard deviation (degrees)
            anchor: Previous best pose, moved without noise into row 0
        """
        theta_rad = np.radians(self.particles[:, 2])
        self.particles[:, 0] += dxy_meters * np.cos(theta_rad)
        self.particles[:, 1] += dxy_meters * np.sin(theta_rad)
        self.particles[:, 2] += dtheta_degrees

        self.particles[0] = move_pose(*anchor.to_tuple(), dxy_meters, dtheta_degrees)

        self._add_noise(sigma_xy, sigma_theta)
        self.likelihoods[:] = 0.0

    def best(self, errors: np.ndarray) -> int:
        """Index of the lowest error (first one on ties)."""
        return int(np.argmin(errors))

    def resample(self, weights: np.ndarray, likelihoods: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Systematic (low variance) resampling.

        Args:
            weights: Non-negative weight per hypothesis; all zero means uniform
            likelihoods: Values to carry along with the survivors
                (defaults to weights)

        Returns:
            Indices of the selected hypotheses
        """
        n = self.num_particles
        weights = np.asarray(weights, dtype=np.float64)
        if likelihoods is None:
            likelihoods = weights

        total = float(np.sum(weights))
        if not np.isfinite(total) or total <= 0.0:
            weights = np.ones(n)
            total = float(n)

        cumsum = np.cumsum(weights / total)
        cumsum[-1] = 1.0

        positions = (self._rng.random() + np.arange(n)) / n
        indices = np.minimum(np.searchsorted(cumsum, positions, side='right'), n - 1)

        self.particles = self.particles[indices]
        self.likelihoods = np.asarray(likelihoods, dtype=np.float64)[indices]

        return indices

    def poses(self) -> List[PoseEstimate]:
        """Snapshot of the cloud."""
        return [PoseEstimate(float(x), float(y), float(theta), float(likelihood))
                for (x, y, theta), likelihood in zip(self.particles, self.likelihoods)]
