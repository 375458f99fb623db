"""
SLAM Core - CoreSLAM-style grid SLAM with a particle filter search

Each update:
1. pre-process the scan (no-echo and edge beams are dropped)
2. move the particle cloud by odometry, or re-seed it around the last pose
3. score every hypothesis by ray casting against the map
4. keep the best hypothesis as the new pose
5. fuse the scan into the map from that pose
6. resample the cloud by likelihood

Based on:
- CoreSLAM: a SLAM Algorithm in less than 200 lines of C code
  (Steux, El Hamzaoui, ICARCV 2010)
- BreezySLAM (https://github.com/simondlevy/BreezySLAM)

Usage:
    from gridslam import CoreSLAM, SensorProfile

    slam = CoreSLAM(SensorProfile.ld19(), map_size_pixels=800,
                    map_scale_pixels_per_meter=40, seed=42)

    # In loop:
    pose = slam.update(scan_m, dxy_m, dtheta_deg, dt_s)
    mapbytes = slam.getmap()
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import SLAMConfig
from .exceptions import ConfigurationError
from .occupancy_grid import OccupancyGrid
from .odometry import WheeledRobot
from .particle_filter import ParticleCloud, PoseEstimate
from .scan_matching import ScanMatcher
from .sensors import SensorProfile

logger = logging.getLogger(__name__)

DEFAULT_NUM_PARTICLES = 100


@dataclass
class _EngineState:
    """Everything an engine owns; never handed out."""
    grid: OccupancyGrid
    cloud: ParticleCloud
    rng: np.random.Generator
    best: PoseEstimate
    update_count: int = 0


class CoreSLAM:
    """
    Particle filter pose estimation plus occupancy grid fusion.

    One instance per robot. Calls must be serialized: update() and the
    snapshot methods never run concurrently on the same instance.

    Tuning knobs are plain attributes, read at the start of every update:
    - map_quality: 0-255, higher means a slower, more averaged map
    - hole_width_meters: width of the obstacle band written per hit
    - sigma_xy_meters, sigma_theta_degrees: search spread
    """

    def __init__(self, sensor: SensorProfile, map_size_pixels: int,
                 map_scale_pixels_per_meter: float, seed: Optional[int] = None,
                 num_particles: int = DEFAULT_NUM_PARTICLES, num_workers: int = 1):
        """
        Args:
            sensor: Range sensor description
            map_size_pixels: Map side in pixels (map is square)
            map_scale_pixels_per_meter: Map scale
            seed: Random seed; None uses the current time
            num_particles: Hypotheses per update
            num_workers: Threads used to score hypotheses
        """
        if num_particles < 1:
            raise ConfigurationError(f"num_particles must be >= 1, got {num_particles}")
        if num_workers < 1:
            raise ConfigurationError(f"num_workers must be >= 1, got {num_workers}")

        self.sensor = sensor
        self.num_workers = int(num_workers)
        self.seed = int(time.time()) if seed is None else int(seed)

        self.map_quality = 50
        self.hole_width_meters = 0.6
        self.sigma_xy_meters = 0.1
        self.sigma_theta_degrees = 20.0

        grid = OccupancyGrid(map_size_pixels, map_scale_pixels_per_meter)
        center = grid.size_meters / 2.0
        start = PoseEstimate(center, center, 0.0, 0.0)
        rng = np.random.default_rng(self.seed)

        self._state = _EngineState(
            grid=grid,
            cloud=ParticleCloud(num_particles, rng, initial_pose=start),
            rng=rng,
            best=start,
        )
        self._matcher = ScanMatcher(sensor)

        logger.info("CoreSLAM: %dx%d px map (%.1f m), %d particles, seed %d",
                    grid.size_pixels, grid.size_pixels, grid.size_meters,
                    num_particles, self.seed)

    @property
    def map_size_pixels(self) -> int:
        return self._state.grid.size_pixels

    @property
    def map_scale_pixels_per_meter(self) -> float:
        return self._state.grid.scale

    @property
    def num_particles(self) -> int:
        return len(self._state.cloud)

    def update(self, scan: Sequence[float], dxy_meters: Optional[float] = None,
               dtheta_degrees: Optional[float] = None,
               dt_seconds: Optional[float] = None) -> PoseEstimate:
        """
        Update pose and map with a new scan.

        Args:
            scan: scan_size ranges in meters; values at or beyond
                distance_no_detection_meters mean "no echo"
            dxy_meters: Forward travel since the previous scan
            dtheta_degrees: Heading change since the previous scan
            dt_seconds: Time since the previous scan, for motion
                compensation during the sweep

        Returns:
            Best pose estimate for this scan
        """
        state = self._state
        ranges, valid = self._matcher.preprocess(scan)

        if not valid.any():
            logger.warning("Scan has no valid beams, keeping previous pose")
            best = state.best
            return PoseEstimate(best.x_meters, best.y_meters, best.theta_degrees, 0.0)

        map_quality = self.map_quality
        hole_width = float(self.hole_width_meters)
        sigma_xy = float(self.sigma_xy_meters)
        sigma_theta = float(self.sigma_theta_degrees)

        has_motion = dxy_meters is not None and dtheta_degrees is not None
        if has_motion:
            state.cloud.propagate(float(dxy_meters), float(dtheta_degrees),
                                  sigma_xy, sigma_theta, anchor=state.best)
        else:
            state.cloud.seed_around(state.best, sigma_xy, sigma_theta)

        rotation_rate = 0.0
        if has_motion and dt_seconds is not None and dt_seconds > 0:
            rotation_rate = float(dtheta_degrees) / float(dt_seconds)
        beam_angles = self._matcher.beam_angles(rotation_rate)

        errors = self._score_cloud(ranges, valid, beam_angles, hole_width)
        likelihoods = self._matcher.likelihood_from_error(errors, hole_width)

        index = state.cloud.best(errors)
        x, y, theta = (float(v) for v in state.cloud.particles[index])
        state.best = PoseEstimate(x, y, theta, float(likelihoods[index]))

        sx, sy = self._matcher.sensor_origin(x, y, theta)
        touched = state.grid.fuse(
            sx, sy, np.radians(theta + beam_angles[valid]), ranges[valid],
            hole_width, self.sensor.distance_no_detection_meters, map_quality)

        # Relative weights, safe from underflow when every error is large
        sigma = self._matcher.range_sigma(hole_width)
        log_weights = -errors / (2.0 * sigma * sigma)
        weights = np.exp(log_weights - log_weights.max())
        state.cloud.resample(weights, likelihoods)

        state.update_count += 1
        logger.debug("update %d: %d valid beams, best %s, %d cells fused",
                     state.update_count, int(valid.sum()), state.best, touched)

        return PoseEstimate(x, y, theta, state.best.likelihood)

    def _score_cloud(self, ranges: np.ndarray, valid: np.ndarray,
                     beam_angles: np.ndarray, hole_width: float) -> np.ndarray:
        """Error per hypothesis, in cloud order whatever the thread count."""
        grid = self._state.grid
        particles = self._state.cloud.particles

        def score(pose):
            return self._matcher.error(grid, pose, ranges, valid, beam_angles, hole_width)

        if self.num_workers > 1 and len(particles) > 1:
            with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
                errors = list(executor.map(score, particles))
        else:
            errors = [score(pose) for pose in particles]

        return np.asarray(errors, dtype=np.float64)

    def getmap(self, buffer=None):
        """
        Snapshot of the map, row-major, one byte per cell.

        Args:
            buffer: Optional writable buffer (bytearray, uint8 array...) of
                map_size_pixels**2 bytes to fill in place
        """
        return self._state.grid.get_bytes(buffer)

    def setmap(self, buffer):
        """Replace the map with a row-major buffer of map_size_pixels**2 bytes."""
        self._state.grid.set_bytes(buffer)

    def getcloud(self) -> List[PoseEstimate]:
        """Current hypotheses with their likelihoods."""
        return self._state.cloud.poses()

    def getpos(self) -> PoseEstimate:
        """Current best pose."""
        best = self._state.best
        return PoseEstimate(best.x_meters, best.y_meters, best.theta_degrees, best.likelihood)

    def map_array(self) -> np.ndarray:
        """Copy of the map as a 2D uint8 array (rows x cols)."""
        return self._state.grid.copy_array()

    def world_to_map(self, x: float, y: float) -> Tuple[int, int]:
        """Convert map-frame meters to pixel (col, row)."""
        return self._state.grid.world_to_map(x, y)

    def map_to_world(self, col: int, row: int) -> Tuple[float, float]:
        """Center of a pixel in meters."""
        return self._state.grid.map_to_world(col, row)

    def describe(self) -> str:
        return (f"<CoreSLAM map={self.map_size_pixels}px @ {self.map_scale_pixels_per_meter:g} px/m "
                f"| particles={self.num_particles} | seed={self.seed} "
                f"| map_quality={self.map_quality} | hole_width={self.hole_width_meters:g} m "
                f"| sigma_xy={self.sigma_xy_meters:g} m | sigma_theta={self.sigma_theta_degrees:g} deg "
                f"| sensor={self.sensor}>")

    def __str__(self) -> str:
        return self.describe()


def create_slam(config: Optional[SLAMConfig] = None) -> CoreSLAM:
    """
    Build an engine from a configuration.

    Args:
        config: SLAM configuration (defaults if None)

    Returns:
        CoreSLAM instance with the config's tuning knobs applied
    """
    config = (config or SLAMConfig()).validate()

    slam = CoreSLAM(
        sensor=config.sensor_profile(),
        map_size_pixels=config.map_size_pixels,
        map_scale_pixels_per_meter=config.map_scale_pixels_per_meter,
        seed=config.seed,
        num_particles=config.num_particles,
        num_workers=config.num_workers,
    )
    slam.map_quality = config.map_quality
    slam.hole_width_meters = config.hole_width_meters
    slam.sigma_xy_meters = config.sigma_xy_meters
    slam.sigma_theta_degrees = config.sigma_theta_degrees

    return slam


class SLAM:
    """
    High-level SLAM interface.

    Usage:
        slam = SLAM(config, robot=my_robot)

        # In loop, with raw encoder readings:
        pose = slam.update(scan_m, odometry=(timestamp, left_ticks, right_ticks))

        # Or with ready-made velocities:
        pose = slam.update(scan_m, velocity=(dxy_m, dtheta_deg, dt_s))

        map_img = slam.get_map()
    """

    def __init__(self, config: Optional[SLAMConfig] = None,
                 robot: Optional[WheeledRobot] = None):
        self.config = config or SLAMConfig()
        self.robot = robot
        self._backend = create_slam(self.config)
        self._pose = self._backend.getpos()

    @property
    def backend(self) -> CoreSLAM:
        return self._backend

    def update(self, scan: Sequence[float],
               odometry: Optional[Tuple[float, float, float]] = None,
               velocity: Optional[Tuple[float, float, float]] = None) -> PoseEstimate:
        """
        Update SLAM with new scan.

        Args:
            scan: Distances in meters
            odometry: Raw (timestamp, left, right) reading, converted by the robot
            velocity: (dxy_meters, dtheta_degrees, dt_seconds)
        """
        if odometry is not None and velocity is not None:
            raise ValueError("Pass either odometry or velocity, not both")

        if odometry is not None:
            if self.robot is None:
                raise ValueError("Raw odometry needs a WheeledRobot")
            velocity = self.robot.compute_velocities(*odometry)

        if velocity is not None:
            dxy, dtheta, dt = velocity
            self._pose = self._backend.update(scan, dxy, dtheta, dt)
        else:
            self._pose = self._backend.update(scan)

        return self._pose

    def get_pose(self) -> PoseEstimate:
        """Pose returned by the last update."""
        return self._pose

    def get_position(self) -> Tuple[float, float]:
        """Current position (x, y) in meters."""
        return (self._pose.x_meters, self._pose.y_meters)

    def get_heading(self) -> float:
        """Current heading in degrees, clockwise from +x."""
        return self._pose.theta_degrees

    def get_map(self) -> np.ndarray:
        """Map as a 2D uint8 array (rows x cols), 0 = no obstacle evidence."""
        return self._backend.map_array()

    def world_to_map(self, x: float, y: float) -> Tuple[int, int]:
        """Convert map-frame meters to pixel (col, row)."""
        return self._backend.world_to_map(x, y)

    def map_to_world(self, mx: int, my: int) -> Tuple[float, float]:
        """Convert pixel (col, row) to the meters of its center."""
        return self._backend.map_to_world(mx, my)

    def reset(self):
        """Start over with a blank map."""
        self._backend = create_slam(self.config)
        self._pose = self._backend.getpos()
        if self.robot is not None:
            self.robot.reset()
