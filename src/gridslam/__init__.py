"""
gridslam

Lightweight 2D grid SLAM for robots with a scanning rangefinder and
optional wheel odometry, after CoreSLAM / BreezySLAM.

Components:
- CoreSLAM: particle filter pose search + occupancy grid fusion
- SLAM: high-level wrapper built from a SLAMConfig
- SensorProfile: rangefinder geometry and presets
- WheeledRobot: wheel encoder -> (dxy, dtheta, dt) conversion

Usage:
    from gridslam import CoreSLAM, SensorProfile

    slam = CoreSLAM(SensorProfile.ld19(), 800, 40.0, seed=42)

    # Update with scans (meters) and optional odometry
    pose = slam.update(scan, dxy_meters, dtheta_degrees, dt_seconds)

    # Get map
    mapbytes = slam.getmap()
"""

from .exceptions import ConfigurationError

from .sensors import SensorProfile

from .odometry import (
    WheeledRobot,
    TickEncoderRobot
)

from .occupancy_grid import (
    OccupancyGrid,
    OCCUPIED_THRESHOLD,
    evidence_steps
)

from .particle_filter import (
    ParticleCloud,
    PoseEstimate
)

from .scan_matching import ScanMatcher

from .config import SLAMConfig

from .slam_core import (
    CoreSLAM,
    SLAM,
    create_slam
)

__version__ = "0.1.0"

__all__ = [
    # Main interfaces
    'CoreSLAM',
    'SLAM',
    'create_slam',

    # Configuration
    'SLAMConfig',
    'SensorProfile',
    'ConfigurationError',

    # Odometry
    'WheeledRobot',
    'TickEncoderRobot',

    # Data classes
    'PoseEstimate',

    # Advanced
    'OccupancyGrid',
    'OCCUPIED_THRESHOLD',
    'evidence_steps',
    'ParticleCloud',
    'ScanMatcher',
]
