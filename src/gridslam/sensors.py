"""
Range Sensor Profiles

Immutable description of a scanning laser rangefinder: how many beams per
revolution, how fast it spins, which sweep it covers and where readings stop
being echoes.

Presets follow the datasheets of units commonly used on small robots:
- Hokuyo URG-04LX (the classic CoreSLAM / BreezySLAM test sensor)
- Slamtec RPLidar A1
- LDRobot LD19

Usage:
    from gridslam import SensorProfile

    sensor = SensorProfile.ld19()
    print(sensor)
"""

from dataclasses import dataclass

import numpy as np

from .exceptions import ConfigurationError


@dataclass(frozen=True)
class SensorProfile:
    """Geometry and limits of a scanning rangefinder."""
    scan_size: int                          # Rays per revolution
    scan_rate_hz: float                     # Revolutions per second
    angle_min_degrees: float                # First beam, clockwise from forward
    angle_max_degrees: float                # Last beam
    distance_no_detection_meters: float     # Readings at/above this are "no echo"
    detection_margin: int = 0               # Rays ignored at each edge of the scan
    offset_meters: float = 0.0              # Forward offset from rotation center

    def __post_init__(self):
        if self.scan_size <= 0:
            raise ConfigurationError(f"scan_size must be positive, got {self.scan_size}")
        if self.scan_rate_hz <= 0:
            raise ConfigurationError(f"scan_rate_hz must be positive, got {self.scan_rate_hz}")
        if self.angle_max_degrees <= self.angle_min_degrees:
            raise ConfigurationError(
                f"angle_max_degrees ({self.angle_max_degrees}) must exceed "
                f"angle_min_degrees ({self.angle_min_degrees})")
        if self.distance_no_detection_meters <= 0:
            raise ConfigurationError(
                "distance_no_detection_meters must be positive, "
                f"got {self.distance_no_detection_meters}")
        if self.detection_margin < 0 or 2 * self.detection_margin >= self.scan_size:
            raise ConfigurationError(
                f"detection_margin {self.detection_margin} leaves no usable rays "
                f"in a scan of {self.scan_size}")

    @property
    def span_degrees(self) -> float:
        return self.angle_max_degrees - self.angle_min_degrees

    def ray_angles_degrees(self) -> np.ndarray:
        """
        Beam angles relative to the robot heading.

        A full 360 degree sweep does not repeat its first beam at the end.
        """
        full_turn = self.span_degrees >= 360.0
        return np.linspace(self.angle_min_degrees, self.angle_max_degrees,
                           self.scan_size, endpoint=not full_turn)

    def describe(self) -> str:
        return (f"<offset={self.offset_meters:.3f} m | scan_rate={self.scan_rate_hz:g} hz | "
                f"scan_size={self.scan_size} | angle_min={self.angle_min_degrees:g} deg | "
                f"angle_max={self.angle_max_degrees:g} deg | "
                f"detection_margin={self.detection_margin} | "
                f"distance_no_detection={self.distance_no_detection_meters:.2f} m>")

    def __str__(self) -> str:
        return self.describe()

    @classmethod
    def urg04lx(cls) -> 'SensorProfile':
        """Hokuyo URG-04LX: 682 rays over 240 degrees, 4 m."""
        return cls(scan_size=682, scan_rate_hz=10, angle_min_degrees=-120,
                   angle_max_degrees=120, distance_no_detection_meters=4.0,
                   detection_margin=70, offset_meters=0.145)

    @classmethod
    def rplidar_a1(cls) -> 'SensorProfile':
        """Slamtec RPLidar A1: 360 rays, 5.5 Hz, 12 m."""
        return cls(scan_size=360, scan_rate_hz=5.5, angle_min_degrees=-180,
                   angle_max_degrees=180, distance_no_detection_meters=12.0)

    @classmethod
    def ld19(cls) -> 'SensorProfile':
        """LDRobot LD19 resampled to one ray per degree: 10 Hz, 12 m."""
        return cls(scan_size=360, scan_rate_hz=10, angle_min_degrees=0,
                   angle_max_degrees=360, distance_no_detection_meters=12.0)
