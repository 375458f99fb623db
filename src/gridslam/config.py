"""
SLAM Configuration

One dataclass carrying everything needed to build a CoreSLAM engine:
sensor geometry, map size, particle filter settings and the tuning knobs.

Config files are YAML, either flat or with a nested "sensor" section:

    sensor:
      scan_size: 360
      scan_rate_hz: 10
      angle_min_degrees: 0
      angle_max_degrees: 360
      distance_no_detection_meters: 12.0
    map_size_pixels: 800
    map_scale_pixels_per_meter: 40
    seed: 42
    map_quality: 50
"""

from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional

import yaml

from .exceptions import ConfigurationError
from .sensors import SensorProfile

SENSOR_FIELDS = (
    'scan_size', 'scan_rate_hz', 'angle_min_degrees', 'angle_max_degrees',
    'distance_no_detection_meters', 'detection_margin', 'offset_meters',
)


@dataclass
class SLAMConfig:
    """SLAM configuration parameters."""
    # Scan parameters (see SensorProfile)
    scan_size: int = 360                        # Number of scan points
    scan_rate_hz: float = 10.0                  # Scan rate
    angle_min_degrees: float = 0.0
    angle_max_degrees: float = 360.0
    distance_no_detection_meters: float = 12.0  # Max range
    detection_margin: int = 0
    offset_meters: float = 0.0                  # Sensor offset from robot center

    # Map parameters
    map_size_pixels: int = 800                  # Map side in pixels
    map_scale_pixels_per_meter: float = 40.0    # 800 px -> 20 m

    # Particle filter
    seed: Optional[int] = None                  # None = clock-derived
    num_particles: int = 100
    num_workers: int = 1                        # Scoring threads

    # Tuning knobs (may change between updates)
    map_quality: int = 50                       # 0-255, higher = slower map changes
    hole_width_meters: float = 0.6              # Obstacle width assumption
    sigma_xy_meters: float = 0.1                # Position search spread
    sigma_theta_degrees: float = 20.0           # Heading search spread

    @property
    def map_size_meters(self) -> float:
        return self.map_size_pixels / self.map_scale_pixels_per_meter

    def sensor_profile(self) -> SensorProfile:
        """Build (and validate) the sensor description."""
        return SensorProfile(**{name: getattr(self, name) for name in SENSOR_FIELDS})

    def validate(self) -> 'SLAMConfig':
        """Check every parameter, raising ConfigurationError on the first bad one."""
        self.sensor_profile()

        if int(self.map_size_pixels) != self.map_size_pixels or self.map_size_pixels <= 0:
            raise ConfigurationError(
                f"map_size_pixels must be a positive integer, got {self.map_size_pixels}")
        if not self.map_scale_pixels_per_meter > 0:
            raise ConfigurationError(
                "map_scale_pixels_per_meter must be positive, "
                f"got {self.map_scale_pixels_per_meter}")
        if self.num_particles < 1:
            raise ConfigurationError(f"num_particles must be >= 1, got {self.num_particles}")
        if self.num_workers < 1:
            raise ConfigurationError(f"num_workers must be >= 1, got {self.num_workers}")
        if not 0 <= self.map_quality <= 255:
            raise ConfigurationError(f"map_quality must be within 0-255, got {self.map_quality}")
        if self.hole_width_meters < 0:
            raise ConfigurationError(
                f"hole_width_meters must not be negative, got {self.hole_width_meters}")
        if self.sigma_xy_meters < 0 or self.sigma_theta_degrees < 0:
            raise ConfigurationError("sigma_xy_meters and sigma_theta_degrees must not be negative")

        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_sensor(cls, sensor: SensorProfile, **kwargs) -> 'SLAMConfig':
        """Config for a sensor preset, other fields from kwargs or defaults."""
        values = {name: getattr(sensor, name) for name in SENSOR_FIELDS}
        values.update(kwargs)
        return cls.from_dict(values)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SLAMConfig':
        """
        Build a config from a (possibly nested) dictionary.

        Args:
            data: Flat keys, plus an optional "sensor" mapping

        Raises:
            ConfigurationError: unknown keys or invalid values
        """
        values = dict(data or {})

        sensor = values.pop('sensor', None) or {}
        if not isinstance(sensor, dict):
            raise ConfigurationError("'sensor' section must be a mapping")
        unknown_sensor = set(sensor) - set(SENSOR_FIELDS)
        if unknown_sensor:
            raise ConfigurationError(f"Unknown sensor keys: {sorted(unknown_sensor)}")
        values.update(sensor)

        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {sorted(unknown)}")

        return cls(**values).validate()

    @classmethod
    def from_yaml(cls, path: str) -> 'SLAMConfig':
        """Load a config from a YAML file."""
        with open(path, 'r') as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path}: top level must be a mapping")

        return cls.from_dict(data)
