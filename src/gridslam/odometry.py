"""
Differential-Drive Odometry

Turns raw wheel encoder readings into the (dxy, dtheta, dt) motion deltas
expected by CoreSLAM.update().

Each robot reports odometry in its own units (ticks, microseconds,
milliradians...). A concrete robot only has to say how to convert one raw
sample into seconds and wheel degrees; WheeledRobot does the rest.

Usage:
    robot = TickEncoderRobot(wheel_radius_meters=0.077,
                             half_axle_length_meters=0.165,
                             ticks_per_revolution=2000)

    # In loop:
    dxy, dtheta, dt = robot.compute_velocities(timestamp_us, left_ticks, right_ticks)
    pose = slam.update(scan, dxy, dtheta, dt)
"""

import math
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from .exceptions import ConfigurationError


class WheeledRobot(ABC):
    """Base class for robots with two odometry wheels sharing an axle."""

    def __init__(self, wheel_radius_meters: float, half_axle_length_meters: float):
        """
        Args:
            wheel_radius_meters: Radius of each odometry wheel
            half_axle_length_meters: Half the distance between the wheels
        """
        if wheel_radius_meters <= 0:
            raise ConfigurationError(
                f"wheel_radius_meters must be positive, got {wheel_radius_meters}")
        if half_axle_length_meters <= 0:
            raise ConfigurationError(
                f"half_axle_length_meters must be positive, got {half_axle_length_meters}")

        self.wheel_radius_meters = float(wheel_radius_meters)
        self.half_axle_length_meters = float(half_axle_length_meters)

        # (timestamp_seconds, left_degrees, right_degrees) of the previous call
        self._previous: Optional[Tuple[float, float, float]] = None

    @abstractmethod
    def extract_odometry(self, timestamp: float, left_odometry: float,
                         right_odometry: float) -> Tuple[float, float, float]:
        """
        Convert one raw odometry sample.

        Args:
            timestamp: Time stamp in the robot's own units
            left_odometry: Left wheel reading in the robot's own units
            right_odometry: Right wheel reading in the robot's own units

        Returns:
            (timestamp_seconds, left_wheel_degrees, right_wheel_degrees)
        """
        pass

    def descriptor_string(self) -> str:
        """Robot-specific part of the description."""
        return ""

    def compute_velocities(self, timestamp: float, left_odometry: float,
                           right_odometry: float) -> Tuple[float, float, float]:
        """
        Compute motion since the previous sample.

        The first call only records the sample and returns zeros.

        Returns:
            (dxy_meters, dtheta_degrees, dt_seconds)
        """
        dxy_meters = 0.0
        dtheta_degrees = 0.0
        dt_seconds = 0.0

        current = self.extract_odometry(timestamp, left_odometry, right_odometry)
        timestamp_seconds, left_degrees, right_degrees = current

        if self._previous is not None:
            prev_seconds, prev_left, prev_right = self._previous

            left_diff = left_degrees - prev_left
            right_diff = right_degrees - prev_right

            dxy_meters = self.wheel_radius_meters * (
                math.radians(left_diff) + math.radians(right_diff))
            dtheta_degrees = (self.wheel_radius_meters / self.half_axle_length_meters
                              * (right_diff - left_diff))
            dt_seconds = timestamp_seconds - prev_seconds

        self._previous = (float(timestamp_seconds), float(left_degrees), float(right_degrees))

        return dxy_meters, dtheta_degrees, dt_seconds

    def reset(self):
        """Forget the stored sample; the next call is a cold start."""
        self._previous = None

    def __str__(self) -> str:
        return (f"<Wheel radius={self.wheel_radius_meters:f} m "
                f"Half axle Length={self.half_axle_length_meters:f} m | "
                f"{self.descriptor_string()}>")


class TickEncoderRobot(WheeledRobot):
    """
    Robot with incremental encoders counting ticks per wheel revolution.

    Time stamps are integers in a fixed unit, microseconds by default.
    """

    def __init__(self, wheel_radius_meters: float, half_axle_length_meters: float,
                 ticks_per_revolution: float,
                 timestamp_units_per_second: float = 1e6):
        super().__init__(wheel_radius_meters, half_axle_length_meters)

        if ticks_per_revolution <= 0:
            raise ConfigurationError(
                f"ticks_per_revolution must be positive, got {ticks_per_revolution}")
        if timestamp_units_per_second <= 0:
            raise ConfigurationError(
                f"timestamp_units_per_second must be positive, got {timestamp_units_per_second}")

        self.ticks_per_revolution = float(ticks_per_revolution)
        self.timestamp_units_per_second = float(timestamp_units_per_second)

    def extract_odometry(self, timestamp, left_odometry, right_odometry):
        degrees_per_tick = 360.0 / self.ticks_per_revolution
        return (timestamp / self.timestamp_units_per_second,
                left_odometry * degrees_per_tick,
                right_odometry * degrees_per_tick)

    def descriptor_string(self) -> str:
        return (f"ticks_per_revolution={self.ticks_per_revolution:g} "
                f"timestamp_units_per_second={self.timestamp_units_per_second:g}")
