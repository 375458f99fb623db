"""
Occupancy Grid Map

Square 2D evidence grid used by CoreSLAM for both scan matching and mapping.

Values (one byte per cell):
- 0   = no evidence of an obstacle (initial state, or seen free)
- 128 = OCCUPIED_THRESHOLD, ray casting stops here
- 255 = saturated obstacle evidence

Coordinates:
- x grows to the right (columns), y grows downward (rows)
- headings are clockwise from +x, so a plain cos/sin projection works
  directly in pixel space
- pixel (col, row) covers [col, col+1) x [row, row+1) / scale meters

Updates are additive and saturating, the byte form of log-odds fusion:
each observation nudges a cell up (hit) or down (pass-through).
"""

import math
from typing import Optional, Tuple, Union

import numpy as np

from .exceptions import ConfigurationError

OCCUPIED_THRESHOLD = 128

# Evidence nudges at the reference quality, in byte units
HIT_STEP = 64
MISS_STEP = 16
REFERENCE_QUALITY = 50

BufferLike = Union[bytes, bytearray, memoryview, np.ndarray]


def evidence_steps(map_quality: int) -> Tuple[int, int]:
    """
    Size of the occupied and free nudges for a map quality.

    Higher quality means smaller steps, so the map averages more scans
    before changing. Quality is clamped to 0-255; 0 behaves like 1.

    Returns:
        (hit_step, miss_step), both within 1-255
    """
    quality = min(255, max(1, int(map_quality)))
    scale = REFERENCE_QUALITY / quality
    hit = int(min(255, max(1, round(HIT_STEP * scale))))
    miss = int(min(255, max(1, round(MISS_STEP * scale))))
    return hit, miss


class OccupancyGrid:
    """
    Square occupancy grid with byte evidence.

    Usage:
        grid = OccupancyGrid(800, 40.0)   # 20m x 20m

        # Expected ranges from a pose
        ranges = grid.ray_cast(x, y, angles, max_range=4.0)

        # Fuse a scan
        grid.fuse(x, y, angles, ranges, hole_width=0.6, max_range=4.0, quality=50)

        # Snapshot
        mapbytes = grid.get_bytes()
    """

    def __init__(self, map_size_pixels: int, map_scale_pixels_per_meter: float):
        """
        Args:
            map_size_pixels: Grid side in cells (map is square)
            map_scale_pixels_per_meter: Cells per meter
        """
        if int(map_size_pixels) != map_size_pixels or map_size_pixels <= 0:
            raise ConfigurationError(
                f"map_size_pixels must be a positive integer, got {map_size_pixels}")
        if not map_scale_pixels_per_meter > 0:
            raise ConfigurationError(
                f"map_scale_pixels_per_meter must be positive, got {map_scale_pixels_per_meter}")

        self.size_pixels = int(map_size_pixels)
        self.scale = float(map_scale_pixels_per_meter)

        self._cells = np.zeros((self.size_pixels, self.size_pixels), dtype=np.uint8)

    @property
    def size_meters(self) -> float:
        """Side length of the map in meters."""
        return self.size_pixels / self.scale

    @property
    def num_cells(self) -> int:
        return self.size_pixels * self.size_pixels

    def world_to_map(self, x: float, y: float) -> Tuple[int, int]:
        """Convert map-frame meters to (col, row)."""
        return int(math.floor(x * self.scale)), int(math.floor(y * self.scale))

    def map_to_world(self, col: int, row: int) -> Tuple[float, float]:
        """Center of a cell in meters."""
        return (col + 0.5) / self.scale, (row + 0.5) / self.scale

    def in_bounds(self, col: int, row: int) -> bool:
        return 0 <= col < self.size_pixels and 0 <= row < self.size_pixels

    def band_half_width(self, hole_width: float) -> float:
        """Half width of the obstacle band, never narrower than half a cell."""
        return max(hole_width / 2.0, 0.5 / self.scale)

    @staticmethod
    def _crossings(start: float, direction: np.ndarray, count: int) -> np.ndarray:
        """
        Ray parameters (in cells) of the first `count` grid lines crossed
        along one axis. Rays parallel to the axis never cross one.
        """
        magnitude = np.abs(direction)
        first = np.where(direction > 0, math.floor(start) + 1 - start, start - math.floor(start))
        safe = np.where(magnitude > 0, magnitude, 1.0)
        t = (first[:, None] + np.arange(count)[None, :]) / safe[:, None]
        return np.where(magnitude[:, None] > 0, t, np.inf)

    def _traverse(self, x: float, y: float, angles_rad: np.ndarray,
                  max_distance: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Every cell each ray crosses, in order (Amanatides-Woo grid walk).

        The x and y grid line crossings of a ray are merged by distance;
        each crossing moves the walk one cell along that axis. All cells
        entered within max_distance are listed, whatever the ray slope.

        Returns:
            (flat_index, inside, t_in, t_out) arrays of shape (rays, cells);
            t_in / t_out are the distances (meters) where the ray enters and
            leaves the cell, flat_index is only meaningful where inside is True
        """
        px, py = x * self.scale, y * self.scale
        cos_a = np.cos(angles_rad)
        sin_a = np.sin(angles_rad)
        n_rays = angles_rad.size

        count = int(math.ceil(max_distance * self.scale)) + 1
        times = np.concatenate([self._crossings(px, cos_a, count),
                                self._crossings(py, sin_a, count)], axis=1)
        order = np.argsort(times, axis=1, kind='stable')
        times = np.take_along_axis(times, order, axis=1)
        is_x = order < count

        step_col = np.sign(cos_a).astype(np.intp)[:, None]
        step_row = np.sign(sin_a).astype(np.intp)[:, None]
        start = np.zeros((n_rays, 1), dtype=np.intp)

        cols = math.floor(px) + np.concatenate(
            [start, np.cumsum(np.where(is_x, step_col, 0), axis=1)], axis=1)
        rows = math.floor(py) + np.concatenate(
            [start, np.cumsum(np.where(is_x, 0, step_row), axis=1)], axis=1)

        t_in = np.concatenate([np.zeros((n_rays, 1)), times], axis=1) / self.scale
        t_out = np.concatenate([times, np.full((n_rays, 1), np.inf)], axis=1) / self.scale

        n = self.size_pixels
        inside = (cols >= 0) & (cols < n) & (rows >= 0) & (rows < n)
        flat_index = np.where(inside, rows * n + cols, -1)
        return flat_index, inside, t_in, t_out

    def ray_cast(self, x: float, y: float, angles_rad: np.ndarray,
                 max_range: float) -> np.ndarray:
        """
        Expected range along each beam of a fan.

        Beams walk the grid cell by cell and stop where they enter the
        first cell at or above OCCUPIED_THRESHOLD. Cells outside the grid
        never stop a beam.

        Args:
            x, y: Beam origin (meters)
            angles_rad: Absolute beam directions (radians, clockwise from +x)
            max_range: Range returned for beams that hit nothing

        Returns:
            Array of ranges, one per angle
        """
        angles_rad = np.asarray(angles_rad, dtype=np.float64)
        if angles_rad.size == 0:
            return np.zeros(0)

        flat_index, inside, t_in, _ = self._traverse(x, y, angles_rad, max_range)

        candidates = inside & (t_in < max_range)
        values = np.zeros(flat_index.shape, dtype=np.uint8)
        values[candidates] = self._cells.reshape(-1)[flat_index[candidates]]

        hits = values >= OCCUPIED_THRESHOLD
        any_hit = hits.any(axis=1)
        first_hit = hits.argmax(axis=1)

        entry = t_in[np.arange(angles_rad.size), first_hit]
        ranges = np.where(any_hit, entry, max_range)
        return np.minimum(ranges, max_range)

    def fuse(self, x: float, y: float, angles_rad: np.ndarray, ranges: np.ndarray,
             hole_width: float, max_range: float, quality: int) -> int:
        """
        Fuse measured ranges into the grid.

        Each ray walks the cells it crosses. Cells the ray leaves before
        the obstacle band starts (range - hole_width / 2) are nudged toward
        free; cells overlapping the band (hole_width / 2 either side of the
        measured range) are nudged toward occupied. Tracing stops at
        max_range. A ray visits a cell once, so it nudges it at most once.

        Args:
            x, y: Sensor position (meters)
            angles_rad: Absolute beam directions (radians)
            ranges: Measured range per beam (meters), valid beams only
            hole_width: Obstacle band width (meters)
            max_range: Tracing cap (meters)
            quality: Map quality 0-255, see evidence_steps()

        Returns:
            Number of distinct cells modified
        """
        angles_rad = np.asarray(angles_rad, dtype=np.float64)
        ranges = np.asarray(ranges, dtype=np.float64)
        if ranges.size == 0:
            return 0

        half = self.band_half_width(hole_width)
        near = (ranges - half)[:, None]
        far = np.minimum(ranges + half, max_range)[:, None]

        flat_index, inside, t_in, t_out = self._traverse(
            x, y, angles_rad, float(far.max()))

        traced = inside & (t_in <= far)
        occupied = traced & (t_out >= near)
        free = traced & (t_out < near)

        hit_step, miss_step = evidence_steps(quality)

        hit_cells = flat_index[occupied]
        free_cells = flat_index[free]
        if hit_cells.size == 0 and free_cells.size == 0:
            return 0

        cells = np.concatenate([hit_cells, free_cells])
        steps = np.concatenate([np.full(hit_cells.size, hit_step, dtype=np.int64),
                                np.full(free_cells.size, -miss_step, dtype=np.int64)])

        touched, inverse = np.unique(cells, return_inverse=True)
        totals = np.bincount(inverse.ravel(), weights=steps).astype(np.int64)

        flat = self._cells.reshape(-1)
        flat[touched] = np.clip(flat[touched].astype(np.int64) + totals, 0, 255).astype(np.uint8)

        return int(touched.size)

    def get_bytes(self, buffer: Optional[BufferLike] = None) -> BufferLike:
        """
        Row-major snapshot of the grid, one byte per cell.

        Args:
            buffer: Optional writable buffer (bytearray, uint8 array...) of
                exactly size_pixels**2 bytes to fill in place

        Returns:
            The filled buffer (a new bytearray if none was given)
        """
        data = self._cells.tobytes()
        if buffer is None:
            return bytearray(data)

        view = memoryview(buffer).cast('B')
        if view.nbytes != self.num_cells:
            raise ValueError(f"map buffer must hold {self.num_cells} bytes, got {view.nbytes}")
        view[:] = data
        return buffer

    def set_bytes(self, buffer: BufferLike):
        """Replace the whole grid from a row-major byte buffer."""
        if isinstance(buffer, (bytes, bytearray, memoryview)):
            data = np.frombuffer(buffer, dtype=np.uint8)
        else:
            values = np.asarray(buffer).ravel()
            if values.size and (values.min() < 0 or values.max() > 255):
                raise ValueError("map values must lie within 0-255")
            data = values.astype(np.uint8)

        if data.size != self.num_cells:
            raise ValueError(f"map buffer must hold {self.num_cells} bytes, got {data.size}")

        self._cells[:] = data.reshape(self.size_pixels, self.size_pixels)

    def copy_array(self) -> np.ndarray:
        """2D copy of the grid (rows x cols)."""
        return self._cells.copy()

    def clear(self):
        """Reset every cell to 0."""
        self._cells.fill(0)
