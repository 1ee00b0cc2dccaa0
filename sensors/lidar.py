"""
Ray-casting range sensor.

Casts a fan of rays spanning -90 to +90 degrees around the agent's
heading and returns, per ray, the distance to the nearest surface
divided by the maximum range. A reading of exactly 1.0 means nothing
was hit within range.

Surfaces considered:
- the ground plane (horizontal line at ``ground_y``)
- the ceiling plane (horizontal line at ``ceiling_y``)
- every matched upper/lower obstacle pair, three edges per rectangle

Angles follow screen coordinates: 0 degrees points right, +90 points
down, -90 points up.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import torch
from torch import Tensor

from sensors.geometry import (
    Rect,
    intersect_plane,
    intersect_segments,
    pair_obstacles,
    segments_tensor,
)


@dataclass(frozen=True)
class WorldGeometry:
    """Static snapshot of everything the sensor can see.

    Attributes:
        ground_y: y of the ground plane
        ceiling_y: y of the ceiling plane
        upper_obstacles: Rectangles hanging from the ceiling
        lower_obstacles: Rectangles standing on the ground
    """
    ground_y: float
    ceiling_y: float = 0.0
    upper_obstacles: Tuple[Rect, ...] = ()
    lower_obstacles: Tuple[Rect, ...] = ()

    def obstacle_segments(self) -> Tensor:
        """Return (S, 4) sensor-visible edges of all paired obstacles."""
        segments = []
        for upper, lower in pair_obstacles(self.upper_obstacles, self.lower_obstacles):
            segments.extend(upper.edges())
            segments.extend(lower.edges())
        return segments_tensor(segments)


class Lidar:
    """Fixed-fan range sensor.

    Attributes:
        max_distance: Ray length; readings are normalized by it
        ray_count: Number of rays in the fan (one reading per ray)
        max_orientation: Cap applied to the heading offset, in degrees
        endpoints: (ray_count, 2) hit points from the last scan, kept
                   for sensor overlays only
    """

    def __init__(
        self,
        max_distance: float = 300.0,
        ray_count: int = 180,
        max_orientation: float = 45.0,
    ):
        if max_distance <= 0:
            raise ValueError("max_distance must be positive")
        if ray_count <= 0:
            raise ValueError("ray_count must be positive")

        self.max_distance = float(max_distance)
        self.ray_count = ray_count
        self.max_orientation = float(max_orientation)
        self.endpoints: Tensor = torch.zeros(ray_count, 2, dtype=torch.float64)

    def ray_angles(self, orientation: float = 0.0) -> Tensor:
        """Angles in degrees for each ray of the fan.

        Ray ``i`` sits at ``-90 + i * 180 / ray_count`` plus the heading
        offset, which is capped at ``max_orientation``. With 180 rays
        this is one ray per degree from -90 to +89.
        """
        offset = min(float(orientation), self.max_orientation)
        step = 180.0 / self.ray_count
        index = torch.arange(self.ray_count, dtype=torch.float64)
        return index * step - 90.0 + offset

    def scan(
        self,
        position: Sequence[float],
        geometry: WorldGeometry,
        orientation: float = 0.0,
    ) -> Tensor:
        """Produce one normalized distance per ray.

        Args:
            position: Agent (x, y)
            geometry: Visible world surfaces
            orientation: Heading offset in degrees

        Returns:
            (ray_count,) float32 tensor with values in [0, 1]
        """
        return self.cast(position, self.ray_angles(orientation), geometry)

    def cast(
        self,
        position: Sequence[float],
        angles: Tensor,
        geometry: WorldGeometry,
        segments: Optional[Tensor] = None,
    ) -> Tensor:
        """Cast arbitrary rays from ``position``.

        Among all valid intersections for a ray the nearest to the
        origin wins.

        Args:
            position: Ray origin (x, y)
            angles: (R,) ray angles in degrees
            geometry: Visible world surfaces
            segments: Precomputed obstacle edges, defaults to those of
                      ``geometry``

        Returns:
            (R,) float32 tensor of distance / max_distance
        """
        ox, oy = float(position[0]), float(position[1])
        radians = torch.deg2rad(angles.to(torch.float64))
        end_x = ox + self.max_distance * torch.cos(radians)
        end_y = oy + self.max_distance * torch.sin(radians)
        ends = torch.stack([end_x, end_y], dim=1)

        if segments is None:
            segments = geometry.obstacle_segments()

        # Fractions of the ray length, +inf for no hit
        candidates = [
            intersect_plane(oy, end_y, geometry.ground_y, below=True).unsqueeze(1),
            intersect_plane(oy, end_y, geometry.ceiling_y, below=False).unsqueeze(1),
        ]
        if segments.numel() > 0:
            candidates.append(intersect_segments((ox, oy), ends, segments))

        nearest = torch.cat(candidates, dim=1).min(dim=1).values
        fraction = torch.clamp(nearest, max=1.0)

        self.endpoints = torch.stack(
            [ox + fraction * (end_x - ox), oy + fraction * (end_y - oy)],
            dim=1,
        )
        return fraction.to(torch.float32)
