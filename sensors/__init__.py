"""Range-sensor perception: ray casting against ground, ceiling and obstacles."""

from sensors.geometry import Rect, pair_obstacles
from sensors.lidar import Lidar, WorldGeometry

__all__ = ["Lidar", "WorldGeometry", "Rect", "pair_obstacles"]
