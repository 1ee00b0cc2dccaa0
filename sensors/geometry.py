"""
Planar geometry for the range sensor.

Screen coordinates are used throughout: x grows to the right, y grows
downward, so the ground plane has a larger y than the ceiling plane.

Obstacles are axis-aligned rectangles. The sensor tests each ray against
three edges per rectangle (top, bottom and the leading vertical edge);
the trailing edge is never visible to an agent that sits to its left.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import torch
from torch import Tensor

logger = logging.getLogger(__name__)

# (x3, y3, x4, y4)
Segment = Tuple[float, float, float, float]


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in screen coordinates.

    Attributes:
        left: Smallest x
        top: Smallest y
        right: Largest x
        bottom: Largest y
    """
    left: float
    top: float
    right: float
    bottom: float

    def __post_init__(self):
        if self.right < self.left:
            raise ValueError(f"right ({self.right}) must be >= left ({self.left})")
        if self.bottom < self.top:
            raise ValueError(f"bottom ({self.bottom}) must be >= top ({self.top})")

    @classmethod
    def from_center(cls, x: float, y: float, width: float, height: float) -> "Rect":
        """Build a rectangle from its center point and size."""
        return cls(
            left=x - width / 2,
            top=y - height / 2,
            right=x + width / 2,
            bottom=y + height / 2,
        )

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    def translated(self, dx: float, dy: float = 0.0) -> "Rect":
        return Rect(self.left + dx, self.top + dy, self.right + dx, self.bottom + dy)

    def intersects(self, other: "Rect") -> bool:
        """True if the two rectangles overlap (touching edges count)."""
        return (
            self.left <= other.right
            and other.left <= self.right
            and self.top <= other.bottom
            and other.top <= self.bottom
        )

    def edges(self) -> List[Segment]:
        """Return the three sensor-visible edges: top, bottom, leading side."""
        return [
            (self.left, self.top, self.right, self.top),
            (self.right, self.bottom, self.left, self.bottom),
            (self.left, self.bottom, self.left, self.top),
        ]


def pair_obstacles(
    upper: Sequence[Rect],
    lower: Sequence[Rect],
) -> List[Tuple[Rect, Rect]]:
    """Match upper and lower obstacles into pairs by horizontal position.

    Both lists are sorted by ascending left edge and zipped. When the
    counts differ the unmatched tail of the longer list is dropped.

    Args:
        upper: Obstacles hanging from the ceiling
        lower: Obstacles standing on the ground

    Returns:
        List of (upper, lower) pairs, nearest first
    """
    upper_sorted = sorted(upper, key=lambda r: r.left)
    lower_sorted = sorted(lower, key=lambda r: r.left)

    if len(upper_sorted) != len(lower_sorted):
        logger.debug(
            "Obstacle count mismatch (upper=%d, lower=%d); ignoring %d unmatched",
            len(upper_sorted),
            len(lower_sorted),
            abs(len(upper_sorted) - len(lower_sorted)),
        )

    return list(zip(upper_sorted, lower_sorted))


def segments_tensor(segments: Sequence[Segment]) -> Tensor:
    """Pack segments into an (S, 4) float64 tensor."""
    if not segments:
        return torch.zeros(0, 4, dtype=torch.float64)
    return torch.tensor(segments, dtype=torch.float64)


def intersect_segments(
    origin: Tuple[float, float],
    ends: Tensor,
    segments: Tensor,
) -> Tensor:
    """Intersect a fan of rays with a set of line segments.

    Each ray runs from ``origin`` to one row of ``ends``. For ray
    (x1,y1)-(x2,y2) and segment (x3,y3)-(x4,y4):

        denom = (y4-y3)(x2-x1) - (x4-x3)(y2-y1)

    A zero denominator means parallel or collinear and yields no hit.
    Otherwise both parametric coefficients ua (along the ray) and ub
    (along the segment) must lie in [0, 1].

    Args:
        origin: Ray start point (x1, y1)
        ends: (R, 2) ray end points
        segments: (S, 4) segments as (x3, y3, x4, y4)

    Returns:
        (R, S) float64 fraction of the ray length at which each segment
        is hit, +inf where there is no intersection
    """
    x1, y1 = float(origin[0]), float(origin[1])
    x2 = ends[:, 0:1].to(torch.float64)
    y2 = ends[:, 1:2].to(torch.float64)

    x3 = segments[:, 0].unsqueeze(0)
    y3 = segments[:, 1].unsqueeze(0)
    x4 = segments[:, 2].unsqueeze(0)
    y4 = segments[:, 3].unsqueeze(0)

    denom = (y4 - y3) * (x2 - x1) - (x4 - x3) * (y2 - y1)
    parallel = denom == 0
    safe_denom = torch.where(parallel, torch.ones_like(denom), denom)

    ua = ((x4 - x3) * (y1 - y3) - (y4 - y3) * (x1 - x3)) / safe_denom
    ub = ((x2 - x1) * (y1 - y3) - (y2 - y1) * (x1 - x3)) / safe_denom

    hit = ~parallel & (ua >= 0) & (ua <= 1) & (ub >= 0) & (ub <= 1)
    return torch.where(hit, ua, torch.full_like(ua, float("inf")))


def intersect_plane(origin_y: float, end_y: Tensor, plane_y: float, below: bool) -> Tensor:
    """Intersect rays with a horizontal plane.

    A ray only hits the plane if it actually crosses it between origin
    and end point, approaching from the open side: from above for the
    ground (``below=True``), from below for the ceiling.

    Args:
        origin_y: Ray start y
        end_y: (R,) ray end y values
        plane_y: y of the plane
        below: True if the plane lies below the origin (ground)

    Returns:
        (R,) float64 fraction of the ray length at the crossing, +inf
        where the ray does not cross
    """
    end_y = end_y.to(torch.float64)
    if below:
        crosses = (end_y > plane_y) & (origin_y <= plane_y)
    else:
        crosses = (end_y < plane_y) & (origin_y >= plane_y)

    span = end_y - origin_y
    safe_span = torch.where(crosses, span, torch.ones_like(span))
    t = (plane_y - origin_y) / safe_span
    return torch.where(crosses, t, torch.full_like(t, float("inf")))
