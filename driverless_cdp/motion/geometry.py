"""Geometry and sampling helpers for humanized pointer input.

Quads are sequences of four ``(x, y)`` corners in drawing order, the way
``DOM.getBoxModel`` reports them (flattened). Every randomized function takes
an optional ``numpy.random.Generator`` so results are reproducible in tests.
"""

import math
from collections.abc import Sequence
from typing import NamedTuple

import numpy as np

Point = tuple[float, float]
Quad = Sequence[Sequence[float]]

_rng = np.random.default_rng()

# Rejection sampling gives up after this many draws instead of spinning.
_MAX_REJECTION_DRAWS = 10_000


def default_rng() -> np.random.Generator:
    return _rng


def seed(value: int | None) -> None:
    """Reseed the module-level random source."""
    global _rng
    _rng = np.random.default_rng(value)


def _check_quad(points: Quad) -> list[Point]:
    if len(points) != 4:
        raise ValueError(f"Expected four corner points, got {len(points)}")
    return [(float(p[0]), float(p[1])) for p in points]


def quad_from_box(flat: Sequence[float]) -> list[Point]:
    """Convert a flat CDP quad ``[x1, y1, ..., x4, y4]`` into four points."""
    if len(flat) != 8:
        raise ValueError(f"Expected a quad of 8 numbers, got {len(flat)}")
    return [(float(flat[i]), float(flat[i + 1])) for i in range(0, 8, 2)]


def biased_random(
    spread: float,
    border: float = 0.05,
    bias: float = 0.5,
    rng: np.random.Generator | None = None,
) -> float:
    """Draw from N(bias, spread / 6) until the value lands in ``[border, 1 - border]``.

    ``spread == 0`` returns ``bias`` unchanged.
    """
    if spread < 0:
        raise ValueError(f"spread must be >= 0, got {spread}")
    if not 0 <= border < 0.5:
        raise ValueError(f"border must be in [0, 0.5), got {border}")
    if not 0 <= bias <= 1:
        raise ValueError(f"bias must be in [0, 1], got {bias}")
    if spread == 0:
        return bias

    rng = rng or _rng
    scale = spread / 6.0
    for _ in range(_MAX_REJECTION_DRAWS):
        value = float(rng.normal(bias, scale))
        if border <= value <= 1 - border:
            return value
    raise ValueError(
        f"Could not sample inside [{border}, {1 - border}] around bias={bias} with spread={spread}"
    )


def bias_0dot5(strength: float, max_offset: float, rng: np.random.Generator | None = None) -> float:
    """Beta-distributed draw around 0.5, limited to ``0.5 ± max_offset``."""
    if not 0 < strength < 1:
        raise ValueError(f"strength must be in (0, 1), got {strength}")
    if max_offset < 0:
        raise ValueError(f"max_offset must be >= 0, got {max_offset}")
    rng = rng or _rng
    lower = max(0.5 - max_offset, 0.0)
    upper = min(0.5 + max_offset, 1.0)
    value = float(rng.beta(2 * strength, 2 * (1 - strength)))
    return lower + value * (upper - lower)


def point_in_rectangle(points: Quad, a: float, b: float) -> Point:
    """Bilinear interpolation inside a quad.

    ``a`` runs along the edge p0→p1 (and p3→p2), ``b`` from that edge towards
    the opposite one.
    """
    p = _check_quad(points)
    if not (0 <= a <= 1 and 0 <= b <= 1):
        raise ValueError(f"a and b must be in [0, 1], got a={a}, b={b}")
    x = (1 - b) * (p[0][0] + a * (p[1][0] - p[0][0])) + b * (p[3][0] + a * (p[2][0] - p[3][0]))
    y = (1 - b) * (p[0][1] + a * (p[1][1] - p[0][1])) + b * (p[3][1] + a * (p[2][1] - p[3][1]))
    return x, y


def edge_intersection(p1: Point, p2: Point, p3: Point, p4: Point) -> Point | None:
    """Intersection of segments p1-p2 and p3-p4, or None when they don't cross."""
    a1 = p2[1] - p1[1]
    b1 = p1[0] - p2[0]
    c1 = a1 * p1[0] + b1 * p1[1]
    a2 = p4[1] - p3[1]
    b2 = p3[0] - p4[0]
    c2 = a2 * p3[0] + b2 * p3[1]

    determinant = a1 * b2 - a2 * b1
    if determinant == 0:
        return None
    x = (b2 * c1 - b1 * c2) / determinant
    y = (a1 * c2 - a2 * c1) / determinant

    eps = 1e-9
    if (
        min(p1[0], p2[0]) - eps <= x <= max(p1[0], p2[0]) + eps
        and min(p1[1], p2[1]) - eps <= y <= max(p1[1], p2[1]) + eps
        and min(p3[0], p4[0]) - eps <= x <= max(p3[0], p4[0]) + eps
        and min(p3[1], p4[1]) - eps <= y <= max(p3[1], p4[1]) + eps
    ):
        return x, y
    return None


def polygon_area(vertices: Sequence[Point]) -> float:
    """Shoelace formula."""
    n = len(vertices)
    area = 0.0
    for i in range(n):
        j = (i + 1) % n
        area += vertices[i][0] * vertices[j][1]
        area -= vertices[j][0] * vertices[i][1]
    return abs(area) / 2.0


def is_point_in_polygon(point: Point, polygon: Sequence[Point]) -> bool:
    """Ray casting. Points on the boundary may go either way."""
    x, y = point
    n = len(polygon)
    if n < 3:
        return False
    inside = False
    p1x, p1y = polygon[0]
    for i in range(n + 1):
        p2x, p2y = polygon[i % n]
        if min(p1y, p2y) < y <= max(p1y, p2y) and x <= max(p1x, p2x) and p1y != p2y:
            x_cross = (y - p1y) * (p2x - p1x) / (p2y - p1y) + p1x
            if p1x == p2x or x <= x_cross:
                inside = not inside
        p1x, p1y = p2x, p2y
    return inside


def intersect_rectangles(rect_a: Quad, rect_b: Quad) -> list[Point]:
    """Intersection polygon of two quads, ordered by angle around its centroid.

    Returns an empty list when the quads don't overlap (or only touch along
    fewer than three distinct points).
    """
    a = _check_quad(rect_a)
    b = _check_quad(rect_b)

    points: list[Point] = []
    for i in range(4):
        for j in range(4):
            hit = edge_intersection(a[i], a[(i + 1) % 4], b[j], b[(j + 1) % 4])
            if hit is not None:
                points.append(hit)
    points.extend(corner for corner in a if is_point_in_polygon(corner, b))
    points.extend(corner for corner in b if is_point_in_polygon(corner, a))

    unique: list[Point] = []
    seen: set[tuple[float, float]] = set()
    for x, y in points:
        key = (round(x, 2), round(y, 2))
        if key not in seen:
            seen.add(key)
            unique.append((x, y))
    if len(unique) < 3:
        return []

    cx = sum(p[0] for p in unique) / len(unique)
    cy = sum(p[1] for p in unique) / len(unique)
    unique.sort(key=lambda p: math.atan2(p[1] - cy, p[0] - cx))
    return unique


class Overlap(NamedTuple):
    percentage: float
    polygon: list[Point]

    @property
    def fraction(self) -> float:
        return self.percentage / 100.0


def rectangle_overlap(rect_a: Quad, rect_b: Quad) -> Overlap:
    """Overlap of two quads as a percentage of the smaller one's area."""
    area_a = polygon_area(_check_quad(rect_a))
    area_b = polygon_area(_check_quad(rect_b))
    smaller = min(area_a, area_b)
    if smaller == 0:
        raise ValueError("Cannot compute overlap of a zero-area rectangle")
    polygon = intersect_rectangles(rect_a, rect_b)
    if not polygon:
        return Overlap(0.0, [])
    percentage = min(polygon_area(polygon) / smaller * 100.0, 100.0)
    return Overlap(percentage, polygon)


def get_bounds(vertices: Sequence[Point]) -> tuple[float, float, float, float]:
    """``(x_min, y_min, x_max, y_max)`` of a point set."""
    if not vertices:
        raise ValueError("Cannot compute bounds of an empty point set")
    xs = [v[0] for v in vertices]
    ys = [v[1] for v in vertices]
    return min(xs), min(ys), max(xs), max(ys)


def rand_mid_loc(
    quad: Quad,
    spread_a: float = 1.0,
    spread_b: float = 1.0,
    bias_a: float = 0.5,
    bias_b: float = 0.5,
    border: float = 0.05,
    rng: np.random.Generator | None = None,
) -> Point:
    """A randomized strike point inside an element's quad, biased towards its middle."""
    p = _check_quad(quad)
    if not (0 <= bias_a <= 1 and 0 <= bias_b <= 1):
        raise ValueError(f"bias must be in [0, 1], got bias_a={bias_a}, bias_b={bias_b}")
    ab = (p[1][0] - p[0][0], p[1][1] - p[0][1])
    bc = (p[2][0] - p[1][0], p[2][1] - p[1][1])
    if abs(ab[0] * bc[1] - ab[1] * bc[0]) == 0:
        raise ValueError("Element has zero area")
    a = biased_random(spread_a, border, bias_a, rng=rng)
    b = biased_random(spread_b, border, bias_b, rng=rng)
    return point_in_rectangle(p, a, b)
