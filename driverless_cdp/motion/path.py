"""Pointer trajectories.

A trajectory is a list of integer pixel coordinates. `generate_path` fits a
natural cubic spline through noisy control points between two coordinates,
and `combined_path` blends a smooth and a jittery path so the result curves
overall and trembles locally, the way a hand on a mouse does.
"""

import math
from collections.abc import Sequence

import numpy as np

from driverless_cdp.motion.geometry import Point, default_rng

PixelPath = list[tuple[int, int]]

# Resampled points per pixel of straight-line distance.
POINTS_PER_PIXEL = 10


def _natural_cubic_spline(knots: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Evaluate the natural cubic spline through ``knots`` (shape (n, d)) at ``t``.

    Knots are placed at parameter values 0..n-1.
    """
    n = len(knots)
    if n == 2:
        return knots[0] + np.outer(t, knots[1] - knots[0])

    # Second derivatives at the knots, zero at both ends.
    second = np.zeros_like(knots)
    size = n - 2
    system = np.zeros((size, size))
    np.fill_diagonal(system, 4.0)
    idx = np.arange(size - 1)
    system[idx, idx + 1] = 1.0
    system[idx + 1, idx] = 1.0
    rhs = 6.0 * (knots[2:] - 2.0 * knots[1:-1] + knots[:-2])
    second[1:-1] = np.linalg.solve(system, rhs)

    segment = np.clip(np.floor(t).astype(int), 0, n - 2)
    u = (t - segment)[:, None]
    y0, y1 = knots[segment], knots[segment + 1]
    m0, m1 = second[segment], second[segment + 1]
    return (1 - u) * y0 + u * y1 + (((1 - u) ** 3 - (1 - u)) * m0 + (u**3 - u) * m1) / 6.0


def generate_path(
    start: Point,
    end: Point,
    n: int = 10,
    smoothness: float = 2.0,
    rng: np.random.Generator | None = None,
) -> PixelPath:
    """Spline path from ``start`` to ``end`` through ``n`` noisy control points.

    Control points sit on the straight line, each offset by N(0, smoothness)
    noise except the two endpoints. The spline is resampled at about ten
    points per pixel of distance.
    """
    if n < 2:
        raise ValueError(f"n must be >= 2, got {n}")
    if smoothness < 0:
        raise ValueError(f"smoothness must be >= 0, got {smoothness}")
    rng = rng or default_rng()

    start_arr = np.asarray(start, dtype=float)
    end_arr = np.asarray(end, dtype=float)
    distance = float(np.linalg.norm(end_arr - start_arr))
    if distance == 0:
        return [(round(start_arr[0]), round(start_arr[1]))]

    fractions = np.linspace(0.0, 1.0, n)[:, None]
    knots = start_arr + fractions * (end_arr - start_arr)
    knots = knots + rng.normal(0.0, smoothness, size=knots.shape)
    knots[0] = start_arr
    knots[-1] = end_arr

    num_points = max(int(distance * POINTS_PER_PIXEL), 2)
    samples = np.linspace(0.0, n - 1, num_points)
    curve = np.rint(_natural_cubic_spline(knots, samples)).astype(int)
    return [(int(x), int(y)) for x, y in curve]


def combined_path(
    coordinates: Sequence[Point],
    n_soft: int = 5,
    smooth_soft: float = 10.0,
    n_distort: int = 100,
    smooth_distort: float = 0.4,
    rng: np.random.Generator | None = None,
) -> PixelPath:
    """Blend a smooth and a distorted path through consecutive coordinates.

    Within each segment the weight shifts linearly from the distorted path
    (at the start) to the smooth one (at the end). Consecutive duplicate
    pixels are dropped.
    """
    if len(coordinates) < 2:
        raise ValueError("combined_path needs at least two coordinates")
    rng = rng or default_rng()

    path: PixelPath = []
    last: tuple[int, int] | None = None
    for start, end in zip(coordinates, coordinates[1:]):
        soft = generate_path(start, end, n_soft, smooth_soft, rng=rng)
        distort = generate_path(start, end, n_distort, smooth_distort, rng=rng)
        steps = len(soft) - 1
        for j, (sx, sy) in enumerate(soft):
            t = j / steps if steps else 1.0
            dx, dy = distort[min(int(t * (len(distort) - 1)), len(distort) - 1)]
            point = (int((1 - t) * dx + t * sx), int((1 - t) * dy + t * sy))
            if point != last:
                path.append(point)
                last = point
    return path


def position_at_time(
    path: Sequence[tuple[int, int]],
    total_time: float,
    time: float,
    accel: float = 2.0,
    mid_time: float = 0.5,
) -> tuple[int, int]:
    """Point of ``path`` reached after ``time`` of a ``total_time`` long movement.

    Progress follows an ease-in curve up to ``mid_time`` and a mirrored
    ease-out curve after it, so the pointer speeds up then slows down.
    """
    if not path:
        raise ValueError("path is empty")
    if total_time <= 0:
        raise ValueError(f"total_time must be > 0, got {total_time}")
    if not 0 <= time <= total_time:
        raise ValueError(f"time must be in [0, {total_time}], got {time}")
    if not 0 < mid_time < 1:
        raise ValueError(f"mid_time must be in (0, 1), got {mid_time}")
    if accel <= 0:
        raise ValueError(f"accel must be > 0, got {accel}")

    progress = time / total_time
    if progress < mid_time:
        eased = mid_time * (progress / mid_time) ** accel
    else:
        eased = 1.0 - (1.0 - mid_time) * ((1.0 - progress) / (1.0 - mid_time)) ** accel

    idx = int(math.floor(eased * (len(path) - 1) + 0.5))
    idx = max(0, min(idx, len(path) - 1))
    return path[idx]
