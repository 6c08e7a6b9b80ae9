"""
Tests for the geometry helpers behind humanized clicks.

Randomized helpers take a seeded numpy Generator (the `rng` fixture), so the
assertions here are about ranges and invariants rather than exact draws.
"""

import pytest

from driverless_cdp.motion import geometry
from driverless_cdp.motion.geometry import (
    bias_0dot5,
    biased_random,
    edge_intersection,
    get_bounds,
    intersect_rectangles,
    is_point_in_polygon,
    point_in_rectangle,
    polygon_area,
    quad_from_box,
    rand_mid_loc,
    rectangle_overlap,
)

SQUARE = [(0, 0), (10, 0), (10, 10), (0, 10)]


def shifted(quad, dx, dy=0):
    return [(x + dx, y + dy) for x, y in quad]


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------


class TestBiasedRandom:
    def test_zero_spread_returns_bias(self, rng):
        """No spread means no randomness at all."""
        assert biased_random(0, bias=0.3, rng=rng) == 0.3

    def test_values_respect_border(self, rng):
        """Every draw lands inside [border, 1 - border]."""
        values = [biased_random(1.0, border=0.1, bias=0.5, rng=rng) for _ in range(500)]

        assert all(0.1 <= v <= 0.9 for v in values)
        assert max(values) - min(values) > 0.1

    def test_seeded_generators_repeat(self):
        """Two generators with the same seed give the same draws."""
        import numpy as np

        a = [biased_random(1.0, rng=np.random.default_rng(7)) for _ in range(3)]
        b = [biased_random(1.0, rng=np.random.default_rng(7)) for _ in range(3)]

        assert a == b

    def test_module_seed_controls_default_source(self):
        """seed() makes draws without an explicit generator reproducible."""
        geometry.seed(42)
        first = biased_random(1.0)
        geometry.seed(42)
        assert biased_random(1.0) == first

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"spread": -1},
            {"spread": 1, "border": 0.5},
            {"spread": 1, "bias": 1.5},
        ],
    )
    def test_invalid_arguments(self, kwargs):
        """Out-of-range arguments raise ValueError."""
        with pytest.raises(ValueError):
            biased_random(**kwargs)


class TestBias0dot5:
    def test_stays_within_offset(self, rng):
        """Draws stay within 0.5 ± max_offset."""
        values = [bias_0dot5(0.5, 0.3, rng=rng) for _ in range(500)]

        assert all(0.2 <= v <= 0.8 for v in values)

    def test_zero_offset_is_constant(self, rng):
        assert bias_0dot5(0.5, 0.0, rng=rng) == 0.5

    @pytest.mark.parametrize("strength", [0, 1, -0.2])
    def test_strength_must_be_open_unit_interval(self, strength):
        with pytest.raises(ValueError):
            bias_0dot5(strength, 0.3)


# ---------------------------------------------------------------------------
# Quads
# ---------------------------------------------------------------------------


class TestQuads:
    def test_quad_from_box(self):
        """A flat DOM.getBoxModel quad becomes four points."""
        assert quad_from_box([0, 0, 10, 0, 10, 5, 0, 5]) == [(0, 0), (10, 0), (10, 5), (0, 5)]

        with pytest.raises(ValueError):
            quad_from_box([0, 0, 10, 0])

    def test_point_in_rectangle_corners_and_centre(self):
        """a/b of 0 and 1 hit the corners, 0.5/0.5 the centre."""
        assert point_in_rectangle(SQUARE, 0, 0) == (0, 0)
        assert point_in_rectangle(SQUARE, 1, 0) == (10, 0)
        assert point_in_rectangle(SQUARE, 1, 1) == (10, 10)
        assert point_in_rectangle(SQUARE, 0.5, 0.5) == (5, 5)

    def test_point_in_rectangle_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            point_in_rectangle(SQUARE, 1.5, 0.5)

    def test_edge_intersection(self):
        """Crossing segments meet, parallel or disjoint ones do not."""
        assert edge_intersection((0, 0), (10, 10), (0, 10), (10, 0)) == pytest.approx((5, 5))
        assert edge_intersection((0, 0), (10, 0), (0, 5), (10, 5)) is None
        assert edge_intersection((0, 0), (1, 1), (5, 0), (6, -1)) is None

    def test_polygon_area_and_bounds(self):
        assert polygon_area(SQUARE) == 100
        assert get_bounds(SQUARE) == (0, 0, 10, 10)
        with pytest.raises(ValueError):
            get_bounds([])

    def test_point_in_polygon(self):
        assert is_point_in_polygon((5, 5), SQUARE)
        assert not is_point_in_polygon((15, 5), SQUARE)
        assert not is_point_in_polygon((1, 1), [(0, 0), (1, 1)])


class TestRectangleOverlap:
    def test_self_overlap_is_full(self):
        """A quad overlaps itself completely."""
        assert rectangle_overlap(SQUARE, SQUARE).percentage == pytest.approx(100)

    def test_disjoint_overlap_is_zero(self):
        overlap = rectangle_overlap(SQUARE, shifted(SQUARE, 50))

        assert overlap.percentage == 0
        assert overlap.polygon == []

    def test_half_overlap(self):
        """Shifting by half the width leaves half the area shared."""
        overlap = rectangle_overlap(SQUARE, shifted(SQUARE, 5))

        assert overlap.percentage == pytest.approx(50)
        assert overlap.fraction == pytest.approx(0.5)
        assert len(overlap.polygon) == 4

    def test_contained_quad_counts_against_smaller(self):
        """Percentage is relative to the smaller quad."""
        inner = [(2, 2), (4, 2), (4, 4), (2, 4)]

        assert rectangle_overlap(SQUARE, inner).percentage == pytest.approx(100)
        assert len(intersect_rectangles(SQUARE, inner)) == 4

    def test_zero_area_raises(self):
        with pytest.raises(ValueError):
            rectangle_overlap(SQUARE, [(0, 0), (0, 0), (0, 0), (0, 0)])


class TestRandMidLoc:
    def test_point_lands_inside_quad(self, rng):
        """Strike points stay inside the element, away from its border."""
        quad = [(100, 200), (300, 200), (300, 260), (100, 260)]

        for _ in range(200):
            x, y = rand_mid_loc(quad, rng=rng)
            assert 110 <= x <= 290
            assert 203 <= y <= 257

    def test_zero_spread_hits_bias(self, rng):
        assert rand_mid_loc(SQUARE, spread_a=0, spread_b=0, bias_a=0.2, bias_b=0.8, rng=rng) == pytest.approx((2, 8))

    def test_zero_area_raises(self, rng):
        with pytest.raises(ValueError):
            rand_mid_loc([(0, 0), (10, 0), (20, 0), (30, 0)], rng=rng)
