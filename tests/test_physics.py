"""Tests for the destruction and regrowth transforms."""

import copy

import numpy as np
import pytest

from iris_noise import NoiseField
from iris_physics import (
    BRANCH_FADE_FLOOR,
    GROWTH_BAND,
    MIN_SIZE,
    RECOIL_AMPLITUDE,
    DestructionPhysics,
    destruct_accel,
    threshold_fade,
)
from iris_shapes import FiberField, ShapeFieldGenerator
from iris_structure import FiberTable, StructureGenerator

IRIS_R = 100.0


@pytest.fixture(scope="module")
def shapes():
    noise = NoiseField(seed=21)
    structure = StructureGenerator(noise).generate()
    return ShapeFieldGenerator(noise, structure).generate()


@pytest.fixture
def physics():
    return DestructionPhysics()


def one_fiber_table(threshold: float = 0.5) -> FiberTable:
    return FiberTable(
        angle=np.array([0.0]),
        thickness=np.array([3.0]),
        is_hood=np.array([False]),
        hue_shift=np.array([0.0]),
        taper_start=np.array([0.6]),
        break_points=np.array([[0.3, 0.6, 0.8]]),
        break_threshold=np.array([threshold]),
    )


def fiber_dots(t_base) -> FiberField:
    t = np.asarray(t_base, dtype=np.float64)
    n = len(t)
    half = np.full(n, 0.5)
    return FiberField(
        id=np.arange(n, dtype=np.int64), fiber_idx=np.zeros(n, dtype=np.intp),
        a=np.zeros(n), t_base=t, scatter=np.zeros(n), wave=np.zeros(n), n=half,
        size_mod=half, hue_mod=np.zeros(n), sat_mod=half, bri_mod=half,
        alpha_mod=half, aspect_ratio=half, combined_light=np.zeros(n),
        normalized_scatter=np.zeros(n), is_highlight=np.zeros(n, dtype=np.bool_),
        is_shadow=np.zeros(n, dtype=np.bool_), fade_start=np.zeros(n),
        fade_end=np.full(n, 0.3),
    )


class TestDestructAccel:
    @pytest.mark.parametrize("sf, expected", [
        (0.0, 0.0), (0.3, 0.0), (0.65, 0.25), (1.0, 1.0), (1.5, 1.0),
    ])
    def test_quadratic_after_start(self, sf, expected):
        assert destruct_accel(sf) == pytest.approx(expected)


class TestDrift:
    def test_no_drift_before_destruction(self, physics, shapes):
        d = physics.base(shapes.base, 0.25, IRIS_R)
        assert np.all(d.dx == 0.0) and np.all(d.dy == 0.0)
        assert np.all(d.size_mult == 1.0) and np.all(d.alpha_mult == 1.0)

    def test_size_floors_when_fully_worn(self, physics, shapes):
        base = physics.base(shapes.base, 1.0, IRIS_R)
        fibers = physics.fibers(shapes.fibers, 1.0, IRIS_R)
        assert np.allclose(base.size_mult, MIN_SIZE)
        assert np.allclose(fibers.size_mult, 0.15)
        assert np.all(base.alpha_mult == 0.0)

    def test_trajectories_are_stable(self, physics, shapes):
        for sf in (0.5, 0.8, 1.0):
            first = physics.web(shapes.web, sf, IRIS_R)
            second = physics.web(shapes.web, sf, IRIS_R)
            assert np.array_equal(first.dx, second.dx)
            assert np.array_equal(first.dy, second.dy)

    def test_direction_fixed_distance_grows(self, physics, shapes):
        mid = physics.fibers(shapes.fibers, 0.6, IRIS_R)
        late = physics.fibers(shapes.fibers, 0.9, IRIS_R)
        mid_angle = np.arctan2(mid.dy, mid.dx)
        late_angle = np.arctan2(late.dy, late.dx)
        assert np.allclose(mid_angle, late_angle)
        assert np.all(np.hypot(late.dx, late.dy) > np.hypot(mid.dx, mid.dy))

    def test_fields_not_mutated(self, physics, shapes):
        before = copy.deepcopy(shapes.base)
        physics.base(shapes.base, 0.9, IRIS_R)
        for name in ("r_norm", "a", "size_mod", "cluster", "fade_start"):
            assert np.array_equal(getattr(before, name), getattr(shapes.base, name))

    def test_drift_angles_spread(self, shapes):
        angles = DestructionPhysics.base_drift_angle(shapes.base)
        assert angles.min() >= 0.0 and angles.max() < 2 * np.pi
        hist, _ = np.histogram(angles, bins=8, range=(0, 2 * np.pi))
        assert hist.min() > 0


class TestGrowth:
    def test_radius_without_sweep(self, physics):
        assert physics.growth_radius(0.0) == 1.0
        assert physics.growth_radius(0.5) == 1.0

    def test_radius_with_sweep(self, physics):
        assert physics.growth_radius(0.0, sweep=True) == 0.0
        assert physics.growth_radius(1.0, sweep=True) == pytest.approx(1.0 + GROWTH_BAND)
        assert physics.growth_radius(0.5, sweep=True) > 0.5

    def test_growth_fade_band(self):
        fade = DestructionPhysics.growth_fade([0.3, 0.45, 0.6], 0.5)
        assert fade == pytest.approx([1.0, 0.5, 0.0])

    def test_everything_inside_once_grown(self):
        fade = DestructionPhysics.growth_fade([0.0, 0.99, 1.0], 1.1)
        assert np.all(fade == 1.0)


class TestRupture:
    def test_intact_below_threshold(self):
        r = DestructionPhysics.rupture(fiber_dots([0.29, 0.32]), one_fiber_table(), 0.4, IRIS_R)
        assert not r.broken.any()
        assert np.all(r.offset == 0.0) and np.all(r.alpha_mult == 1.0)

    def test_recoil_away_from_break(self):
        r = DestructionPhysics.rupture(
            fiber_dots([0.29, 0.32, 0.45]), one_fiber_table(), 0.55, IRIS_R
        )
        assert list(r.broken) == [True, True, False]
        amplitude = RECOIL_AMPLITUDE * IRIS_R
        assert r.offset == pytest.approx([-amplitude, amplitude, 0.0])
        assert np.all(r.alpha_mult == 1.0)

    def test_collapse_fades(self):
        dots = fiber_dots([0.29, 0.61])
        late = DestructionPhysics.rupture(dots, one_fiber_table(), 0.9, IRIS_R)
        assert late.alpha_mult == pytest.approx([0.25, 0.25])
        assert np.all(late.offset == 0.0)
        gone = DestructionPhysics.rupture(dots, one_fiber_table(), 1.0, IRIS_R)
        assert gone.alpha_mult == pytest.approx([0.0, 0.0])

    def test_empty_field(self):
        r = DestructionPhysics.rupture(fiber_dots([]), one_fiber_table(), 1.0, IRIS_R)
        assert len(r.offset) == 0 and len(r.broken) == 0


class TestThresholdFades:
    def test_threshold_fade_linear(self):
        assert threshold_fade([0.5, 0.9], 0.75) == pytest.approx([0.5, 1.0])
        assert threshold_fade([0.5, 0.9], 1.0) == pytest.approx([0.0, 0.0])

    def test_pad_fade_reaches_zero(self):
        assert DestructionPhysics.pad_fade([0.6], 1.0) == pytest.approx([0.0])

    def test_branch_fade_keeps_floor(self):
        fade = DestructionPhysics.branch_fade([0.5, 0.95], 1.0)
        assert fade == pytest.approx([BRANCH_FADE_FLOOR, BRANCH_FADE_FLOOR])


class TestWindowFade:
    def test_window(self, physics):
        fade = physics.window_fade([0.2, 0.2, 0.2], [0.4, 0.4, 0.4], 0.1)
        assert np.all(fade == 0.0)
        assert physics.window_fade([0.2], [0.4], 0.5) == pytest.approx([1.0])

    def test_ease_out_inside_window(self, physics):
        mid = physics.window_fade([0.2], [0.4], 0.3)[0]
        assert 0.5 < mid < 1.0
