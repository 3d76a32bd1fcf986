"""Tests for shape population synthesis."""

import numpy as np
import pytest

from iris_noise import TWO_PI, NoiseField
from iris_pathways import BasePathway, FiberPathway, WebPathway
from iris_shapes import (
    BASE_CLUSTER_CUTOFF,
    N_BASE_CANDIDATES,
    N_COLLARETTE_RING,
    N_FURROW_PER_RING,
    N_WEB,
    SHAPES_PER_FIBER_THICKNESS,
    ShapeFieldGenerator,
    amber_membership,
)
from iris_structure import AmberPatch, StructureGenerator


@pytest.fixture(scope="module")
def generated():
    noise = NoiseField(seed=7)
    structure = StructureGenerator(noise).generate()
    return structure, ShapeFieldGenerator(noise, structure).generate()


def fade_windows_are_valid(field, extra):
    assert np.all(field.fade_start >= 0.0)
    assert np.all(field.fade_start <= 0.3)
    width = field.fade_end - field.fade_start
    assert np.all(width >= 0.2 - 1e-12)
    assert np.all(width <= 0.2 + extra + 1e-12)


class TestBase:
    def test_cluster_cutoff(self, generated):
        _, shapes = generated
        assert shapes.base.cluster.min() >= BASE_CLUSTER_CUTOFF
        # about three in four candidates survive
        assert 0.65 * N_BASE_CANDIDATES < len(shapes.base) < 0.85 * N_BASE_CANDIDATES

    def test_ids_are_dense(self, generated):
        _, shapes = generated
        assert np.array_equal(shapes.base.id, np.arange(len(shapes.base)))

    def test_fade_windows(self, generated):
        _, shapes = generated
        fade_windows_are_valid(shapes.base, 0.2)

    def test_highlight_and_shadow_exclusive(self, generated):
        _, shapes = generated
        base = shapes.base
        assert not np.any(base.is_highlight & base.is_shadow)
        assert base.is_highlight.any() and base.is_shadow.any()

    def test_ridge_proximity_bounded(self, generated):
        _, shapes = generated
        assert shapes.base.ridge_proximity.min() >= 0.0
        assert shapes.base.ridge_proximity.max() <= 1.0

    def test_amber_flags_consistent(self, generated):
        _, shapes = generated
        base = shapes.base
        assert np.all(base.amber_intensity[~base.in_amber] == 0.0)
        assert np.all(base.amber_intensity >= 0.0)
        assert base.in_amber.any()

    def test_positions_in_unit_disc(self, generated):
        _, shapes = generated
        assert shapes.base.r_norm.min() >= 0.0 and shapes.base.r_norm.max() < 1.0
        assert shapes.base.a.min() >= 0.0 and shapes.base.a.max() < TWO_PI


class TestFibers:
    def test_count_follows_thickness(self, generated):
        structure, shapes = generated
        expected = sum(int(s.thickness * SHAPES_PER_FIBER_THICKNESS) for s in structure.fibers)
        assert len(shapes.fibers) == expected

    def test_fiber_index_points_into_structure(self, generated):
        structure, shapes = generated
        idx = shapes.fibers.fiber_idx
        assert idx.min() >= 0 and idx.max() < len(structure.fibers)
        assert np.allclose(shapes.fibers.a, structure.fiber_table.angle[idx])

    def test_hood_fibers_carry_more_dots(self, generated):
        structure, shapes = generated
        counts = np.bincount(shapes.fibers.fiber_idx, minlength=len(structure.fibers))
        hoods = structure.fiber_table.is_hood
        assert counts[hoods].min() > counts[~hoods].max()

    def test_lighting_classes(self, generated):
        _, shapes = generated
        f = shapes.fibers
        assert not np.any(f.is_highlight & f.is_shadow)
        assert np.all(np.abs(f.normalized_scatter) <= 0.5)

    def test_fade_windows(self, generated):
        _, shapes = generated
        fade_windows_are_valid(shapes.fibers, 0.15)


class TestOtherFamilies:
    def test_web(self, generated):
        _, shapes = generated
        assert len(shapes.web) == N_WEB
        assert np.all(np.abs(shapes.web.scatter) <= 0.01)
        fade_windows_are_valid(shapes.web, 0.15)

    def test_furrows_ring_each_radius(self, generated):
        structure, shapes = generated
        assert len(shapes.furrows.a) == N_FURROW_PER_RING * len(structure.furrow_radii)
        assert set(np.unique(shapes.furrows.r_norm)) == set(structure.furrow_radii)

    def test_collarette(self, generated):
        _, shapes = generated
        assert len(shapes.collarette.a) == N_COLLARETTE_RING
        assert shapes.collarette.jag_noise.max() < 0.025

    def test_branch_dots_follow_branches(self, generated):
        structure, shapes = generated
        expected = sum(int(b.thickness * b.length * 80) for b in structure.branches)
        assert len(shapes.branches.t_base) == expected
        assert not np.any(shapes.branches.is_highlight & shapes.branches.is_shadow)
        th = shapes.branches.fade_threshold
        assert th.min() >= 0.5 and th.max() <= 0.95

    def test_fuchs_crypts_are_ring_crypts(self, generated):
        structure, shapes = generated
        ring = sum(1 for c in structure.crypts if c.is_collarette)
        assert int(shapes.crypts.is_fuchs.sum()) == ring
        assert len(shapes.crypts.a) == len(structure.crypts)

    def test_total(self, generated):
        _, shapes = generated
        assert shapes.total() > len(shapes.base) + len(shapes.fibers) + len(shapes.web)

    def test_unknown_family(self, generated):
        _, shapes = generated
        with pytest.raises(ValueError):
            shapes.family("pads")

    def test_family_lookup(self, generated):
        _, shapes = generated
        assert shapes.family("base") is shapes.base
        assert shapes.family("fiber") is shapes.fibers
        assert shapes.family("web") is shapes.web


class TestAssign:
    def test_base_assign_copies_pathway(self):
        noise = NoiseField(seed=3)
        structure = StructureGenerator(noise).generate()
        base = ShapeFieldGenerator(noise, structure).base()
        p = BasePathway(r_norm=0.42, a=1.5, size_mod=0.3, hue_mod=-2.0,
                        aspect_ratio=0.8, fade_start=0.6, fade_end=0.9, cluster=0.5)
        before_id = base.id[4]
        base.assign(4, p)
        assert base.r_norm[4] == 0.42
        assert base.a[4] == 1.5
        assert base.fade_start[4] == 0.6
        assert base.fade_end[4] == 0.9
        assert base.cluster[4] == 0.5
        assert base.id[4] == before_id

    def test_fiber_and_web_assign(self):
        noise = NoiseField(seed=3)
        structure = StructureGenerator(noise).generate()
        gen = ShapeFieldGenerator(noise, structure)
        fibers, web = gen.fibers(), gen.web()
        fiber_idx = fibers.fiber_idx[0]
        fibers.assign(0, FiberPathway(t_base=0.25, a=2.0, scatter=0.1, size_mod=0.5,
                                      hue_mod=1.0, fade_start=0.7, fade_end=0.95))
        assert fibers.t_base[0] == 0.25
        assert fibers.fade_end[0] == 0.95
        assert fibers.fiber_idx[0] == fiber_idx
        web.assign(9, WebPathway(t_base=0.5, a=3.0, scatter=0.004, size_mod=0.2,
                                 hue_mod=0.0, fade_start=0.4, fade_end=0.65))
        assert web.a[9] == 3.0
        assert web.fade_start[9] == 0.4


class TestAmberMembership:
    PATCH = AmberPatch(base_angle=0.0, extent=0.8, width=0.1, intensity=1.0, taper=0.5)

    def test_intensity_profile(self):
        inside, intensity = amber_membership(np.array([0.4]), np.array([0.0]), (self.PATCH,))
        assert inside[0]
        assert intensity[0] == pytest.approx(0.5 ** 0.5)

    def test_outside_patch(self):
        inside, intensity = amber_membership(
            np.array([0.9, 0.4]), np.array([0.0, 0.5]), (self.PATCH,)
        )
        assert not inside.any()
        assert np.all(intensity == 0.0)

    def test_wraps_across_zero(self):
        inside, _ = amber_membership(np.array([0.2]), np.array([TWO_PI - 0.05]), (self.PATCH,))
        assert inside[0]

    def test_strongest_patch_wins(self):
        weak = AmberPatch(base_angle=0.0, extent=0.8, width=0.1, intensity=0.3, taper=0.5)
        _, intensity = amber_membership(np.array([0.4]), np.array([0.0]), (weak, self.PATCH))
        assert intensity[0] == pytest.approx(0.5 ** 0.5)
