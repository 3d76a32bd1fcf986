"""
Pointillist shape populations.

Each anatomical layer is a struct-of-arrays record: one numpy array per
attribute, one row per dot. Rows are never added or removed after
generation; the recyclable families (base, fiber, web) can have a row
overwritten with a new pathway through assign(), an explicit field copy.

Lighting is settled here, once. Base dots are matched to the nearest of
45 radial ridges and lit according to which flank of the ridge they sit
on; fiber dots according to which side of their fiber's ridge they fall.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from iris_noise import TWO_PI, NoiseField, wrap_angle_diff
from iris_pathways import (
    FAMILY_BASE,
    FAMILY_FIBER,
    FAMILY_WEB,
    BasePathway,
    FiberPathway,
    WebPathway,
)
from iris_structure import LIGHT_ANGLE, AmberPatch, IrisStructure

# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

N_RIDGES: int = 45
N_BASE_CANDIDATES: int = 4000
BASE_CLUSTER_CUTOFF: float = 0.25   # candidates below this cluster value are dropped
SHAPES_PER_FIBER_THICKNESS: int = 45
N_WEB: int = 1200
N_FURROW_PER_RING: int = 60
N_COLLARETTE_RING: int = 400
N_LIMBAL: int = 300
N_RUFF: int = 400

# Lighting classification thresholds on combined_light
BASE_LIGHT_THRESHOLD: float = 0.1
FIBER_LIGHT_THRESHOLD: float = 0.2
BRANCH_LIGHT_THRESHOLD: float = 0.2
BRANCH_LIT_FRACTION: float = 0.35


# ═══════════════════════════════════════════════════════════════════════
#  Recyclable families
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class BaseField:
    """Stromal dots covering the whole iris."""
    id: NDArray[np.int64]
    r_norm: NDArray[np.float64]
    a: NDArray[np.float64]
    cluster: NDArray[np.float64]
    size_mod: NDArray[np.float64]
    hue_mod: NDArray[np.float64]
    aspect_ratio: NDArray[np.float64]
    ridge_proximity: NDArray[np.float64]
    depth_zone: NDArray[np.float64]
    combined_light: NDArray[np.float64]
    is_highlight: NDArray[np.bool_]
    is_shadow: NDArray[np.bool_]
    fade_start: NDArray[np.float64]
    fade_end: NDArray[np.float64]
    in_amber: NDArray[np.bool_]
    amber_intensity: NDArray[np.float64]

    def __len__(self) -> int:
        return len(self.id)

    def assign(self, index: int, p: BasePathway) -> None:
        self.r_norm[index] = p.r_norm
        self.a[index] = p.a
        self.size_mod[index] = p.size_mod
        self.hue_mod[index] = p.hue_mod
        self.aspect_ratio[index] = p.aspect_ratio
        self.fade_start[index] = p.fade_start
        self.fade_end[index] = p.fade_end
        self.cluster[index] = p.cluster


@dataclass
class FiberField:
    """Dots strung along the radial fibers; fiber_idx points into the structure."""
    id: NDArray[np.int64]
    fiber_idx: NDArray[np.intp]
    a: NDArray[np.float64]
    t_base: NDArray[np.float64]
    scatter: NDArray[np.float64]
    wave: NDArray[np.float64]
    n: NDArray[np.float64]
    size_mod: NDArray[np.float64]
    hue_mod: NDArray[np.float64]
    sat_mod: NDArray[np.float64]
    bri_mod: NDArray[np.float64]
    alpha_mod: NDArray[np.float64]
    aspect_ratio: NDArray[np.float64]
    combined_light: NDArray[np.float64]
    normalized_scatter: NDArray[np.float64]
    is_highlight: NDArray[np.bool_]
    is_shadow: NDArray[np.bool_]
    fade_start: NDArray[np.float64]
    fade_end: NDArray[np.float64]

    def __len__(self) -> int:
        return len(self.id)

    def assign(self, index: int, p: FiberPathway) -> None:
        self.t_base[index] = p.t_base
        self.a[index] = p.a
        self.scatter[index] = p.scatter
        self.size_mod[index] = p.size_mod
        self.hue_mod[index] = p.hue_mod
        self.fade_start[index] = p.fade_start
        self.fade_end[index] = p.fade_end


@dataclass
class WebField:
    """Fine translucent mesh between the fibers."""
    id: NDArray[np.int64]
    a: NDArray[np.float64]
    t_base: NDArray[np.float64]
    scatter: NDArray[np.float64]
    size_mod: NDArray[np.float64]
    hue_mod: NDArray[np.float64]
    sat_mod: NDArray[np.float64]
    alpha_mod: NDArray[np.float64]
    aspect_ratio: NDArray[np.float64]
    fade_start: NDArray[np.float64]
    fade_end: NDArray[np.float64]

    def __len__(self) -> int:
        return len(self.id)

    def assign(self, index: int, p: WebPathway) -> None:
        self.t_base[index] = p.t_base
        self.a[index] = p.a
        self.scatter[index] = p.scatter
        self.size_mod[index] = p.size_mod
        self.hue_mod[index] = p.hue_mod
        self.fade_start[index] = p.fade_start
        self.fade_end[index] = p.fade_end


# ═══════════════════════════════════════════════════════════════════════
#  Fixed layers
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class FurrowField:
    r_norm: NDArray[np.float64]
    a: NDArray[np.float64]
    wobble: NDArray[np.float64]
    scatter: NDArray[np.float64]
    size_mod: NDArray[np.float64]
    hue_mod: NDArray[np.float64]
    alpha_mod: NDArray[np.float64]
    aspect_ratio: NDArray[np.float64]


@dataclass
class CollaretteField:
    a: NDArray[np.float64]
    jag_noise: NDArray[np.float64]
    scatter: NDArray[np.float64]
    size_mod: NDArray[np.float64]
    hue_mod: NDArray[np.float64]
    alpha_mod: NDArray[np.float64]
    aspect_ratio: NDArray[np.float64]


@dataclass
class BranchField:
    branch_idx: NDArray[np.intp]
    t_base: NDArray[np.float64]
    scatter: NDArray[np.float64]
    size_mod: NDArray[np.float64]
    hue_mod: NDArray[np.float64]
    aspect_ratio: NDArray[np.float64]
    light_dot: NDArray[np.float64]
    is_highlight: NDArray[np.bool_]
    is_shadow: NDArray[np.bool_]
    fade_threshold: NDArray[np.float64]


@dataclass
class LimbalField:
    a: NDArray[np.float64]
    r_norm: NDArray[np.float64]
    size_mod: NDArray[np.float64]
    hue_mod: NDArray[np.float64]
    alpha_mod: NDArray[np.float64]
    aspect_ratio: NDArray[np.float64]


@dataclass
class RuffField:
    a: NDArray[np.float64]
    r_offset: NDArray[np.float64]
    size_mod: NDArray[np.float64]
    hue_mod: NDArray[np.float64]
    aspect_ratio: NDArray[np.float64]


@dataclass
class CryptField:
    a: NDArray[np.float64]
    r_norm: NDArray[np.float64]
    size: NDArray[np.float64]
    depth: NDArray[np.float64]
    wobble: NDArray[np.float64]
    is_fuchs: NDArray[np.bool_]


@dataclass
class ShapeFields:
    """Every population for one generation."""
    base: BaseField
    fibers: FiberField
    web: WebField
    furrows: FurrowField
    collarette: CollaretteField
    branches: BranchField
    limbal: LimbalField
    ruff: RuffField
    crypts: CryptField

    def family(self, name: str) -> BaseField | FiberField | WebField:
        if name == FAMILY_BASE:
            return self.base
        if name == FAMILY_FIBER:
            return self.fibers
        if name == FAMILY_WEB:
            return self.web
        raise ValueError(f"unknown shape family: {name!r}")

    def total(self) -> int:
        return (
            len(self.base) + len(self.fibers) + len(self.web)
            + len(self.furrows.a) + len(self.collarette.a) + len(self.branches.t_base)
            + len(self.limbal.a) + len(self.ruff.a) + len(self.crypts.a)
        )


# ═══════════════════════════════════════════════════════════════════════
#  Generator
# ═══════════════════════════════════════════════════════════════════════

def amber_membership(
    r_norm: NDArray[np.float64],
    a: NDArray[np.float64],
    patches: tuple[AmberPatch, ...],
) -> tuple[NDArray[np.bool_], NDArray[np.float64]]:
    """Flag and strongest intensity of the amber patches covering each dot."""
    inside_any = np.zeros(len(r_norm), dtype=np.bool_)
    intensity = np.zeros(len(r_norm), dtype=np.float64)
    for patch in patches:
        diff = wrap_angle_diff(a, patch.base_angle)
        inside = (diff < patch.width) & (r_norm < patch.extent)
        if not inside.any():
            continue
        radial = np.power(np.clip(1.0 - r_norm / patch.extent, 0.0, 1.0), patch.taper)
        angular = 1.0 - np.power(np.clip(diff / patch.width, 0.0, 1.0), 0.7)
        value = np.where(inside, patch.intensity * radial * angular, 0.0)
        inside_any |= inside
        np.maximum(intensity, value, out=intensity)
    return inside_any, intensity


class ShapeFieldGenerator:
    """Synthesises every shape population from a structure and a noise field."""

    def __init__(self, noise: NoiseField, structure: IrisStructure) -> None:
        self.noise = noise
        self.structure = structure

    def generate(self) -> ShapeFields:
        return ShapeFields(
            base=self.base(),
            fibers=self.fibers(),
            web=self.web(),
            furrows=self.furrows(),
            collarette=self.collarette(),
            branches=self.branches(),
            limbal=self.limbal(),
            ruff=self.ruff(),
            crypts=self.crypts(),
        )

    def _fade_window(self, n: int, extra: float) -> tuple[NDArray, NDArray]:
        """Staggered fade-in: start in [0, 0.3], at least 0.2 wide."""
        start = self.noise.uniform(0.0, 0.3, n)
        end = start + 0.2 + self.noise.uniform(0.0, extra, n)
        return start, end

    # ── Base ────────────────────────────────────────────────────────

    def base(self, n_candidates: int = N_BASE_CANDIDATES) -> BaseField:
        rnd = self.noise
        nz = rnd.noise
        ridges = np.arange(N_RIDGES) / N_RIDGES * TWO_PI + rnd.uniform(-0.03, 0.03, N_RIDGES)

        r_norm = rnd.random(n_candidates)
        a = rnd.uniform(0.0, TWO_PI, n_candidates)
        cluster = rnd.random(n_candidates)
        fade_start, fade_end = self._fade_window(n_candidates, 0.2)

        keep = cluster >= BASE_CLUSTER_CUTOFF
        # candidate index keys the noise lookups, so survivors keep their texture
        i = np.nonzero(keep)[0].astype(np.float64)
        r_norm, a, cluster = r_norm[keep], a[keep], cluster[keep]
        fade_start, fade_end = fade_start[keep], fade_end[keep]

        # Nearest ridge and signed offset from its centre line
        dist = wrap_angle_diff(a[:, None], ridges[None, :])
        nearest = dist.argmin(axis=1)
        min_dist = dist[np.arange(len(a)), nearest]
        ridge_angle = ridges[nearest]
        half_spacing = math.pi / N_RIDGES
        side = np.clip(np.sin(a - ridge_angle) / math.sin(half_spacing), -1.0, 1.0)
        ridge_proximity = np.clip(1.0 - min_dist / half_spacing, 0.0, 1.0)

        ridge_light = np.cos(ridge_angle - LIGHT_ANGLE)
        effective = ridge_light * side * ridge_proximity

        depth_zone = nz(r_norm * 4, a * 2) * 0.5 + 0.5
        zone_light = (depth_zone - 0.5) * np.cos(a - LIGHT_ANGLE) * 0.6
        combined = effective * 0.7 + zone_light * 0.3

        in_amber, amber_intensity = amber_membership(
            r_norm, a, self.structure.amber_patches
        )

        return BaseField(
            id=np.arange(len(a), dtype=np.int64),
            r_norm=r_norm,
            a=a,
            cluster=cluster,
            size_mod=nz(i * 0.1),
            hue_mod=(nz(i * 0.05) - 0.5) * 15,
            aspect_ratio=0.7 + nz(i * 0.15) * 0.3,
            ridge_proximity=ridge_proximity,
            depth_zone=depth_zone,
            combined_light=combined,
            is_highlight=combined > BASE_LIGHT_THRESHOLD,
            is_shadow=combined < -BASE_LIGHT_THRESHOLD,
            fade_start=fade_start,
            fade_end=fade_end,
            in_amber=in_amber,
            amber_intensity=amber_intensity,
        )

    # ── Fibers ──────────────────────────────────────────────────────

    def fibers(self) -> FiberField:
        rnd = self.noise
        nz = rnd.noise
        table = self.structure.fiber_table
        parts: dict[str, list[NDArray]] = {}

        def add(name: str, values: NDArray) -> None:
            parts.setdefault(name, []).append(values)

        for i, seed in enumerate(self.structure.fibers):
            n = int(seed.thickness * SHAPES_PER_FIBER_THICKNESS)
            if n == 0:
                continue
            a = float(table.angle[i])
            s = np.arange(n, dtype=np.float64)
            t_base = rnd.random(n)
            spread = seed.thickness * 0.8
            scatter = (rnd.random(n) - 0.5) * spread

            fiber_light = math.cos(a - LIGHT_ANGLE)
            normalized = scatter / spread
            ridge_edge = fiber_light * normalized * 2
            undulation = nz(t_base * 3, i * 0.1) - 0.5
            combined = ridge_edge * 0.8 + undulation * fiber_light * 0.4

            fade_start, fade_end = self._fade_window(n, 0.15)

            add("fiber_idx", np.full(n, i, dtype=np.intp))
            add("a", np.full(n, a))
            add("t_base", t_base)
            add("scatter", scatter)
            add("wave", np.sin(t_base * math.pi * seed.wave_freq + i * 0.5) * seed.wave_amp)
            add("n", nz(math.cos(a) * t_base * 2 + i * 0.15, math.sin(a) * t_base * 2 + 500))
            add("size_mod", nz(s * 0.3 + i * 0.1))
            add("hue_mod", (nz(s * 0.2, i * 0.1) - 0.5) * 15)
            add("sat_mod", nz(s * 0.4))
            add("bri_mod", nz(s * 0.5 + 100))
            add("alpha_mod", nz(s * 0.3))
            add("aspect_ratio", 0.6 + nz(s * 0.25, i * 0.1) * 0.4)
            add("combined_light", combined)
            add("normalized_scatter", normalized)
            add("fade_start", fade_start)
            add("fade_end", fade_end)

        cols = {k: np.concatenate(v) for k, v in parts.items()}
        combined = cols["combined_light"]
        return FiberField(
            id=np.arange(len(combined), dtype=np.int64),
            is_highlight=combined > FIBER_LIGHT_THRESHOLD,
            is_shadow=combined < -FIBER_LIGHT_THRESHOLD,
            **cols,
        )

    # ── Web ─────────────────────────────────────────────────────────

    def web(self, n: int = N_WEB) -> WebField:
        rnd = self.noise
        nz = rnd.noise
        i = np.arange(n, dtype=np.float64)
        a = rnd.uniform(0.0, TWO_PI, n)
        t_base = rnd.random(n)
        fade_start, fade_end = self._fade_window(n, 0.15)
        return WebField(
            id=np.arange(n, dtype=np.int64),
            a=a,
            t_base=t_base,
            scatter=(nz(i * 0.35) - 0.5) * 0.02,
            size_mod=nz(i * 0.2),
            hue_mod=(nz(i * 0.1) - 0.5) * 20,
            sat_mod=nz(i * 0.3),
            alpha_mod=nz(i * 0.15),
            aspect_ratio=0.7 + nz(i * 0.2) * 0.3,
            fade_start=fade_start,
            fade_end=fade_end,
        )

    # ── Rings and fringes ───────────────────────────────────────────

    def furrows(self, per_ring: int = N_FURROW_PER_RING) -> FurrowField:
        rnd = self.noise
        nz = rnd.noise
        radii = self.structure.furrow_radii
        total = per_ring * len(radii)
        i = np.tile(np.arange(per_ring, dtype=np.float64), len(radii))
        ring = np.repeat(np.arange(len(radii), dtype=np.float64), per_ring)
        r_norm = np.repeat(np.asarray(radii, dtype=np.float64), per_ring)
        return FurrowField(
            r_norm=r_norm,
            a=(i / per_ring) * TWO_PI + (nz(i * 0.2, ring) - 0.5) * 0.1,
            wobble=nz(i * 0.1, r_norm * 10 + ring) * 0.012,
            scatter=(rnd.random(total) - 0.5) * 0.008,
            size_mod=nz(i * 0.3, ring),
            hue_mod=(nz(i * 0.1) - 0.5) * 15,
            alpha_mod=nz(i * 0.2),
            aspect_ratio=rnd.uniform(0.7, 1.0, total),
        )

    def collarette(self, n: int = N_COLLARETTE_RING) -> CollaretteField:
        rnd = self.noise
        nz = rnd.noise
        i = np.arange(n, dtype=np.float64)
        a = rnd.uniform(0.0, TWO_PI, n)
        return CollaretteField(
            a=a,
            jag_noise=nz(a * 8, 200) * 0.025,
            scatter=(rnd.random(n) - 0.5) * 0.02,
            size_mod=nz(i * 0.2),
            hue_mod=(nz(i * 0.1) - 0.5) * 15,
            alpha_mod=nz(i * 0.15),
            aspect_ratio=rnd.uniform(0.7, 1.0, n),
        )

    def branches(self) -> BranchField:
        rnd = self.noise
        nz = rnd.noise
        parts: dict[str, list[NDArray]] = {}

        def add(name: str, values: NDArray) -> None:
            parts.setdefault(name, []).append(values)

        for b_idx, branch in enumerate(self.structure.branches):
            n = int(branch.thickness * branch.length * 80)
            if n == 0:
                continue
            s = np.arange(n, dtype=np.float64)
            scatter = (rnd.random(n) - 0.5) * branch.thickness * 0.5
            light_dot = math.cos(branch.base_angle - LIGHT_ANGLE)
            ridge_light = np.where(scatter > 0, light_dot, -light_dot)

            add("branch_idx", np.full(n, b_idx, dtype=np.intp))
            add("t_base", rnd.random(n))
            add("scatter", scatter)
            add("size_mod", nz(s * 0.2))
            add("hue_mod", (nz(s * 0.1) - 0.5) * 15)
            add("aspect_ratio", rnd.uniform(0.6, 0.9, n))
            add("light_dot", np.full(n, light_dot))
            add("is_highlight",
                (ridge_light > BRANCH_LIGHT_THRESHOLD) & (rnd.random(n) < BRANCH_LIT_FRACTION))
            add("is_shadow",
                (ridge_light < -BRANCH_LIGHT_THRESHOLD) & (rnd.random(n) < BRANCH_LIT_FRACTION))
            add("fade_threshold", rnd.uniform(0.5, 0.95, n))

        if not parts:
            empty_f = np.zeros(0, dtype=np.float64)
            empty_b = np.zeros(0, dtype=np.bool_)
            return BranchField(
                branch_idx=np.zeros(0, dtype=np.intp), t_base=empty_f, scatter=empty_f,
                size_mod=empty_f, hue_mod=empty_f, aspect_ratio=empty_f,
                light_dot=empty_f, is_highlight=empty_b, is_shadow=empty_b,
                fade_threshold=empty_f,
            )
        return BranchField(**{k: np.concatenate(v) for k, v in parts.items()})

    def limbal(self, n: int = N_LIMBAL) -> LimbalField:
        rnd = self.noise
        nz = rnd.noise
        i = np.arange(n, dtype=np.float64)
        return LimbalField(
            a=rnd.uniform(0.0, TWO_PI, n),
            r_norm=rnd.random(n),
            size_mod=nz(i * 0.2),
            hue_mod=(nz(i * 0.1) - 0.5) * 20,
            alpha_mod=nz(i * 0.15),
            aspect_ratio=rnd.uniform(0.8, 1.0, n),
        )

    def ruff(self, n: int = N_RUFF) -> RuffField:
        rnd = self.noise
        nz = rnd.noise
        i = np.arange(n, dtype=np.float64)
        return RuffField(
            a=rnd.uniform(0.0, TWO_PI, n),
            r_offset=rnd.random(n),
            size_mod=nz(i * 0.2),
            hue_mod=(nz(i * 0.1) - 0.5) * 15,
            aspect_ratio=rnd.uniform(0.8, 1.0, n),
        )

    def crypts(self) -> CryptField:
        """Pits at the structure's crypt positions; ring crypts run deep."""
        crypts = self.structure.crypts
        n = len(crypts)
        return CryptField(
            a=np.array([c.angle for c in crypts], dtype=np.float64),
            r_norm=np.array([c.r_norm for c in crypts], dtype=np.float64),
            size=np.array([c.size for c in crypts], dtype=np.float64),
            depth=np.array([c.depth for c in crypts], dtype=np.float64),
            wobble=self.noise.uniform(0.8, 1.2, n),
            is_fuchs=np.array([c.is_collarette for c in crypts], dtype=np.bool_),
        )
