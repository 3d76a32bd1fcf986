"""
Anatomical skeleton of one generation of the eye.

Everything here is drawn once when a generation starts and then only read:
fiber seeds (with hood fibers and staggered break thresholds), crypts,
furrow radii, collarette branches, pupillary nubs, edge-wobble tables,
amber patches and raised tissue pads. Shapes that belong to an element
look its parameters up at draw time; they never own them.

Also owns the eye-colour palette table and the rule that picks a
perceptibly different colour every generation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from iris_noise import TWO_PI, NoiseField, lerp

# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

N_FIBERS: int = 50
N_CRYPTS: int = 30
N_FURROWS: int = 4
N_NUBS: int = 45
WOBBLE_SAMPLES: int = 64

# Anatomical proportions (fractions of iris radius)
COLLARETTE_RATIO: float = 0.38
LIMBAL_WIDTH: float = 0.06
PUPILLARY_RUFF_WIDTH: float = 0.025

# Fixed side-light direction (radians) and strength
LIGHT_ANGLE: float = -math.pi * 0.35
LIGHT_INTENSITY: float = 0.9

# Palette selection
PALETTE_RETRIES: int = 10
MIN_HUE_SEPARATION: float = 40.0


# ═══════════════════════════════════════════════════════════════════════
#  Eye colours
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class EyeColor:
    """A named hue triple: outer iris, pupillary zone, mid tones."""
    name: str
    base: float
    secondary: float
    tertiary: float


EYE_COLORS: tuple[EyeColor, ...] = (
    EyeColor("hazel",  95, 28, 40),     # green-brown
    EyeColor("blue",   210, 200, 220),  # ice blue
    EyeColor("green",  120, 45, 80),    # forest green
    EyeColor("brown",  30, 20, 35),     # warm brown
    EyeColor("amber",  40, 25, 45),     # golden amber
    EyeColor("gray",   200, 180, 210),  # steel gray
    EyeColor("violet", 270, 280, 260),  # rare violet
    EyeColor("honey",  45, 35, 50),     # honey gold
    EyeColor("olive",  75, 40, 60),     # olive green
    EyeColor("teal",   175, 165, 180),  # teal/aqua
)


@dataclass(frozen=True)
class Palette:
    """The colour in use for one generation (table entry plus jitter)."""
    index: int
    name: str
    hue_base: float
    hue_secondary: float
    hue_tertiary: float


DEFAULT_PALETTE: Palette = Palette(0, "hazel", 95.0, 28.0, 40.0)


def hue_distance(a: float, b: float) -> float:
    """Shortest distance between two hues on the 360° wheel."""
    d = abs(a - b) % 360.0
    return min(d, 360.0 - d)


def _rejects(candidate: int, last_index: int) -> bool:
    if last_index < 0:
        return False
    if candidate == last_index:
        return True
    return hue_distance(
        EYE_COLORS[candidate].base, EYE_COLORS[last_index].base
    ) < MIN_HUE_SEPARATION


def select_palette(
    noise: NoiseField, last_index: int = -1, attempts: int = PALETTE_RETRIES
) -> Palette:
    """Pick a colour that differs from the previous one.

    Candidates repeating the last index, or within MIN_HUE_SEPARATION of
    its base hue, are redrawn. After `attempts` draws the last candidate
    is taken as-is.
    """
    idx = noise.integers(0, len(EYE_COLORS))
    tries = 1
    while tries < attempts and _rejects(idx, last_index):
        idx = noise.integers(0, len(EYE_COLORS))
        tries += 1

    color = EYE_COLORS[idx]
    return Palette(
        index=idx,
        name=color.name,
        hue_base=color.base + noise.uniform(-10, 10),
        hue_secondary=color.secondary + noise.uniform(-8, 8),
        hue_tertiary=color.tertiary + noise.uniform(-8, 8),
    )


# ═══════════════════════════════════════════════════════════════════════
#  Structure elements
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FiberSeed:
    angle_offset: float
    thickness: float
    is_hood: bool
    hue_shift: float
    wave_freq: float
    wave_amp: float
    taper_start: float
    break_points: tuple[float, float, float]
    break_threshold: float  # fatigue at which this fiber starts to rupture


@dataclass(frozen=True)
class Crypt:
    angle: float
    r_norm: float
    size: float
    depth: float
    is_collarette: bool


@dataclass(frozen=True)
class CollaretteBranch:
    base_angle: float
    length: float
    thickness: float
    hue_shift: float
    glow: float
    jagged: float


@dataclass(frozen=True)
class PupillaryNub:
    angle: float
    size: float
    offset: float


@dataclass(frozen=True)
class AmberPatch:
    base_angle: float
    extent: float     # radial reach (r_norm)
    width: float      # angular half-width (radians)
    intensity: float
    taper: float      # radial falloff exponent


@dataclass(frozen=True)
class ConvexPad:
    angle: float
    r_norm: float
    size: float
    height: float
    elongation: float
    orientation: float
    fade_threshold: float


@dataclass
class FiberTable:
    """Per-fiber parameters as arrays, indexed by a shape's fiber_idx."""
    angle: NDArray[np.float64]
    thickness: NDArray[np.float64]
    is_hood: NDArray[np.bool_]
    hue_shift: NDArray[np.float64]
    taper_start: NDArray[np.float64]
    break_points: NDArray[np.float64]     # (n_fibers, 3)
    break_threshold: NDArray[np.float64]

    @classmethod
    def from_seeds(cls, seeds: tuple[FiberSeed, ...]) -> FiberTable:
        n = len(seeds)
        return cls(
            angle=np.array(
                [i / n * TWO_PI + s.angle_offset for i, s in enumerate(seeds)]
            ),
            thickness=np.array([s.thickness for s in seeds]),
            is_hood=np.array([s.is_hood for s in seeds], dtype=np.bool_),
            hue_shift=np.array([s.hue_shift for s in seeds]),
            taper_start=np.array([s.taper_start for s in seeds]),
            break_points=np.array([s.break_points for s in seeds]).reshape(n, 3),
            break_threshold=np.array([s.break_threshold for s in seeds]),
        )


@dataclass
class PadTable:
    angle: NDArray[np.float64]
    r_norm: NDArray[np.float64]
    size: NDArray[np.float64]
    height: NDArray[np.float64]
    elongation: NDArray[np.float64]
    orientation: NDArray[np.float64]
    fade_threshold: NDArray[np.float64]

    @classmethod
    def from_pads(cls, pads: tuple[ConvexPad, ...]) -> PadTable:
        def col(name: str) -> NDArray[np.float64]:
            return np.array([getattr(p, name) for p in pads], dtype=np.float64)
        return cls(
            angle=col("angle"),
            r_norm=col("r_norm"),
            size=col("size"),
            height=col("height"),
            elongation=col("elongation"),
            orientation=col("orientation"),
            fade_threshold=col("fade_threshold"),
        )


@dataclass
class BranchTable:
    """Per-branch geometry, indexed by a branch shape's branch_idx."""
    base_angle: NDArray[np.float64]
    length: NDArray[np.float64]

    @classmethod
    def from_branches(cls, branches: tuple[CollaretteBranch, ...]) -> BranchTable:
        return cls(
            base_angle=np.array([b.base_angle for b in branches], dtype=np.float64),
            length=np.array([b.length for b in branches], dtype=np.float64),
        )


@dataclass
class IrisStructure:
    """All per-generation anatomical parameters."""
    fibers: tuple[FiberSeed, ...]
    crypts: tuple[Crypt, ...]
    furrow_radii: tuple[float, ...]
    branches: tuple[CollaretteBranch, ...]
    nubs: tuple[PupillaryNub, ...]
    pupil_wobble: NDArray[np.float64]
    iris_wobble: NDArray[np.float64]
    amber_patches: tuple[AmberPatch, ...]
    pads: tuple[ConvexPad, ...]
    fiber_table: FiberTable = field(init=False)
    pad_table: PadTable = field(init=False)
    branch_table: BranchTable = field(init=False)

    def __post_init__(self) -> None:
        self.fiber_table = FiberTable.from_seeds(self.fibers)
        self.pad_table = PadTable.from_pads(self.pads)
        self.branch_table = BranchTable.from_branches(self.branches)

    @property
    def hood_indices(self) -> list[int]:
        return [i for i, s in enumerate(self.fibers) if s.is_hood]


def wobble_at(table: NDArray[np.float64], angle):
    """Look up an edge-wobble factor for an angle (scalar or array)."""
    n = len(table)
    idx = np.floor(np.mod(angle, TWO_PI) / TWO_PI * n).astype(np.intp) % n
    return table[idx]


# ═══════════════════════════════════════════════════════════════════════
#  Generator
# ═══════════════════════════════════════════════════════════════════════

class StructureGenerator:
    """Builds an IrisStructure from the current state of a NoiseField.

    Each element population has its own method so it can be inspected on
    its own; generate() runs them all in a fixed order.
    """

    def __init__(self, noise: NoiseField) -> None:
        self.noise = noise

    def generate(self) -> IrisStructure:
        return IrisStructure(
            fibers=self.fibers(),
            crypts=self.crypts(),
            furrow_radii=self.furrow_radii(),
            branches=self.branches(),
            nubs=self.nubs(),
            pupil_wobble=self.pupil_wobble(),
            iris_wobble=self.iris_wobble(),
            amber_patches=self.amber_patches(),
            pads=self.pads(),
        )

    # ── Fibers ──────────────────────────────────────────────────────

    def fibers(self, n: int = N_FIBERS) -> tuple[FiberSeed, ...]:
        """Radial muscle fibers; every 10-13th one is a thick hood fiber.

        The first one or two hoods after the first are packed closer
        (6-8 fibers apart) so convergence zones come out irregular.
        """
        rnd = self.noise
        next_hood = rnd.integers(10, 14)
        special_hoods = rnd.integers(1, 3)
        hood_count = 0

        seeds: list[FiberSeed] = []
        for i in range(n):
            is_hood = i == next_hood
            if is_hood:
                hood_count += 1
                if hood_count <= special_hoods:
                    next_hood = i + rnd.integers(6, 9)
                else:
                    next_hood = i + rnd.integers(10, 14)

            thick_type = rnd.random()
            if is_hood:
                thickness = rnd.uniform(18, 28)
            elif thick_type < 0.4:
                thickness = rnd.uniform(1.5, 3)
            elif thick_type < 0.8:
                thickness = rnd.uniform(3, 5)
            else:
                thickness = rnd.uniform(5, 8)

            break_threshold = rnd.uniform(0.15, 0.85)
            seeds.append(FiberSeed(
                angle_offset=rnd.uniform(-0.02, 0.02),
                thickness=thickness,
                is_hood=is_hood,
                hue_shift=rnd.uniform(-12, 12),
                wave_freq=rnd.uniform(4, 10),
                wave_amp=rnd.uniform(0.008, 0.02) if is_hood else rnd.uniform(0.015, 0.04),
                taper_start=rnd.uniform(0.5, 0.8),
                break_points=(
                    rnd.uniform(0.2, 0.4), rnd.uniform(0.5, 0.7), rnd.uniform(0.75, 0.9),
                ),
                break_threshold=break_threshold,
            ))
        return tuple(seeds)

    # ── Crypts ──────────────────────────────────────────────────────

    def crypts(self) -> tuple[Crypt, ...]:
        """A jittered ring of crypts at the collarette plus a scattered set."""
        rnd = self.noise
        out: list[Crypt] = []

        n_ring = 30 + rnd.integers(0, 15)
        for i in range(n_ring):
            out.append(Crypt(
                angle=(i / n_ring) * TWO_PI + rnd.uniform(-0.08, 0.08),
                r_norm=rnd.uniform(0.32, 0.48),
                size=rnd.uniform(0.015, 0.04),
                depth=rnd.uniform(0.5, 1.0),
                is_collarette=True,
            ))

        n_scattered = N_CRYPTS + rnd.integers(0, 30)
        for _ in range(n_scattered):
            cluster_angle = rnd.uniform(0, TWO_PI)
            out.append(Crypt(
                angle=cluster_angle + (rnd.random() - 0.5) * 0.4,
                r_norm=rnd.uniform(0.2, 0.9),
                size=rnd.uniform(0.01, 0.06),
                depth=rnd.uniform(0.3, 1.0),
                is_collarette=False,
            ))
        return tuple(out)

    # ── Furrows, branches, nubs ─────────────────────────────────────

    def furrow_radii(self, n: int = N_FURROWS) -> tuple[float, ...]:
        return tuple(
            0.35 + (i / n) * 0.55 + self.noise.uniform(-0.03, 0.03) for i in range(n)
        )

    def branches(self) -> tuple[CollaretteBranch, ...]:
        """Irregular count; lengths 30% short, 40% medium, 30% long."""
        rnd = self.noise
        out: list[CollaretteBranch] = []
        for _ in range(35 + rnd.integers(0, 15)):
            base_angle = rnd.uniform(0, TWO_PI)
            length_type = rnd.random()
            if length_type < 0.3:
                length = rnd.uniform(0.1, 0.25)
            elif length_type < 0.7:
                length = rnd.uniform(0.25, 0.45)
            else:
                length = rnd.uniform(0.45, 0.7)
            out.append(CollaretteBranch(
                base_angle=base_angle,
                length=length,
                thickness=rnd.uniform(2, 10),
                hue_shift=rnd.uniform(-12, 12),
                glow=rnd.uniform(0.6, 1.0),
                jagged=rnd.uniform(0.3, 1.0),
            ))
        return tuple(out)

    def nubs(self, n: int = N_NUBS) -> tuple[PupillaryNub, ...]:
        rnd = self.noise
        return tuple(
            PupillaryNub(
                angle=(i / n) * TWO_PI + rnd.uniform(-0.05, 0.05),
                size=rnd.uniform(0.008, 0.02),
                offset=rnd.uniform(0, 0.015),
            )
            for i in range(n)
        )

    # ── Edge wobble ─────────────────────────────────────────────────

    def pupil_wobble(self, n: int = WOBBLE_SAMPLES) -> NDArray[np.float64]:
        a = np.arange(n) / n * TWO_PI
        nz = self.noise.noise
        w1 = nz(np.cos(a) * 2, np.sin(a) * 2) * 0.08
        w2 = nz(np.cos(a * 3) + 10, np.sin(a * 3) + 10) * 0.04
        w3 = nz(np.cos(a * 7) + 20, np.sin(a * 7) + 20) * 0.02
        return 1.0 + (w1 + w2 + w3 - 0.07)

    def iris_wobble(self, n: int = WOBBLE_SAMPLES) -> NDArray[np.float64]:
        a = np.arange(n) / n * TWO_PI
        nz = self.noise.noise
        w1 = nz(np.cos(a) * 1.5 + 50, np.sin(a) * 1.5 + 50) * 0.025
        w2 = nz(np.cos(a * 5) + 60, np.sin(a * 5) + 60) * 0.01
        return 1.0 + (w1 + w2 - 0.018)

    # ── Amber patches, pads ─────────────────────────────────────────

    def amber_patches(self) -> tuple[AmberPatch, ...]:
        rnd = self.noise
        out: list[AmberPatch] = []
        for _ in range(25 + rnd.integers(0, 15)):
            base_angle = rnd.uniform(0, TWO_PI)
            extent_type = rnd.random()
            if extent_type < 0.2:
                extent = rnd.uniform(0.8, 0.98)
            elif extent_type < 0.5:
                extent = rnd.uniform(0.55, 0.8)
            else:
                extent = rnd.uniform(0.3, 0.55)
            out.append(AmberPatch(
                base_angle=base_angle,
                extent=extent,
                width=rnd.uniform(0.04, 0.18),
                intensity=rnd.uniform(0.4, 1.0),
                taper=rnd.uniform(0.3, 0.8),
            ))
        return tuple(out)

    def pads(self) -> tuple[ConvexPad, ...]:
        """Raised tissue pads; inner pads get lower fade thresholds."""
        rnd = self.noise
        out: list[ConvexPad] = []
        for _ in range(60 + rnd.integers(0, 40)):
            angle = rnd.uniform(0, TWO_PI)
            r_norm = rnd.uniform(0.2, 0.7)
            out.append(ConvexPad(
                angle=angle,
                r_norm=r_norm,
                size=rnd.uniform(0.02, 0.08),
                height=rnd.uniform(0.4, 1.0),
                elongation=rnd.uniform(0.5, 1.5),
                orientation=angle + rnd.uniform(-0.3, 0.3),
                fade_threshold=float(lerp(0.5, 0.9, r_norm)) + rnd.uniform(-0.1, 0.1),
            ))
        return tuple(out)
