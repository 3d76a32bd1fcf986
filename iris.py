#!/usr/bin/env python3
"""
  ◉  I R I S  ◉
  A generative eye that wears down while it is watched and heals when
  it is left alone.

  Every generation grows a new iris: radial fibers with thick hood
  fibers at the collarette, crypts, furrows, amber flecks and raised
  tissue pads, all built from thousands of small dots. Attention from a
  face detector wears it; past 30% fatigue the dots drift apart, fibers
  snap and pads collapse. Fully worn, the eye goes dark for a moment and
  grows back in a new colour.

  IrisEngine.tick(dt, sample) advances the life cycle by one frame and
  returns a RenderFrame: ordered layer batches of coloured ellipses
  (centre-relative, HSB 360/100/100, alpha 0-1), a background colour,
  the eye offset on the canvas and a HUD snapshot. Rasterising them is
  left to the caller.
"""

from __future__ import annotations

import math
from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from iris_attention import AttentionSample, AttentionSource, attention_input, face_status
from iris_lifecycle import (
    EVENT_REBUILD,
    LifecycleState,
    LifecycleStateMachine,
    StatsLogger,
)
from iris_noise import TWO_PI, AnimationCurveCache, NoiseField, clamp, lerp
from iris_pathways import Pathway, PathwayPool
from iris_physics import DestructionPhysics
from iris_shapes import ShapeFieldGenerator, ShapeFields
from iris_structure import (
    COLLARETTE_RATIO,
    DEFAULT_PALETTE,
    LIGHT_ANGLE,
    LIGHT_INTENSITY,
    LIMBAL_WIDTH,
    PUPILLARY_RUFF_WIDTH,
    IrisStructure,
    Palette,
    StructureGenerator,
    select_palette,
    wobble_at,
)

# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

# Layout (fractions)
IRIS_FRACTION: float = 0.45           # iris radius / min(canvas w, h)
PUPIL_FRACTION: float = 0.38          # relaxed pupil radius / iris radius

# Blend modes
BLEND: str = "blend"
ADD: str = "add"
MULTIPLY: str = "multiply"

# Layer names, back to front
LAYERS: tuple[str, ...] = (
    "glow", "underlay", "crypts", "base", "web", "pads", "fibers",
    "furrows", "collarette", "branches", "limbal", "ruff", "speckles", "shading",
    "pupil", "cornea",
)

# Layers vanish below this integrity
MIN_INTEGRITY: float = 0.05
CRYPT_MIN_INTEGRITY: float = 0.1
PAD_MIN_FADE: float = 0.05

# Per-tick smoothing
ATTENTION_SMOOTHING: float = 0.02
PUPIL_SMOOTHING: float = 0.03
SACCADE_SMOOTHING: float = 0.15

# Pupil response
PUPIL_RELAX: float = 0.3              # dilation when unwatched
PUPIL_FEAR: float = 0.5               # constriction under attention/proximity
PROXIMITY_FEAR: float = 0.8

# Hippus: (angular frequency, amplitude)
HIPPUS: tuple[tuple[float, float], ...] = ((2.1, 0.008), (3.7, 0.005), (0.9, 0.01))

# Saccades
SACCADE_AMPLITUDE: float = 0.015      # of iris radius, peak to peak
SACCADE_MIN_INTERVAL: float = 0.8
SACCADE_MAX_INTERVAL: float = 2.5

# Background (HSB) at zero fatigue; fades to black
BACKGROUND: tuple[float, float, float] = (220.0, 20.0, 8.0)

# Crypt diameters (of iris radius, before per-crypt size)
CRYPT_SCALE: float = 0.25
FUCHS_SCALE: float = 0.6

N_LIMBAL_RING: int = 64
N_RUFF_RING: int = 48

# Pigment granules
N_SPECKLES: int = 150
SPECKLE_MIN_INTEGRITY: float = 0.1

# Cornea reflections (distances and sizes of iris radius)
WINDOW_DISTANCE: float = 0.55
LAMP_DISTANCE: float = 0.75
GLINT_DISTANCE: float = 0.85
N_WINDOW_BLOOM: int = 9
N_LAMP_STEPS: int = 6
N_SHIMMER: int = 8


# ═══════════════════════════════════════════════════════════════════════
#  Frame types
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DrawInstruction:
    x: float
    y: float
    width: float
    height: float
    hue: float
    saturation: float
    brightness: float
    alpha: float
    blend_mode: str = BLEND


@dataclass
class DrawBatch:
    """One layer's ellipses as parallel arrays."""
    layer: str
    blend_mode: str
    x: NDArray[np.float64]
    y: NDArray[np.float64]
    width: NDArray[np.float64]
    height: NDArray[np.float64]
    hue: NDArray[np.float64]
    saturation: NDArray[np.float64]
    brightness: NDArray[np.float64]
    alpha: NDArray[np.float64]

    def __len__(self) -> int:
        return len(self.x)

    def visible(self) -> NDArray[np.bool_]:
        return (self.alpha > 0.0) & (self.width > 0.0) & (self.height > 0.0)

    def instructions(self) -> Iterator[DrawInstruction]:
        """Visible entries as records; hue wrapped into [0, 360)."""
        hue = np.mod(self.hue, 360.0)
        for i in np.flatnonzero(self.visible()):
            yield DrawInstruction(
                x=float(self.x[i]),
                y=float(self.y[i]),
                width=float(self.width[i]),
                height=float(self.height[i]),
                hue=float(hue[i]),
                saturation=float(np.clip(self.saturation[i], 0.0, 100.0)),
                brightness=float(np.clip(self.brightness[i], 0.0, 100.0)),
                alpha=float(min(1.0, self.alpha[i])),
                blend_mode=self.blend_mode,
            )


class _BatchBuilder:
    """Collects groups of ellipses (scalars broadcast) into one DrawBatch."""

    _FIELDS = ("x", "y", "width", "height", "hue", "saturation", "brightness", "alpha")

    def __init__(self, layer: str, blend_mode: str = BLEND) -> None:
        self.layer = layer
        self.blend_mode = blend_mode
        self._parts: list[list[NDArray[np.float64]]] = []

    def add(
        self,
        x: ArrayLike, y: ArrayLike, width: ArrayLike, height: ArrayLike,
        hue: ArrayLike, saturation: ArrayLike, brightness: ArrayLike, alpha: ArrayLike,
    ) -> None:
        values = np.broadcast_arrays(
            *(np.asarray(v, dtype=np.float64)
              for v in (x, y, width, height, hue, saturation, brightness, alpha))
        )
        self._parts.append([v.ravel() for v in values])

    def build(self) -> DrawBatch | None:
        if not self._parts:
            return None
        columns = {
            name: np.concatenate([part[k] for part in self._parts])
            for k, name in enumerate(self._FIELDS)
        }
        return DrawBatch(layer=self.layer, blend_mode=self.blend_mode, **columns)


@dataclass(frozen=True)
class HudStatus:
    """Read-only status for an on-screen overlay."""
    attention: float
    fatigue_percent: int
    generation_count: int
    is_rebuilding: bool
    rebuild_progress_percent: int
    face_status: str


@dataclass(frozen=True)
class RenderFrame:
    background: tuple[float, float, float]
    offset: tuple[float, float]           # canvas position of the eye centre
    batches: tuple[DrawBatch, ...]
    hud: HudStatus
    event: str = ""

    def batch(self, layer: str) -> DrawBatch | None:
        for b in self.batches:
            if b.layer == layer:
                return b
        return None

    def instructions(self) -> Iterator[DrawInstruction]:
        for b in self.batches:
            yield from b.instructions()


# ═══════════════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════════════

class IrisEngine:
    """
    Owns the life-cycle state, the current generation and the pathway
    pool, and turns one tick of elapsed time into one RenderFrame.

    Attention comes from `sample` when given, else from `source.latest()`.
    With neither, `activity` (0..1, e.g. pointer speed) can stand in.
    """

    def __init__(
        self,
        width: float,
        height: float,
        noise: NoiseField | None = None,
        source: AttentionSource | None = None,
        stats: StatsLogger | None = None,
        radial_sweep: bool = False,
    ) -> None:
        self.noise = noise if noise is not None else NoiseField()
        self.source = source
        self.stats = stats
        self.radial_sweep = radial_sweep

        self.curves = AnimationCurveCache()
        self.physics = DestructionPhysics(self.curves)
        self.machine = LifecycleStateMachine()
        self.state = LifecycleState()
        self.pool = PathwayPool(self.noise)
        self.pool.fill()

        self.time: float = 0.0
        self.tick_count: int = 0
        self.palette: Palette = DEFAULT_PALETTE
        self._last_palette_index: int = DEFAULT_PALETTE.index

        # Pupil and eye motion
        self.smooth_attention: float = 0.0
        self.smooth_pupil_r: float = 0.0
        self.pupil_r: float = 0.0
        self.saccade: tuple[float, float] = (0.0, 0.0)
        self._saccade_target: tuple[float, float] = (0.0, 0.0)
        self._saccade_timer: float = 0.0

        # Margin ring around the pupil is fixed for the life of the noise field
        i = np.arange(N_RUFF_RING, dtype=np.float64)
        self._ruff_ring_angle = i / N_RUFF_RING * TWO_PI + self.noise.noise(i * 0.3) * 0.1

        # So are the pigment granules
        i = np.arange(N_SPECKLES, dtype=np.float64)
        self._speckle_angle = self.noise.noise(i * 0.5) * TWO_PI
        self._speckle_dist = self.noise.noise(i * 0.3 + 100) * 0.85 + 0.1
        self._speckle_size = 0.5 + self.noise.noise(i * 0.2) * 1.5
        self._speckle_hue = 20 + self.noise.noise(i) * 20
        self._speckle_bri = 8 + self.noise.noise(i + 50) * 8

        self.resize(width, height)
        self.structure: IrisStructure
        self.shapes: ShapeFields
        self._generate()

    # ── Layout and generation ───────────────────────────────────────

    def resize(self, width: float, height: float) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"canvas must have positive size, got {width}x{height}")
        self.width = width
        self.height = height
        self.cx = width / 2
        self.cy = height / 2
        self.iris_r = min(width, height) * IRIS_FRACTION
        self.pupil_r_base = self.iris_r * PUPIL_FRACTION

    def _generate(self) -> None:
        """Build a fresh structure and every shape population from it."""
        self.structure = StructureGenerator(self.noise).generate()
        self.shapes = ShapeFieldGenerator(self.noise, self.structure).generate()
        nubs = self.structure.nubs
        self._nub_angle = np.array([n.angle for n in nubs], dtype=np.float64)
        self._nub_size = np.array([n.size for n in nubs], dtype=np.float64)
        self._nub_offset = np.array([n.offset for n in nubs], dtype=np.float64)

    def _new_generation(self) -> None:
        self.palette = select_palette(self.noise, self._last_palette_index)
        self._last_palette_index = self.palette.index
        self._generate()

    def reassign_shape(self, family: str, index: int) -> Pathway:
        """Recycle one base/fiber/web shape with a pooled pathway."""
        target = self.shapes.family(family)
        if not 0 <= index < len(target):
            raise IndexError(f"{family} shape index {index} out of range")
        return self.pool.reassign(target, index, family, self.state.smooth_fatigue)

    # ── Tick ────────────────────────────────────────────────────────

    def tick(
        self,
        dt: float,
        sample: AttentionSample | None = None,
        activity: float | None = None,
    ) -> RenderFrame:
        """Advance one frame. `dt` is in seconds."""
        if sample is None and self.source is not None:
            sample = self.source.latest()
        signal = attention_input(sample, activity)

        event = self.machine.advance(self.state, signal, dt)
        if event == EVENT_REBUILD:
            self._new_generation()
        self.pool.refill_step()

        self.time += dt
        self.tick_count += 1
        self._update_pupil()
        self._update_saccade(dt)

        if self.stats is not None:
            label = f"{event}:{self.palette.name}" if event == EVENT_REBUILD else event
            faces = sample.face_count if sample is not None else 0
            self.stats.log(self.tick_count, self.state, faces, label, t=self.time)

        return RenderFrame(
            background=self.background(),
            offset=(self.cx + self.saccade[0], self.cy + self.saccade[1]),
            batches=self.render_layers(),
            hud=self.hud(sample),
            event=event,
        )

    def hud(self, sample: AttentionSample | None) -> HudStatus:
        s = self.state
        return HudStatus(
            attention=s.attention,
            fatigue_percent=round(s.fatigue * 100),
            generation_count=s.generation_count,
            is_rebuilding=s.is_rebuilding,
            rebuild_progress_percent=round(s.rebuild_progress * 100) if s.is_rebuilding else 0,
            face_status=face_status(sample),
        )

    def background(self) -> tuple[float, float, float]:
        sf = clamp(self.state.smooth_fatigue, 0.0, 1.0)
        h, s, b = BACKGROUND
        return (float(lerp(h, 0.0, sf)), float(lerp(s, 0.0, sf)), float(lerp(b, 0.0, math.sqrt(sf))))

    # ── Pupil and eye motion ────────────────────────────────────────

    def target_pupil_r(self) -> float:
        if self.state.is_rebuilding:
            return self.pupil_r_base
        fear = clamp(self.smooth_attention + self.state.smooth_proximity * PROXIMITY_FEAR, 0.0, 1.0)
        relax = 1.0 - self.smooth_attention
        return self.pupil_r_base * (1.0 + relax * PUPIL_RELAX - fear * PUPIL_FEAR)

    def hippus(self) -> float:
        return 1.0 + sum(amp * self.curves.wave(freq * self.time) for freq, amp in HIPPUS)

    def _update_pupil(self) -> None:
        toward = 0.0 if self.state.is_rebuilding else self.state.attention
        self.smooth_attention = float(lerp(self.smooth_attention, toward, ATTENTION_SMOOTHING))

        target = self.target_pupil_r()
        if not math.isfinite(self.smooth_pupil_r) or self.smooth_pupil_r <= 0:
            self.smooth_pupil_r = target
        self.smooth_pupil_r = float(lerp(self.smooth_pupil_r, target, PUPIL_SMOOTHING))
        self.pupil_r = self.smooth_pupil_r * self.hippus()

    def _update_saccade(self, dt: float) -> None:
        self._saccade_timer -= dt
        if self._saccade_timer <= 0:
            reach = self.iris_r * SACCADE_AMPLITUDE
            self._saccade_target = (
                (self.noise.random() - 0.5) * reach,
                (self.noise.random() - 0.5) * reach,
            )
            self._saccade_timer = self.noise.uniform(SACCADE_MIN_INTERVAL, SACCADE_MAX_INTERVAL)
        sx, sy = self.saccade
        tx, ty = self._saccade_target
        self.saccade = (
            float(lerp(sx, tx, SACCADE_SMOOTHING)),
            float(lerp(sy, ty, SACCADE_SMOOTHING)),
        )

    # ═══════════════════════════════════════════════════════════════
    #  Layers
    # ═══════════════════════════════════════════════════════════════

    def render_layers(self) -> tuple[DrawBatch, ...]:
        """Every non-empty layer batch for the current state, back to front."""
        s = self.state
        integrity = 1.0 - s.fatigue
        window = 1.0 - s.smooth_fatigue
        pupil = self.pupil_r_base if s.is_rebuilding else self.pupil_r
        core = max(self.pupil_r, self.pupil_r_base * 0.3)
        collarette_r = core + (self.iris_r - core) * COLLARETTE_RATIO
        growth = self.physics.growth_radius(
            s.rebuild_progress if s.is_rebuilding else 1.0, self.radial_sweep
        )

        batches = (
            self._glow(pupil, integrity),
            self._underlay(pupil, integrity),
            self._crypts(pupil, integrity),
            self._base(pupil, integrity, window, growth),
            self._web(pupil, integrity, window, growth),
            self._pads(pupil, integrity),
            self._fibers(pupil, integrity, window, growth),
            self._furrows(pupil, integrity),
            self._collarette(collarette_r, integrity),
            self._branches(collarette_r, integrity),
            self._limbal(integrity),
            self._ruff(pupil, integrity),
            self._speckles(pupil, integrity),
            self._shading(integrity),
            self._pupil(),
            self._cornea(integrity),
        )
        return tuple(b for b in batches if b is not None and len(b))

    # ── Glow, underlay, shading, pupil ──────────────────────────────

    def _glow(self, pupil: float, integrity: float) -> DrawBatch | None:
        if integrity <= MIN_INTEGRITY:
            return None
        p = self.palette
        out = _BatchBuilder("glow", ADD)
        i = np.arange(5, dtype=np.float64)
        r = pupil * 1.5 + (self.iris_r - pupil) * (i / 5) * 0.6
        out.add(0.0, 0.0, r * 2, r * 2, p.hue_secondary, 40, 50, integrity * 0.15 * (1 - i / 5))
        out.add(0.0, 0.0, self.pupil_r * 3, self.pupil_r * 3, p.hue_tertiary, 40, 50, 0.06 * integrity)
        return out.build()

    def _underlay(self, pupil: float, integrity: float) -> DrawBatch | None:
        """Translucent zone discs and amber wedges beneath the dots."""
        if integrity < MIN_INTEGRITY:
            return None
        p = self.palette
        iris = self.iris_r
        coll = pupil + (iris - pupil) * COLLARETTE_RATIO
        fatigue_mod = 1.0 - (1.0 - integrity) * 0.7
        out = _BatchBuilder("underlay")
        out.add(0, 0, iris * 2, iris * 2, p.hue_base, 35, 32, 0.4 * integrity)
        out.add(0, 0, iris * 1.2, iris * 1.2, p.hue_base + 5, 42, 40, 0.4 * integrity)
        out.add(0, 0, coll * 2.2, coll * 2.2, p.hue_tertiary, 60, 60, 0.45 * integrity)
        out.add(0, 0, coll * 1.6, coll * 1.6, p.hue_secondary + 10, 30, 15, 0.4 * integrity)
        out.add(0, 0, coll * 1.4, coll * 1.4, p.hue_secondary, 45, 24 * fatigue_mod,
                0.6 * integrity * fatigue_mod)

        # Wedges as ellipses centred on the wedge, long along the radius
        wedges = [w for w in self.structure.amber_patches if w.extent > 0.5]
        if wedges:
            angle = np.array([w.base_angle for w in wedges])
            extent = np.array([w.extent for w in wedges]) * iris
            half = np.array([w.width for w in wedges])
            intensity = np.array([w.intensity for w in wedges])
            r = extent * 0.55
            out.add(np.cos(angle) * r, np.sin(angle) * r, extent,
                    2 * r * np.sin(half) + 1.0, p.hue_secondary, 45, 45,
                    0.25 * intensity * integrity)
        return out.build()

    def _shading(self, integrity: float) -> DrawBatch | None:
        out = _BatchBuilder("shading", MULTIPLY)
        d = self.pupil_r * 2.5
        out.add(0, 0, d, d, 0, 0, 40, 0.2 * integrity)
        return out.build()

    def _pupil(self) -> DrawBatch | None:
        """Black disc plus edge dots that trace the wobble table."""
        r = self.pupil_r
        if not r > 0:
            return None
        table = self.structure.pupil_wobble
        a = np.arange(len(table)) / len(table) * TWO_PI
        edge = r * table
        out = _BatchBuilder("pupil")
        core = 2 * r * float(table.min())
        out.add(0, 0, core, core, 0, 0, 0, 0.96)
        out.add(np.cos(a) * edge * 0.92, np.sin(a) * edge * 0.92,
                edge * 0.16, edge * 0.16, 0, 0, 0, 0.96)
        return out.build()

    def _cornea(self, integrity: float) -> DrawBatch | None:
        """White reflections on the tear film: window, lamp, glint and shimmer."""
        if integrity <= 0.0:
            return None
        iris = self.iris_r
        out = _BatchBuilder("cornea")

        # Window: rounded rectangles drawn as axis-aligned ellipses
        away = LIGHT_ANGLE + math.pi
        wx, wy = math.cos(away) * iris * WINDOW_DISTANCE, math.sin(away) * iris * WINDOW_DISTANCE
        t = np.arange(N_WINDOW_BLOOM - 1, -1, -1) / (N_WINDOW_BLOOM - 1)
        out.add(wx, wy, iris * 0.22 * (1 + t * 0.5), iris * 0.14 * (1 + t * 0.5),
                0, 0, 100, lerp(0.02, 0.0, t) * integrity)
        out.add(wx, wy, iris * 0.18, iris * 0.11, 0, 0, 100, 0.25 * integrity)
        out.add(wx, wy, iris * 0.14, iris * 0.08, 0, 0, 100, 0.45 * integrity)
        tilt = away + math.pi * 0.1
        nudge = iris * 0.01
        out.add(wx + nudge * math.sin(tilt), wy - nudge * math.cos(tilt),
                iris * 0.08, iris * 0.04, 0, 0, 100, 0.7 * integrity)

        # Lamp
        a = LIGHT_ANGLE + math.pi * 0.5
        t = np.arange(N_LAMP_STEPS - 1, -1, -1) / (N_LAMP_STEPS - 1)
        r = iris * 0.04 * (0.5 + t * 0.5)
        out.add(math.cos(a) * iris * LAMP_DISTANCE, math.sin(a) * iris * LAMP_DISTANCE,
                r * 2, r * 1.5, 0, 0, 100, lerp(0.35, 0.02, t) * integrity)

        # Glint
        a = LIGHT_ANGLE + math.pi * 1.3
        out.add(math.cos(a) * iris * GLINT_DISTANCE, math.sin(a) * iris * GLINT_DISTANCE,
                iris * 0.025, iris * 0.018, 0, 0, 100, 0.12 * integrity)

        # Tear film shimmer, slowly circling
        now = self.time
        shimmer = self.curves.wave(now * 3.5) * 0.02 + self.curves.wave(now * 5.7) * 0.015
        i = np.arange(N_SHIMMER, dtype=np.float64)
        a = i / N_SHIMMER * TWO_PI + now * 0.1
        dist = iris * (0.5 + self.noise.noise(i, now * 0.5) * 0.4)
        out.add(np.cos(a) * dist, np.sin(a) * dist, iris * 0.08, iris * 0.05,
                0, 0, 100, max(0.0, 0.03 + shimmer) * integrity)
        return out.build()

    # ── Crypts ──────────────────────────────────────────────────────

    def _crypts(self, pupil: float, integrity: float) -> DrawBatch | None:
        if integrity <= CRYPT_MIN_INTEGRITY:
            return None
        c = self.shapes.crypts
        iris = self.iris_r
        hue = self.palette.hue_base
        r = pupil + (iris - pupil) * c.r_norm
        x, y = np.cos(c.a) * r, np.sin(c.a) * r
        out = _BatchBuilder("crypts")

        m = ~c.is_fuchs
        size = c.size[m] * iris * CRYPT_SCALE * c.wobble[m]
        depth = c.depth[m]
        out.add(x[m], y[m], size, size * 0.85, hue - 40, 20 * integrity,
                5 * depth * integrity, 0.6 * depth * integrity)
        out.add(x[m], y[m], size * 0.5, size * 0.4, 0, 0, 3 * integrity,
                0.4 * depth * integrity)

        m = c.is_fuchs
        size = c.size[m] * iris * FUCHS_SCALE
        depth = c.depth[m]
        out.add(x[m], y[m], size, size * 0.75, hue - 50, 15 * integrity,
                4 * integrity, 0.7 * depth * integrity)
        out.add(x[m], y[m], size * 0.4, size * 0.3, 0, 0, 2 * integrity,
                0.5 * depth * integrity)
        return out.build()

    # ── Base field ──────────────────────────────────────────────────

    def _base(
        self, pupil: float, integrity: float, window: float, growth: float
    ) -> DrawBatch | None:
        if integrity < MIN_INTEGRITY:
            return None
        f = self.shapes.base
        p = self.palette
        iris = self.iris_r
        r_norm = f.r_norm

        fade = self.physics.growth_fade(1.0 - r_norm, growth)
        fade *= self.physics.window_fade(f.fade_start, f.fade_end, window)
        drift = self.physics.base(f, self.state.smooth_fatigue, iris)
        fade *= drift.alpha_mult

        base_r = lerp(pupil * 1.02, iris * 0.98, r_norm)
        x = np.cos(f.a) * base_r + drift.dx
        y = np.sin(f.a) * base_r + drift.dy
        size = lerp(1, 4, f.size_mod) * (iris / 200) * lerp(0.6, 1.1, f.cluster) * drift.size_mult

        # Zones: amber fleck, pupillary, mid, ciliary
        amber = f.in_amber & (f.amber_intensity > 0.1)
        inner = r_norm < 0.3
        mid = r_norm < 0.6
        ai = f.amber_intensity
        t_in = r_norm / 0.3
        t_mid = (r_norm - 0.3) / 0.3
        t_out = (r_norm - 0.6) / 0.4
        zones = [amber, inner, mid]
        h = np.select(zones, [
            lerp(p.hue_base, p.hue_secondary, ai * 0.8) + f.hue_mod,
            lerp(p.hue_secondary, p.hue_tertiary, t_in) + f.hue_mod,
            lerp(p.hue_tertiary, p.hue_base, t_mid) + f.hue_mod * 0.8,
        ], p.hue_base + f.hue_mod * 1.3)
        sat = np.select(zones, [
            lerp(35, 60, ai) * integrity + 15,
            lerp(60, 50, t_in) * integrity + 15,
            np.full(len(f), 45 * integrity + 12),
        ], lerp(45, 35, t_out) * integrity + 10)
        bri = np.select(zones, [
            lerp(35, 55, ai) * integrity + 18,
            lerp(40, 55, t_in) * integrity + 20,
            lerp(50, 45, t_mid) * integrity + 18,
        ], lerp(45, 25, t_out) * integrity + 12)

        # Ridge side-lighting
        light = f.combined_light * LIGHT_INTENSITY
        hi, sh = f.is_highlight, f.is_shadow
        rp = f.ridge_proximity
        bri = np.where(hi, np.minimum(100, bri * (1.4 + light * 0.7)),
                       np.where(sh, bri * (0.35 + light * 0.2), bri * (1 + light * 0.3)))
        sat = np.where(hi, sat * lerp(0.7, 0.5, rp),
                       np.where(sh, np.minimum(100, sat * 1.2), sat))
        h = np.where(hi, h - 10 * rp, np.where(sh, h + 15 * rp, h + light * 6))
        bri = bri * lerp(0.9, 1.1, f.depth_zone)

        alpha = lerp(0.15, 0.45, integrity) * lerp(0.6, 1.0, f.cluster) * fade
        out = _BatchBuilder("base")
        out.add(x, y, size, size * f.aspect_ratio, h, sat, bri, alpha)
        return out.build()

    # ── Web ─────────────────────────────────────────────────────────

    def _web(
        self, pupil: float, integrity: float, window: float, growth: float
    ) -> DrawBatch | None:
        if integrity < MIN_INTEGRITY:
            return None
        f = self.shapes.web
        p = self.palette
        iris = self.iris_r
        t = f.t_base

        fade = self.physics.growth_fade(t, growth)
        fade *= self.physics.window_fade(f.fade_start, f.fade_end, window)
        drift = self.physics.web(f, self.state.smooth_fatigue, iris)
        fade *= drift.alpha_mult

        r = lerp(pupil * 1.05, iris * 0.94, t)
        lateral = f.scatter * iris
        x = np.cos(f.a) * r - np.sin(f.a) * lateral + drift.dx
        y = np.sin(f.a) * r + np.cos(f.a) * lateral + drift.dy
        size = lerp(0.5, 1.8, f.size_mod) * (iris / 200) * drift.size_mult

        h = lerp(p.hue_secondary, p.hue_base, t) + f.hue_mod
        sat = lerp(25, 45, integrity) * lerp(0.7, 1, f.sat_mod)
        bri = lerp(35, 60, integrity) * lerp(0.8, 1.1, t)
        alpha = lerp(0.06, 0.2, integrity) * lerp(0.5, 1, f.alpha_mod) * fade

        out = _BatchBuilder("web")
        out.add(x, y, size, size * f.aspect_ratio, h, sat, bri, alpha)
        return out.build()

    # ── Convex pads ─────────────────────────────────────────────────

    def _pads(self, pupil: float, integrity: float) -> DrawBatch | None:
        """Five stacked ellipses per pad: shadow, body, mid-tone, highlight, specular."""
        if integrity < MIN_INTEGRITY:
            return None
        pad = self.structure.pad_table
        if len(pad.angle) == 0:
            return None
        p = self.palette
        iris = self.iris_r

        fade = self.physics.pad_fade(pad.fade_threshold, 1.0 - integrity)
        fade = np.where(fade < PAD_MIN_FADE, 0.0, fade)

        r = pupil + pad.r_norm * (iris - pupil)
        cx, cy = np.cos(pad.angle) * r, np.sin(pad.angle) * r
        size = pad.size * iris
        w = size * pad.elongation
        hgt = size
        lx = math.cos(LIGHT_ANGLE) * size * 0.4 * pad.height
        ly = math.sin(LIGHT_ANGLE) * size * 0.4 * pad.height
        cos_o, sin_o = np.cos(pad.orientation), np.sin(pad.orientation)

        inner = pad.r_norm < 0.35
        hue = np.where(inner, lerp(p.hue_secondary, p.hue_tertiary, pad.r_norm / 0.35),
                       lerp(p.hue_tertiary, p.hue_base, (pad.r_norm - 0.35) / 0.65))
        sat = np.where(inner, 55.0, 45.0)
        bri = np.where(inner, 50.0, 40.0)
        lit = pad.height * integrity * LIGHT_INTENSITY * fade

        out = _BatchBuilder("pads")

        def ellipse(k: float, dw: float, dh: float, h, s, b, alpha) -> None:
            # light offset is in the pad's rotated frame
            ox, oy = lx * k, ly * k
            out.add(cx + ox * cos_o - oy * sin_o, cy + ox * sin_o + oy * cos_o,
                    w * dw, hgt * dh, h, s, b, alpha)

        ellipse(-1.5, 1.2, 1.1, 0, 0, 5, 0.4 * pad.height * integrity * fade)
        ellipse(0.0, 1.0, 1.0, hue, sat * integrity, bri * integrity, 0.5 * integrity * fade)
        ellipse(0.3, 0.8, 0.75, hue - 5, sat * 0.9 * integrity, (bri + 10) * integrity,
                0.4 * integrity * fade)
        ellipse(0.8, 0.5, 0.4, hue - 10, sat * 0.5, np.minimum(100, bri + 35), 0.6 * lit)
        ellipse(1.0, 0.25, 0.2, hue - 15, sat * 0.3, np.minimum(100, bri + 50), 0.4 * lit)
        return out.build()

    # ── Fibers ──────────────────────────────────────────────────────

    def _fibers(
        self, pupil: float, integrity: float, window: float, growth: float
    ) -> DrawBatch | None:
        if integrity < MIN_INTEGRITY:
            return None
        f = self.shapes.fibers
        if len(f) == 0:
            return None
        table = self.structure.fiber_table
        p = self.palette
        iris = self.iris_r
        t = f.t_base
        hood = table.is_hood[f.fiber_idx]

        fade = self.physics.growth_fade(t, growth)
        fade *= self.physics.window_fade(f.fade_start, f.fade_end, window)
        drift = self.physics.fibers(f, self.state.smooth_fatigue, iris)
        rupture = self.physics.rupture(f, table, self.state.fatigue, iris)
        fade *= drift.alpha_mult * rupture.alpha_mult

        r = lerp(pupil * 1.03, iris * 0.96, t) + (f.n - 0.5) * iris * 0.025 + rupture.offset
        lateral = f.wave * iris + f.scatter
        x = np.cos(f.a) * r - np.sin(f.a) * lateral + drift.dx
        y = np.sin(f.a) * r + np.cos(f.a) * lateral + drift.dy

        # Size: taper at both ends, hood bulge or starburst at the collarette
        size = lerp(1, 3.5, f.size_mod) * (iris / 200) * drift.size_mult
        taper = table.taper_start[f.fiber_idx]
        size *= np.where(t > taper, lerp(1, 0.4, (t - taper) / (1 - taper)), 1.0)
        size *= np.where(t < 0.15, lerp(0.5, 1, t / 0.15), 1.0)

        coll_dist = np.abs(t - 0.4)
        coll_mod = np.where(coll_dist < 0.15, 1 - coll_dist / 0.15, 0.0)
        hood_dist = np.abs(t - 0.38)
        hood_mod = np.where(hood_dist < 0.12, 1 - hood_dist / 0.12, 0.0)
        hood_size = (
            np.where(t > 0.48, lerp(1, 0.4, (t - 0.48) / 0.12), 1.0)
            * np.where(t < 0.26, lerp(0.3, 1, (t - 0.20) / 0.08), 1.0)
            * (1 + hood_mod * 3.5)
        )
        starburst = coll_mod * (0.6 + self.noise.noise(f.a * 15) * 0.4)
        size *= np.where(hood, hood_size, 1 + starburst * 0.6)
        size *= np.where(t > 0.6, lerp(1, 0.5, (t - 0.6) / 0.4), 1.0)

        shift = table.hue_shift[f.fiber_idx]
        h = np.select(
            [t < 0.25, t < 0.5],
            [lerp(p.hue_secondary, p.hue_tertiary, t / 0.25),
             lerp(p.hue_tertiary, p.hue_base + shift, (t - 0.25) / 0.25)],
            p.hue_base + shift,
        ) + f.hue_mod

        sat = 65 * lerp(0.9, 1.1, f.sat_mod)
        bri = 70 * caldera_profile(t) * lerp(0.8, 1.2, f.bri_mod)
        bri = bri * np.where(hood, 1 + coll_mod * 0.7, 1 + coll_mod * 0.25)
        sat = sat * np.where(hood, 1 - coll_mod * 0.25, 1 - coll_mod * 0.1)

        light = f.combined_light * LIGHT_INTENSITY
        hi, sh = f.is_highlight, f.is_shadow
        bri = np.where(hi, np.minimum(100, bri * (1.5 + light * 0.6)),
                       np.where(sh, bri * (0.3 + light * 0.15), bri * (1 + light * 0.25)))
        sat = np.where(hi, sat * 0.6, np.where(sh, np.minimum(100, sat * 1.25), sat))
        h = np.where(hi, h - 10, np.where(sh, h + 12, h))

        alpha = lerp(0.2, 0.6, integrity) * lerp(0.7, 1, f.alpha_mod) * fade
        out = _BatchBuilder("fibers")
        out.add(x, y, size, size * f.aspect_ratio, h, sat, bri, alpha)
        return out.build()

    # ── Furrows, collarette, branches ───────────────────────────────

    def _furrows(self, pupil: float, integrity: float) -> DrawBatch | None:
        if integrity < MIN_INTEGRITY:
            return None
        f = self.shapes.furrows
        iris = self.iris_r
        r = pupil + f.r_norm * (iris - pupil) + (f.wobble + f.scatter) * iris
        size = lerp(1, 3, f.size_mod) * (iris / 200)
        out = _BatchBuilder("furrows")
        out.add(np.cos(f.a) * r, np.sin(f.a) * r, size, size * f.aspect_ratio,
                self.palette.hue_base - 15 + f.hue_mod, 25 * integrity,
                lerp(20, 35, integrity),
                lerp(0.1, 0.3, integrity) * lerp(0.6, 1, f.alpha_mod))
        return out.build()

    def _collarette(self, collarette_r: float, integrity: float) -> DrawBatch | None:
        if integrity < MIN_INTEGRITY:
            return None
        f = self.shapes.collarette
        iris = self.iris_r
        r = collarette_r + (f.jag_noise + f.scatter) * iris
        size = lerp(1, 3, f.size_mod) * (iris / 200)
        out = _BatchBuilder("collarette")
        out.add(np.cos(f.a) * r, np.sin(f.a) * r, size, size * f.aspect_ratio,
                self.palette.hue_secondary + f.hue_mod,
                lerp(45, 65, integrity), lerp(35, 55, integrity),
                lerp(0.2, 0.5, integrity) * lerp(0.6, 1, f.alpha_mod))
        return out.build()

    def _branches(self, collarette_r: float, integrity: float) -> DrawBatch | None:
        if integrity < MIN_INTEGRITY:
            return None
        f = self.shapes.branches
        if len(f.t_base) == 0:
            return None
        table = self.structure.branch_table
        p = self.palette
        iris = self.iris_r
        t = f.t_base
        angle = table.base_angle[f.branch_idx]
        length = table.length[f.branch_idx]

        fade = self.physics.branch_fade(f.fade_threshold, 1.0 - integrity)
        start_r = collarette_r * 0.95
        end_r = collarette_r + length * (iris - collarette_r) * 0.6
        r = start_r + (end_r - start_r) * t
        thick = lerp(1, 0.2, t * t)
        lateral = f.scatter * thick
        x = np.cos(angle) * r - np.sin(angle) * lateral
        y = np.sin(angle) * r + np.cos(angle) * lateral
        size = lerp(1, 2.5, f.size_mod) * (iris / 200) * thick

        h = lerp(p.hue_tertiary, p.hue_base, t * 0.7) + f.hue_mod
        sat = lerp(40, 55, integrity) * lerp(1, 0.7, t)
        bri = lerp(40, 65, integrity) * lerp(1, 0.5, t)
        hi, sh = f.is_highlight, f.is_shadow
        bri = np.where(hi, np.minimum(100, bri * (1.3 + LIGHT_INTENSITY * 0.4)),
                       np.where(sh, bri * (0.45 - LIGHT_INTENSITY * 0.1),
                                bri * (1 + f.light_dot * LIGHT_INTENSITY * 0.2)))
        sat = np.where(hi, sat * 0.7, np.where(sh, np.minimum(100, sat * 1.15), sat))
        h = np.where(hi, h - 6, np.where(sh, h + 8, h))

        alpha = lerp(0.15, 0.45, integrity) * lerp(1, 0.4, t) * fade
        out = _BatchBuilder("branches")
        out.add(x, y, size, size * f.aspect_ratio, h, sat, bri, alpha)
        return out.build()

    # ── Limbal ring, pupillary ruff ─────────────────────────────────

    def _limbal(self, integrity: float) -> DrawBatch | None:
        if integrity < MIN_INTEGRITY:
            return None
        f = self.shapes.limbal
        iris = self.iris_r
        hue = self.palette.hue_base
        wobble = self.structure.iris_wobble
        ring_w = iris * LIMBAL_WIDTH
        out = _BatchBuilder("limbal")

        a = np.arange(N_LIMBAL_RING) / N_LIMBAL_RING * TWO_PI
        r = iris * wobble_at(wobble, a) * 0.99
        out.add(np.cos(a) * r, np.sin(a) * r, ring_w * 1.5, ring_w * 1.2,
                hue - 20, 15 * integrity, 8 * integrity, 0.6 * integrity)

        r = iris * wobble_at(wobble, f.a) - ring_w * f.r_norm
        size = lerp(0.8, 2.5, f.r_norm) * (iris / 200) * lerp(0.8, 1.2, f.size_mod)
        out.add(np.cos(f.a) * r, np.sin(f.a) * r, size, size * f.aspect_ratio,
                hue - 35 + f.hue_mod, (15 + f.r_norm * 10) * integrity,
                lerp(5, 18, f.r_norm) * integrity,
                lerp(0.7, 0.3, f.r_norm) * lerp(0.7, 1, f.alpha_mod) * integrity)
        return out.build()

    def _ruff(self, pupil: float, integrity: float) -> DrawBatch | None:
        if integrity < MIN_INTEGRITY:
            return None
        f = self.shapes.ruff
        iris = self.iris_r
        ruff_w = iris * PUPILLARY_RUFF_WIDTH * 1.5
        out = _BatchBuilder("ruff")

        a = self._ruff_ring_angle
        r = pupil * wobble_at(self.structure.pupil_wobble, a) * 1.02
        out.add(np.cos(a) * r, np.sin(a) * r, ruff_w * 0.8, ruff_w * 0.6,
                25, 50 * integrity, 12 * integrity, 0.8 * integrity)

        r = pupil + f.r_offset * ruff_w
        size = lerp(0.6, 2, f.size_mod) * (iris / 200)
        out.add(np.cos(f.a) * r, np.sin(f.a) * r, size, size * f.aspect_ratio,
                25 + f.hue_mod, 55 * integrity, lerp(8, 20, f.r_offset) * integrity,
                lerp(0.8, 0.5, f.r_offset) * integrity)

        r = pupil + self._nub_offset * iris + ruff_w * 0.6
        size = self._nub_size * iris
        out.add(np.cos(self._nub_angle) * r, np.sin(self._nub_angle) * r, size, size,
                self.palette.hue_secondary - 5, 35 * integrity + 10, 18, 0.7)
        return out.build()

    def _speckles(self, pupil: float, integrity: float) -> DrawBatch | None:
        """Dark melanin granules scattered over the stroma."""
        if integrity <= SPECKLE_MIN_INTEGRITY:
            return None
        iris = self.iris_r
        r = pupil + (iris - pupil) * self._speckle_dist
        size = self._speckle_size * (iris / 200)
        out = _BatchBuilder("speckles")
        out.add(np.cos(self._speckle_angle) * r, np.sin(self._speckle_angle) * r,
                size, size * 0.8, self._speckle_hue, 40, self._speckle_bri, 0.4 * integrity)
        return out.build()


# ═══════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════

def caldera_profile(t: NDArray[np.float64]) -> NDArray[np.float64]:
    """Fiber brightness along the radius: dark crater floor, bright collarette rim."""
    rim = (t - 0.38) / 0.10
    peak = np.where(rim < 0.5, rim * 2, 2 - rim * 2)
    return np.select(
        [t < 0.22, t < 0.32, t < 0.38, t < 0.48, t < 0.55],
        [
            lerp(0.3, 0.45, t / 0.22),
            lerp(0.45, 0.6, (t - 0.22) / 0.10),
            lerp(0.6, 1.1, (t - 0.32) / 0.06),
            lerp(1.1, 1.5, peak),
            lerp(1.3, 0.95, (t - 0.48) / 0.07),
        ],
        lerp(0.95, 0.5, (t - 0.55) / 0.45),
    )
