"""
Per-frame destruction and regrowth transforms.

Nothing here mutates a shape field. Every call reads static per-shape
attributes plus the current fatigue and returns fresh arrays (offsets,
size and alpha multipliers) that the engine applies while colouring a
layer. Recomputing from the same inputs gives bit-identical results, so
each dot flies off along the same trajectory on every frame.

Mechanisms:
  growth sweep      only shapes within the growth radius (measured from
                    the outer edge) are drawn while rebuilding
  drift             past 30% smoothed fatigue, dots drift along a hashed
                    direction, shrink and fade with quadratic acceleration
  fiber rupture     per-fiber break threshold on raw fatigue; dots near a
                    break point recoil, then collapse
  threshold fades   pads and branches fade linearly past their thresholds
  fade windows      staggered ease-out fade-in against integrity
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from iris_noise import TWO_PI, AnimationCurveCache
from iris_shapes import BaseField, FiberField, WebField
from iris_structure import FiberTable

# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

GOLDEN: float = 1.618

# Drift
DESTRUCT_START: float = 0.3    # smoothed fatigue at which drift begins
BASE_SHRINK: float = 0.9
FIBER_SHRINK: float = 0.85
WEB_SHRINK: float = 0.9
MIN_SIZE: float = 0.1

# Growth sweep
GROWTH_BAND: float = 0.1       # fade band at the growth edge (radius units)

# Fiber rupture
BREAK_REACH: float = 0.08      # t distance from a break point that is affected
RECOIL_END: float = 0.2        # break progress where recoil turns to collapse
RECOIL_AMPLITUDE: float = 0.04 # of iris radius

# Threshold fades
BRANCH_FADE_FLOOR: float = 0.08


@dataclass
class Displacement:
    """Transient drift for one family on one frame."""
    dx: NDArray[np.float64]
    dy: NDArray[np.float64]
    size_mult: NDArray[np.float64]
    alpha_mult: NDArray[np.float64]


@dataclass
class Rupture:
    """Fiber break state on one frame: radial recoil and collapse fade."""
    offset: NDArray[np.float64]
    alpha_mult: NDArray[np.float64]
    broken: NDArray[np.bool_]


# ═══════════════════════════════════════════════════════════════════════
#  Scalar rules
# ═══════════════════════════════════════════════════════════════════════

def destruct_accel(smooth_fatigue: float) -> float:
    """0 below DESTRUCT_START, then the square of the destruction phase."""
    if smooth_fatigue <= DESTRUCT_START:
        return 0.0
    phase = min(1.0, (smooth_fatigue - DESTRUCT_START) / (1.0 - DESTRUCT_START))
    return phase * phase


def threshold_fade(
    threshold: ArrayLike, fatigue: float, floor: float = 0.0
) -> NDArray[np.float64]:
    """1 up to the threshold, falling linearly to 0 at fatigue 1."""
    th = np.asarray(threshold, dtype=np.float64)
    span = np.maximum(1.0 - th, 1e-9)
    fade = np.where(fatigue > th, 1.0 - (fatigue - th) / span, 1.0)
    return np.clip(fade, floor, 1.0)


# ═══════════════════════════════════════════════════════════════════════
#  Physics
# ═══════════════════════════════════════════════════════════════════════

class DestructionPhysics:
    """Stateless transforms; owns only the easing tables it samples."""

    def __init__(self, curves: AnimationCurveCache | None = None) -> None:
        self.curves = curves if curves is not None else AnimationCurveCache()

    # ── Growth sweep ────────────────────────────────────────────────

    def growth_radius(
        self, progress: float, sweep: bool = False, band: float = GROWTH_BAND
    ) -> float:
        """How far in from the outer edge shapes may appear.

        Without the sweep the whole eye is always inside (uniform fade-in);
        with it the radius eases from 0 to just past 1 so the last band
        of shapes also finishes fading.
        """
        if not sweep:
            return 1.0
        return self.curves.fade_in(progress) * (1.0 + band)

    @staticmethod
    def growth_fade(
        distance: ArrayLike, radius: float, band: float = GROWTH_BAND
    ) -> NDArray[np.float64]:
        d = np.asarray(distance, dtype=np.float64)
        fade = np.where(d <= radius, 1.0, 0.0)
        if radius < 1.0:
            fade *= np.clip((radius - d) / band, 0.0, 1.0)
        return fade

    # ── Drift ───────────────────────────────────────────────────────

    @staticmethod
    def base_drift_angle(field: BaseField) -> NDArray[np.float64]:
        seed = np.mod(field.id * GOLDEN + field.size_mod * 7.3 + field.hue_mod * 0.37, 1.0)
        return seed * TWO_PI

    @staticmethod
    def fiber_drift_angle(field: FiberField) -> NDArray[np.float64]:
        seed = np.mod(field.id * GOLDEN + field.t_base * 5.7 + field.size_mod * 3.14, 1.0)
        return seed * TWO_PI

    @staticmethod
    def web_drift_angle(field: WebField) -> NDArray[np.float64]:
        seed = np.mod(field.id * GOLDEN + field.t_base * 4.1 + field.size_mod * 2.3, 1.0)
        return seed * TWO_PI

    @staticmethod
    def _drift(
        angle: NDArray[np.float64],
        speed: NDArray[np.float64],
        accel: float,
        shrink: float,
    ) -> Displacement:
        n = len(angle)
        if accel <= 0.0:
            ones = np.ones(n)
            return Displacement(np.zeros(n), np.zeros(n), ones, ones.copy())
        return Displacement(
            dx=np.cos(angle) * speed * accel,
            dy=np.sin(angle) * speed * accel,
            size_mult=np.full(n, max(MIN_SIZE, 1.0 - accel * shrink)),
            alpha_mult=np.full(n, max(0.0, 1.0 - accel)),
        )

    def base(self, field: BaseField, smooth_fatigue: float, iris_r: float) -> Displacement:
        speed = (0.4 + (field.cluster + field.size_mod) * 0.5) * iris_r * 0.5
        return self._drift(
            self.base_drift_angle(field), speed, destruct_accel(smooth_fatigue), BASE_SHRINK
        )

    def fibers(self, field: FiberField, smooth_fatigue: float, iris_r: float) -> Displacement:
        speed = (0.3 + field.alpha_mod * 0.5) * iris_r * 0.45
        return self._drift(
            self.fiber_drift_angle(field), speed, destruct_accel(smooth_fatigue), FIBER_SHRINK
        )

    def web(self, field: WebField, smooth_fatigue: float, iris_r: float) -> Displacement:
        speed = (0.3 + field.size_mod * 0.5) * iris_r * 0.4
        return self._drift(
            self.web_drift_angle(field), speed, destruct_accel(smooth_fatigue), WEB_SHRINK
        )

    # ── Fiber rupture ───────────────────────────────────────────────

    @staticmethod
    def rupture(
        field: FiberField, table: FiberTable, fatigue: float, iris_r: float
    ) -> Rupture:
        """Recoil then collapse for dots near a break point of a broken fiber."""
        n = len(field.t_base)
        offset = np.zeros(n)
        alpha = np.ones(n)
        if n == 0:
            return Rupture(offset, alpha, np.zeros(0, dtype=np.bool_))

        points = table.break_points[field.fiber_idx]                  # (n, 3)
        dist = np.abs(points - field.t_base[:, None])
        nearest_k = dist.argmin(axis=1)
        rows = np.arange(n)
        nearest = points[rows, nearest_k]
        near = dist[rows, nearest_k] < BREAK_REACH

        threshold = table.break_threshold[field.fiber_idx]
        broken = near & (fatigue > threshold)
        if not broken.any():
            return Rupture(offset, alpha, broken)

        progress = (fatigue - threshold) / np.maximum(1.0 - threshold, 1e-9)
        recoil = broken & (progress < RECOIL_END)
        collapse = broken & ~recoil

        direction = np.where(field.t_base < nearest, -1.0, 1.0)
        phase = progress / RECOIL_END
        offset = np.where(
            recoil, direction * np.sin(phase * math.pi) * RECOIL_AMPLITUDE * iris_r, 0.0
        )
        collapse_phase = (progress - RECOIL_END) / (1.0 - RECOIL_END)
        alpha = np.where(collapse, np.clip(1.0 - collapse_phase, 0.0, 1.0), 1.0)
        return Rupture(offset, alpha, broken)

    # ── Threshold fades ─────────────────────────────────────────────

    @staticmethod
    def pad_fade(thresholds: ArrayLike, fatigue: float) -> NDArray[np.float64]:
        return threshold_fade(thresholds, fatigue)

    @staticmethod
    def branch_fade(thresholds: ArrayLike, fatigue: float) -> NDArray[np.float64]:
        return threshold_fade(thresholds, fatigue, floor=BRANCH_FADE_FLOOR)

    # ── Fade windows ────────────────────────────────────────────────

    def window_fade(
        self, fade_start: ArrayLike, fade_end: ArrayLike, integrity: float
    ) -> NDArray[np.float64]:
        """Ease-out visibility of each shape's [start, end] window at `integrity`."""
        start = np.asarray(fade_start, dtype=np.float64)
        width = np.maximum(np.asarray(fade_end, dtype=np.float64) - start, 1e-9)
        return np.asarray(self.curves.fade_in((integrity - start) / width), dtype=np.float64)
