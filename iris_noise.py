"""
Noise and easing primitives for the iris engine.

Two sources of variation feed every generation of the eye:

  coherent noise   smooth, repeatable values keyed by coordinates. Sampled
                   from a wrapped lattice of uniform values with a cubic
                   B-spline (scipy.ndimage), summed over a few octaves.
  uniform random   independent draws from a seeded numpy Generator.

Both live on one injectable NoiseField so a test can pin the seed (or
script the random draws) instead of reaching for a global generator.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.ndimage import map_coordinates

# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

TWO_PI: float = 2.0 * math.pi

# Lattice side length; coordinates wrap every LATTICE_SIZE units
LATTICE_SIZE: int = 256

# Octave summing (frequency doubles, amplitude halves)
NOISE_OCTAVES: int = 4
NOISE_FALLOFF: float = 0.5

# Resolution of the pre-sampled animation curves
ANIM_SAMPLES: int = 256


# ═══════════════════════════════════════════════════════════════════════
#  Scalar helpers
# ═══════════════════════════════════════════════════════════════════════

def lerp(a: ArrayLike, b: ArrayLike, t: ArrayLike):
    """Linear interpolation from a to b by factor t (clamped to 0.0-1.0).

    Works on floats and numpy arrays alike.
    """
    return a + (b - a) * np.clip(t, 0.0, 1.0)


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def wrap_angle_diff(a: ArrayLike, b: ArrayLike) -> NDArray[np.float64]:
    """Absolute angular distance between a and b, folded into [0, pi]."""
    d = np.abs(np.asarray(a, dtype=np.float64) - b)
    d = np.mod(d, TWO_PI)
    return np.where(d > math.pi, TWO_PI - d, d)


# ═══════════════════════════════════════════════════════════════════════
#  Noise field
# ═══════════════════════════════════════════════════════════════════════

class NoiseField:
    """Seeded coherent noise plus independent uniform randomness.

    The lattice is drawn once at construction, so coherent values are
    stable for the life of the field; the uniform stream keeps advancing.
    """

    def __init__(
        self,
        seed: int | None = None,
        octaves: int = NOISE_OCTAVES,
        falloff: float = NOISE_FALLOFF,
    ) -> None:
        self.seed = seed
        self._rng: np.random.Generator = np.random.default_rng(seed)
        self._lattice: NDArray[np.float64] = self._rng.random(
            (LATTICE_SIZE, LATTICE_SIZE)
        )
        self._octaves = max(1, octaves)
        amps = [falloff ** o for o in range(self._octaves)]
        self._amps: tuple[float, ...] = tuple(a / sum(amps) for a in amps)

    # ── Coherent noise ──────────────────────────────────────────────

    def noise(self, x: ArrayLike, y: ArrayLike = 0.0):
        """Smooth noise in [0, 1) at (x, y).

        Scalars in, float out; arrays in (broadcast together), array out.
        """
        xs, ys = np.broadcast_arrays(
            np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64)
        )
        shape = xs.shape
        flat_x = xs.ravel()
        flat_y = ys.ravel()

        total = np.zeros(flat_x.shape, dtype=np.float64)
        freq = 1.0
        for amp in self._amps:
            coords = np.vstack((flat_y * freq, flat_x * freq))
            # prefilter=False keeps the spline a convex blend of lattice values
            total += amp * map_coordinates(
                self._lattice, coords, order=3, mode="grid-wrap", prefilter=False
            )
            freq *= 2.0

        np.clip(total, 0.0, 1.0 - 1e-12, out=total)
        if not shape:
            return float(total[0])
        return total.reshape(shape)

    # ── Uniform randomness ──────────────────────────────────────────

    def random(self, size: int | None = None):
        """Uniform in [0, 1)."""
        if size is None:
            return float(self._rng.random())
        return self._rng.random(size)

    def uniform(self, low: float, high: float, size: int | None = None):
        """Uniform in [low, high)."""
        if size is None:
            return float(self._rng.uniform(low, high))
        return self._rng.uniform(low, high, size)

    def integers(self, low: int, high: int) -> int:
        """Uniform integer in [low, high)."""
        return int(self._rng.integers(low, high))


# ═══════════════════════════════════════════════════════════════════════
#  Animation curves
# ═══════════════════════════════════════════════════════════════════════

class AnimationCurveCache:
    """Three easing/periodic curves sampled once at fixed resolution.

    Lookups floor into the table rather than interpolating; at 256 samples
    the step is below anything visible in an alpha or size ramp.
    """

    def __init__(self, samples: int = ANIM_SAMPLES) -> None:
        if samples < 2:
            raise ValueError(f"need at least 2 samples, got {samples}")
        self.samples = samples
        t = np.linspace(0.0, 1.0, samples)
        self.ease_out: NDArray[np.float64] = 1.0 - (1.0 - t) ** 3
        self.ease_in: NDArray[np.float64] = t ** 3
        self.pulse: NDArray[np.float64] = 0.5 + 0.5 * np.sin(t * TWO_PI)

    def sample(self, curve: NDArray[np.float64], t: ArrayLike):
        idx = np.floor(np.clip(t, 0.0, 1.0) * (self.samples - 1)).astype(np.intp)
        out = curve[idx]
        if np.ndim(out) == 0:
            return float(out)
        return out

    def fade_in(self, t: ArrayLike):
        return self.sample(self.ease_out, t)

    def fade_out(self, t: ArrayLike):
        return self.sample(self.ease_in, t)

    def wave(self, phase: float) -> float:
        """sin(phase) read back from the pulse table."""
        return 2.0 * self.sample(self.pulse, (phase / TWO_PI) % 1.0) - 1.0
