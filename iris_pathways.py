"""
Pathway pooling for shape recycling.

A pathway is the attribute bundle a shape wears for one life span. The
three recyclable families (base, fiber, web) each keep a bounded queue
of pathways computed ahead of time: the queues are filled in bulk at
start-up and topped up by at most one element per family per tick, so
the generation cost is spread across frames instead of landing in one.

Pathway content is a pure function of an incrementing seed counter run
through coherent noise; only the fade timing is drawn from the uniform
stream.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Union

from iris_noise import TWO_PI, NoiseField

if TYPE_CHECKING:
    from iris_shapes import BaseField, FiberField, WebField

# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

PATHWAY_QUEUE_SIZE: int = 50

FAMILY_BASE: str = "base"
FAMILY_FIBER: str = "fiber"
FAMILY_WEB: str = "web"
FAMILIES: tuple[str, ...] = (FAMILY_BASE, FAMILY_FIBER, FAMILY_WEB)

# A recycled shape's fade window opens this far past the current
# smoothed fatigue, with its original start compressed by RECYCLE_SPREAD
RECYCLE_OFFSET: float = 0.1
RECYCLE_SPREAD: float = 0.3


# ═══════════════════════════════════════════════════════════════════════
#  Pathway bundles
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BasePathway:
    r_norm: float
    a: float
    size_mod: float
    hue_mod: float
    aspect_ratio: float
    fade_start: float
    fade_end: float
    cluster: float


@dataclass(frozen=True)
class FiberPathway:
    t_base: float
    a: float
    scatter: float
    size_mod: float
    hue_mod: float
    fade_start: float
    fade_end: float


@dataclass(frozen=True)
class WebPathway:
    t_base: float
    a: float
    scatter: float
    size_mod: float
    hue_mod: float
    fade_start: float
    fade_end: float


Pathway = Union[BasePathway, FiberPathway, WebPathway]


# ═══════════════════════════════════════════════════════════════════════
#  Generation
# ═══════════════════════════════════════════════════════════════════════

class PathwayGenerator:
    """Turns a running seed counter into pathway bundles."""

    def __init__(self, noise: NoiseField, seed: int = 0) -> None:
        self.noise = noise
        self.seed = seed

    def _next_seed(self) -> int:
        self.seed += 1
        return self.seed

    def base(self) -> BasePathway:
        nz = self.noise.noise
        seed = self._next_seed()
        fade_start = self.noise.uniform(0.0, 0.3)
        return BasePathway(
            r_norm=(nz(seed * 0.1) + nz(seed * 0.05 + 100)) * 0.5,
            a=nz(seed * 0.15 + 200) * TWO_PI,
            size_mod=nz(seed * 0.1 + 500),
            hue_mod=(nz(seed * 0.05 + 600) - 0.5) * 15,
            aspect_ratio=0.7 + nz(seed * 0.15 + 700) * 0.3,
            fade_start=fade_start,
            fade_end=fade_start + 0.2 + self.noise.uniform(0.0, 0.2),
            cluster=nz(seed * 0.08 + 800),
        )

    def fiber(self) -> FiberPathway:
        nz = self.noise.noise
        seed = self._next_seed()
        fade_start = self.noise.uniform(0.0, 0.3)
        return FiberPathway(
            t_base=nz(seed * 0.12 + 100),
            a=nz(seed * 0.15 + 400) * TWO_PI,
            scatter=(nz(seed * 0.2 + 500) - 0.5) * 0.3,
            size_mod=nz(seed * 0.1 + 600),
            hue_mod=(nz(seed * 0.08 + 700) - 0.5) * 15,
            fade_start=fade_start,
            fade_end=fade_start + 0.2 + self.noise.uniform(0.0, 0.15),
        )

    def web(self) -> WebPathway:
        nz = self.noise.noise
        seed = self._next_seed()
        fade_start = self.noise.uniform(0.0, 0.3)
        return WebPathway(
            t_base=nz(seed * 0.4 + 100),
            a=nz(seed * 0.5 + 400) * TWO_PI,
            scatter=(nz(seed * 0.35 + 500) - 0.5) * 0.02,
            size_mod=nz(seed * 0.2 + 600),
            hue_mod=(nz(seed * 0.1 + 700) - 0.5) * 20,
            fade_start=fade_start,
            fade_end=fade_start + 0.2 + self.noise.uniform(0.0, 0.15),
        )

    def for_family(self, family: str) -> Pathway:
        if family == FAMILY_BASE:
            return self.base()
        if family == FAMILY_FIBER:
            return self.fiber()
        if family == FAMILY_WEB:
            return self.web()
        raise ValueError(f"unknown shape family: {family!r}")


# ═══════════════════════════════════════════════════════════════════════
#  Pool
# ═══════════════════════════════════════════════════════════════════════

class PathwayPool:
    """Fixed-capacity pathway queues, one per recyclable family.

    Queues only shrink through take()/reassign(); nothing expires.
    """

    def __init__(
        self, noise: NoiseField, capacity: int = PATHWAY_QUEUE_SIZE
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.generator = PathwayGenerator(noise)
        self._queues: dict[str, deque[Pathway]] = {f: deque() for f in FAMILIES}
        self.underflows: int = 0  # pathways synthesised because a queue was empty

    def __len__(self) -> int:
        return sum(len(q) for q in self._queues.values())

    def size(self, family: str) -> int:
        return len(self._queue(family))

    def _queue(self, family: str) -> deque[Pathway]:
        try:
            return self._queues[family]
        except KeyError:
            raise ValueError(f"unknown shape family: {family!r}") from None

    # ── Refill ──────────────────────────────────────────────────────

    def fill(self) -> int:
        """Top every queue up to capacity. Returns pathways generated."""
        made = 0
        for family, queue in self._queues.items():
            while len(queue) < self.capacity:
                queue.append(self.generator.for_family(family))
                made += 1
        return made

    def refill_step(self) -> int:
        """Add at most one pathway to each queue below capacity."""
        made = 0
        for family, queue in self._queues.items():
            if len(queue) < self.capacity:
                queue.append(self.generator.for_family(family))
                made += 1
        return made

    # ── Consumption ─────────────────────────────────────────────────

    def take(self, family: str) -> Pathway:
        """Pop the oldest pathway, or synthesise one if the queue is empty."""
        queue = self._queue(family)
        if queue:
            return queue.popleft()
        self.underflows += 1
        return self.generator.for_family(family)

    def reassign(
        self,
        target: BaseField | FiberField | WebField,
        index: int,
        family: str,
        smooth_fatigue: float,
    ) -> Pathway:
        """Give shape `index` of `target` a fresh pathway.

        The fade window is moved to open just past the current smoothed
        fatigue, keeping its original width. Returns the pathway actually
        written into the field.
        """
        pathway = self.take(family)
        width = pathway.fade_end - pathway.fade_start
        start = smooth_fatigue + RECYCLE_OFFSET + pathway.fade_start * RECYCLE_SPREAD
        pathway = replace(pathway, fade_start=start, fade_end=start + width)
        target.assign(index, pathway)
        return pathway
