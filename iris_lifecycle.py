"""
Attention, fatigue and the life cycle of one eye.

    REBUILDING ──(progress ≥ 1)──▶ STEADY ──(fatigue ≥ 0.995)──▶ PAUSED
        ▲                                                          │
        └──────────────(pause timer runs out, new generation)──────┘

Raw attention is debounced (a new target is only committed once it has
held still, or jumped far), then chased by a damped spring. While steady,
attention wears the eye down and solitude heals it. A fully worn eye goes
dark for a fixed pause and grows back as a new generation.

All mutable state is one LifecycleState record; the machine itself is
stateless apart from its tuning, and advance() reports transitions as an
event string the same way a simulation step does.
"""

from __future__ import annotations

import enum
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, ClassVar

from iris_attention import AttentionInput
from iris_noise import clamp, lerp

# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

# Hysteresis on the raw attention target
HOLD_BAND: float = 0.1        # raw target counts as "holding" within this delta
HOLD_TIME: float = 0.15       # seconds of holding before a target is committed
JUMP_COMMIT: float = 0.3      # or commit at once on a jump this large

# Attention spring
SPRING_STIFFNESS: float = 25.0
SPRING_DAMPING: float = 6.0

# smoothFatigue follows fatigue at rate 1 - exp(-FATIGUE_SMOOTHING * dt)
FATIGUE_SMOOTHING: float = 3.0

# Fatigue dynamics (per second)
FATIGUE_MIN: float = 0.02
FATIGUE_MAX: float = 1.0
FATIGUE_RISE: float = 0.06
PROXIMITY_BOOST: float = 1.5          # up to 2.5x faster when very close
ATTENTION_WEARS: float = 0.1          # attention above this wears the eye
HEAL_ALONE: float = 0.15
HEAL_LOW_ATTENTION: float = 0.05
LOW_ATTENTION: float = 0.3
PAUSE_AT: float = 0.995

PAUSE_DURATION: float = 4.0
REBUILD_RATE: float = 0.2              # rebuild completes in 5 s

PROXIMITY_SMOOTHING: float = 0.05      # per tick

# Events returned by advance()
EVENT_PAUSE: str = "pause"
EVENT_REBUILD: str = "rebuild"
EVENT_STEADY: str = "steady"


class Phase(enum.Enum):
    REBUILDING = "rebuilding"
    STEADY = "steady"
    PAUSED = "paused"


# ═══════════════════════════════════════════════════════════════════════
#  State
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class LifecycleState:
    """Everything the life cycle carries from one tick to the next."""
    attention: float = 0.0
    attention_velocity: float = 0.0
    attention_target: float = 0.0
    last_attention_target: float = 0.0
    hold_time: float = 0.0

    fatigue: float = 1.0
    smooth_fatigue: float = 1.0
    smooth_proximity: float = 0.0

    phase: Phase = Phase.REBUILDING
    rebuild_progress: float = 0.0
    pause_timer: float = 0.0
    generation_count: int = 0

    @property
    def is_rebuilding(self) -> bool:
        return self.phase is Phase.REBUILDING

    @property
    def is_paused(self) -> bool:
        return self.phase is Phase.PAUSED

    @property
    def integrity(self) -> float:
        return 1.0 - self.smooth_fatigue


# ═══════════════════════════════════════════════════════════════════════
#  State machine
# ═══════════════════════════════════════════════════════════════════════

class LifecycleStateMachine:
    """Advances a LifecycleState by one tick."""

    def __init__(
        self,
        pause_duration: float = PAUSE_DURATION,
        rebuild_rate: float = REBUILD_RATE,
    ) -> None:
        self.pause_duration = pause_duration
        self.rebuild_rate = rebuild_rate

    def advance(self, state: LifecycleState, signal: AttentionInput, dt: float) -> str:
        """Advance one tick. Returns event string (empty if none).

        "rebuild" means a new generation must be built now; nothing else
        is allowed to regenerate the eye.
        """
        if dt < 0 or not math.isfinite(dt):
            raise ValueError(f"dt must be a finite non-negative number, got {dt}")

        self._track_attention(state, signal.target_raw, dt)
        state.smooth_fatigue = float(
            lerp(state.smooth_fatigue, state.fatigue, 1.0 - math.exp(-FATIGUE_SMOOTHING * dt))
        )

        if state.phase is Phase.PAUSED:
            event = self._paused(state, dt)
        elif state.phase is Phase.REBUILDING:
            event = self._rebuilding(state, dt)
        else:
            event = self._steady(state, signal, dt)

        # Fatigue mirrors rebuild progress for the whole phase
        if state.phase is Phase.REBUILDING:
            state.fatigue = 1.0 - state.rebuild_progress
            state.smooth_fatigue = state.fatigue

        state.smooth_proximity = float(
            lerp(state.smooth_proximity, signal.proximity, PROXIMITY_SMOOTHING)
        )
        return event

    # ── Attention ───────────────────────────────────────────────────

    def _track_attention(self, state: LifecycleState, target: float, dt: float) -> None:
        delta = abs(target - state.last_attention_target)
        if delta < HOLD_BAND:
            state.hold_time += dt
        else:
            state.hold_time = 0.0
        state.last_attention_target = target

        if state.hold_time > HOLD_TIME or delta > JUMP_COMMIT:
            state.attention_target = target

        force = (state.attention_target - state.attention) * SPRING_STIFFNESS
        state.attention_velocity += force * dt
        state.attention_velocity *= math.exp(-SPRING_DAMPING * dt)
        state.attention = clamp(state.attention + state.attention_velocity * dt, 0.0, 1.0)

    # ── Phases ──────────────────────────────────────────────────────

    def _paused(self, state: LifecycleState, dt: float) -> str:
        state.pause_timer -= dt
        if state.pause_timer > 0:
            return ""
        state.phase = Phase.REBUILDING
        state.rebuild_progress = 0.0
        state.generation_count += 1
        return EVENT_REBUILD

    def _rebuilding(self, state: LifecycleState, dt: float) -> str:
        state.rebuild_progress += dt * self.rebuild_rate
        if state.rebuild_progress < 1.0:
            return ""
        state.phase = Phase.STEADY
        state.rebuild_progress = 0.0
        state.fatigue = FATIGUE_MIN
        state.smooth_fatigue = FATIGUE_MIN
        if state.generation_count == 0:
            state.generation_count = 1  # first build done, wear may begin
        return EVENT_STEADY

    def _steady(self, state: LifecycleState, signal: AttentionInput, dt: float) -> str:
        if state.generation_count == 0:
            return ""

        fatigue = state.fatigue
        if state.attention > ATTENTION_WEARS:
            boost = 1.0 + state.smooth_proximity * PROXIMITY_BOOST
            fatigue += FATIGUE_RISE * state.attention * boost * dt
        if signal.no_one_present:
            fatigue -= HEAL_ALONE * dt
        elif state.attention < LOW_ATTENTION:
            fatigue -= HEAL_LOW_ATTENTION * dt
        state.fatigue = clamp(fatigue, FATIGUE_MIN, FATIGUE_MAX)

        if state.fatigue < PAUSE_AT:
            return ""
        state.phase = Phase.PAUSED
        state.pause_timer = self.pause_duration
        state.fatigue = FATIGUE_MAX
        state.smooth_fatigue = FATIGUE_MAX
        return EVENT_PAUSE


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

LOG_EVERY_TICKS: int = 10


class StatsLogger:
    """Writes lifecycle telemetry to CSV for post-hoc tuning."""

    HEADER: ClassVar[str] = (
        "tick,time_s,generation,phase,attention,fatigue,"
        "smooth_fatigue,rebuild_pct,faces,event\n"
    )

    def __init__(self, path: Path, every: int = LOG_EVERY_TICKS) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()
        self.every = max(1, every)

    def open(self) -> None:
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            self._fh = None

    def log(
        self,
        tick: int,
        state: LifecycleState,
        faces: int = 0,
        event: str = "",
        t: float | None = None,
    ) -> None:
        """Write a row on events and every `every` ticks; ignore the rest.

        `t` overrides wall-clock seconds (headless runs pass simulated time).
        """
        if self._fh is None:
            return
        if not event and tick % self.every != 0:
            return
        if t is None:
            t = time.monotonic() - self._t0
        rebuild_pct = round(state.rebuild_progress * 100) if state.is_rebuilding else 0
        try:
            self._fh.write(
                f"{tick},{t:.2f},{state.generation_count},{state.phase.value},"
                f"{state.attention:.3f},{state.fatigue:.3f},{state.smooth_fatigue:.3f},"
                f"{rebuild_pct},{faces},{event}\n"
            )
            if event:
                self._fh.flush()
        except OSError:
            pass

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None
