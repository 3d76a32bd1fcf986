"""Tests for the attention/fatigue life cycle and its telemetry."""

import math

import pytest

from iris_attention import AttentionInput
from iris_lifecycle import (
    EVENT_PAUSE,
    EVENT_REBUILD,
    EVENT_STEADY,
    FATIGUE_MIN,
    PAUSE_DURATION,
    LifecycleState,
    LifecycleStateMachine,
    Phase,
    StatsLogger,
)

DT = 1.0 / 60.0

ALONE = AttentionInput(target_raw=0.0, no_one_present=True, proximity=0.0)
WATCH = AttentionInput(target_raw=0.9, no_one_present=False, proximity=0.0)
WATCH_CLOSE = AttentionInput(target_raw=1.0, no_one_present=False, proximity=1.0)


def steady_state(fatigue: float, generation: int = 1) -> LifecycleState:
    return LifecycleState(
        fatigue=fatigue, smooth_fatigue=fatigue, phase=Phase.STEADY,
        generation_count=generation,
    )


def run_until(machine, state, signal, dt, event, limit_s):
    """Advance until `event` fires; returns elapsed seconds or None."""
    t = 0.0
    while t < limit_s:
        t += dt
        if machine.advance(state, signal, dt) == event:
            return t
    return None


class TestRebuild:
    def test_initial_state(self):
        state = LifecycleState()
        assert state.phase is Phase.REBUILDING
        assert state.fatigue == 1.0
        assert state.smooth_fatigue == 1.0
        assert state.generation_count == 0
        assert state.attention == 0.0

    def test_fatigue_mirrors_progress(self):
        machine = LifecycleStateMachine()
        state = LifecycleState()
        for _ in range(120):
            machine.advance(state, ALONE, DT)
            assert state.is_rebuilding
            assert state.fatigue == pytest.approx(1.0 - state.rebuild_progress)
            assert state.smooth_fatigue == state.fatigue

    def test_rebuild_takes_five_seconds(self):
        machine = LifecycleStateMachine()
        state = LifecycleState()
        elapsed = run_until(machine, state, ALONE, DT, EVENT_STEADY, 10.0)
        assert elapsed == pytest.approx(5.0, abs=2 * DT)
        assert state.phase is Phase.STEADY
        assert state.fatigue == FATIGUE_MIN
        assert state.smooth_fatigue == FATIGUE_MIN
        assert state.generation_count == 1
        assert state.rebuild_progress == 0.0


class TestSteady:
    def test_no_wear_before_first_generation(self):
        machine = LifecycleStateMachine()
        state = steady_state(0.5, generation=0)
        for _ in range(60):
            machine.advance(state, WATCH_CLOSE, DT)
        assert state.fatigue == 0.5

    def test_solitude_heals_to_floor(self):
        machine = LifecycleStateMachine()
        state = steady_state(0.9)
        t = 0.0
        while state.fatigue > FATIGUE_MIN and t < 10.0:
            machine.advance(state, ALONE, DT)
            t += DT
        assert state.fatigue == FATIGUE_MIN
        assert t < 10.0
        assert state.phase is Phase.STEADY

    def test_close_watching_wears_to_pause(self):
        machine = LifecycleStateMachine()
        state = steady_state(FATIGUE_MIN)
        elapsed = run_until(machine, state, WATCH_CLOSE, DT, EVENT_PAUSE, 10.0)
        assert elapsed is not None
        assert state.is_paused
        paused_for = run_until(machine, state, WATCH_CLOSE, DT, EVENT_REBUILD, 10.0)
        assert paused_for == pytest.approx(PAUSE_DURATION, abs=1.5 * DT)

    def test_smooth_fatigue_follows_exponentially(self):
        machine = LifecycleStateMachine()
        state = steady_state(0.5)
        state.smooth_fatigue = 0.8
        signal = AttentionInput(target_raw=0.0, no_one_present=False, proximity=0.0)
        machine.advance(state, signal, 0.1)
        expected = 0.8 + (0.5 - 0.8) * (1.0 - math.exp(-0.3))
        assert state.smooth_fatigue == pytest.approx(expected)
        assert state.integrity == pytest.approx(1.0 - expected)


class TestPause:
    def test_pause_then_rebuild(self):
        machine = LifecycleStateMachine()
        state = steady_state(0.999)
        state.attention = 0.9
        state.attention_target = 0.9
        state.last_attention_target = 0.9
        assert machine.advance(state, WATCH, 0.05) == EVENT_PAUSE
        assert state.pause_timer == PAUSE_DURATION
        assert state.fatigue == 1.0
        assert state.smooth_fatigue == 1.0

        elapsed = run_until(machine, state, WATCH, 0.05, EVENT_REBUILD, 10.0)
        assert elapsed == pytest.approx(PAUSE_DURATION, abs=0.075)
        assert state.is_rebuilding
        assert state.rebuild_progress == 0.0
        assert state.generation_count == 2
        assert state.fatigue == 1.0

    def test_custom_timings(self):
        machine = LifecycleStateMachine(pause_duration=1.0, rebuild_rate=1.0)
        state = LifecycleState()
        assert run_until(machine, state, ALONE, 0.1, EVENT_STEADY, 5.0) == pytest.approx(1.0, abs=0.15)


class TestAttentionTracking:
    def test_small_change_waits_for_hold(self):
        machine = LifecycleStateMachine()
        state = steady_state(0.5)
        signal = AttentionInput(target_raw=0.2, no_one_present=False, proximity=0.0)
        machine.advance(state, signal, 0.1)
        assert state.attention_target == 0.0
        machine.advance(state, signal, 0.1)
        assert state.attention_target == 0.0
        machine.advance(state, signal, 0.1)
        assert state.attention_target == 0.2

    def test_large_jump_commits_at_once(self):
        machine = LifecycleStateMachine()
        state = steady_state(0.5)
        machine.advance(state, WATCH, 0.1)
        assert state.attention_target == 0.9
        assert state.attention > 0.0


class TestBounds:
    @pytest.mark.parametrize("dt", [0.0, 0.001, 0.1, 1.0, 5.0])
    def test_values_stay_in_range(self, dt):
        machine = LifecycleStateMachine()
        state = LifecycleState()
        signals = [WATCH_CLOSE, ALONE, WATCH, WATCH_CLOSE, ALONE]
        for i in range(400):
            machine.advance(state, signals[(i // 37) % len(signals)], dt)
            assert 0.0 <= state.attention <= 1.0
            assert 0.0 <= state.fatigue <= 1.0
            assert 0.0 <= state.smooth_fatigue <= 1.0
            assert 0.0 <= state.smooth_proximity <= 1.0
            if state.phase is Phase.STEADY and state.generation_count > 0:
                assert state.fatigue >= FATIGUE_MIN

    @pytest.mark.parametrize("dt", [-0.1, math.nan, math.inf])
    def test_bad_dt_rejected(self, dt):
        machine = LifecycleStateMachine()
        state = LifecycleState()
        with pytest.raises(ValueError):
            machine.advance(state, ALONE, dt)
        assert state == LifecycleState()


class TestStatsLogger:
    def test_rows_on_interval_and_events(self, tmp_path):
        path = tmp_path / "life.csv"
        stats = StatsLogger(path, every=10)
        stats.open()
        state = LifecycleState(rebuild_progress=0.5)
        stats.log(0, state, t=0.0)
        stats.log(3, state, t=0.05)
        stats.log(5, state, faces=2, event="pause", t=1.5)
        stats.log(10, state, t=2.0)
        stats.close()

        lines = path.read_text().splitlines()
        assert lines[0] == StatsLogger.HEADER.strip()
        assert len(lines) == 4
        assert lines[2] == "5,1.50,0,rebuilding,0.000,1.000,1.000,50,2,pause"

    def test_unwritable_path_is_ignored(self, tmp_path):
        stats = StatsLogger(tmp_path / "missing" / "life.csv")
        stats.open()
        stats.log(0, LifecycleState(), event="rebuild")
        stats.close()

    def test_log_before_open_is_ignored(self, tmp_path):
        path = tmp_path / "life.csv"
        StatsLogger(path).log(0, LifecycleState())
        assert not path.exists()
