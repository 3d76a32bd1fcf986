"""Tests for the profiling harness."""

import pytest

from iris import IrisEngine
from iris_bench import CLOSE, NOBODY, WATCHING, run_benchmark, scripted_sample, timed_tick
from iris_noise import NoiseField


class TestScriptedSample:
    def test_fixed_scenarios(self):
        assert scripted_sample("watch", 100.0) is WATCHING
        assert scripted_sample("ignore", 0.0) is NOBODY
        assert scripted_sample("close", 5.0) is CLOSE

    @pytest.mark.parametrize("t, expected", [
        (0.0, WATCHING), (19.9, WATCHING), (20.0, NOBODY), (29.9, NOBODY), (30.0, WATCHING),
    ])
    def test_alternate(self, t, expected):
        assert scripted_sample("alternate", t) is expected

    def test_unknown_scenario(self):
        with pytest.raises(ValueError):
            scripted_sample("stare", 0.0)


class TestTimedTick:
    def test_components_reported(self):
        engine = IrisEngine(320, 240, noise=NoiseField(seed=1))
        timings = timed_tick(engine, 0.1, WATCHING)
        for key in ("lifecycle", "generation", "pool_refill", "pupil+saccade",
                    "layers", "visibility"):
            assert timings[key] >= 0.0
        assert timings["_drawn"] > 0
        assert engine.tick_count == 1


class TestRunBenchmark:
    def test_profiled_run_with_log(self, tmp_path, capsys):
        log = tmp_path / "bench.csv"
        run_benchmark(20, scenario="close", width=320, height=240, seed=2,
                      log_path=str(log))
        out = capsys.readouterr().out
        assert "Wall time" in out
        assert "By Cumulative Time" in out and "By Self-Time" in out
        lines = log.read_text().splitlines()
        assert lines[0].startswith("tick,time_s")
        assert len(lines) >= 3

    def test_line_timing(self, capsys):
        run_benchmark(10, scenario="ignore", width=320, height=240, seed=2,
                      line_timing=True)
        out = capsys.readouterr().out
        assert "TOTAL" in out
        assert "60fps budget" in out
