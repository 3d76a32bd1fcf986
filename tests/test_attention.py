"""Tests for attention samples, the sample source and detection aggregation."""

import math

import pytest

from iris_attention import (
    AttentionSample,
    LatestSampleSource,
    LookingEstimator,
    attention_input,
    face_geometry,
    face_status,
    find_box,
)

CENTRED = {"x": 110, "y": 70, "width": 100, "height": 100}


class TestAttentionInput:
    def test_no_sample_means_nobody(self):
        inp = attention_input(None)
        assert inp.target_raw == 0.0
        assert inp.no_one_present
        assert inp.proximity == 0.0

    def test_fallback_stands_in_and_is_clamped(self):
        assert attention_input(None, fallback=0.4).target_raw == 0.4
        assert attention_input(None, fallback=2.0).target_raw == 1.0
        assert attention_input(None, fallback=0.4).no_one_present

    def test_looking_gives_full_confidence(self):
        inp = attention_input(AttentionSample(0.9, 1, 0.2, True))
        assert inp.target_raw == 0.9
        assert not inp.no_one_present
        assert inp.proximity == 0.2

    def test_face_looking_away_gives_half(self):
        inp = attention_input(AttentionSample(0.4, 2, 0.0, False))
        assert inp.target_raw == pytest.approx(0.2)
        assert not inp.no_one_present

    def test_nobody_gives_zero(self):
        inp = attention_input(AttentionSample(0.25, 0, 0.0, False))
        assert inp.target_raw == 0.0
        assert inp.no_one_present

    def test_out_of_range_values_clamped(self):
        inp = attention_input(AttentionSample(1.7, 1, 3.0, True))
        assert inp.target_raw == 1.0
        assert inp.proximity == 1.0


class TestFaceStatus:
    @pytest.mark.parametrize("sample, expected", [
        (None, "loading..."),
        (AttentionSample(0.9, 1, 0.0, True), "looking (90%)"),
        (AttentionSample(0.2, 1, 0.0, False), "1 face"),
        (AttentionSample(0.2, 3, 0.0, False), "3 faces"),
        (AttentionSample(), "no faces"),
    ])
    def test_status(self, sample, expected):
        assert face_status(sample) == expected


class TestLatestSampleSource:
    def test_empty_until_published(self):
        source = LatestSampleSource()
        assert source.latest() is None
        sample = AttentionSample(0.5, 1, 0.0, True)
        source.publish(sample)
        assert source.latest() is sample
        assert source.published == 1

    def test_latest_wins(self):
        source = LatestSampleSource()
        source.publish(AttentionSample(0.1))
        newest = AttentionSample(0.8, 1, 0.0, True)
        source.publish(newest)
        assert source.latest() is newest
        assert source.published == 2


class TestFindBox:
    @pytest.mark.parametrize("record", [
        {"alignedRect": {"_box": {"_x": 1, "_y": 2}}},
        {"detection": {"_box": {"_x": 1, "_y": 2}}},
        {"detection": {"box": {"x": 1, "y": 2}}},
        {"box": {"x": 1, "y": 2}},
        {"_x": 1, "_y": 2},
    ])
    def test_known_layouts(self, record):
        box = find_box(record)
        assert box is not None
        assert face_geometry(box, 320, 240) is not None

    def test_aligned_rect_preferred(self):
        record = {"alignedRect": {"_box": {"_x": 1}}, "box": {"x": 2}}
        assert find_box(record) == {"_x": 1}

    @pytest.mark.parametrize("record", [None, 42, "face", {}, {"detection": 3}])
    def test_unreadable(self, record):
        assert find_box(record) is None


class TestFaceGeometry:
    def test_centred_face_full_confidence(self):
        confidence, proximity = face_geometry(CENTRED, 320, 240)
        assert confidence == 1.0
        assert proximity == 0.0

    def test_off_centre_face_weaker(self):
        confidence, _ = face_geometry({"x": 0, "y": 0, "width": 40, "height": 40}, 320, 240)
        assert confidence < 0.5

    def test_missing_size_defaults(self):
        assert face_geometry({"x": 110, "y": 70}, 320, 240) == face_geometry(CENTRED, 320, 240)

    def test_missing_position(self):
        assert face_geometry({"x": 110}, 320, 240) is None
        assert face_geometry({"x": math.nan, "y": 3}, 320, 240) is None
        assert face_geometry({"x": True, "y": 3}, 320, 240) is None

    def test_close_face_proximity(self):
        _, proximity = face_geometry({"x": 10, "y": 0, "width": 300, "height": 240}, 320, 240)
        assert proximity == 1.0


class TestLookingEstimator:
    def test_centred_face_looks_after_one_update(self):
        est = LookingEstimator()
        sample = est.update([{"box": CENTRED}])
        assert sample.looking_confidence == pytest.approx(0.5)
        assert sample.is_looking
        assert sample.face_count == 1

    def test_confidence_decays_without_faces(self):
        est = LookingEstimator()
        est.update([{"box": CENTRED}])
        sample = est.update([])
        assert sample.looking_confidence == pytest.approx(0.45)
        assert sample.face_count == 0
        assert sample.proximity == 0.0

    def test_none_is_empty(self):
        assert LookingEstimator().update(None).face_count == 0

    def test_malformed_records_are_skipped(self):
        est = LookingEstimator()
        records = [None, {}, {"box": {"x": "a", "y": 3}}, {"detection": {"box": {"y": 5}}}]
        sample = est.update(records)
        assert est.skipped == 4
        assert sample.face_count == 4
        assert sample.looking_confidence == 0.0
        assert not sample.is_looking

    def test_best_face_counts(self):
        est = LookingEstimator()
        far = {"x": 0, "y": 0, "width": 30, "height": 30}
        close = {"x": 10, "y": 0, "width": 300, "height": 240}
        sample = est.update([{"box": far}, {"box": close}])
        assert sample.proximity == 1.0
        assert sample.face_count == 2

    def test_proximity_resets_when_faces_leave(self):
        est = LookingEstimator()
        est.update([{"box": {"x": 10, "y": 0, "width": 300, "height": 240}}])
        assert est.update([]).proximity == 0.0
