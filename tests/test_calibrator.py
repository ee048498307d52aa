"""阈值校准模块单元测试"""

import json
import math

import pytest

from calibration.threshold_calibrator import (
    DEFAULT_EAR_THRESHOLD,
    CalibrationStore,
    EARDataPoint,
    analyze_blink_data,
    build_calibration,
    calculate_ear_threshold,
    compute_stats,
    count_blinks_at_threshold,
    create_default_calibration,
    generate_calibration_id,
    optimize_threshold_roc,
    validate_blink_pattern,
    validate_calibration,
)
from models.data_models import BlinkDetectorConfig, CalibrationBlinkEvent, CalibrationRawData

FRAME_MS = 20
OPEN_EAR = 0.3
CLOSED_EAR = 0.15


def _recording(blinks=10, interval_ms=1000, closed_frames=5):
    """每隔 interval_ms 闭眼 closed_frames 帧的合成 EAR 序列"""
    total_frames = (blinks + 1) * interval_ms // FRAME_MS
    closed = set()
    for k in range(blinks):
        start = (k + 1) * interval_ms // FRAME_MS
        closed.update(range(start, start + closed_frames))
    return [
        EARDataPoint(time=i * FRAME_MS, ear=CLOSED_EAR if i in closed else OPEN_EAR)
        for i in range(total_frames)
    ]


def _raw_data(blinks=10, interval_ms=1000, duration=100.0):
    points = _recording(blinks, interval_ms)
    return CalibrationRawData(
        timestamps=[p.time for p in points],
        ear_values=[p.ear for p in points],
        blink_events=[
            CalibrationBlinkEvent(timestamp=(k + 1) * interval_ms, ear_value=CLOSED_EAR, duration=duration)
            for k in range(blinks)
        ],
    )


class TestComputeStats:
    """测试 compute_stats 辅助函数"""

    def test_basic_values(self):
        values = [1.0, 2.0, 3.0, 4.0, 5.0]
        result = compute_stats(values)
        assert result["mean"] == pytest.approx(3.0)
        assert result["min"] == 1.0
        assert result["max"] == 5.0
        expected_std = math.sqrt(sum((x - 3.0) ** 2 for x in values) / 5)
        assert result["std"] == pytest.approx(expected_std)

    def test_single_value(self):
        result = compute_stats([42.0])
        assert result["mean"] == 42.0
        assert result["std"] == 0.0


class TestCountBlinks:
    def test_counts_each_closure(self):
        count, timestamps = count_blinks_at_threshold(_recording(10), 0.25)
        assert count == 10
        # 第二个低于阈值的帧为眨眼开始
        assert timestamps[0] == 1000 + FRAME_MS

    def test_threshold_below_closed_ear(self):
        assert count_blinks_at_threshold(_recording(10), 0.1)[0] == 0

    def test_single_frame_dip_ignored(self):
        assert count_blinks_at_threshold(_recording(5, closed_frames=1), 0.25)[0] == 0

    def test_long_closure_ignored(self):
        # 30 帧 = 580ms 闭眼，超过最长眨眼时长
        assert count_blinks_at_threshold(_recording(3, closed_frames=30), 0.25)[0] == 0


class TestAnalyzeBlinkData:
    def test_exact_match_midpoint(self):
        result = analyze_blink_data(_recording(10), target_blinks=10)
        assert result.detected_blinks == 10
        assert CLOSED_EAR < result.min_threshold <= result.calibrated_threshold <= result.max_threshold
        assert result.max_threshold <= OPEN_EAR + 1e-6
        assert len(result.blink_timestamps) == 10

    def test_closest_when_no_exact_match(self):
        result = analyze_blink_data(_recording(10), target_blinks=20)
        assert result.detected_blinks == 10
        assert result.min_threshold == result.max_threshold == result.calibrated_threshold


class TestValidateBlinkPattern:
    def test_too_few_blinks(self):
        assert validate_blink_pattern([1000]) is True

    def test_interval_too_short(self):
        assert validate_blink_pattern([1000, 1100, 3000]) is False

    def test_too_regular(self):
        assert validate_blink_pattern([i * 1000 for i in range(8)]) is False

    def test_natural_rhythm(self):
        assert validate_blink_pattern([0, 2300, 3900, 7100, 8000, 11_500, 12_900]) is True


class TestThresholds:
    @pytest.mark.parametrize("blink_ear,expected", [(0.2, 0.22), (0.05, 0.15), (0.5, 0.35)])
    def test_calculate_ear_threshold(self, blink_ear, expected):
        raw = CalibrationRawData(blink_events=[CalibrationBlinkEvent(0, blink_ear, 100)])
        assert calculate_ear_threshold(raw) == pytest.approx(expected)

    def test_calculate_without_events(self):
        assert calculate_ear_threshold(CalibrationRawData()) == DEFAULT_EAR_THRESHOLD

    def test_roc_separates_classes(self):
        threshold = optimize_threshold_roc(_raw_data())
        assert threshold == pytest.approx(CLOSED_EAR)

    def test_roc_single_class(self):
        raw = _raw_data()
        raw.blink_events = []
        assert optimize_threshold_roc(raw) is None

    def test_roc_mismatched_lengths(self):
        raw = _raw_data()
        raw.ear_values = raw.ear_values[:-1]
        assert optimize_threshold_roc(raw) is None


class TestBuildCalibration:
    def test_metadata(self):
        calibration = build_calibration("测试", _raw_data(blinks=8), target_blinks=10)
        meta = calibration.metadata
        assert calibration.is_active
        assert calibration.id.startswith("cal_")
        assert meta.total_blinks_requested == 10
        assert meta.total_blinks_detected == 8
        assert meta.accuracy == pytest.approx(0.8)
        assert meta.average_blink_interval == pytest.approx(1000)
        assert meta.min_ear_value == CLOSED_EAR
        assert meta.max_ear_value == OPEN_EAR
        assert calibration.ear_threshold == pytest.approx(CLOSED_EAR * 1.1)

    def test_accuracy_capped(self):
        calibration = build_calibration("x", _raw_data(blinks=12), target_blinks=10)
        assert calibration.metadata.accuracy == 1.0

    def test_explicit_threshold(self):
        calibration = build_calibration("x", _raw_data(), target_blinks=10, ear_threshold=0.21)
        assert calibration.ear_threshold == 0.21

    def test_validate(self):
        assert validate_calibration(build_calibration("x", _raw_data(), target_blinks=10)) is True
        assert validate_calibration(build_calibration("x", _raw_data(blinks=6), target_blinks=10)) is False
        assert validate_calibration(build_calibration("x", _raw_data(blinks=4), target_blinks=4)) is False

    def test_detector_config_from_calibration(self):
        calibration = build_calibration("x", _raw_data(), target_blinks=10, ear_threshold=0.21)
        config = BlinkDetectorConfig.from_calibration(calibration, consecutive_frames=3)
        assert config.ear_threshold == 0.21
        assert config.consecutive_frames == 3


class TestDefaults:
    def test_default_calibration(self):
        calibration = create_default_calibration()
        assert calibration.is_default
        assert calibration.is_active
        assert calibration.ear_threshold == DEFAULT_EAR_THRESHOLD

    def test_generated_ids_unique(self):
        assert generate_calibration_id() != generate_calibration_id()


class TestCalibrationStore:
    @pytest.fixture
    def store(self, tmp_path):
        return CalibrationStore(str(tmp_path / "calibrations.json"))

    def test_missing_file(self, store):
        assert store.get_all() == []
        assert store.get_active() is None

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        assert CalibrationStore(str(path)).get_all() == []

    def test_save_and_reload(self, store):
        calibration = build_calibration("晨间", _raw_data(), target_blinks=10)
        store.save(calibration)

        loaded = store.get_all()
        assert len(loaded) == 1
        assert loaded[0].id == calibration.id
        assert loaded[0].name == "晨间"
        assert loaded[0].created_at == calibration.created_at
        assert len(loaded[0].raw_data.blink_events) == 10

    def test_save_replaces_same_id(self, store):
        calibration = build_calibration("a", _raw_data(), target_blinks=10)
        store.save(calibration)
        calibration.name = "b"
        store.save(calibration)
        assert [c.name for c in store.get_all()] == ["b"]

    def test_set_active(self, store):
        first = build_calibration("a", _raw_data(), target_blinks=10)
        second = build_calibration("b", _raw_data(), target_blinks=10)
        store.save(first)
        store.save(second)

        store.set_active(first.id)

        assert store.get_active().id == first.id
        assert sum(c.is_active for c in store.get_all()) == 1

    def test_set_active_unknown(self, store):
        with pytest.raises(ValueError):
            store.set_active("missing")

    def test_fix_multiple_active_keeps_newest(self, store):
        old = build_calibration("old", _raw_data(), target_blinks=10)
        new = build_calibration("new", _raw_data(), target_blinks=10)
        new.created_at = old.created_at.replace(year=old.created_at.year + 1)
        store.save(old)
        store.save(new)

        store.fix_multiple_active()

        active = [c for c in store.get_all() if c.is_active]
        assert [c.id for c in active] == [new.id]

    def test_delete(self, store):
        calibration = build_calibration("a", _raw_data(), target_blinks=10)
        store.save(calibration)
        store.delete(calibration.id)
        assert store.get_all() == []

    def test_ensure_default(self, store):
        store.ensure_default()
        store.ensure_default()
        calibrations = store.get_all()
        assert len(calibrations) == 1
        assert calibrations[0].is_default

    def test_export(self, store):
        store.ensure_default()
        data = json.loads(store.export("default"))
        assert data["ear_threshold"] == DEFAULT_EAR_THRESHOLD
        with pytest.raises(ValueError):
            store.export("missing")
