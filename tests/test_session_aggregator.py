"""SessionAggregator 单元测试"""

import pytest

from models.data_models import (
    BlinkDetectionResult,
    ConfigOutOfRangeError,
    SessionQuality,
    SessionTimingConfig,
)
from sessions.session_aggregator import SessionAggregator
from helpers import FakeClock

T0 = 1_700_000_000_000.0


def _face(count, t, ear=0.3):
    return BlinkDetectionResult(blink_count=count, current_ear=ear, is_blinking=False, timestamp=t)


def _no_face(count, t):
    return BlinkDetectionResult(
        blink_count=count, current_ear=None, is_blinking=False, timestamp=t, face_detected=False,
    )


@pytest.fixture
def aggregator():
    agg = SessionAggregator(clock=FakeClock(T0), calibration_id="cal_1")
    agg.start_tracking()
    return agg


class TestSessionLifecycle:
    def test_no_session_until_face(self, aggregator):
        aggregator.on_detection(_no_face(0, T0))
        assert aggregator.active_session is None

    def test_ignored_when_not_tracking(self):
        agg = SessionAggregator()
        agg.on_detection(_face(0, T0))
        assert agg.active_session is None

    def test_session_starts_on_first_face(self, aggregator):
        aggregator.on_detection(_face(5, T0))
        session = aggregator.active_session
        assert session is not None
        assert session.is_active
        assert session.start_time == T0
        assert session.total_blinks == 0
        assert session.calibration_id == "cal_1"

    def test_stop_tracking_finalizes(self, aggregator):
        aggregator.on_detection(_face(0, T0))
        aggregator.on_detection(_face(3, T0 + 1000))
        aggregator._clock.now = T0 + 125_500

        session = aggregator.stop_tracking()

        assert session.is_active is False
        assert session.end_time == T0 + 125_500
        assert session.duration == 125
        assert session.total_blinks == 3
        assert aggregator.active_session is None
        assert aggregator.sessions[0] is session
        assert not aggregator.is_tracking

    def test_stop_without_session(self, aggregator):
        assert aggregator.stop_tracking() is None


class TestBlinkAccumulation:
    def test_blink_events_appended(self, aggregator):
        aggregator.on_detection(_face(10, T0))
        aggregator.on_detection(_face(11, T0 + 100))
        aggregator.on_detection(_face(13, T0 + 200))
        session = aggregator.active_session
        assert session.total_blinks == 3
        assert [e.timestamp for e in session.blink_events] == [T0 + 100, T0 + 200, T0 + 200]

    def test_detector_reset_keeps_total_monotonic(self, aggregator):
        aggregator.on_detection(_face(0, T0))
        aggregator.on_detection(_face(4, T0 + 100))
        aggregator.on_detection(_face(0, T0 + 200))
        assert aggregator.active_session.total_blinks == 4
        aggregator.on_detection(_face(1, T0 + 300))
        assert aggregator.active_session.total_blinks == 5
        assert len(aggregator.active_session.blink_events) == 5


class TestFaceLostPeriods:
    def test_open_and_close(self, aggregator):
        aggregator.on_detection(_face(0, T0))
        aggregator.on_detection(_no_face(0, T0 + 1000))
        aggregator.on_detection(_no_face(0, T0 + 2000))
        session = aggregator.active_session
        assert len(session.face_lost_periods) == 1
        assert session.face_lost_periods[0].is_open

        aggregator.on_detection(_face(0, T0 + 3000))
        assert session.face_lost_periods[0].end == T0 + 3000
        assert session.open_face_lost_period() is None

    def test_at_most_one_open_period(self, aggregator):
        aggregator.on_detection(_face(0, T0))
        for i in range(1, 20):
            aggregator.on_detection(_no_face(0, T0 + i * 100))
        periods = aggregator.active_session.face_lost_periods
        assert sum(1 for p in periods if p.is_open) == 1

    def test_timeout_ends_session(self, aggregator):
        aggregator.on_detection(_face(0, T0))
        aggregator.on_detection(_no_face(0, T0 + 1000))
        aggregator.on_detection(_no_face(0, T0 + 11_001))

        assert aggregator.active_session is None
        session = aggregator.sessions[0]
        assert session.is_active is False
        assert session.face_lost_periods[0].end == T0 + 11_001

    def test_new_session_after_timeout(self, aggregator):
        aggregator.on_detection(_face(0, T0))
        aggregator.on_detection(_no_face(0, T0 + 1000))
        aggregator.on_detection(_no_face(0, T0 + 12_000))
        aggregator.on_detection(_face(0, T0 + 13_000))
        assert aggregator.active_session is not None
        assert len(aggregator.sessions) == 2


class TestRateHistory:
    def test_no_points_before_rate_window(self, aggregator):
        aggregator.on_detection(_face(0, T0))
        aggregator.on_detection(_face(0, T0 + 10_000))
        assert aggregator.active_session.blink_rate_history == []

    def test_points_every_interval(self, aggregator):
        aggregator.on_detection(_face(0, T0))
        count = 0
        for second in range(1, 61):
            if second % 5 == 0:
                count += 1
            aggregator.on_detection(_face(count, T0 + second * 1000))

        history = aggregator.active_session.blink_rate_history
        assert len(history) == 7  # 30s, 35s, ..., 60s
        # 每 5 秒一次 -> 12 次/分钟
        assert history[-1].rate == pytest.approx(12.0)
        # 采样帧上的眨眼计入当次采样
        assert history[0].rate == pytest.approx(12.0)
        assert aggregator.active_session.average_blink_rate == pytest.approx(12.0)
        assert aggregator.active_session.quality is SessionQuality.GOOD

    def test_blink_on_sampling_frame_counted(self, aggregator):
        aggregator.on_detection(_face(0, T0))
        for second in range(5, 30, 5):
            aggregator.on_detection(_face(0, T0 + second * 1000))
        aggregator.on_detection(_face(1, T0 + 30_000))

        history = aggregator.active_session.blink_rate_history
        assert len(history) == 1
        assert history[0].timestamp == T0 + 30_000
        assert history[0].rate == pytest.approx(2.0)

    def test_fatigue_alert_counted(self, aggregator):
        aggregator.on_detection(_face(0, T0))
        aggregator.record_fatigue_alert()
        aggregator.record_fatigue_alert()
        assert aggregator.active_session.fatigue_alert_count == 2

    def test_fatigue_alert_without_session(self, aggregator):
        aggregator.record_fatigue_alert()
        assert aggregator.sessions == []


class TestTiming:
    @pytest.mark.parametrize("kwargs", [
        {"face_lost_timeout_seconds": -1},
        {"face_lost_timeout_seconds": float("inf")},
        {"rate_update_interval_seconds": 0},
    ])
    def test_rejects_out_of_range(self, kwargs):
        with pytest.raises(ConfigOutOfRangeError):
            SessionAggregator(**kwargs)

    def test_set_timing_shortens_face_lost_timeout(self, aggregator):
        aggregator.set_timing(SessionTimingConfig(face_lost_timeout_seconds=2))
        aggregator.on_detection(_face(0, T0))
        aggregator.on_detection(_no_face(0, T0 + 1000))
        aggregator.on_detection(_no_face(0, T0 + 3500))

        assert aggregator.active_session is None
        assert aggregator.timing.face_lost_timeout_seconds == 2
