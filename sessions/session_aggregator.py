"""会话聚合模块：管理会话生命周期，累积眨眼事件、频率采样和人脸丢失区间"""

import logging
import threading
import time
from typing import Callable, List, Optional

from models.data_models import (
    BlinkDetectionResult,
    BlinkEvent,
    BlinkRatePoint,
    FaceLostPeriod,
    SessionData,
    SessionTimingConfig,
)
from sessions.blink_rate import (
    BLINK_RATE_WINDOW_SECONDS,
    blink_rate_in_window,
    calculate_active_blink_rate,
    get_session_quality,
)

logger = logging.getLogger(__name__)


class SessionAggregator:
    """
    会话的唯一写入方。

    - 开启跟踪后首次检测到人脸时创建会话
    - 检测器计数增加时追加 BlinkEvent
    - 人脸丢失/恢复时开启/闭合 FaceLostPeriod
    - 人脸丢失超过 face_lost_timeout_seconds 时结束会话
    - 每 rate_update_interval_seconds 追加一个频率采样点
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        face_lost_timeout_seconds: float = 10.0,
        rate_update_interval_seconds: float = 5.0,
        calibration_id: Optional[str] = None,
    ):
        self._clock = clock or (lambda: time.time() * 1000.0)
        self._timing = SessionTimingConfig(face_lost_timeout_seconds, rate_update_interval_seconds)
        self.calibration_id = calibration_id

        self._lock = threading.RLock()
        self._tracking = False
        self._active: Optional[SessionData] = None
        self._sessions: List[SessionData] = []
        self._baseline_count = 0
        self._last_detector_count = 0
        self._last_rate_update = 0.0

    @property
    def timing(self) -> SessionTimingConfig:
        return self._timing

    @property
    def face_lost_timeout_seconds(self) -> float:
        return self._timing.face_lost_timeout_seconds

    @property
    def rate_update_interval_seconds(self) -> float:
        return self._timing.rate_update_interval_seconds

    def set_timing(self, timing: SessionTimingConfig):
        """替换时间参数，从下一帧开始生效"""
        with self._lock:
            self._timing = timing

    @property
    def is_tracking(self) -> bool:
        return self._tracking

    @property
    def active_session(self) -> Optional[SessionData]:
        """当前会话，由疲劳引擎在每次评估时读取"""
        with self._lock:
            return self._active

    @property
    def sessions(self) -> List[SessionData]:
        """全部会话（最新在前）"""
        with self._lock:
            return list(self._sessions)

    def start_tracking(self):
        with self._lock:
            self._tracking = True
            logger.info("开始跟踪")

    def stop_tracking(self) -> Optional[SessionData]:
        """停止跟踪并结束当前会话"""
        with self._lock:
            self._tracking = False
            finished = self._finalize(self._clock())
            logger.info("停止跟踪")
            return finished

    def on_detection(self, result: BlinkDetectionResult):
        """处理一帧检测结果"""
        with self._lock:
            if not self._tracking:
                return

            now = result.timestamp

            if result.face_detected:
                if self._active is None:
                    self._start_session(now, result.blink_count)
                else:
                    self._close_face_lost_period(now)
                self._record_blinks(result.blink_count, now)
            elif self._active is not None:
                period = self._active.open_face_lost_period()
                if period is None:
                    self._active.face_lost_periods.append(FaceLostPeriod(start=now))
                    logger.info("人脸丢失")
                elif now - period.start > self.face_lost_timeout_seconds * 1000.0:
                    logger.info("人脸丢失超过 %.0f 秒，结束会话", self.face_lost_timeout_seconds)
                    self._finalize(now)
                    return

            if self._active is not None:
                self._maybe_update_rate(now)

    def record_fatigue_alert(self):
        """疲劳提醒回调：累加当前会话的提醒次数"""
        with self._lock:
            if self._active is not None:
                self._active.fatigue_alert_count += 1
                logger.info("疲劳提醒 #%d", self._active.fatigue_alert_count)

    def _start_session(self, now: float, detector_count: int):
        session = SessionData(
            id=f"session-{int(now)}",
            start_time=now,
            calibration_id=self.calibration_id,
        )
        self._active = session
        self._sessions.insert(0, session)
        self._baseline_count = detector_count
        self._last_detector_count = detector_count
        self._last_rate_update = now
        logger.info("会话开始: %s", session.id)

    def _record_blinks(self, detector_count: int, now: float):
        session = self._active
        if detector_count < self._last_detector_count:
            # 检测器被重置，以新计数为基线继续累加
            self._baseline_count = detector_count - session.total_blinks
        elif detector_count > self._last_detector_count:
            for _ in range(detector_count - self._last_detector_count):
                session.blink_events.append(BlinkEvent(timestamp=now))
        self._last_detector_count = detector_count
        session.total_blinks = max(session.total_blinks, detector_count - self._baseline_count)

    def _close_face_lost_period(self, now: float):
        period = self._active.open_face_lost_period()
        if period is not None:
            period.end = now
            logger.info("人脸恢复，丢失 %.1f 秒", (now - period.start) / 1000.0)

    def _maybe_update_rate(self, now: float):
        session = self._active
        if now - self._last_rate_update < self.rate_update_interval_seconds * 1000.0:
            return
        self._last_rate_update = now

        if now - session.start_time < BLINK_RATE_WINDOW_SECONDS * 1000.0:
            return

        rate = blink_rate_in_window(session.blink_events, now, BLINK_RATE_WINDOW_SECONDS)
        session.blink_rate_history.append(BlinkRatePoint(timestamp=now, rate=rate))
        history = session.blink_rate_history
        session.average_blink_rate = sum(p.rate for p in history) / len(history)
        session.quality = get_session_quality(session.average_blink_rate)

    def _finalize(self, now: float) -> Optional[SessionData]:
        session = self._active
        if session is None:
            return None

        period = session.open_face_lost_period()
        if period is not None:
            period.end = now

        session.end_time = now
        session.is_active = False
        session.duration = int((now - session.start_time) // 1000)
        session.quality = get_session_quality(calculate_active_blink_rate(session))
        self._active = None
        logger.info(
            "会话结束: %s, 时长 %d 秒, 眨眼 %d 次, 提醒 %d 次",
            session.id, session.duration, session.total_blinks, session.fatigue_alert_count,
        )
        return session
