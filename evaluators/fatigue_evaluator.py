"""疲劳提醒引擎：基于滚动窗口眨眼频率和人脸丢失情况判断是否提醒休息"""

import logging
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from evaluators.notifier import LogNotifier, Notifier, build_fatigue_notification, is_within_quiet_hours
from models.data_models import FatigueAlertConfig, NotificationSettings, SessionData
from sessions.blink_rate import (
    BLINK_RATE_WINDOW_SECONDS,
    face_lost_overlap_ms,
    get_chart_data_from_session,
    rolling_average_rate,
)

logger = logging.getLogger(__name__)


class FatigueState(Enum):
    NORMAL = "normal"
    PENDING = "pending"  # 频率已低于阈值，等待持续时间满足
    ALERTED = "alerted"


class FatigueAlertEngine:
    """
    疲劳提醒决策。

    频率须持续低于阈值 sustained_seconds 才会提醒（NORMAL -> PENDING -> ALERTED），
    频率恢复后回到 NORMAL；两次提醒之间至少间隔 cooldown_seconds。
    持续计时只属于一个会话，会话切换或重新开始监测时回到 NORMAL。
    引擎只读取会话数据，自身只修改提醒时间和状态。
    """

    def __init__(
        self,
        config: Optional[FatigueAlertConfig] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], float]] = None,
        notification_settings: Optional[NotificationSettings] = None,
    ):
        self.config = config or FatigueAlertConfig()
        self.notifier = notifier or LogNotifier()
        self.notification_settings = notification_settings
        self._clock = clock or (lambda: time.time() * 1000.0)

        self._lock = threading.RLock()
        self._state = FatigueState.NORMAL
        self._below_since: Optional[float] = None
        self._session_id: Optional[str] = None  # 当前状态所属的会话
        self._last_alert_time: Optional[float] = None

        self._generation = 0
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> FatigueState:
        return self._state

    @property
    def last_alert_time(self) -> Optional[float]:
        """上次提醒时间（毫秒），从未提醒时为 None"""
        return self._last_alert_time

    @property
    def is_monitoring(self) -> bool:
        return self._thread is not None

    def cooldown_remaining(self) -> float:
        """距离冷却结束的剩余毫秒数"""
        with self._lock:
            if self._last_alert_time is None:
                return 0.0
            elapsed = self._clock() - self._last_alert_time
            return max(0.0, self.config.cooldown_seconds * 1000.0 - elapsed)

    def check_for_fatigue(
        self,
        session: Optional[SessionData],
        on_alert: Optional[Callable[[], None]] = None,
    ) -> bool:
        """
        判断当前会话是否需要疲劳提醒。

        Args:
            session: 当前会话，None 或已结束时直接返回 False
            on_alert: 提醒触发时的回调（通常用于累加会话提醒次数）

        Returns:
            是否触发了提醒
        """
        if session is None or not session.is_active:
            return False

        cfg = self.config
        with self._lock:
            now = self._clock()

            if session.id != self._session_id:
                self._reset_state()
                self._session_id = session.id

            # 宽限期内不评估
            if now - session.start_time < cfg.grace_period_minutes * 60_000:
                return False

            points = session.blink_rate_history or get_chart_data_from_session(
                session, BLINK_RATE_WINDOW_SECONDS, now=now
            )
            window_ms = cfg.window_seconds * 1000.0
            rate = rolling_average_rate(points, now, cfg.window_seconds)
            if rate is None:
                return False

            overlap = face_lost_overlap_ms(session.face_lost_periods, now - window_ms, now)
            if overlap > cfg.face_loss_tolerance_seconds * 1000.0:
                logger.debug("窗口内人脸丢失 %.1f 秒，跳过本次评估", overlap / 1000.0)
                return False

            if rate >= cfg.fatigue_threshold:
                if self._state is not FatigueState.NORMAL:
                    logger.info("眨眼频率恢复至 %.1f 次/分钟", rate)
                self._reset_state()
                return False

            if self._state is FatigueState.NORMAL:
                self._state = FatigueState.PENDING
                self._below_since = now
                logger.debug("眨眼频率 %.1f 低于阈值 %.1f，开始计时", rate, cfg.fatigue_threshold)

            if (
                self._state is FatigueState.PENDING
                and now - self._below_since < cfg.sustained_seconds * 1000.0
            ):
                return False

            if (
                self._last_alert_time is not None
                and now - self._last_alert_time < cfg.cooldown_seconds * 1000.0
            ):
                return False

            self._last_alert_time = now
            self._state = FatigueState.ALERTED
            logger.info("触发疲劳提醒: 滚动平均 %.1f 次/分钟", rate)

            self._dispatch_notification(rate, now)
            if on_alert is not None:
                on_alert()
            return True

    def _reset_state(self):
        """回到 NORMAL，丢弃未完成的持续计时"""
        self._state = FatigueState.NORMAL
        self._below_since = None

    def _dispatch_notification(self, rate: float, now: float):
        """发送系统通知；通知失败只记录日志，不影响提醒结果"""
        settings = self.notification_settings
        if not self.config.notifications_enabled:
            return
        if settings is not None:
            if not settings.enabled:
                return
            if is_within_quiet_hours(settings, datetime.fromtimestamp(now / 1000.0).hour):
                logger.info("处于免打扰时段，不发送通知")
                return

        sound = self.config.sound_enabled and (settings is None or settings.sound_enabled)
        try:
            self.notifier.notify(build_fatigue_notification(rate, sound=sound))
        except Exception as e:
            logger.warning("通知发送失败: %s", e)

    def start_monitoring(
        self,
        get_active_session: Callable[[], Optional[SessionData]],
        on_alert: Optional[Callable[[], None]] = None,
    ):
        """
        开始周期评估：立即评估一次，之后每 check_interval_seconds 评估一次。

        每次评估时才调用 get_active_session() 读取最新会话。
        """
        self.stop_monitoring()

        with self._lock:
            self._generation += 1
            self._reset_state()
            self._session_id = None
            generation = self._generation
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._monitor_loop,
                args=(generation, stop_event, get_active_session, on_alert),
                name="fatigue-monitor",
                daemon=True,
            )
            thread = self._thread

        self._tick(generation, get_active_session, on_alert)
        thread.start()
        logger.info("疲劳监测已启动，间隔 %.0f 秒", self.config.check_interval_seconds)

    def stop_monitoring(self):
        """停止周期评估，可重复调用；已唤醒但尚未执行的评估会被丢弃"""
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._generation += 1
            self._stop_event.set()
            self._stop_event = None
            self._thread = None

        if thread is not threading.current_thread():
            thread.join(timeout=1.0)
        logger.info("疲劳监测已停止")

    def _monitor_loop(self, generation, stop_event, get_active_session, on_alert):
        while not stop_event.wait(self.config.check_interval_seconds):
            self._tick(generation, get_active_session, on_alert)

    def _tick(self, generation, get_active_session, on_alert):
        with self._lock:
            if generation != self._generation:
                return
            self.check_for_fatigue(get_active_session(), on_alert)
