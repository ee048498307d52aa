"""疲劳提醒通知：通知内容、免打扰时段和通知渠道"""

import logging
from typing import Callable, Protocol

from models.data_models import Notification, NotificationSettings

logger = logging.getLogger(__name__)

FATIGUE_ALERT_TAG = "fatigue-alert"


class NotificationUnavailableError(RuntimeError):
    """通知权限被拒绝或平台不支持"""


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None:
        ...


class LogNotifier:
    """将通知写入日志，作为无系统通知能力时的默认渠道"""

    def notify(self, notification: Notification) -> None:
        logger.warning("%s: %s", notification.title, notification.body)


class CallbackNotifier:
    """
    将通知转发给宿主提供的回调（托盘、桌面通知等）。

    回调抛出 OSError（权限被拒、平台无通知服务）时转换为 NotificationUnavailableError。
    """

    def __init__(self, callback: Callable[[Notification], None]):
        self._callback = callback

    def notify(self, notification: Notification) -> None:
        try:
            self._callback(notification)
        except OSError as e:
            raise NotificationUnavailableError(f"系统通知不可用: {e}") from e


def is_within_quiet_hours(settings: NotificationSettings, hour: int) -> bool:
    """
    判断给定小时是否处于免打扰时段。

    起止相同视为未设置；起点大于终点表示跨午夜（如 23 点到 7 点）。
    """
    if not settings.quiet_hours_enabled:
        return False

    start, end = settings.quiet_hours_start, settings.quiet_hours_end
    if start == end:
        return False
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end


def build_fatigue_notification(blink_rate: float, sound: bool = False) -> Notification:
    return Notification(
        title="疲劳提醒",
        body=f"眨眼频率已降至 {round(blink_rate)} 次/分钟，建议休息一下。",
        tag=FATIGUE_ALERT_TAG,
        sound=sound,
    )
