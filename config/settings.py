"""配置加载：默认阈值 + JSON 配置文件覆盖"""

import json
import logging
from typing import Optional

from models.data_models import (
    BlinkDetectorConfig,
    FatigueAlertConfig,
    NotificationSettings,
    SessionTimingConfig,
)

logger = logging.getLogger(__name__)

# 默认阈值
_DEFAULTS = {
    "ear_threshold": 0.25,
    "consecutive_frames": 2,
    "debounce_time": 50.0,
    "fatigue_threshold": 8.0,
    "notifications_enabled": True,
    "sound_enabled": False,
    "grace_period_minutes": 5.0,
    "window_seconds": 180.0,
    "face_loss_tolerance_seconds": 5.0,
    "cooldown_seconds": 180.0,
    "sustained_seconds": 60.0,
    "check_interval_seconds": 60.0,
    "face_lost_timeout_seconds": 10.0,
    "rate_update_interval_seconds": 5.0,
    "quiet_hours_enabled": True,
    "quiet_hours_start": 23,
    "quiet_hours_end": 7,
}


def load_config(config_path: Optional[str] = None) -> dict:
    """从 JSON 配置文件加载参数，缺失字段使用默认值"""
    config = dict(_DEFAULTS)

    if config_path is None:
        return config

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning("配置文件不存在 %s，使用默认阈值", config_path)
        return config
    except json.JSONDecodeError:
        logger.warning("配置文件格式错误 %s，使用默认阈值", config_path)
        return config

    for key in _DEFAULTS:
        if key in data and data[key] is not None:
            config[key] = data[key]

    return config


def build_detector_config(config: dict) -> BlinkDetectorConfig:
    return BlinkDetectorConfig(
        ear_threshold=config["ear_threshold"],
        consecutive_frames=config["consecutive_frames"],
        debounce_time=config["debounce_time"],
    )


def build_alert_config(config: dict) -> FatigueAlertConfig:
    return FatigueAlertConfig(
        fatigue_threshold=config["fatigue_threshold"],
        notifications_enabled=config["notifications_enabled"],
        sound_enabled=config["sound_enabled"],
        grace_period_minutes=config["grace_period_minutes"],
        window_seconds=config["window_seconds"],
        face_loss_tolerance_seconds=config["face_loss_tolerance_seconds"],
        cooldown_seconds=config["cooldown_seconds"],
        sustained_seconds=config["sustained_seconds"],
        check_interval_seconds=config["check_interval_seconds"],
    )


def build_notification_settings(config: dict) -> NotificationSettings:
    return NotificationSettings(
        enabled=config["notifications_enabled"],
        sound_enabled=config["sound_enabled"],
        quiet_hours_enabled=config["quiet_hours_enabled"],
        quiet_hours_start=config["quiet_hours_start"],
        quiet_hours_end=config["quiet_hours_end"],
    )


def build_session_timing(config: dict) -> SessionTimingConfig:
    return SessionTimingConfig(
        face_lost_timeout_seconds=config["face_lost_timeout_seconds"],
        rate_update_interval_seconds=config["rate_update_interval_seconds"],
    )
