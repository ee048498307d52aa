"""核心数据模型定义"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, NamedTuple, Optional, Tuple, Union


class ConfigOutOfRangeError(ValueError):
    """配置参数越界（负数、非有限值等），构造时直接拒绝，不做截断"""


def _require_finite(name: str, value: float, minimum: float = 0.0, strict: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ConfigOutOfRangeError(f"{name} 必须为有限数值: {value!r}")
    if strict and value <= minimum:
        raise ConfigOutOfRangeError(f"{name} 必须大于 {minimum}: {value!r}")
    if not strict and value < minimum:
        raise ConfigOutOfRangeError(f"{name} 不能小于 {minimum}: {value!r}")


class Point2D(NamedTuple):
    """像素坐标点"""
    x: float
    y: float


class Point3D(NamedTuple):
    """归一化的人脸网格关键点"""
    x: float
    y: float
    z: float = 0.0


@dataclass(frozen=True)
class EyeLandmarks:
    """单眼 6 个轮廓点：p1/p4 为眼角，p2/p3 为上眼睑，p5/p6 为下眼睑"""
    p1: Point2D
    p2: Point2D
    p3: Point2D
    p4: Point2D
    p5: Point2D
    p6: Point2D


class NoFace:
    """本帧未检测到人脸"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "NO_FACE"


NO_FACE = NoFace()


@dataclass(frozen=True)
class Face:
    """检测到的单张人脸网格（归一化坐标）"""
    points: Tuple[Point3D, ...]


LandmarkResult = Union[NoFace, Face]


@dataclass(frozen=True)
class BlinkDetectorConfig:
    """眨眼检测参数，检测器生命周期内不可变"""
    ear_threshold: float = 0.25
    consecutive_frames: int = 2
    debounce_time: float = 50.0  # ms

    def __post_init__(self):
        _require_finite("ear_threshold", self.ear_threshold, strict=True)
        if isinstance(self.consecutive_frames, bool) or not isinstance(self.consecutive_frames, int):
            raise ConfigOutOfRangeError(f"consecutive_frames 必须为整数: {self.consecutive_frames!r}")
        if self.consecutive_frames < 1:
            raise ConfigOutOfRangeError(f"consecutive_frames 不能小于 1: {self.consecutive_frames!r}")
        _require_finite("debounce_time", self.debounce_time)

    @classmethod
    def from_calibration(cls, calibration: "Calibration", **overrides) -> "BlinkDetectorConfig":
        """使用校准结果中的 EAR 阈值构造配置"""
        return cls(ear_threshold=calibration.ear_threshold, **overrides)


@dataclass
class BlinkDetectionState:
    """眨眼状态机的可变状态"""
    consecutive_frames_below: int = 0
    last_blink_time: Optional[float] = None  # None 表示尚未眨眼
    total_blinks: int = 0
    is_currently_blinking: bool = False


@dataclass
class BlinkDetectionResult:
    """单帧眨眼检测结果，current_ear 为 None 表示无人脸"""
    blink_count: int
    current_ear: Optional[float]
    is_blinking: bool
    timestamp: float
    face_detected: bool = True


@dataclass
class BlinkEvent:
    """一次眨眼事件"""
    timestamp: float  # ms since epoch
    duration: Optional[float] = None


@dataclass
class FaceLostPeriod:
    """人脸丢失区间，end 为 None 表示仍处于丢失状态"""
    start: float
    end: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.end is None


@dataclass
class BlinkRatePoint:
    """眨眼频率采样点（次/分钟）"""
    timestamp: float
    rate: float


class SessionQuality(str, Enum):
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass
class SessionData:
    """一次监测会话"""
    id: str
    start_time: float  # ms since epoch
    end_time: Optional[float] = None
    is_active: bool = True
    total_blinks: int = 0
    average_blink_rate: float = 0.0
    blink_events: List[BlinkEvent] = field(default_factory=list)
    blink_rate_history: List[BlinkRatePoint] = field(default_factory=list)
    quality: SessionQuality = SessionQuality.GOOD
    fatigue_alert_count: int = 0
    face_lost_periods: List[FaceLostPeriod] = field(default_factory=list)
    duration: Optional[int] = None  # seconds
    calibration_id: Optional[str] = None

    def open_face_lost_period(self) -> Optional[FaceLostPeriod]:
        """返回当前未闭合的人脸丢失区间"""
        for period in reversed(self.face_lost_periods):
            if period.is_open:
                return period
        return None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["quality"] = self.quality.value
        return data


@dataclass
class CalibrationMetadata:
    total_blinks_requested: int = 0
    total_blinks_detected: int = 0
    accuracy: float = 0.0
    average_blink_interval: float = 0.0
    min_ear_value: float = 0.25
    max_ear_value: float = 0.25


@dataclass
class CalibrationBlinkEvent:
    timestamp: float
    ear_value: float
    duration: float


@dataclass
class CalibrationRawData:
    timestamps: List[float] = field(default_factory=list)
    ear_values: List[float] = field(default_factory=list)
    blink_events: List[CalibrationBlinkEvent] = field(default_factory=list)


@dataclass
class Calibration:
    """用户校准档案"""
    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    is_active: bool
    ear_threshold: float
    metadata: CalibrationMetadata = field(default_factory=CalibrationMetadata)
    raw_data: CalibrationRawData = field(default_factory=CalibrationRawData)
    is_default: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Calibration":
        raw = data.get("raw_data") or {}
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            is_active=bool(data.get("is_active", False)),
            ear_threshold=float(data["ear_threshold"]),
            metadata=CalibrationMetadata(**(data.get("metadata") or {})),
            raw_data=CalibrationRawData(
                timestamps=list(raw.get("timestamps", [])),
                ear_values=list(raw.get("ear_values", [])),
                blink_events=[CalibrationBlinkEvent(**e) for e in raw.get("blink_events", [])],
            ),
            is_default=bool(data.get("is_default", False)),
        )


@dataclass(frozen=True)
class FatigueAlertConfig:
    """疲劳提醒参数"""
    fatigue_threshold: float = 8.0  # 次/分钟
    notifications_enabled: bool = True
    sound_enabled: bool = False
    grace_period_minutes: float = 5.0
    window_seconds: float = 180.0
    face_loss_tolerance_seconds: float = 5.0
    cooldown_seconds: float = 180.0
    sustained_seconds: float = 60.0
    check_interval_seconds: float = 60.0

    def __post_init__(self):
        _require_finite("fatigue_threshold", self.fatigue_threshold)
        _require_finite("grace_period_minutes", self.grace_period_minutes)
        _require_finite("window_seconds", self.window_seconds, strict=True)
        _require_finite("face_loss_tolerance_seconds", self.face_loss_tolerance_seconds)
        _require_finite("cooldown_seconds", self.cooldown_seconds)
        _require_finite("sustained_seconds", self.sustained_seconds)
        _require_finite("check_interval_seconds", self.check_interval_seconds, strict=True)


@dataclass(frozen=True)
class SessionTimingConfig:
    """会话聚合的时间参数"""
    face_lost_timeout_seconds: float = 10.0
    rate_update_interval_seconds: float = 5.0

    def __post_init__(self):
        _require_finite("face_lost_timeout_seconds", self.face_lost_timeout_seconds)
        _require_finite("rate_update_interval_seconds", self.rate_update_interval_seconds, strict=True)


@dataclass(frozen=True)
class Notification:
    """系统通知内容"""
    title: str
    body: str
    tag: str = "fatigue-alert"
    sound: bool = False


@dataclass(frozen=True)
class NotificationSettings:
    """通知设置，免打扰时段按 24 小时制整点"""
    enabled: bool = True
    sound_enabled: bool = True
    quiet_hours_enabled: bool = True
    quiet_hours_start: int = 23
    quiet_hours_end: int = 7

    def __post_init__(self):
        for name in ("quiet_hours_start", "quiet_hours_end"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 23:
                raise ConfigOutOfRangeError(f"{name} 必须为 0-23 的整数: {value!r}")
