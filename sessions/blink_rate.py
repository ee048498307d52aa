"""眨眼频率聚合与滚动窗口计算"""

import time
from typing import Iterable, List, Optional, Sequence

import numpy as np

from models.data_models import (
    BlinkEvent,
    BlinkRatePoint,
    FaceLostPeriod,
    SessionData,
    SessionQuality,
)

# 去抖时间，须与 BlinkDetectorConfig.debounce_time 默认值一致
BLINK_DEBOUNCE_MS = 50
# 一次闭眼再睁眼所需的最短时间
MIN_BLINK_CYCLE_MS = 100
MAX_BLINK_RATE = round((60 * 1000) / (BLINK_DEBOUNCE_MS + MIN_BLINK_CYCLE_MS))

# 计算瞬时频率的时间窗口，同时也是第一个图表点之前的最短时长
BLINK_RATE_WINDOW_SECONDS = 30
CHART_BUCKET_INTERVAL_MS = 5000

SMOOTHING_OPTIONS = (10, 30, 60, 120, 300)
DEFAULT_SMOOTHING_WINDOW = 30


def _now_ms() -> float:
    return time.time() * 1000.0


def _sorted_timestamps(events: Iterable[BlinkEvent]) -> np.ndarray:
    return np.sort(np.fromiter((e.timestamp for e in events), dtype=float))


def aggregate_blink_events(
    blink_events: Sequence[BlinkEvent],
    window_seconds: float,
    session_start: float,
    session_end: Optional[float] = None,
) -> List[BlinkRatePoint]:
    """
    将眨眼事件聚合为频率曲线。

    从 session_start + window 开始每 5 秒取一个点，统计 [t - window, t) 内的
    眨眼次数并换算为次/分钟，超过 MAX_BLINK_RATE 的值截断。

    Args:
        blink_events: 眨眼事件列表
        window_seconds: 平滑窗口（秒）
        session_start: 会话开始时间（毫秒）
        session_end: 会话结束时间（毫秒），None 表示当前时间

    Returns:
        BlinkRatePoint 列表；无事件时为空
    """
    if not blink_events:
        return []

    window_ms = window_seconds * 1000.0
    end_time = session_end if session_end is not None else _now_ms()
    if session_start + window_ms > end_time:
        return []

    timestamps = _sorted_timestamps(blink_events)
    bucket_ends = np.arange(session_start + window_ms, end_time + 1e-9, CHART_BUCKET_INTERVAL_MS)
    counts = (
        np.searchsorted(timestamps, bucket_ends, side="left")
        - np.searchsorted(timestamps, bucket_ends - window_ms, side="left")
    )
    rates = np.minimum(counts / (window_seconds / 60.0), MAX_BLINK_RATE)

    return [
        BlinkRatePoint(timestamp=float(t), rate=float(r))
        for t, r in zip(bucket_ends, rates)
    ]


def get_chart_data_from_session(
    session: SessionData,
    smoothing_window: float = DEFAULT_SMOOTHING_WINDOW,
    now: Optional[float] = None,
) -> List[BlinkRatePoint]:
    """由会话的眨眼事件生成图表数据，smoothing_window 须为 SMOOTHING_OPTIONS 之一"""
    if smoothing_window not in SMOOTHING_OPTIONS:
        raise ValueError(f"不支持的平滑窗口: {smoothing_window}")
    if not session.blink_events:
        return []

    end = session.end_time
    if end is None:
        end = now if now is not None else _now_ms()
    return aggregate_blink_events(session.blink_events, smoothing_window, session.start_time, end)


def blink_rate_in_window(
    blink_events: Sequence[BlinkEvent],
    now: float,
    window_seconds: float = BLINK_RATE_WINDOW_SECONDS,
) -> float:
    """最近 window_seconds 内的眨眼频率（次/分钟），窗口为 (now - window, now]，含当前帧"""
    window_start = now - window_seconds * 1000.0
    count = sum(1 for e in blink_events if window_start < e.timestamp <= now)
    return min(count / (window_seconds / 60.0), MAX_BLINK_RATE)


def rolling_average_rate(
    points: Sequence[BlinkRatePoint],
    now: float,
    window_seconds: float,
) -> Optional[float]:
    """
    滚动窗口平均频率。

    只取 [now - window, now] 内的采样点求平均，窗口为空时返回 None。
    """
    window_start = now - window_seconds * 1000.0
    rates = [p.rate for p in points if window_start <= p.timestamp <= now]
    if not rates:
        return None
    return sum(rates) / len(rates)


def face_lost_overlap_ms(
    periods: Sequence[FaceLostPeriod],
    window_start: float,
    window_end: float,
) -> float:
    """人脸丢失区间与 [window_start, window_end] 的重叠总时长（毫秒），未闭合区间截止到 window_end"""
    total = 0.0
    for period in periods:
        end = period.end if period.end is not None else window_end
        overlap = min(end, window_end) - max(period.start, window_start)
        if overlap > 0:
            total += overlap
    return total


def calculate_total_idle_time(
    periods: Optional[Sequence[FaceLostPeriod]],
    session_end: Optional[float] = None,
    now: Optional[float] = None,
) -> float:
    """人脸丢失总时长（毫秒）"""
    if not periods:
        return 0.0

    total = 0.0
    for period in periods:
        end = period.end
        if end is None:
            end = session_end if session_end is not None else (now if now is not None else _now_ms())
        total += end - period.start
    return total


def calculate_active_time(session: SessionData) -> float:
    """有效时长（秒）= 会话时长 - 人脸丢失时长"""
    total_duration = session.duration or 0
    idle_seconds = calculate_total_idle_time(session.face_lost_periods, session.end_time) / 1000.0
    return max(0.0, total_duration - idle_seconds)


def calculate_active_blink_rate(session: SessionData) -> float:
    """按有效时长计算的眨眼频率"""
    active_minutes = calculate_active_time(session) / 60.0
    return session.total_blinks / active_minutes if active_minutes > 0 else 0.0


def get_session_quality(blink_rate: float) -> SessionQuality:
    if blink_rate >= 12:
        return SessionQuality.GOOD
    if blink_rate >= 8:
        return SessionQuality.FAIR
    return SessionQuality.POOR


def format_session_duration(seconds: float) -> str:
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)

    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes < 1:
        return "< 1 min"
    return f"{minutes}m"
