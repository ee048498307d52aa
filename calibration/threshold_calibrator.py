"""阈值校准模块，根据校准录制的 EAR 序列分析个人最优眨眼阈值"""

import json
import logging
import math
import os
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import roc_curve

from models.data_models import (
    Calibration,
    CalibrationMetadata,
    CalibrationRawData,
)

logger = logging.getLogger(__name__)

DEFAULT_EAR_THRESHOLD = 0.25

# 单次眨眼的合理闭眼时长（毫秒）
MIN_BLINK_DURATION = 50
MAX_BLINK_DURATION = 400
MIN_CONSECUTIVE_FRAMES = 2
ANALYSIS_DEBOUNCE = 100

THRESHOLD_STEP = 0.005


@dataclass
class EARDataPoint:
    time: float  # ms
    ear: float


@dataclass
class BlinkAnalysisResult:
    detected_blinks: int
    min_threshold: float
    max_threshold: float
    calibrated_threshold: float
    blink_timestamps: List[float]


def compute_stats(values: list) -> dict:
    """
    计算一组数值的统计信息。

    Args:
        values: 非空浮点数列表

    Returns:
        {"mean": float, "std": float, "min": float, "max": float}
    """
    n = len(values)
    mean = sum(values) / n
    std = math.sqrt(sum((x - mean) ** 2 for x in values) / n)
    return {
        "mean": mean,
        "std": std,
        "min": min(values),
        "max": max(values),
    }


def count_blinks_at_threshold(
    ear_data: Sequence[EARDataPoint], threshold: float
) -> Tuple[int, List[float]]:
    """
    按给定阈值统计眨眼次数。

    连续 2 帧低于阈值视为闭眼开始，睁眼时闭眼时长在 50-400ms 之间、
    且距上一次眨眼开始超过 100ms 才计数。

    Returns:
        (眨眼次数, 每次眨眼开始时间)
    """
    blink_timestamps: List[float] = []
    is_blinking = False
    consecutive_below = 0
    blink_start = 0.0

    for point in ear_data:
        if point.ear < threshold:
            consecutive_below += 1
            if not is_blinking and consecutive_below >= MIN_CONSECUTIVE_FRAMES:
                is_blinking = True
                blink_start = point.time
        else:
            if is_blinking:
                duration = point.time - blink_start
                if MIN_BLINK_DURATION <= duration <= MAX_BLINK_DURATION:
                    last = blink_timestamps[-1] if blink_timestamps else 0.0
                    if blink_start - last > ANALYSIS_DEBOUNCE:
                        blink_timestamps.append(blink_start)
                is_blinking = False
            consecutive_below = 0

    return len(blink_timestamps), blink_timestamps


def analyze_blink_data(
    ear_data: Sequence[EARDataPoint],
    target_blinks: int = 10,
    min_threshold: float = 0.1,
    max_threshold: float = 0.4,
) -> BlinkAnalysisResult:
    """
    在 [min_threshold, max_threshold] 内以 0.005 步长扫描阈值，
    寻找恰好检测出 target_blinks 次眨眼的阈值区间并取中点；
    没有恰好匹配时取次数最接近的阈值。
    """
    thresholds = np.arange(min_threshold, max_threshold + 1e-9, THRESHOLD_STEP)
    results = []
    for threshold in thresholds:
        count, _ = count_blinks_at_threshold(ear_data, float(threshold))
        results.append((float(threshold), count))

    exact = [t for t, c in results if c == target_blinks]
    if exact:
        lo, hi = min(exact), max(exact)
        calibrated = (lo + hi) / 2.0
        _, timestamps = count_blinks_at_threshold(ear_data, calibrated)
        return BlinkAnalysisResult(
            detected_blinks=target_blinks,
            min_threshold=lo,
            max_threshold=hi,
            calibrated_threshold=calibrated,
            blink_timestamps=timestamps,
        )

    # 取第一个差值最小的阈值
    best_threshold, best_count = min(results, key=lambda r: abs(r[1] - target_blinks))
    _, timestamps = count_blinks_at_threshold(ear_data, best_threshold)
    return BlinkAnalysisResult(
        detected_blinks=best_count,
        min_threshold=best_threshold,
        max_threshold=best_threshold,
        calibrated_threshold=best_threshold,
        blink_timestamps=timestamps,
    )


def validate_blink_pattern(blink_timestamps: Sequence[float]) -> bool:
    """
    检查眨眼节律是否合理：间隔不得短于 200ms；
    间隔超过 5 个且标准差小于 50ms 时视为人为伪造。
    """
    if len(blink_timestamps) < 2:
        return True

    intervals = np.diff(np.asarray(blink_timestamps, dtype=float))
    if np.any(intervals < 200):
        return False
    if len(intervals) > 5 and float(np.std(intervals)) < 50:
        return False
    return True


def calculate_ear_threshold(raw_data: CalibrationRawData) -> float:
    """阈值取眨眼时平均 EAR 的 1.1 倍，限定在 [0.15, 0.35]"""
    if not raw_data.blink_events:
        return DEFAULT_EAR_THRESHOLD

    average_blink_ear = sum(e.ear_value for e in raw_data.blink_events) / len(raw_data.blink_events)
    return max(0.15, min(0.35, average_blink_ear * 1.1))


def optimize_threshold_roc(raw_data: CalibrationRawData) -> Optional[float]:
    """
    基于 ROC 曲线求最优 EAR 阈值。

    落在已记录眨眼事件 [timestamp, timestamp + duration] 内的帧标为闭眼（正类），
    其余为睁眼；使用 Youden's J statistic (max(tpr - fpr)) 确定阈值。

    Returns:
        最优阈值；样本不足或只有一个类别时返回 None
    """
    if not raw_data.ear_values or len(raw_data.ear_values) != len(raw_data.timestamps):
        return None

    times = np.asarray(raw_data.timestamps, dtype=float)
    ear_values = np.asarray(raw_data.ear_values, dtype=float)
    labels = np.zeros(len(times), dtype=int)
    for event in raw_data.blink_events:
        labels[(times >= event.timestamp) & (times <= event.timestamp + event.duration)] = 1

    if len(np.unique(labels)) != 2:
        return None

    # 闭眼时 EAR 低，用 -EAR 作为 score
    fpr, tpr, thresholds = roc_curve(labels, -ear_values)
    best_idx = int(np.argmax(tpr - fpr))
    return float(-thresholds[best_idx])


def validate_calibration(calibration: Calibration) -> bool:
    """校准结果是否可用：检出率 >= 70%，EAR 范围合理，至少 5 次眨眼"""
    metadata = calibration.metadata
    if metadata.total_blinks_requested <= 0:
        return False
    if metadata.total_blinks_detected / metadata.total_blinks_requested < 0.7:
        return False
    if metadata.min_ear_value < 0.1 or metadata.max_ear_value > 2.0:
        return False
    if len(calibration.raw_data.blink_events) < 5:
        return False
    return True


def generate_calibration_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"cal_{int(time.time() * 1000)}_{suffix}"


def build_calibration(
    name: str,
    raw_data: CalibrationRawData,
    target_blinks: int,
    ear_threshold: Optional[float] = None,
) -> Calibration:
    """
    根据一次校准录制生成新的（激活的）校准档案。

    Args:
        name: 档案名称
        raw_data: 录制的 EAR 序列与眨眼事件
        target_blinks: 提示用户眨眼的次数
        ear_threshold: 指定阈值；为 None 时由 calculate_ear_threshold 计算
    """
    detected = len(raw_data.blink_events)
    accuracy = min(detected / target_blinks, 1.0) if target_blinks > 0 else 0.0

    ear_values = [v for v in raw_data.ear_values if v > 0]
    if ear_values:
        stats = compute_stats(ear_values)
        min_ear, max_ear = stats["min"], stats["max"]
    else:
        min_ear = max_ear = DEFAULT_EAR_THRESHOLD

    timestamps = [e.timestamp for e in raw_data.blink_events]
    intervals = np.diff(np.asarray(timestamps, dtype=float))
    average_interval = float(intervals.mean()) if len(intervals) else 0.0

    if ear_threshold is None:
        ear_threshold = calculate_ear_threshold(raw_data)

    now = datetime.now()
    calibration = Calibration(
        id=generate_calibration_id(),
        name=name,
        created_at=now,
        updated_at=now,
        is_active=True,
        ear_threshold=ear_threshold,
        metadata=CalibrationMetadata(
            total_blinks_requested=target_blinks,
            total_blinks_detected=detected,
            accuracy=accuracy,
            average_blink_interval=average_interval,
            min_ear_value=min_ear,
            max_ear_value=max_ear,
        ),
        raw_data=raw_data,
    )
    logger.info("生成校准档案 %s: 阈值 %.3f, 检出 %d/%d", calibration.id, ear_threshold, detected, target_blinks)
    return calibration


def create_default_calibration() -> Calibration:
    now = datetime.now()
    return Calibration(
        id="default",
        name="出厂默认",
        created_at=now,
        updated_at=now,
        is_active=True,
        ear_threshold=DEFAULT_EAR_THRESHOLD,
        metadata=CalibrationMetadata(),
        raw_data=CalibrationRawData(),
        is_default=True,
    )


class CalibrationStore:
    """本地 JSON 文件中的校准档案列表"""

    def __init__(self, path: str):
        self.path = path

    def get_all(self) -> List[Calibration]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [Calibration.from_dict(item) for item in data]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error("校准文件读取失败 %s: %s", self.path, e)
            return []

    def _write(self, calibrations: List[Calibration]) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump([c.to_dict() for c in calibrations], f, indent=4, ensure_ascii=False)

    def save(self, calibration: Calibration) -> None:
        calibrations = self.get_all()
        for i, existing in enumerate(calibrations):
            if existing.id == calibration.id:
                calibrations[i] = calibration
                break
        else:
            calibrations.append(calibration)
        self._write(calibrations)

    def delete(self, calibration_id: str) -> None:
        self._write([c for c in self.get_all() if c.id != calibration_id])

    def get_active(self) -> Optional[Calibration]:
        for calibration in self.get_all():
            if calibration.is_active:
                return calibration
        return None

    def set_active(self, calibration_id: str) -> None:
        calibrations = self.get_all()
        if not any(c.id == calibration_id for c in calibrations):
            raise ValueError(f"校准不存在: {calibration_id}")
        now = datetime.now()
        for c in calibrations:
            c.is_active = c.id == calibration_id
            c.updated_at = now
        self._write(calibrations)

    def fix_multiple_active(self) -> None:
        """存在多个激活档案时只保留最新创建的一个"""
        calibrations = self.get_all()
        active = [c for c in calibrations if c.is_active]
        if len(active) <= 1:
            return
        newest = max(active, key=lambda c: c.created_at)
        now = datetime.now()
        for c in calibrations:
            if c.is_active and c.id != newest.id:
                c.is_active = False
                c.updated_at = now
        self._write(calibrations)
        logger.info("已修复多个激活的校准档案，保留 %s", newest.id)

    def ensure_default(self) -> None:
        if not self.get_all():
            self.save(create_default_calibration())

    def export(self, calibration_id: str) -> str:
        for c in self.get_all():
            if c.id == calibration_id:
                return json.dumps(c.to_dict(), indent=2, ensure_ascii=False)
        raise ValueError(f"校准不存在: {calibration_id}")
