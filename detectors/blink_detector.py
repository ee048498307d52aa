"""眨眼检测模块：将逐帧 EAR 值转换为去抖后的离散眨眼事件"""

import logging
import threading
import time
from dataclasses import replace
from typing import Optional

import numpy as np

from detectors.ear_calculator import calculate_average_ear
from detectors.landmark_extractor import extract_both_eye_landmarks
from models.data_models import (
    BlinkDetectionResult,
    BlinkDetectionState,
    BlinkDetectorConfig,
    LandmarkResult,
)

logger = logging.getLogger(__name__)


class BlinkDetector:
    """
    眨眼状态机。

    每个实例独占自己的检测状态，可同时存在多个互不影响的实例。
    连续 consecutive_frames 帧低于阈值才计为一次眨眼，且距上次眨眼须超过
    debounce_time 毫秒。
    """

    def __init__(self, config: Optional[BlinkDetectorConfig] = None, face_detector=None):
        self.config = config or BlinkDetectorConfig()
        self._face_detector = face_detector
        self._state = BlinkDetectionState()
        self._lock = threading.Lock()
        self._disposed = False

    @property
    def face_detector(self):
        return self._face_detector

    @property
    def state(self) -> BlinkDetectionState:
        """当前状态的副本"""
        with self._lock:
            return replace(self._state)

    def detect(self, current_ear: float, timestamp: float) -> bool:
        """
        处理一帧 EAR 值。

        Args:
            current_ear: 双眼平均 EAR
            timestamp: 帧时间戳（毫秒）

        Returns:
            当前是否处于眨眼状态
        """
        with self._lock:
            state = self._state
            if current_ear < self.config.ear_threshold:
                state.consecutive_frames_below += 1

                if (
                    state.consecutive_frames_below >= self.config.consecutive_frames
                    and not state.is_currently_blinking
                    and (
                        state.last_blink_time is None
                        or timestamp - state.last_blink_time > self.config.debounce_time
                    )
                ):
                    state.is_currently_blinking = True
                    state.total_blinks += 1
                    state.last_blink_time = timestamp
                    logger.debug("检测到眨眼 #%d (EAR=%.3f)", state.total_blinks, current_ear)
            else:
                state.consecutive_frames_below = 0
                state.is_currently_blinking = False

            return state.is_currently_blinking

    def process_landmarks(
        self,
        result: LandmarkResult,
        width: float,
        height: float,
        timestamp: float,
    ) -> BlinkDetectionResult:
        """
        对一帧关键点结果执行 EAR 计算和眨眼检测。

        无人脸帧不进入状态机，状态保持不变，current_ear 为 None。
        """
        eyes = extract_both_eye_landmarks(result, width, height)

        if eyes is None:
            with self._lock:
                return BlinkDetectionResult(
                    blink_count=self._state.total_blinks,
                    current_ear=None,
                    is_blinking=False,
                    timestamp=timestamp,
                    face_detected=False,
                )

        left_eye, right_eye = eyes
        current_ear = calculate_average_ear(left_eye, right_eye)
        is_blinking = self.detect(current_ear, timestamp)

        return BlinkDetectionResult(
            blink_count=self.get_blink_count(),
            current_ear=current_ear,
            is_blinking=is_blinking,
            timestamp=timestamp,
        )

    def process_frame(self, frame: np.ndarray, timestamp: Optional[float] = None) -> BlinkDetectionResult:
        """对 BGR 视频帧执行人脸检测和眨眼检测"""
        if self._disposed:
            raise RuntimeError("BlinkDetector 已释放")
        if self._face_detector is None:
            raise RuntimeError("未配置人脸检测器，无法直接处理视频帧")

        if timestamp is None:
            timestamp = time.time() * 1000.0

        h, w = frame.shape[:2]
        result = self._face_detector.detect(frame)
        return self.process_landmarks(result, w, h, timestamp)

    def reset_blink_counter(self):
        """重置全部检测状态"""
        with self._lock:
            self._state = BlinkDetectionState()

    def get_blink_count(self) -> int:
        with self._lock:
            return self._state.total_blinks

    def dispose(self):
        """释放人脸检测器资源，可重复调用"""
        if self._disposed:
            return
        self._disposed = True
        if self._face_detector is not None:
            self._face_detector.close()
