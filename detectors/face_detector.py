"""人脸关键点检测模块，基于 MediaPipe FaceMesh"""

import logging

import cv2
import mediapipe as mp
import numpy as np

from detectors.landmark_extractor import to_landmark_result
from models.data_models import LandmarkResult

logger = logging.getLogger(__name__)


class FaceDetector:
    """使用 MediaPipe FaceMesh 检测人脸关键点"""

    def __init__(
        self,
        max_num_faces: int = 1,
        min_detection_confidence: float = 0.5,
    ):
        """初始化 MediaPipe FaceMesh"""
        self._face_mesh = mp.solutions.face_mesh.FaceMesh(
            max_num_faces=max_num_faces,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=0.5,
            refine_landmarks=False,
        )
        self._closed = False

    def detect(self, frame: np.ndarray) -> LandmarkResult:
        """
        检测单帧图像中的人脸网格。

        Args:
            frame: BGR 格式的 OpenCV 图像帧

        Returns:
            Face（归一化坐标网格）；未检测到人脸时返回 NO_FACE
        """
        if self._closed:
            raise RuntimeError("FaceDetector 已关闭")

        # BGR -> RGB
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        rgb_frame.flags.writeable = False

        results = self._face_mesh.process(rgb_frame)
        return to_landmark_result(results.multi_face_landmarks)

    def close(self):
        """释放 MediaPipe 资源，可重复调用"""
        if self._closed:
            return
        self._closed = True
        self._face_mesh.close()
        logger.debug("FaceMesh 已释放")
