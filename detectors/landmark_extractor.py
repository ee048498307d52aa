"""眼部关键点提取模块，将 FaceMesh 网格映射为左右眼 6 点结构"""

from typing import Optional, Sequence, Tuple

from models.data_models import (
    NO_FACE,
    EyeLandmarks,
    Face,
    LandmarkResult,
    NoFace,
    Point2D,
    Point3D,
)

# 关键点索引常量（顺序: 眼角, 上睑, 上睑, 眼角, 下睑, 下睑）
LEFT_EYE_INDICES = (33, 160, 158, 133, 153, 144)
RIGHT_EYE_INDICES = (362, 385, 387, 263, 373, 380)

# FaceMesh 完整网格点数
MIN_LANDMARKS = 468


def to_landmark_result(multi_face_landmarks) -> LandmarkResult:
    """
    将 MediaPipe 的 multi_face_landmarks 转换为 NoFace | Face。

    Args:
        multi_face_landmarks: None、空列表，或人脸列表（每个含 .landmark 序列）

    Returns:
        仅取第一张人脸；无人脸时返回 NO_FACE
    """
    if not multi_face_landmarks:
        return NO_FACE

    face = multi_face_landmarks[0]
    points = tuple(
        Point3D(lm.x, lm.y, getattr(lm, "z", 0.0)) for lm in face.landmark
    )
    if not points:
        return NO_FACE
    return Face(points=points)


def extract_eye_landmarks(
    points: Sequence[Point3D],
    eye_indices: Sequence[int],
    width: float,
    height: float,
) -> EyeLandmarks:
    """按索引取 6 个点，并由归一化坐标换算为像素坐标"""
    p1, p2, p3, p4, p5, p6 = (
        Point2D(points[i].x * width, points[i].y * height) for i in eye_indices
    )
    return EyeLandmarks(p1=p1, p2=p2, p3=p3, p4=p4, p5=p5, p6=p6)


def extract_both_eye_landmarks(
    result: LandmarkResult,
    width: float,
    height: float,
) -> Optional[Tuple[EyeLandmarks, EyeLandmarks]]:
    """
    提取左右眼关键点。

    Returns:
        (left_eye, right_eye)；无人脸或网格点数不足 468 时返回 None
    """
    if isinstance(result, NoFace):
        return None
    if not isinstance(result, Face):
        raise TypeError(f"不支持的关键点结果类型: {type(result).__name__}")
    if len(result.points) < MIN_LANDMARKS:
        return None

    left_eye = extract_eye_landmarks(result.points, LEFT_EYE_INDICES, width, height)
    right_eye = extract_eye_landmarks(result.points, RIGHT_EYE_INDICES, width, height)
    return left_eye, right_eye
