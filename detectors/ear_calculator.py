"""EAR（眼睛纵横比）计算模块，纯函数、无状态"""

import math

from models.data_models import EyeLandmarks, Point2D


def distance(a: Point2D, b: Point2D) -> float:
    """两点欧氏距离"""
    return math.dist(a, b)


def calculate_ear(eye: EyeLandmarks) -> float:
    """
    计算单只眼睛的 EAR 值。

    公式: EAR = (|p2-p6| + |p3-p5|) / (2 * |p1-p4|)

    Args:
        eye: 单眼 6 个轮廓点

    Returns:
        EAR 值，水平距离为零（关键点退化）时返回 0.0
    """
    vertical_1 = distance(eye.p2, eye.p6)
    vertical_2 = distance(eye.p3, eye.p5)
    horizontal = distance(eye.p1, eye.p4)

    if horizontal == 0.0:
        return 0.0

    return (vertical_1 + vertical_2) / (2.0 * horizontal)


def calculate_average_ear(left_eye: EyeLandmarks, right_eye: EyeLandmarks) -> float:
    """双眼 EAR 平均值"""
    return (calculate_ear(left_eye) + calculate_ear(right_eye)) / 2.0
