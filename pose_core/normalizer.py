from __future__ import annotations

import math
from typing import Optional

import numpy as np

from .skeleton import ANCHORS, L_HIP, L_SHOULDER, R_HIP, R_SHOULDER
from .types import NormalizedPose, PoseLandmarks

SCALE_EPS = 1e-6


def normalize_pose(landmarks: Optional[PoseLandmarks]) -> Optional[NormalizedPose]:
    """去除平移、缩放与平面内旋转。

    输入: landmarks 为 PoseLandmarks 或 None。
    输出: NormalizedPose；四个锚点（双肩、双髋）任一缺失时返回 None。

    作用:
    - 以髋中点为原点，左肩到左髋距离（+eps）为单位长度，旋转使肩线水平；
    - 只检查锚点坐标是否存在，可见度留给后续门控判断；
    - 返回 None 是正常的“本帧无结果”，不会抛异常。
    """
    if landmarks is None:
        return None
    if not all(landmarks.present(i) for i in ANCHORS):
        return None

    xy = landmarks.xy.astype(np.float64)
    mid_hip = (xy[L_HIP] + xy[R_HIP]) / 2.0
    scale = float(np.linalg.norm(xy[L_SHOULDER] - xy[L_HIP])) + SCALE_EPS
    shoulder_vec = xy[R_SHOULDER] - xy[L_SHOULDER]
    theta = math.atan2(float(shoulder_vec[1]), float(shoulder_vec[0]))

    c, s = math.cos(-theta), math.sin(-theta)
    rot = np.array([[c, -s], [s, c]], dtype=np.float64)
    # NaN 行（缺失点）在变换后仍为 NaN
    points = ((xy - mid_hip) / scale) @ rot.T

    return NormalizedPose(points=points, origin=mid_hip, scale=scale, theta=theta)
