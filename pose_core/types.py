from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import numpy as np

from .skeleton import NUM_LANDMARKS


def _field(p: Any, name: str, default: float) -> float:
    if isinstance(p, dict):
        v = p.get(name, default)
    else:
        v = getattr(p, name, default)
    return default if v is None else float(v)


@dataclass(frozen=True)
class PoseLandmarks:
    """33个关键点，形状为 (33, 4)：x,y,z,visibility（均为float）。

    属性:
    - data: numpy.ndarray，形状 (33,4)，每行为 x,y,z,visibility（归一化坐标）。
      缺失的关键点以 NaN 坐标、visibility=0 表示。
    """

    data: np.ndarray  # (33, 4)

    @property
    def xy(self) -> np.ndarray:
        """返回二维坐标部分。

        输入: 无（通过实例访问）。
        输出: numpy.ndarray，形状 (33,2)，对应每个关键点的 (x,y)。
        作用: 方便只使用二维坐标的下游计算（如绘图/角度计算）。
        """
        return self.data[:, :2]

    @property
    def visibility(self) -> np.ndarray:
        """返回 (33,) 的可见度/置信度数组。"""
        return self.data[:, 3]

    def present(self, idx: int) -> bool:
        """关键点坐标是否有效（两个坐标都是有限值）。可见度不在此处判断。"""
        return bool(np.all(np.isfinite(self.data[idx, :2])))

    @staticmethod
    def from_points(points: Sequence[Any]) -> "PoseLandmarks":
        """由外部关键点序列构建 PoseLandmarks。

        输入:
        - points: 最多 33 个元素，每个为 {x,y,visibility} 字典、带同名属性的对象或 None。

        输出: PoseLandmarks。

        作用: 把检测器/上层传入的任意形态关键点规整为统一的 (33,4) 数组；
        缺失项以 NaN 坐标表示，visibility 缺省为 1（上游未提供置信度时视为可信）。
        """
        data = np.full((NUM_LANDMARKS, 4), np.nan, dtype=np.float64)
        data[:, 2] = 0.0
        data[:, 3] = 0.0
        for i, p in enumerate(list(points)[:NUM_LANDMARKS]):
            if p is None:
                continue
            data[i, 0] = _field(p, "x", math.nan)
            data[i, 1] = _field(p, "y", math.nan)
            data[i, 2] = _field(p, "z", 0.0)
            data[i, 3] = _field(p, "visibility", 1.0)
        return PoseLandmarks(data)


@dataclass(frozen=True)
class NormalizedPose:
    """规范坐标系下的姿态：原点=髋中点，单位长度=左肩到左髋距离，肩线水平。

    属性:
    - points: (33,2)，缺失关键点为 NaN。
    - origin/scale/theta: 变换参数（图像坐标中的髋中点、缩放、肩线角度），用于反变换。
    """

    points: np.ndarray  # (33, 2)
    origin: np.ndarray  # (2,)
    scale: float
    theta: float

    @property
    def mid_hip(self) -> np.ndarray:
        return np.zeros(2, dtype=np.float64)

    def point(self, idx: int) -> Optional[np.ndarray]:
        p = self.points[idx]
        if not np.all(np.isfinite(p)):
            return None
        return p

    def to_image(self, points: np.ndarray) -> np.ndarray:
        """把规范坐标还原到原图像坐标（旋转 +theta、缩放、平移）。"""
        c, s = math.cos(self.theta), math.sin(self.theta)
        rot = np.array([[c, -s], [s, c]], dtype=np.float64)
        return np.asarray(points, dtype=np.float64) @ rot.T * self.scale + self.origin


@dataclass(frozen=True)
class JointError:
    """单个关节的误差行。delta_deg = 参考角 - 用户角（带符号）。"""

    joint: str
    diff_deg: float
    norm_error: float
    tolerance_deg: float
    weight: float
    delta_deg: float

    @property
    def tolerance_units(self) -> float:
        """未截断的误差（以容差为单位），用于颜色分级。"""
        return self.diff_deg / self.tolerance_deg


@dataclass(frozen=True)
class ScoreResult:
    score: Optional[int]
    per_joint_error: dict[str, float]
    coverage: float


@dataclass(frozen=True)
class FeedbackHint:
    joint: str
    norm_error: float
    delta_deg: float
    text: str


@dataclass(frozen=True)
class FrameResult:
    """单帧输出：分数（None 表示无法判断）、逐关节误差、覆盖率、反馈与颜色。"""

    score: Optional[int]
    per_joint_error: dict[str, float]
    coverage: float
    feedback_text: str
    joint_colors: dict[str, str]
    hints: list[FeedbackHint] = field(default_factory=list)
    angle_score: Optional[int] = None
    bone_score: Optional[float] = None
    embed_score: Optional[float] = None
    pose_found: bool = False

    def to_score_result(self) -> ScoreResult:
        return ScoreResult(self.score, dict(self.per_joint_error), self.coverage)


@dataclass(frozen=True)
class StepResult:
    step_index: int
    pose_id: str
    stable_score: Optional[int]
    samples: int
