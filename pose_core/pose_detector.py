from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .skeleton import NUM_LANDMARKS
from .types import PoseLandmarks


@dataclass(frozen=True)
class PoseDetectorConfig:
    model_complexity: int = 1
    min_detection_confidence: float = 0.6
    min_tracking_confidence: float = 0.6
    static_image_mode: bool = False


class PoseDetector:
    """关键点来源：MediaPipe Pose 的薄封装。评分层只拿到 PoseLandmarks，不接触 MediaPipe 对象。"""

    def __init__(self, config: Optional[PoseDetectorConfig] = None):
        """初始化 PoseDetector。

        输入:
        - config: 可选的 PoseDetectorConfig，用于控制模型复杂度与置信度阈值。

        输出: 无（构造器）。

        作用: 延迟导入 mediapipe 并创建内部的 Pose 推理对象；未安装时抛出 RuntimeError。
        """
        self._config = config or PoseDetectorConfig()
        # 延迟导入，评分/测试不依赖 mediapipe
        try:
            import mediapipe as mp
        except ImportError as e:
            raise RuntimeError("未安装 mediapipe：pip install 'pose-coach[detector]'") from e

        self._pose = mp.solutions.pose.Pose(
            static_image_mode=self._config.static_image_mode,
            model_complexity=self._config.model_complexity,
            enable_segmentation=False,
            smooth_landmarks=True,
            min_detection_confidence=self._config.min_detection_confidence,
            min_tracking_confidence=self._config.min_tracking_confidence,
        )

    def detect(self, frame_bgr: np.ndarray) -> Optional[PoseLandmarks]:
        """对单帧 BGR 图像做姿态检测。

        输入:
        - frame_bgr: BGR 格式的图像帧，numpy 数组，形状 (h,w,3)。

        输出:
        - 检测到人体时返回 PoseLandmarks（33 点，归一化坐标 + visibility）；
        - 未检测到人体或输入无效时返回 None。
        """
        if frame_bgr is None or frame_bgr.size == 0:
            return None

        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        result = self._pose.process(frame_rgb)
        if result.pose_landmarks is None:
            return None

        lm = result.pose_landmarks.landmark
        data = np.zeros((NUM_LANDMARKS, 4), dtype=np.float64)
        for i in range(NUM_LANDMARKS):
            data[i, 0] = lm[i].x
            data[i, 1] = lm[i].y
            data[i, 2] = lm[i].z
            data[i, 3] = lm[i].visibility
        return PoseLandmarks(data)

    def close(self) -> None:
        """释放内部 MediaPipe 资源；调用后不应再使用该实例。"""
        self._pose.close()

    def __enter__(self) -> "PoseDetector":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
