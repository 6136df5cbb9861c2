from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional

import cv2
import numpy as np

from .features import compute_joint_angles
from .normalizer import normalize_pose
from .pose_detector import PoseDetector
from .scoring import joint_visible
from .skeleton import JOINT_NAMES
from .templates import DEFAULT_TOLERANCE_DEG, PoseTemplate
from .types import PoseLandmarks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractConfig:
    sample_fps: float = 10.0
    max_seconds: Optional[float] = None
    visibility_threshold: float = 0.5
    tolerance_deg: float = DEFAULT_TOLERANCE_DEG


class TemplateExtractionError(RuntimeError):
    pass


def _gated_angles(landmarks: PoseLandmarks, joints: Iterable[str], threshold: float) -> dict[str, float]:
    pose = normalize_pose(landmarks)
    if pose is None:
        return {}
    angles = compute_joint_angles(pose)
    vis = landmarks.visibility
    return {
        k: angles[k]
        for k in joints
        if k in angles and math.isfinite(angles[k]) and joint_visible(k, vis, threshold)
    }


def build_template(
    pose_id: str,
    landmarks: PoseLandmarks,
    joints: Optional[Iterable[str]] = None,
    tolerance_deg: float = DEFAULT_TOLERANCE_DEG,
    weights: Optional[Mapping[str, float]] = None,
    camera_view: Optional[str] = None,
    visibility_threshold: float = 0.5,
) -> PoseTemplate:
    """由一帧参考姿态构建模板。

    输入:
    - pose_id: 模板标识。
    - landmarks: 参考姿态关键点。
    - joints: 参与评分的关节，默认全部 9 个；可见度不足的关节不会写入模板。
    - tolerance_deg/weights/camera_view: 写入模板的附加字段。

    输出: PoseTemplate（angles_deg 取一位小数，landmarks 为参考姿态副本）。

    作用: 锚点缺失时抛出 TemplateExtractionError。
    """
    if normalize_pose(landmarks) is None:
        raise TemplateExtractionError(f"参考姿态 {pose_id} 缺少肩/髋锚点")
    angles = _gated_angles(landmarks, list(joints or JOINT_NAMES), visibility_threshold)
    angles_deg = {k: round(v, 1) for k, v in angles.items()}
    return PoseTemplate(
        pose_id=pose_id,
        angles_deg=angles_deg,
        tolerance_deg={k: float(tolerance_deg) for k in angles_deg},
        weights=dict(weights or {}),
        camera_view=camera_view,
        landmarks=landmarks.data.copy(),
    )


def extract_template_from_video(
    video_path: str,
    detector: PoseDetector,
    pose_id: Optional[str] = None,
    config: Optional[ExtractConfig] = None,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> PoseTemplate:
    """从参考视频中抽取姿态并合成一个模板。

    输入:
    - video_path: 参考视频（或静态图片）文件路径。
    - detector: PoseDetector 实例，用于逐帧检测关键点。
    - pose_id: 模板标识，默认取文件名。
    - config: 可选的抽样配置（帧率、最长时长、可见度阈值、容差）。
    - on_progress: 可选进度回调，形如 (cur_frames, total_frames)。

    输出: PoseTemplate。

    作用:
    - 以指定采样帧率遍历视频，逐帧检测关键点；
    - 每个关节取所有抽样帧角度的中位数，参考关键点取逐点中位数；
    - 未能打开视频或未检测到任何姿态时抛出 TemplateExtractionError。
    """
    cfg = config or ExtractConfig()
    pid = pose_id or Path(video_path).stem

    cap = cv2.VideoCapture(video_path)
    if not cap.isOpened():
        raise TemplateExtractionError(f"无法打开视频：{video_path}")

    src_fps = cap.get(cv2.CAP_PROP_FPS)
    if not src_fps or src_fps <= 1e-6:
        src_fps = 25.0

    total_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
    step = max(1, int(round(src_fps / max(1e-6, cfg.sample_fps))))

    max_frames = None
    if cfg.max_seconds is not None:
        max_frames = int(cfg.max_seconds * src_fps)

    samples: list[PoseLandmarks] = []
    per_joint: dict[str, list[float]] = {k: [] for k in JOINT_NAMES}
    idx = 0
    try:
        while True:
            ok, frame = cap.read()
            if not ok:
                break
            if max_frames is not None and idx >= max_frames:
                break

            if idx % step == 0:
                lm = detector.detect(frame)
                if lm is not None and normalize_pose(lm) is not None:
                    samples.append(lm)
                    for k, v in _gated_angles(lm, JOINT_NAMES, cfg.visibility_threshold).items():
                        per_joint[k].append(v)

            idx += 1
            if on_progress is not None and total_frames > 0 and idx % 10 == 0:
                on_progress(min(idx, total_frames), total_frames)
    finally:
        cap.release()

    if not samples:
        raise TemplateExtractionError(f"参考视频未检测到完整姿态：{video_path}")

    stack = np.stack([s.data for s in samples], axis=0)
    with warnings.catch_warnings():
        # 某些关键点在所有帧都缺失时 nanmedian 会告警，结果保持 NaN
        warnings.simplefilter("ignore", category=RuntimeWarning)
        ref = np.nanmedian(stack, axis=0)

    angles_deg = {k: round(float(np.median(v)), 1) for k, v in per_joint.items() if v}
    logger.info("extracted template %s from %d frame(s) of %s", pid, len(samples), video_path)
    return PoseTemplate(
        pose_id=pid,
        angles_deg=angles_deg,
        tolerance_deg={k: float(cfg.tolerance_deg) for k in angles_deg},
        landmarks=ref,
    )
