from __future__ import annotations

from typing import Mapping, Optional

import cv2
import numpy as np

from .feedback import CAUTION, GOOD, POOR, segment_joint
from .skeleton import POSE_CONNECTIONS
from .types import FrameResult, PoseLandmarks

# BGR
SEVERITY_COLORS: dict[str, tuple[int, int, int]] = {
    GOOD: (134, 255, 124),
    CAUTION: (110, 211, 255),
    POOR: (122, 110, 255),
}
NEUTRAL_COLOR = (150, 150, 150)
PREVIEW_LINE = (128, 114, 107)
PREVIEW_POINT = (175, 163, 156)


def draw_colored_skeleton(
    frame_bgr: np.ndarray,
    landmarks: Optional[PoseLandmarks],
    joint_colors: Mapping[str, str],
    visibility_threshold: float = 0.5,
) -> np.ndarray:
    """在 BGR 帧上叠加按误差着色的骨架。

    输入: frame_bgr 原始图像；landmarks 关键点或 None；joint_colors 为 {关节: good/caution/poor}。
    输出: 带叠加的图像副本。
    作用: 每段连线取其所属关节的颜色，未评分的关节画成灰色；可见度不足的点与线不画。
    """
    if landmarks is None:
        return frame_bgr
    out = frame_bgr.copy()
    h, w = out.shape[:2]
    data = landmarks.data

    def ok(i: int) -> bool:
        return landmarks.present(i) and float(data[i, 3]) >= visibility_threshold

    def px(i: int) -> tuple[int, int]:
        return int(float(data[i, 0]) * w), int(float(data[i, 1]) * h)

    thickness = max(2, int(round(w * 0.006)))
    for a, b in sorted(POSE_CONNECTIONS):
        if not (ok(a) and ok(b)):
            continue
        color = SEVERITY_COLORS.get(joint_colors.get(segment_joint(a, b), ""), NEUTRAL_COLOR)
        cv2.line(out, px(a), px(b), color, thickness, cv2.LINE_AA)

    for i in range(data.shape[0]):
        if ok(i):
            cv2.circle(out, px(i), 3, (0, 0, 255), -1)
    return out


def detect_coordinate_space(points: np.ndarray) -> str:
    """判断模板坐标是图像归一化坐标（[0,1]，留 0.05 余量）还是规范坐标。"""
    pts = np.asarray(points, dtype=np.float64)[:, :2]
    pts = pts[np.all(np.isfinite(pts), axis=1)]
    if pts.size == 0:
        return "image01"
    lo = pts.min(axis=0)
    hi = pts.max(axis=0)
    if np.all(lo >= -0.05) and np.all(hi <= 1.05):
        return "image01"
    return "canonical"


def project_to_canvas(
    points: np.ndarray,
    width: int,
    height: int,
    mirror: bool = False,
    margin_frac: float = 0.08,
) -> np.ndarray:
    """把一组点投影到画布像素坐标。

    输入: points (N,2+)，缺失点为 NaN；画布宽高；是否水平镜像；边距比例。
    输出: (N,2) 像素坐标，缺失点保持 NaN。
    作用: image01 直接按画布缩放；规范坐标按包围盒等比缩放居中并留边距。
    """
    pts = np.asarray(points, dtype=np.float64)[:, :2].copy()
    if detect_coordinate_space(pts) == "image01":
        if mirror:
            pts[:, 0] = 1.0 - pts[:, 0]
        return pts * np.array([width, height], dtype=np.float64)

    finite = pts[np.all(np.isfinite(pts), axis=1)]
    lo = finite.min(axis=0)
    hi = finite.max(axis=0)
    bw = (hi[0] - lo[0]) or 1e-6
    bh = (hi[1] - lo[1]) or 1e-6
    avail_w = max(1.0, width - 2 * width * margin_frac)
    avail_h = max(1.0, height - 2 * height * margin_frac)
    s = min(avail_w / bw, avail_h / bh)
    center = (lo + hi) / 2.0

    out = (pts - center) * s
    if mirror:
        out[:, 0] = -out[:, 0]
    return out + np.array([width / 2.0, height / 2.0])


def render_template_preview(
    landmarks: Optional[np.ndarray],
    width: int = 320,
    height: int = 240,
    mirror: bool = True,
) -> np.ndarray:
    """绘制模板参考姿态的预览图（BGR）。没有参考关键点时返回空白画布。"""
    canvas = np.full((height, width, 3), 24, dtype=np.uint8)
    if landmarks is None:
        return canvas
    used = sorted({i for pair in POSE_CONNECTIONS for i in pair})
    pts = np.full((landmarks.shape[0], 2), np.nan)
    pts[used] = np.asarray(landmarks, dtype=np.float64)[used, :2]
    if not np.any(np.all(np.isfinite(pts), axis=1)):
        return canvas

    proj = project_to_canvas(pts, width, height, mirror=mirror, margin_frac=0.1)
    stroke = max(2, int(round(width * 0.008)))
    radius = max(2, int(round(stroke * 0.5)))

    def valid(i: int) -> bool:
        return bool(np.all(np.isfinite(proj[i])))

    for a, b in sorted(POSE_CONNECTIONS):
        if valid(a) and valid(b):
            pa = (int(proj[a, 0]), int(proj[a, 1]))
            pb = (int(proj[b, 0]), int(proj[b, 1]))
            cv2.line(canvas, pa, pb, PREVIEW_LINE, stroke, cv2.LINE_AA)
    for i in used:
        if valid(i):
            cv2.circle(canvas, (int(proj[i, 0]), int(proj[i, 1])), radius, PREVIEW_POINT, -1)
    return canvas


def draw_hud(frame_bgr: np.ndarray, result: FrameResult, step_label: Optional[str] = None) -> np.ndarray:
    """在画面左上角绘制分数、反馈与当前步骤。"""
    out = frame_bgr.copy()
    score = "--" if result.score is None else str(result.score)
    lines = [f"Score: {score}", result.feedback_text]
    if step_label:
        lines.insert(0, step_label)
    y0 = 30
    for i, text in enumerate(lines):
        # Hershey 字体不支持 ° 符号
        text = text.replace("°", " deg")
        cv2.putText(out, text, (20, y0 + i * 28), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 0, 0), 4, cv2.LINE_AA)
        cv2.putText(out, text, (20, y0 + i * 28), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (255, 255, 255), 2, cv2.LINE_AA)
    return out
