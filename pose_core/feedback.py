from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .scoring import round_half_up
from .skeleton import (
    L_ANKLE,
    L_ELBOW,
    L_FOOT_INDEX,
    L_HEEL,
    L_KNEE,
    L_SHOULDER,
    R_ANKLE,
    R_ELBOW,
    R_FOOT_INDEX,
    R_HEEL,
    R_KNEE,
    R_SHOULDER,
    SPINE_TILT,
)
from .types import FeedbackHint, JointError

GOOD = "good"
CAUTION = "caution"
POOR = "poor"

MSG_NO_POSE = "Position yourself in the camera view"
MSG_NO_SCORE = "Move back so your full body is visible"
MSG_LOW_COVERAGE = "Move back into frame"
MSG_HOLD = "Nice! Hold steady"


@dataclass(frozen=True)
class FeedbackConfig:
    max_hints: int = 2
    materiality: float = 0.6  # normError 达到该值才给出纠正提示
    good_units: float = 1.0
    caution_units: float = 2.0
    coverage_flag: float = 0.75  # 覆盖率低于该值时提示回到画面


def classify_error(tolerance_units: float, config: Optional[FeedbackConfig] = None) -> str:
    """按误差（容差单位）分级：<=1 good，<=2 caution，其余 poor。"""
    cfg = config or FeedbackConfig()
    if tolerance_units <= cfg.good_units:
        return GOOD
    if tolerance_units <= cfg.caution_units:
        return CAUTION
    return POOR


def joint_colors(rows: Iterable[JointError], config: Optional[FeedbackConfig] = None) -> dict[str, str]:
    return {r.joint: classify_error(r.tolerance_units, config) for r in rows}


def segment_joint(a: int, b: int) -> str:
    """骨架连线 (a,b) 由哪个关节的误差着色。"""
    ends = (a, b)
    if L_ELBOW in ends:
        return "left_elbow"
    if R_ELBOW in ends:
        return "right_elbow"
    if L_KNEE in ends or any(i in ends for i in (L_ANKLE, L_HEEL, L_FOOT_INDEX)):
        return "left_knee"
    if R_KNEE in ends or any(i in ends for i in (R_ANKLE, R_HEEL, R_FOOT_INDEX)):
        return "right_knee"
    if L_SHOULDER in ends:
        return "left_shoulder"
    if R_SHOULDER in ends:
        return "right_shoulder"
    return SPINE_TILT


def hint_text(row: JointError) -> str:
    """由 (参考 - 用户) 的符号生成一句纠正指令。

    输入: row 为某个关节的误差行。
    输出: 例如 "bend left elbow ~12°"、"stand more upright"。
    作用: 肘/膝 -> bend/straighten；脊柱 -> lean/upright；肩/髋 -> increase/decrease。
    """
    label = row.joint.replace("_", " ")
    mag = round_half_up(abs(row.delta_deg))
    if row.joint == SPINE_TILT:
        # 用户倾斜大于参考 -> 需要更直立
        if row.delta_deg < 0:
            return "stand more upright"
        return f"lean forward ~{mag}°"
    if row.joint.endswith(("elbow", "knee")):
        if row.delta_deg > 0:
            return f"straighten {label} ~{mag}°"
        return f"bend {label} ~{mag}°"
    if row.joint.endswith(("shoulder", "hip")):
        if row.delta_deg > 0:
            return f"increase {label} angle ~{mag}°"
        return f"decrease {label} angle ~{mag}°"
    return f"adjust {label} ~{mag}° (within {round_half_up(row.tolerance_deg)}°)"


def synthesize_hints(
    rows: Sequence[JointError],
    config: Optional[FeedbackConfig] = None,
) -> list[FeedbackHint]:
    """挑出误差最大的 1~2 个关节（normError >= 阈值）生成提示，按误差降序。"""
    cfg = config or FeedbackConfig()
    ranked = sorted(rows, key=lambda r: r.norm_error, reverse=True)
    material = [r for r in ranked if r.norm_error >= cfg.materiality]
    return [
        FeedbackHint(r.joint, r.norm_error, r.delta_deg, hint_text(r))
        for r in material[: cfg.max_hints]
    ]


def feedback_text(
    pose_found: bool,
    score: Optional[int],
    coverage: float,
    hints: Sequence[FeedbackHint],
    config: Optional[FeedbackConfig] = None,
) -> str:
    """把本帧结果变成一句反馈；无分数时退化为站位提示而不是错误信息。"""
    cfg = config or FeedbackConfig()
    if not pose_found:
        return MSG_NO_POSE
    if score is None:
        return MSG_NO_SCORE
    if coverage < cfg.coverage_flag:
        return MSG_LOW_COVERAGE
    if hints:
        return "; ".join(h.text for h in hints)
    return MSG_HOLD
