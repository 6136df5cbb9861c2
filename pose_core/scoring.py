from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import numpy as np

from .features import bone_unit_vectors
from .skeleton import BONES, JOINT_LANDMARKS
from .templates import DEFAULT_TOLERANCE_DEG, PoseTemplate
from .types import JointError, NormalizedPose

EPS = 1e-6


@dataclass(frozen=True)
class ScoringConfig:
    visibility_threshold: float = 0.5
    lift_exponent: float = 0.6
    trim_worst: bool = True
    # 混合评分权重（有角度分时 / 角度分不可用时）
    angle_weight: float = 0.60
    bone_weight: float = 0.25
    embed_weight: float = 0.15
    fallback_bone_weight: float = 0.65
    fallback_embed_weight: float = 0.35
    soft_margin_factor: float = 0.15


@dataclass(frozen=True)
class CoveragePolicy:
    """覆盖率惩罚：覆盖率在 [floor, full] 之间线性放大系数 0→1。默认关闭。"""

    enabled: bool = False
    floor: float = 0.75
    full: float = 1.0

    def factor(self, coverage: float) -> float:
        if not self.enabled:
            return 1.0
        if coverage >= self.full:
            return 1.0
        if coverage <= self.floor:
            return 0.0
        return (coverage - self.floor) / max(EPS, self.full - self.floor)


@dataclass(frozen=True)
class AngleScore:
    score: Optional[int]
    rows: list[JointError] = field(default_factory=list)
    coverage: float = 0.0

    @property
    def joint_errors(self) -> dict[str, float]:
        return {r.joint: r.norm_error for r in self.rows}


def round_half_up(x: float) -> int:
    """四舍五入到整数（.5 向上），与 Python 内置 round 的银行家舍入不同。"""
    return int(math.floor(x + 0.5))


def wrap_diff(a: float, b: float) -> float:
    """两个角度之差折叠到 [0,180]：350° 与 10° 相差 20°。"""
    d = abs(a - b) % 360.0
    return 360.0 - d if d > 180.0 else d


def _vis(visibility: Sequence[float], idx: int, default: float) -> float:
    if idx >= len(visibility):
        return default
    return float(visibility[idx])


def joint_visible(joint: str, visibility: Sequence[float], threshold: float = 0.5) -> bool:
    """判断关节所依赖的所有关键点可见度是否达阈值。

    输入: joint 关节名；visibility 为 (33,) 可见度；threshold 阈值。
    输出: bool。未在门控表中的关节不做门控；缺少的可见度按 0 处理。
    作用: 低置信度（被遮挡）的肢体整体排除，不参与评分。
    """
    required = JOINT_LANDMARKS.get(joint)
    if required is None:
        return True
    # NaN 可见度比较结果为 False，同样被排除
    return all(_vis(visibility, i, 0.0) >= threshold for i in required)


def gate_joints(
    angles: Mapping[str, float],
    visibility: Sequence[float],
    threshold: float = 0.5,
) -> dict[str, float]:
    """返回通过可见度门控的关节角。"""
    return {k: v for k, v in angles.items() if joint_visible(k, visibility, threshold)}


def lift_score(mae: float, exponent: float = 0.6) -> int:
    s_raw = max(0.0, 1.0 - mae)
    return max(0, min(100, round_half_up(100.0 * s_raw ** exponent)))


def score_angles(
    user_angles: Mapping[str, float],
    template: PoseTemplate,
    visibility: Sequence[float],
    config: Optional[ScoringConfig] = None,
) -> AngleScore:
    """对比用户平滑后的关节角与模板角度，输出 0~100 分。

    输入:
    - user_angles: 平滑后的关节角 {关节名: 度}；NaN 的关节视为缺失。
    - template: 当前模板，只有 angles_deg 中的关节参与评分。
    - visibility: 原始 (33,) 可见度，用于门控。
    - config: 可选评分配置。

    输出: AngleScore（score 为 None 表示可评分关节不足，区别于真实的低分）。

    作用:
    - 每个关节误差按容差归一化并截断到 1；
    - 至少两个关节时去掉误差最大的一个（单关节时直接使用，不做剔除）；
    - 加权平均后做非线性提升 100*(1-mae)^0.6。
    """
    cfg = config or ScoringConfig()
    rows: list[JointError] = []
    for joint, ref in template.angles_deg.items():
        user = user_angles.get(joint)
        if user is None or not math.isfinite(user):
            continue
        if not joint_visible(joint, visibility, cfg.visibility_threshold):
            continue
        diff = wrap_diff(user, ref)
        tol = max(EPS, template.tolerance_for(joint) or DEFAULT_TOLERANCE_DEG)
        w = template.weight_for(joint)
        n = min(diff / tol, 1.0)
        rows.append(JointError(joint, diff, n, tol, w, ref - user))

    expected = len(template.angles_deg)
    coverage = len(rows) / expected if expected else 0.0
    if not rows:
        return AngleScore(None, [], coverage)

    # 误差相同时按关节名排序，剔除结果与模板中关节的书写顺序无关
    ranked = sorted(rows, key=lambda r: (-r.norm_error, r.joint))
    # 权重为 0 的关节只用于反馈，不参与剔除与平均
    weighted = [r for r in ranked if r.weight > 0]
    used = weighted[1:] if cfg.trim_worst and len(weighted) >= 2 else weighted

    den = sum(r.weight for r in used)
    if den <= 0:
        return AngleScore(None, ranked, coverage)
    mae = sum(r.norm_error * r.weight for r in used) / den
    if not math.isfinite(mae):
        return AngleScore(None, ranked, coverage)
    return AngleScore(lift_score(mae, cfg.lift_exponent), ranked, coverage)


def bone_cosines(
    user: NormalizedPose,
    reference: NormalizedPose,
    visibility: Sequence[float],
    threshold: float = 0.5,
) -> dict[tuple[int, int], float]:
    """逐骨骼的 max(0,cos)；两端点可见度不足或缺失的骨骼不出现在结果中。"""
    ub = bone_unit_vectors(user)
    rb = bone_unit_vectors(reference)
    out: dict[tuple[int, int], float] = {}
    for bone in BONES:
        i, j = bone
        # 与关节门控一致：NaN 可见度视为不可见
        if not (_vis(visibility, i, 1.0) >= threshold and _vis(visibility, j, 1.0) >= threshold):
            continue
        if bone not in ub or bone not in rb:
            continue
        cos = float(np.clip(np.dot(ub[bone], rb[bone]), -1.0, 1.0))
        if not math.isfinite(cos):
            continue
        out[bone] = max(0.0, cos)
    return out


def bone_cosine_score(
    user: NormalizedPose,
    reference: NormalizedPose,
    visibility: Sequence[float],
    threshold: float = 0.5,
) -> Optional[float]:
    """骨骼方向余弦相似度（0~100）。

    输入: 用户与模板的规范化姿态、用户可见度、门控阈值。
    输出: 可比较骨骼的 max(0,cos) 均值 ×100；没有可比较骨骼时为 None。
    作用: 与角度分互补，描述肢体朝向是否一致。
    """
    cosines = list(bone_cosines(user, reference, visibility, threshold).values())
    if not cosines:
        return None
    return 100.0 * (sum(cosines) / len(cosines))


def embedding_similarity(
    user: Optional[np.ndarray],
    reference: Optional[np.ndarray],
    soft_margin_factor: float = 0.15,
) -> Optional[float]:
    """嵌入向量欧氏距离转相似度：100*max(0, 1 - d/softMargin)，softMargin=sqrt(len)*0.15。"""
    if user is None or reference is None:
        return None
    if user.size == 0 or user.shape != reference.shape:
        return None
    d = float(np.linalg.norm(user - reference))
    margin = math.sqrt(user.size) * soft_margin_factor
    s = max(0.0, 1.0 - d / (margin + EPS))
    if not math.isfinite(s):
        return None
    return 100.0 * s


def blend_scores(
    angle_score: Optional[int],
    bone_score: Optional[float],
    embed_score: Optional[float],
    has_reference_shape: bool,
    config: Optional[ScoringConfig] = None,
) -> Optional[int]:
    """合成最终分数。

    - 模板没有参考关键点：直接使用角度分；
    - 有角度分：0.60*角度 + 0.25*骨骼 + 0.15*嵌入（不可计算的分量按 0）；
    - 没有角度分但骨骼/嵌入至少一个可算：0.65*骨骼 + 0.35*嵌入；
    - 否则 None。
    """
    cfg = config or ScoringConfig()
    if not has_reference_shape:
        return angle_score
    b = bone_score or 0.0
    e = embed_score or 0.0
    if angle_score is not None:
        raw = cfg.angle_weight * angle_score + cfg.bone_weight * b + cfg.embed_weight * e
    elif bone_score is not None or embed_score is not None:
        raw = cfg.fallback_bone_weight * b + cfg.fallback_embed_weight * e
    else:
        return None
    return max(0, min(100, round_half_up(raw)))


def apply_coverage_policy(
    score: Optional[int],
    coverage: float,
    policy: Optional[CoveragePolicy] = None,
) -> Optional[int]:
    if score is None:
        return None
    pol = policy or CoveragePolicy()
    return max(0, min(100, round_half_up(score * pol.factor(coverage))))
