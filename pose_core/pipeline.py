from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .features import compute_joint_angles, embed_pose
from .feedback import FeedbackConfig, feedback_text, joint_colors, synthesize_hints
from .normalizer import normalize_pose
from .scoring import (
    CoveragePolicy,
    ScoringConfig,
    apply_coverage_policy,
    blend_scores,
    bone_cosine_score,
    bone_cosines,
    embedding_similarity,
    score_angles,
)
from .skeleton import BONES
from .smoothing import AngleSmoother
from .templates import PreparedTemplate
from .types import FrameResult, PoseLandmarks

MSG_NO_TEMPLATE = "Get ready for the next pose"


@dataclass(frozen=True)
class PipelineConfig:
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    coverage: CoveragePolicy = field(default_factory=CoveragePolicy)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)


def _empty(pose_found: bool, text: str) -> FrameResult:
    return FrameResult(
        score=None,
        per_joint_error={},
        coverage=0.0,
        feedback_text=text,
        joint_colors={},
        pose_found=pose_found,
    )


def process_frame(
    landmarks: Optional[PoseLandmarks],
    prepared: Optional[PreparedTemplate],
    smoother: AngleSmoother,
    config: Optional[PipelineConfig] = None,
) -> FrameResult:
    """单帧处理：规范化 -> 关节角 -> 平滑 -> 门控评分 -> 混合 -> 反馈。

    输入:
    - landmarks: 本帧关键点（None 表示检测器没有找到人）。
    - prepared: 当前模板快照（None 表示尚未就绪）。
    - smoother: 会话私有的平滑器，本函数只向其推入样本。
    - config: 可选配置。

    输出: FrameResult。任何关键点内容都不会抛异常，最坏结果是 score=None。

    作用: 锚点缺失时直接短路，不推入平滑器也不产生角度相关的着色。
    """
    cfg = config or PipelineConfig()
    pose = normalize_pose(landmarks)
    if pose is None or landmarks is None:
        return _empty(False, feedback_text(False, None, 0.0, [], cfg.feedback))
    if prepared is None:
        return _empty(True, MSG_NO_TEMPLATE)

    template = prepared.template
    vis = landmarks.visibility
    th = cfg.scoring.visibility_threshold

    smoothed = smoother.smooth(compute_joint_angles(pose))
    angle = score_angles(smoothed, template, vis, cfg.scoring)

    bone = embed = None
    coverage = angle.coverage
    if prepared.reference_pose is not None:
        bone = bone_cosine_score(pose, prepared.reference_pose, vis, th)
        embed = embedding_similarity(
            embed_pose(pose), prepared.reference_embedding, cfg.scoring.soft_margin_factor
        )
        if not template.angles_deg:
            # 纯关键点模板：覆盖率按可比较骨骼计算
            coverage = len(bone_cosines(pose, prepared.reference_pose, vis, th)) / len(BONES)

    score = blend_scores(angle.score, bone, embed, prepared.has_reference_shape, cfg.scoring)
    score = apply_coverage_policy(score, coverage, cfg.coverage)

    hints = synthesize_hints(angle.rows, cfg.feedback)
    return FrameResult(
        score=score,
        per_joint_error=angle.joint_errors,
        coverage=coverage,
        feedback_text=feedback_text(True, score, coverage, hints, cfg.feedback),
        joint_colors=joint_colors(angle.rows, cfg.feedback),
        hints=hints,
        angle_score=angle.score,
        bone_score=bone,
        embed_score=embed,
        pose_found=True,
    )
