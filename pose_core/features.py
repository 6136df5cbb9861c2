from __future__ import annotations

import math
from typing import Optional

import numpy as np

from .skeleton import BONES, EMBED_KEYS, JOINT_CHAINS, L_SHOULDER, R_SHOULDER, SPINE_TILT
from .types import NormalizedPose

ANGLE_EPS = 1e-6


def _angle_deg(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> float:
    """计算 ∠ABC 的角度（度）。

    输入: a,b,c 为点坐标，形状 (2,)。
    输出: [0,180] 的角度值；重合点（零长度向量）由分母 eps 保护，不产生 NaN。
    作用: 以向量夹角计算三点构成的关节角。
    """
    ba = a - b
    bc = c - b
    denom = float(np.linalg.norm(ba) * np.linalg.norm(bc)) + ANGLE_EPS
    cosv = float(np.clip(np.dot(ba, bc) / denom, -1.0, 1.0))
    return float(np.degrees(np.arccos(cosv)))


def spine_tilt_deg(pose: NormalizedPose) -> float:
    """肩中点相对髋中点（规范原点）偏离竖直方向的角度，范围 [0,90]。直立为 0。"""
    lsh = pose.point(L_SHOULDER)
    rsh = pose.point(R_SHOULDER)
    if lsh is None or rsh is None:
        return float("nan")
    v = (lsh + rsh) / 2.0 - pose.mid_hip
    spine = (math.degrees(math.atan2(float(v[1]), float(v[0]))) + 360.0) % 180.0
    return abs(spine - 90.0)


def compute_joint_angles(pose: NormalizedPose) -> dict[str, float]:
    """从规范化姿态计算关节角度。

    输入: pose 为 NormalizedPose。
    输出: 字典 {关节名: 角度(度)}；所需关键点缺失的关节为 NaN（缺失而非 0）。
    作用: 计算肘、膝、肩、髋的三点夹角以及合成的 spine_tilt。
    """
    angles: dict[str, float] = {}
    for joint, (i1, i2, i3) in JOINT_CHAINS.items():
        a, b, c = pose.point(i1), pose.point(i2), pose.point(i3)
        if a is None or b is None or c is None:
            angles[joint] = float("nan")
            continue
        angles[joint] = _angle_deg(a, b, c)
    angles[SPINE_TILT] = spine_tilt_deg(pose)
    return angles


def _unit(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    v = b - a
    n = float(np.linalg.norm(v)) or ANGLE_EPS
    return v / n


def bone_unit_vectors(pose: NormalizedPose) -> dict[tuple[int, int], np.ndarray]:
    """返回每段骨骼的单位方向向量；端点缺失的骨骼不出现在结果中。"""
    out: dict[tuple[int, int], np.ndarray] = {}
    for i, j in BONES:
        a, b = pose.point(i), pose.point(j)
        if a is None or b is None:
            continue
        out[(i, j)] = _unit(a, b)
    return out


def embed_pose(pose: NormalizedPose) -> Optional[np.ndarray]:
    """展平的姿态嵌入向量。

    输入: pose 为 NormalizedPose。
    输出: (44,) 向量：12 个关键点相对肩中点的偏移 + 10 段骨骼单位向量；
          任一所需关键点缺失时返回 None。
    作用: 为欧氏距离相似度提供平移无关的特征。
    """
    lsh = pose.point(L_SHOULDER)
    rsh = pose.point(R_SHOULDER)
    if lsh is None or rsh is None:
        return None
    base = (lsh + rsh) / 2.0

    parts: list[np.ndarray] = []
    for k in EMBED_KEYS:
        p = pose.point(k)
        if p is None:
            return None
        parts.append(p - base)

    bones = bone_unit_vectors(pose)
    if len(bones) != len(BONES):
        return None
    parts.extend(bones[b] for b in BONES)
    return np.concatenate(parts).astype(np.float64)
