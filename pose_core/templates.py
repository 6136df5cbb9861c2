from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np

from .features import embed_pose
from .normalizer import normalize_pose
from .skeleton import NAME_TO_INDEX, NUM_LANDMARKS
from .types import NormalizedPose, PoseLandmarks

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_DEG = 12.0
DEFAULT_WEIGHT = 1.0


class TemplateError(ValueError):
    pass


def _number_map(raw: Any, field_name: str) -> dict[str, float]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise TemplateError(f"{field_name} 必须是 {{关节名: 数值}} 映射")
    out: dict[str, float] = {}
    for k, v in raw.items():
        try:
            fv = float(v)
        except (TypeError, ValueError) as e:
            raise TemplateError(f"{field_name}[{k!r}] 不是数值: {v!r}") from e
        if not math.isfinite(fv):
            raise TemplateError(f"{field_name}[{k!r}] 不是有限值: {v!r}")
        out[str(k)] = fv
    return out


def coerce_template_landmarks(
    raw: Union[Mapping[str, Any], Sequence[Any], None],
) -> Optional[np.ndarray]:
    """把模板关键点规整为与实时关键点相同的 (33,4) 索引数组。

    输入:
    - raw: {名称: {x,y}} 映射（模板构建器输出），或按索引排列的 [{x,y}, ...] 数组，或 None。

    输出: (33,4) numpy.ndarray（缺失点为 NaN），或 None（未提供/无任何有效点）。

    作用: 只在加载模板时做一次，逐帧评分时不再处理名称映射。
    """
    if raw is None:
        return None
    points: list[Any] = [None] * NUM_LANDMARKS
    if isinstance(raw, Mapping):
        for name, idx in NAME_TO_INDEX.items():
            p = raw.get(name)
            if p is not None:
                points[idx] = p
    elif isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        for i, p in enumerate(list(raw)[:NUM_LANDMARKS]):
            points[i] = p
    else:
        raise TemplateError("landmarks 必须是名称映射或索引数组")

    try:
        data = PoseLandmarks.from_points(points).data
    except (TypeError, ValueError) as e:
        raise TemplateError(f"landmarks 含有非法坐标: {e}") from e
    if not np.any(np.isfinite(data[:, :2])):
        return None
    return data


@dataclass(frozen=True)
class PoseTemplate:
    """参考姿态模板。

    - angles_deg 的键决定哪些关节参与评分；
    - tolerance_deg/weights 缺项分别默认 12° 与 1；
    - landmarks 为可选的 (33,4) 参考姿态（混合评分用）；
    - 作为“当前模板”期间只读，切换步骤时整体替换。
    """

    pose_id: str
    angles_deg: dict[str, float]
    tolerance_deg: dict[str, float] = field(default_factory=dict)
    weights: dict[str, float] = field(default_factory=dict)
    camera_view: Optional[str] = None
    landmarks: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    def tolerance_for(self, joint: str) -> float:
        return self.tolerance_deg.get(joint, DEFAULT_TOLERANCE_DEG)

    def weight_for(self, joint: str) -> float:
        return self.weights.get(joint, DEFAULT_WEIGHT)

    @property
    def joints(self) -> list[str]:
        return list(self.angles_deg)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "PoseTemplate":
        """按模板契约解析一条模板记录。

        输入: data 为 {pose_id, angles_deg, tolerance_deg?, weights?, camera_view?, landmarks?}。
        输出: PoseTemplate。
        作用: 校验数值字段并把 landmarks 规整为索引数组；格式错误抛出 TemplateError。
        """
        if not isinstance(data, Mapping):
            raise TemplateError(f"模板记录必须是对象，实际为 {type(data).__name__}")
        pose_id = data.get("pose_id")
        if pose_id is None or str(pose_id) == "":
            raise TemplateError("模板缺少 pose_id")
        camera_view = data.get("camera_view")
        return PoseTemplate(
            pose_id=str(pose_id),
            angles_deg=_number_map(data.get("angles_deg"), "angles_deg"),
            tolerance_deg=_number_map(data.get("tolerance_deg"), "tolerance_deg"),
            weights=_number_map(data.get("weights"), "weights"),
            camera_view=str(camera_view) if camera_view is not None else None,
            landmarks=coerce_template_landmarks(data.get("landmarks")),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "pose_id": self.pose_id,
            "angles_deg": dict(self.angles_deg),
            "tolerance_deg": dict(self.tolerance_deg),
            "weights": dict(self.weights),
        }
        if self.camera_view is not None:
            out["camera_view"] = self.camera_view
        if self.landmarks is not None:
            out["landmarks"] = [
                None if not np.all(np.isfinite(row[:2]))
                else {"x": float(row[0]), "y": float(row[1])}
                for row in self.landmarks
            ]
        return out


@dataclass(frozen=True)
class PreparedTemplate:
    """模板 + 预先计算的规范化参考姿态与嵌入（每个模板只算一次）。"""

    template: PoseTemplate
    reference_pose: Optional[NormalizedPose] = field(default=None, compare=False)
    reference_embedding: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    @property
    def has_reference_shape(self) -> bool:
        return self.reference_pose is not None

    @property
    def is_degenerate(self) -> bool:
        """没有 angles_deg 且没有可用 landmarks：该模板永远无法评分。"""
        return not self.template.angles_deg and self.reference_pose is None


def prepare_template(template: PoseTemplate) -> PreparedTemplate:
    ref_pose = None
    ref_emb = None
    if template.landmarks is not None:
        ref_pose = normalize_pose(PoseLandmarks(template.landmarks))
        if ref_pose is None:
            logger.warning("模板 %s 的 landmarks 缺少肩/髋锚点，混合评分不可用", template.pose_id)
        else:
            ref_emb = embed_pose(ref_pose)
    return PreparedTemplate(template, ref_pose, ref_emb)


def parse_templates(payload: Any) -> list[PoseTemplate]:
    """解析模板列表：支持 [模板...]、{"templates": [...]} 或单个模板对象。"""
    if isinstance(payload, Mapping):
        if "templates" in payload:
            payload = payload["templates"]
        else:
            payload = [payload]
    if not isinstance(payload, list):
        raise TemplateError("模板数据必须是列表或包含 templates 的对象")
    return [PoseTemplate.from_dict(item) for item in payload]


def load_templates(path: Union[str, Path]) -> list[PoseTemplate]:
    """从 JSON 文件读取模板列表。文件不可读或格式错误时抛出 TemplateError。"""
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except OSError as e:
        raise TemplateError(f"无法读取模板文件：{p}") from e
    except json.JSONDecodeError as e:
        raise TemplateError(f"模板文件不是合法 JSON：{p}（{e}）") from e

    templates = parse_templates(payload)
    logger.info("loaded %d template(s) from %s", len(templates), p)
    return templates
