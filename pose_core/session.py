from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping, Optional

from .aggregation import AggregatorConfig, StepScoreAggregator
from .feedback import FeedbackConfig
from .pipeline import PipelineConfig, process_frame
from .scoring import CoveragePolicy, ScoringConfig
from .smoothing import DEFAULT_WINDOW, AngleSmoother
from .templates import PoseTemplate, PreparedTemplate, prepare_template
from .types import FrameResult, PoseLandmarks, StepResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionConfig:
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    smoothing_window: int = DEFAULT_WINDOW
    step_seconds: Optional[float] = None  # None: 只在调用 advance() 时切换步骤
    loop: bool = False

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "SessionConfig":
        """由扁平的设置字典构建配置（界面层的 settings），未知键忽略。"""
        scoring = ScoringConfig()
        if "visibility_threshold" in data:
            scoring = replace(scoring, visibility_threshold=float(data["visibility_threshold"]))
        coverage = CoveragePolicy(
            enabled=bool(data.get("coverage_penalty", False)),
            floor=float(data.get("coverage_floor", 0.75)),
        )
        feedback = FeedbackConfig(
            max_hints=int(data.get("max_hints", 2)),
            materiality=float(data.get("materiality", 0.6)),
        )
        aggregator = AggregatorConfig(
            capacity=int(data.get("buffer_capacity", 600)),
            min_coverage=float(data.get("min_coverage", 0.85)),
            top_fraction=float(data.get("top_fraction", 0.3)),
        )
        step_seconds = data.get("step_seconds")
        return SessionConfig(
            pipeline=PipelineConfig(scoring=scoring, coverage=coverage, feedback=feedback),
            aggregator=aggregator,
            smoothing_window=int(data.get("smoothing_window", DEFAULT_WINDOW)),
            step_seconds=float(step_seconds) if step_seconds else None,
            loop=bool(data.get("loop", False)),
        )


class PoseSession:
    """一次练习会话：按步骤持有当前模板、平滑器与分数聚合缓冲。

    - 当前模板是一个单一引用，切换时整体替换（帧回调只读取它，不会看到半更新的模板）；
    - 每次切换都完全重置平滑器与聚合缓冲，避免上一个动作的数据泄漏；
    - 单线程、逐帧同步调用，不需要锁。
    """

    def __init__(
        self,
        templates: Iterable[PoseTemplate] = (),
        config: Optional[SessionConfig] = None,
    ) -> None:
        self.config = config or SessionConfig()
        self._templates: list[PoseTemplate] = list(templates)
        self._smoother = AngleSmoother(self.config.smoothing_window)
        self._aggregator = StepScoreAggregator(self.config.aggregator)
        self._current: Optional[PreparedTemplate] = None
        self._step_index = -1
        self._step_started_s: Optional[float] = None
        self._warned: set[str] = set()
        self._results: list[StepResult] = []
        self._finished = False
        if self._templates:
            self._enter_step(0)

    @property
    def current_template(self) -> Optional[PoseTemplate]:
        cur = self._current
        return cur.template if cur is not None else None

    @property
    def step_index(self) -> int:
        return self._step_index

    @property
    def step_count(self) -> int:
        return len(self._templates)

    @property
    def step_results(self) -> list[StepResult]:
        return list(self._results)

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def smoother(self) -> AngleSmoother:
        return self._smoother

    @property
    def aggregator(self) -> StepScoreAggregator:
        return self._aggregator

    def set_template(self, template: Optional[PoseTemplate]) -> None:
        """整体替换当前模板，并完全重置平滑器与聚合缓冲。

        输入: template 为新的模板或 None（清空）。
        输出: 无。
        作用: 模板在这里一次性预处理（规范化参考姿态、嵌入），逐帧不再重复计算；
        退化模板（无角度且无可用关键点）只记录一次警告。
        """
        prepared = prepare_template(template) if template is not None else None
        self._smoother.reset()
        self._aggregator.reset()
        self._step_started_s = None
        if self._step_index < 0 and prepared is not None:
            self._step_index = 0
        self._current = prepared

        if prepared is not None and prepared.is_degenerate:
            pid = prepared.template.pose_id
            if pid not in self._warned:
                self._warned.add(pid)
                logger.warning("template %s has no angles_deg and no usable landmarks; it cannot be scored", pid)

    def _enter_step(self, index: int) -> None:
        self._step_index = index
        self.set_template(self._templates[index])
        logger.debug("entered step %d (%s)", index, self._templates[index].pose_id)

    def process(self, landmarks: Optional[PoseLandmarks], t_s: Optional[float] = None) -> FrameResult:
        """处理一帧。t_s 为可选的时间戳（秒），配置了 step_seconds 时用于自动切换步骤。"""
        if t_s is not None and self.config.step_seconds and not self._finished:
            if self._step_started_s is None:
                self._step_started_s = t_s
            elif t_s - self._step_started_s >= self.config.step_seconds:
                self.advance()
                self._step_started_s = t_s

        result = process_frame(landmarks, self._current, self._smoother, self.config.pipeline)
        if self._current is not None:
            self._aggregator.add_result(result.to_score_result())
        return result

    def close_step(self) -> Optional[StepResult]:
        """结束当前步骤，记录稳定分数（不切换模板）。"""
        cur = self._current
        if cur is None:
            return None
        result = StepResult(
            step_index=self._step_index,
            pose_id=cur.template.pose_id,
            stable_score=self._aggregator.stable_score(),
            samples=len(self._aggregator),
        )
        self._results.append(result)
        logger.debug("step %d (%s) closed: stable=%s from %d frames",
                     result.step_index, result.pose_id, result.stable_score, result.samples)
        return result

    def advance(self) -> Optional[StepResult]:
        """结束当前步骤并进入下一步；最后一步之后按 loop 决定回到第一步或结束会话。"""
        result = self.close_step()
        nxt = self._step_index + 1
        if nxt >= len(self._templates):
            if self.config.loop and self._templates:
                nxt = 0
            else:
                self._discard()
                self._finished = True
                return result
        self._enter_step(nxt)
        return result

    def finish(self) -> list[StepResult]:
        """结束会话：记录最后一步的稳定分数并丢弃所有逐帧缓冲。"""
        if not self._finished:
            self.close_step()
            self._finished = True
        self._discard()
        return self.step_results

    def _discard(self) -> None:
        self._current = None
        self._smoother.reset()
        self._aggregator.reset()
        self._step_started_s = None
