from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Optional, Sequence

from .scoring import round_half_up
from .types import ScoreResult


@dataclass(frozen=True)
class AggregatorConfig:
    capacity: int = 600
    min_coverage: float = 0.85
    top_fraction: float = 0.3


def _median(values: Sequence[float]) -> float:
    s = sorted(values)
    n = len(s)
    mid = n // 2
    if n % 2:
        return float(s[mid])
    return (s[mid - 1] + s[mid]) / 2.0


class StepScoreAggregator:
    """单个动作步骤的稳定分数：“最佳持续表现”统计量，而非简单平均。

    - 只缓存覆盖率 >= min_coverage 的帧分数，缓冲区有上限；
    - stable_score(): 排序后取最高 30% 的中位数；该切片为空时退化为全体中位数；
    - 每次切换步骤都要 reset()。
    """

    def __init__(self, config: Optional[AggregatorConfig] = None) -> None:
        self.config = config or AggregatorConfig()
        self._scores: deque[float] = deque(maxlen=max(1, self.config.capacity))

    def add(self, score: Optional[float], coverage: float) -> bool:
        """加入一帧分数；None 分数或覆盖率不足时忽略并返回 False。"""
        if score is None or coverage < self.config.min_coverage:
            return False
        self._scores.append(float(score))
        return True

    def add_result(self, result: ScoreResult) -> bool:
        """按单帧评分结果加入缓冲，等价于 add(result.score, result.coverage)。"""
        return self.add(result.score, result.coverage)

    @property
    def scores(self) -> list[float]:
        return list(self._scores)

    def __len__(self) -> int:
        return len(self._scores)

    def stable_score(self) -> Optional[int]:
        if not self._scores:
            return None
        s = sorted(self._scores)
        k = round_half_up(len(s) * self.config.top_fraction)
        top = s[len(s) - k:] if k > 0 else []
        return round_half_up(_median(top if top else s))

    def reset(self) -> None:
        self._scores.clear()
