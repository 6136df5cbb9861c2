from __future__ import annotations

import math
from collections import deque
from typing import Mapping

DEFAULT_WINDOW = 7


class AngleSmoother:
    """逐关节滑动窗口中值滤波，抑制检测噪声造成的帧间抖动。

    - 每个关节一个容量为 window 的缓冲区，超出容量丢弃最旧样本；
    - 偶数个样本时取下中位数，保证结果确定；
    - 切换模板/动作步骤时必须 reset()，避免上一个动作的历史影响新动作。
    """

    def __init__(self, window: int = DEFAULT_WINDOW) -> None:
        if window < 1:
            raise ValueError(f"window must be >= 1, got {window}")
        self.window = int(window)
        self._buffers: dict[str, deque[float]] = {}

    def push(self, joint: str, value: float) -> float:
        """推入一个新样本并返回当前缓冲区的中值（样本不足 window 时按已有样本计算）。"""
        buf = self._buffers.get(joint)
        if buf is None:
            buf = deque(maxlen=self.window)
            self._buffers[joint] = buf
        buf.append(float(value))
        s = sorted(buf)
        return s[(len(s) - 1) // 2]

    def smooth(self, angles: Mapping[str, float]) -> dict[str, float]:
        """对一帧的全部关节角做平滑。

        输入: angles 为 {关节名: 角度}，可含 NaN。
        输出: 只包含本帧有有限值的关节的平滑结果。
        作用: 非有限值不入缓冲区，缺失关节在本帧同样缺失。
        """
        out: dict[str, float] = {}
        for joint, value in angles.items():
            if value is None or not math.isfinite(value):
                continue
            out[joint] = self.push(joint, value)
        return out

    def buffer(self, joint: str) -> list[float]:
        return list(self._buffers.get(joint, ()))

    def reset(self) -> None:
        self._buffers.clear()

    def __len__(self) -> int:
        return len(self._buffers)
