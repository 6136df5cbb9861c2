from __future__ import annotations

from typing import Optional, Protocol, Sequence

from PySide6.QtGui import QPixmap

from pose_core.types import StepResult


class PracticeView(Protocol):
    """练习视图接口：控制器通过该协议调用视图更新。"""
    def set_score(self, score: Optional[int]) -> None:
        """显示分数。输入: 0~100 整数或 None（本帧无法判断）。输出: 无。"""
        ...

    def set_feedback(self, text: str) -> None:
        """显示纠正提示/站位提示。"""
        ...

    def set_step(self, label: str) -> None:
        ...

    def set_status(self, message: str, timeout_ms: int = 3000) -> None:
        """更新状态栏。输入: 文本与超时毫秒。输出: 无。作用: 提示进度/状态。"""
        ...

    def show_error(self, title: str, message: str) -> None:
        """显示错误弹窗。输入: 标题与内容。输出: 无。"""
        ...

    def show_step_scores(self, results: Sequence[StepResult]) -> None:
        """会话结束时展示每个步骤的稳定分数。"""
        ...

    def set_template_pixmap(self, pixmap: QPixmap) -> None:
        """更新模板预览图。输入: QPixmap。输出: 无。"""
        ...

    def set_user_pixmap(self, pixmap: QPixmap) -> None:
        """更新用户预览图。输入: QPixmap。输出: 无。"""
        ...
