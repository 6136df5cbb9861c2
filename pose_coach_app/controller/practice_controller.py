from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from typing import TypeGuard

import cv2
import numpy as np
from PySide6.QtCore import QObject, QThread, QTimer, Signal, Slot
from PySide6.QtCore import Qt
from PySide6.QtGui import QImage, QPixmap

import shiboken6

from pose_core.overlay import draw_colored_skeleton, draw_hud, render_template_preview
from pose_core.pose_detector import PoseDetector
from pose_core.session import PoseSession, SessionConfig
from pose_core.template_builder import ExtractConfig, extract_template_from_video
from pose_core.templates import PoseTemplate, load_templates

from .view_protocol import PracticeView

logger = logging.getLogger(__name__)

# 应用层默认设置：每 10 秒自动切换到下一个动作并循环
DEFAULT_SETTINGS: dict[str, Any] = {
    "step_seconds": 10.0,
    "loop": True,
}


def _bgr_to_qpixmap(frame_bgr: np.ndarray, max_w: int, max_h: int) -> QPixmap:
    """BGR 帧转 QPixmap 并按最大尺寸等比缩放。

    输入: frame_bgr (h,w,3) BGR 图像；max_w/max_h 最大显示尺寸。
    输出: QPixmap。
    """
    h, w = frame_bgr.shape[:2]
    rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
    qimg = QImage(rgb.data, w, h, rgb.strides[0], QImage.Format.Format_RGB888)
    pm = QPixmap.fromImage(qimg.copy())
    return pm.scaled(
        max_w,
        max_h,
        Qt.AspectRatioMode.KeepAspectRatio,
        Qt.TransformationMode.SmoothTransformation,
    )


@dataclass
class RuntimeState:
    template_path: Optional[str] = None
    user_video_path: Optional[str] = None
    templates: Optional[list[PoseTemplate]] = None
    settings: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_SETTINGS))
    running: bool = False
    start_time_s: float = 0.0


class TemplateWorker(QObject):
    """后台线程工作者：加载姿态模板。

    输入: 构造时提供模板路径；.json 直接解析，其余按参考视频抽取单个模板。
    输出: finished 信号发出 list[PoseTemplate]；progress/failed 信号用于反馈。
    """
    progress = Signal(int, int)
    finished = Signal(object)  # list[PoseTemplate]
    failed = Signal(str)

    def __init__(self, path: str, sample_fps: float = 10.0):
        super().__init__()
        self._path = path
        self._sample_fps = sample_fps

    def run(self) -> None:
        detector = None
        try:
            if Path(self._path).suffix.lower() == ".json":
                templates = load_templates(self._path)
            else:
                detector = PoseDetector()
                template = extract_template_from_video(
                    self._path,
                    detector,
                    config=ExtractConfig(sample_fps=self._sample_fps),
                    on_progress=lambda a, b: self.progress.emit(a, b),
                )
                templates = [template]
            self.finished.emit(templates)
        except (ValueError, RuntimeError, OSError, cv2.error) as e:
            logger.exception("failed to load templates from %s", self._path)
            self.failed.emit(str(e))
        finally:
            if detector is not None:
                detector.close()


def _is_valid_thread(thread: Optional[QThread]) -> TypeGuard[QThread]:
    """结合 shiboken6 判断 Qt 线程对象是否仍可安全使用。"""
    try:
        return thread is not None and shiboken6.isValid(thread)  # type: ignore[attr-defined]
    except RuntimeError:
        return False


class PracticeController(QObject):
    """控制器：承接UI事件，驱动 PoseSession；UI通过 PracticeView 接口更新。"""

    def __init__(self, view: PracticeView):
        """初始化控制器。

        输入: view 为实现 PracticeView 协议的视图对象。
        输出: 无。
        作用: 准备计时器与后台线程等运行资源；检测器在开始练习时才创建。
        """
        super().__init__()
        self._view = view
        self._state = RuntimeState()

        self._tpl_thread: Optional[QThread] = None
        self._tpl_worker: Optional[TemplateWorker] = None

        # QTimer 必须归属 UI 线程；parent 设为 controller 可保证线程归属一致
        self._timer = QTimer(self)
        self._timer.setInterval(33)  # ~30fps
        self._timer.timeout.connect(self._on_tick)

        self._cap_user: Optional[cv2.VideoCapture] = None
        self._user_is_file: bool = False

        self._detector: Optional[PoseDetector] = None
        self._session: Optional[PoseSession] = None
        self._shown_step: int = -1

    def load_templates(self, path: str) -> None:
        """加载姿态模板（JSON 或参考视频）。

        输入: path 文件路径。
        输出: 无。
        作用: 停止当前练习并启动后台加载。
        """
        self.stop()
        self._state.template_path = path
        self._state.templates = None
        self._start_template_loading(path)

    def set_user_video(self, video_path: str) -> None:
        """设置用户视频路径；未设置时使用摄像头。"""
        self._state.user_video_path = video_path

    def update_settings(self, **settings: Any) -> None:
        """覆盖会话设置（见 SessionConfig.from_dict 支持的键），下次开始练习时生效。"""
        self._state.settings.update(settings)

    def _start_template_loading(self, path: str) -> None:
        old_thread = self._tpl_thread
        if _is_valid_thread(old_thread):
            old_thread.quit()
            old_thread.wait(1000)

        self._view.set_status("正在加载姿态模板（后台）…", 3000)

        thread = QThread()
        worker = TemplateWorker(path, sample_fps=10.0)
        worker.moveToThread(thread)

        thread.started.connect(worker.run)
        worker.progress.connect(self._on_tpl_progress)
        worker.finished.connect(self._on_templates_ready)
        worker.failed.connect(self._on_tpl_failed)

        worker.finished.connect(thread.quit)
        worker.failed.connect(thread.quit)

        worker.finished.connect(worker.deleteLater)
        worker.failed.connect(worker.deleteLater)

        # 线程结束时，先清空引用，避免 close() 再去操作已 deleteLater 的对象
        thread.finished.connect(self._on_tpl_thread_finished)
        thread.finished.connect(thread.deleteLater)

        self._tpl_thread = thread
        self._tpl_worker = worker

        thread.start()

    @Slot()
    def _on_tpl_thread_finished(self) -> None:
        self._tpl_thread = None
        self._tpl_worker = None

    @Slot(int, int)
    def _on_tpl_progress(self, cur: int, total: int) -> None:
        if total > 0:
            self._view.set_status(f"参考视频抽取中：{cur}/{total}")

    @Slot(object)
    def _on_templates_ready(self, templates: object) -> None:
        """接收模板列表，显示第一个动作的预览。

        输入: templates 期望为 list[PoseTemplate]。
        输出: 无。
        """
        if not isinstance(templates, list) or not templates:
            self._view.show_error("模板加载失败", "没有可用的姿态模板")
            return
        self._state.templates = templates
        self._show_template(templates[0], 0, len(templates))
        self._view.set_status(f"模板加载完成（动作数：{len(templates)}）", 5000)

    @Slot(str)
    def _on_tpl_failed(self, msg: str) -> None:
        self._view.show_error("模板加载失败", msg)

    def _show_template(self, template: Optional[PoseTemplate], index: int, count: int) -> None:
        if template is None:
            self._view.set_step("--")
            self._view.set_template_pixmap(_bgr_to_qpixmap(render_template_preview(None), 560, 420))
            return
        self._view.set_step(f"{index + 1}/{count} {template.pose_id}")
        preview = render_template_preview(template.landmarks, 560, 420, mirror=True)
        self._view.set_template_pixmap(_bgr_to_qpixmap(preview, 560, 420))

    def start(self) -> None:
        """开始练习：创建会话、打开用户输入并启动逐帧计时器。"""
        templates = self._state.templates
        if not templates:
            self._view.show_error("缺少模板", "请先加载姿态模板（JSON 或参考视频）")
            return

        self.stop()

        if self._detector is None:
            try:
                self._detector = PoseDetector()
            except RuntimeError as e:
                self._view.show_error("姿态检测器不可用", str(e))
                return

        # 用户输入：优先用户视频，否则摄像头
        if self._state.user_video_path:
            self._cap_user = cv2.VideoCapture(self._state.user_video_path)
            self._user_is_file = True
        else:
            self._cap_user = cv2.VideoCapture(0)
            self._user_is_file = False

        if self._cap_user is None or not self._cap_user.isOpened():
            self._view.show_error("打开失败", "无法打开用户输入（摄像头/视频）")
            return

        self._session = PoseSession(templates, SessionConfig.from_dict(self._state.settings))
        self._shown_step = -1
        self._state.running = True
        self._state.start_time_s = time.perf_counter()
        self._timer.start()
        self._view.set_score(None)
        self._view.set_status("开始练习：正在对比动作…", 2000)

    def next_step(self) -> None:
        """手动切换到下一个动作。"""
        session = self._session
        if session is None:
            return
        result = session.advance()
        if result is not None:
            stable = "--" if result.stable_score is None else str(result.stable_score)
            self._view.set_status(f"动作 {result.pose_id} 稳定分数：{stable}", 4000)
        if session.finished:
            self.stop()

    def stop(self) -> None:
        """停止练习：停计时器、释放用户输入、结束会话并展示各步骤稳定分数。"""
        self._state.running = False
        if self._timer.isActive():
            self._timer.stop()

        if self._cap_user is not None:
            self._cap_user.release()
            self._cap_user = None

        session = self._session
        self._session = None
        if session is not None:
            results = session.finish()
            if results:
                self._view.show_step_scores(results)

    def _on_tick(self) -> None:
        """主循环处理：读帧、检测、评分、更新预览。"""
        if not self._state.running:
            return
        session = self._session
        if self._cap_user is None or session is None or self._detector is None:
            return
        ok, frame = self._cap_user.read()
        if not ok:
            self.stop()
            self._view.set_status("用户输入结束/读取失败，已停止", 5000)
            return

        # 摄像头做镜像（自拍视角），文件按原样播放
        if self._user_is_file:
            t_s = float(self._cap_user.get(cv2.CAP_PROP_POS_MSEC) or 0.0) / 1000.0
        else:
            frame = cv2.flip(frame, 1)
            t_s = time.perf_counter() - self._state.start_time_s

        landmarks = self._detector.detect(frame)
        result = session.process(landmarks, t_s)

        if session.step_index != self._shown_step:
            self._shown_step = session.step_index
            self._show_template(session.current_template, session.step_index, session.step_count)

        self._view.set_score(result.score)
        self._view.set_feedback(result.feedback_text)

        threshold = session.config.pipeline.scoring.visibility_threshold
        out = draw_colored_skeleton(frame, landmarks, result.joint_colors, threshold)
        out = draw_hud(out, result)
        self._view.set_user_pixmap(_bgr_to_qpixmap(out, 560, 420))

        if session.finished:
            self.stop()

    def close(self) -> None:
        """关闭控制器：停止流程、结束后台线程、释放检测器。应在窗口关闭时调用。"""
        self.stop()

        thread = self._tpl_thread
        if _is_valid_thread(thread):
            thread.quit()
            thread.wait(1500)
        self._tpl_thread = None
        self._tpl_worker = None

        if self._detector is not None:
            self._detector.close()
            self._detector = None
