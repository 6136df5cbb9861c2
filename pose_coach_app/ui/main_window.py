from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from PySide6.QtCore import Qt
from PySide6.QtGui import QPixmap
from PySide6.QtWidgets import (
    QCheckBox,
    QFileDialog,
    QGridLayout,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QStatusBar,
    QVBoxLayout,
    QWidget,
)

from pose_coach_app.controller.practice_controller import PracticeController
from pose_core.types import StepResult


@dataclass
class UiState:
    template_path: Optional[str] = None
    user_video_path: Optional[str] = None


class MainWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("姿态跟练（MediaPipe + PySide6）")
        self.resize(1200, 760)

        self._state = UiState()
        self._controller = PracticeController(self)

        self._build_ui()
        self._wire_events()

    def _build_ui(self) -> None:
        """构建界面控件与布局：操作栏、模板/用户预览、分数与反馈、状态栏。"""
        root = QWidget(self)
        self.setCentralWidget(root)

        self.btn_load_tpl = QPushButton("加载姿态模板")
        self.btn_load_user = QPushButton("加载用户视频（可选）")
        self.btn_start = QPushButton("开始练习")
        self.btn_next = QPushButton("下一个动作")
        self.btn_stop = QPushButton("停止")
        self.chk_coverage = QCheckBox("遮挡扣分")
        self.chk_coverage.setToolTip("可见关节不足时按覆盖率降低分数，下次开始练习时生效")

        self.lbl_tpl = QLabel("模板预览")
        self.lbl_tpl.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.lbl_tpl.setMinimumSize(520, 360)

        self.lbl_user = QLabel("用户画面预览")
        self.lbl_user.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.lbl_user.setMinimumSize(520, 360)

        self.lbl_step = QLabel("动作：--")
        self.lbl_score = QLabel("得分：--")
        self.lbl_score.setAlignment(Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignVCenter)

        self.lbl_feedback = QLabel("")
        self.lbl_feedback.setWordWrap(True)

        grp_controls = QGroupBox("操作")
        controls_layout = QHBoxLayout(grp_controls)
        controls_layout.addWidget(self.btn_load_tpl)
        controls_layout.addWidget(self.btn_load_user)
        controls_layout.addWidget(self.btn_start)
        controls_layout.addWidget(self.btn_next)
        controls_layout.addWidget(self.btn_stop)
        controls_layout.addWidget(self.chk_coverage)
        controls_layout.addStretch(1)
        controls_layout.addWidget(self.lbl_step)
        controls_layout.addWidget(self.lbl_score)

        grid = QGridLayout()
        grid.addWidget(self.lbl_tpl, 0, 0)
        grid.addWidget(self.lbl_user, 0, 1)

        layout = QVBoxLayout(root)
        layout.addWidget(grp_controls)
        layout.addLayout(grid)
        layout.addWidget(self.lbl_feedback)

        self._status = QStatusBar(self)
        self.setStatusBar(self._status)

    def _wire_events(self) -> None:
        self.btn_load_tpl.clicked.connect(self._on_load_tpl)
        self.btn_load_user.clicked.connect(self._on_load_user)
        self.btn_start.clicked.connect(self._on_start)
        self.btn_next.clicked.connect(self._controller.next_step)
        self.btn_stop.clicked.connect(self._controller.stop)
        self.chk_coverage.toggled.connect(self._on_coverage_toggled)

    def _on_load_tpl(self) -> None:
        """选择模板文件（JSON）或参考视频并交给控制器加载。"""
        path, _ = QFileDialog.getOpenFileName(
            self,
            "选择姿态模板或参考视频",
            "",
            "Templates (*.json);;Video Files (*.mp4 *.avi *.mov *.mkv);;All Files (*)",
        )
        if not path:
            return
        self._state.template_path = path
        self._status.showMessage(f"已选择模板：{path}", 5000)
        self._controller.load_templates(path)

    def _on_load_user(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            self,
            "选择用户练习视频（可选）",
            "",
            "Video Files (*.mp4 *.avi *.mov *.mkv);;All Files (*)",
        )
        if not path:
            return
        self._state.user_video_path = path
        self._status.showMessage(f"已选择用户视频：{path}", 5000)
        self._controller.set_user_video(path)

    def _on_coverage_toggled(self, checked: bool) -> None:
        self._controller.update_settings(coverage_penalty=checked)

    def _on_start(self) -> None:
        if not self._state.template_path:
            QMessageBox.information(self, "提示", "请先加载姿态模板")
            return
        self._controller.start()

    # ====== 供控制器调用（视图接口） ======

    def set_score(self, score: Optional[int]) -> None:
        """显示当前得分。输入: 0~100 整数或 None。输出: 无。"""
        self.lbl_score.setText("得分：--" if score is None else f"得分：{score}")

    def set_feedback(self, text: str) -> None:
        self.lbl_feedback.setText(text)

    def set_step(self, label: str) -> None:
        self.lbl_step.setText(f"动作：{label}")

    def set_template_pixmap(self, pixmap: QPixmap) -> None:
        self.lbl_tpl.setPixmap(pixmap)

    def set_user_pixmap(self, pixmap: QPixmap) -> None:
        self.lbl_user.setPixmap(pixmap)

    def show_step_scores(self, results: Sequence[StepResult]) -> None:
        """弹窗列出每个动作的稳定分数（样本不足时显示 --）。"""
        lines = []
        for r in results:
            stable = "--" if r.stable_score is None else str(r.stable_score)
            lines.append(f"{r.step_index + 1}. {r.pose_id}：{stable}（有效帧 {r.samples}）")
        QMessageBox.information(self, "练习结果", "\n".join(lines))

    def show_error(self, title: str, message: str) -> None:
        QMessageBox.critical(self, title, message)

    def set_status(self, message: str, timeout_ms: int = 3000) -> None:
        self.statusBar().showMessage(message, timeout_ms)

    def closeEvent(self, event) -> None:
        """窗口关闭钩子：释放控制器资源（后台线程、摄像头、检测器）后再关闭。"""
        try:
            self._controller.close()
        finally:
            super().closeEvent(event)
