from __future__ import annotations

import logging
import sys

from PySide6.QtWidgets import QApplication

from pose_coach_app.ui.main_window import MainWindow


def main() -> int:
    """应用入口：配置日志、创建 QApplication 与主窗口并运行事件循环。

    输入/输出: 无显式输入；返回应用退出码（int）。
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = QApplication(sys.argv)
    w = MainWindow()
    w.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
