"""信号管理模块。

把 OS 信号转换为对当前运行的取消操作：
- SIGINT: 取消当前运行（双击窗口内再次 SIGINT 则强制退出）
- SIGTERM: 取消当前运行

支持的配置：
- RCR_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import get_config
from .runtime.cancellation import CancelToken

__all__ = ["SignalManager"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    Example:
        ```python
        token = CancelToken()
        signal_manager = SignalManager(token)

        async def main():
            await signal_manager.start()
            try:
                await coordinator.run(source, destination, options, token)
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        token: 当前运行的取消令牌
        double_tap_window: 双击退出窗口时间（秒）
    """

    def __init__(
        self,
        token: CancelToken,
        double_tap_window: Optional[float] = None,
        on_force_exit: Optional[Callable[[], None]] = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            token: 收到信号时触发的取消令牌
            double_tap_window: 双击退出窗口时间（默认从配置读取）
            on_force_exit: 双击 SIGINT 时的回调函数
        """
        self.token = token
        self.double_tap_window = (
            double_tap_window
            if double_tap_window is not None
            else get_config().sigint_double_tap_window
        )
        self._on_force_exit = on_force_exit

        # 内部状态
        self._last_sigint_time: float = 0.0
        self._force_exit: bool = False
        self._original_sigint_handler = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_force_exit(self) -> bool:
        """是否请求强制退出（双击 SIGINT）。"""
        return self._force_exit

    async def start(self) -> None:
        """启动信号监听。

        必须在 asyncio 事件循环中调用。
        """
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (double_tap_window={self.double_tap_window}s)"
            )
        else:
            # Windows: 使用 signal.signal() 设置处理器
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._handle_sigint(),
            )
            logger.debug("SIGINT handler installed on Windows")

    async def stop(self) -> None:
        """停止信号监听，恢复原始信号处理器。"""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except Exception as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except Exception as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        logger.debug("Signal handlers removed")

    def _handle_sigint(self) -> None:
        """处理 SIGINT 信号。

        - 第一次：取消当前运行
        - 在双击窗口内再次收到：强制退出
        """
        current_time = time.time()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if self.token.is_cancelled and time_since_last < self.double_tap_window:
            logger.warning("Double SIGINT detected, forcing exit")
            self._force_shutdown()
            return

        if self.token.cancel():
            logger.info(
                f"SIGINT received, cancelling run. "
                f"Press Ctrl+C again within {self.double_tap_window}s to force exit."
            )
        else:
            logger.info("SIGINT received, cancellation already in progress")

    def _handle_sigterm(self) -> None:
        """处理 SIGTERM 信号：始终取消当前运行。"""
        logger.info("SIGTERM received, cancelling run")
        self.token.cancel()

    def _force_shutdown(self) -> None:
        """强制退出。

        设置 force_exit 标志；实际退出由调用方在清理完成后执行。
        """
        self._force_exit = True
        if self._on_force_exit:
            try:
                self._on_force_exit()
            except Exception as e:
                logger.warning(f"Error in force exit callback: {e}")
