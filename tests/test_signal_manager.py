"""SignalManager 模块测试。

测试信号管理器的基本功能：
- SIGINT/SIGTERM 触发取消令牌
- 配置支持
- 双击退出
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
import time
from unittest import mock

import pytest

from rcopy_runner.config import reload_config
from rcopy_runner.runtime.cancellation import CancelToken
from rcopy_runner.signal_manager import SignalManager


class TestSignalManagerInit:
    """SignalManager 初始化测试。"""

    def test_init_with_defaults(self):
        """使用默认配置初始化。"""
        token = CancelToken()

        with mock.patch.dict(os.environ, {}, clear=False):
            # 确保没有相关环境变量
            os.environ.pop("RCR_SIGINT_DOUBLE_TAP_WINDOW", None)

            # 重新加载配置
            reload_config()

            manager = SignalManager(token)

            assert manager.token is token
            assert manager.double_tap_window == 1.0
            assert manager.is_force_exit is False

    def test_init_with_custom_values(self):
        """使用自定义值初始化。"""
        manager = SignalManager(CancelToken(), double_tap_window=2.0)

        assert manager.double_tap_window == 2.0


class TestSignalManagerSigint:
    """SignalManager SIGINT 测试。"""

    def test_first_sigint_cancels_token(self):
        """第一次 SIGINT 取消当前运行。"""
        token = CancelToken()
        manager = SignalManager(token, double_tap_window=1.0)

        manager._handle_sigint()

        assert token.is_cancelled is True
        assert manager.is_force_exit is False

    def test_sigint_after_window_does_not_force(self):
        """窗口外的第二次 SIGINT 不会强制退出。"""
        token = CancelToken()
        callback = mock.MagicMock()
        manager = SignalManager(token, double_tap_window=1.0, on_force_exit=callback)

        manager._handle_sigint()
        # 把上一次 SIGINT 的时间推到窗口之外
        manager._last_sigint_time -= 5.0
        manager._handle_sigint()

        assert token.is_cancelled is True
        assert manager.is_force_exit is False
        callback.assert_not_called()


class TestSignalManagerDoubleTap:
    """SignalManager 双击退出测试。"""

    def test_double_tap_forces_exit(self):
        """双击 SIGINT 设置强制退出标志。

        不直接调用 sys.exit(130)，而是设置 is_force_exit 标志并调用回调，
        让主流程在子进程清理完成后再退出。
        """
        token = CancelToken()
        callback = mock.MagicMock()
        manager = SignalManager(token, double_tap_window=1.0, on_force_exit=callback)

        # 第一次 SIGINT
        manager._handle_sigint()
        # 第二次 SIGINT（在窗口内）
        manager._handle_sigint()

        assert manager.is_force_exit is True
        callback.assert_called_once()

    def test_double_tap_requires_prior_cancel(self):
        """令牌未被取消时，快速的 SIGINT 仍只取消。"""
        token = CancelToken()
        manager = SignalManager(token, double_tap_window=1.0)
        manager._last_sigint_time = time.time()

        manager._handle_sigint()

        assert token.is_cancelled is True
        assert manager.is_force_exit is False

    def test_failing_callback_is_contained(self):
        """强制退出回调抛出异常时不向外传播。"""
        token = CancelToken()
        callback = mock.MagicMock(side_effect=RuntimeError("boom"))
        manager = SignalManager(token, double_tap_window=1.0, on_force_exit=callback)

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True


class TestSignalManagerSigterm:
    """SignalManager SIGTERM 测试。"""

    def test_sigterm_cancels_token(self):
        """SIGTERM 取消当前运行。"""
        token = CancelToken()
        manager = SignalManager(token)

        manager._handle_sigterm()

        assert token.is_cancelled is True
        assert manager.is_force_exit is False


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal handling")
class TestSignalManagerStartStop:
    """SignalManager 启动/停止测试（仅 POSIX）。"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """启动和停止信号管理器。"""
        manager = SignalManager(CancelToken())

        # 启动
        await manager.start()
        assert manager._running is True
        assert manager._loop is not None

        # 停止
        await manager.stop()
        assert manager._running is False

    @pytest.mark.asyncio
    async def test_real_sigterm_cancels_token(self):
        """真实的 SIGTERM 经事件循环触发取消。"""
        token = CancelToken()
        manager = SignalManager(token)

        await manager.start()
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            for _ in range(50):
                if token.is_cancelled:
                    break
                await asyncio.sleep(0.02)
        finally:
            await manager.stop()

        assert token.is_cancelled is True
