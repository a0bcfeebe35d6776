"""运行编排模块。

RunCoordinator 是对外的唯一入口：把一次复制任务包装成一个可 await 的
操作，返回 RunOutcome（退出码或已取消），并通过两个通道转发输出：

- lines: LineEvent，每读到一段文本触发一次
- progress: ProgressEvent，文本中解析出百分比时触发

保证：RunOutcome 只在两个读取任务都结束（完成、失败或被放弃）之后产生，
因此返回之后不会再有任何回调。
正常结束时会等到输出全部读完；只有在发出终止之后，等待才受
drain_timeout 限制，超时的读取任务被放弃。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import anyio

from .config import Config, get_config
from .events import EventChannel, LineEvent, ProgressEvent
from .runtime.cancellation import CancelToken
from .runtime.command import RunRequest, build_request
from .runtime.stream_pump import StreamPump
from .runtime.supervisor import ProcessSupervisor, PumpFactory

__all__ = ["RunCoordinator", "RunOutcome"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOutcome:
    """一次运行的最终结果。

    Attributes:
        exit_code: 子进程原始退出码；取消时为 None
        cancelled: 是否在完成前被取消令牌打断
    """

    exit_code: int | None = None
    cancelled: bool = False

    @classmethod
    def completed(cls, exit_code: int) -> "RunOutcome":
        return cls(exit_code=exit_code)

    @classmethod
    def cancellation(cls) -> "RunOutcome":
        return cls(cancelled=True)

    def __repr__(self) -> str:
        if self.cancelled:
            return "RunOutcome(cancelled)"
        return f"RunOutcome(exit_code={self.exit_code})"


class RunCoordinator:
    """复制任务的运行编排器。

    每次 run() 独立创建一个 ProcessSupervisor，本类不对并发的多次运行
    做互斥；是否允许并发由调用方决定。两个通道由同一个 coordinator 的
    所有运行共享，需要按次区分时请使用 run() 的 on_line/on_progress 参数。

    Example:
        ```python
        coordinator = RunCoordinator()
        token = CancelToken()

        outcome = await coordinator.run(
            "C:\\Data", "D:\\Backup", "/MIR /MT:8", token,
            on_progress=lambda e: print(f"{e.percent}%"),
        )
        if outcome.cancelled:
            print("Operation canceled.")
        else:
            print(f"exited with code {outcome.exit_code}")
        ```
    """

    def __init__(
        self,
        executable: str | None = None,
        *,
        config: Config | None = None,
        cwd: Path | None = None,
        pump_factory: PumpFactory = StreamPump,
    ) -> None:
        """初始化编排器。

        Args:
            executable: 复制工具（默认从配置读取）
            config: 运行参数（默认使用全局配置）
            cwd: 子进程工作目录（默认继承）
            pump_factory: 读取任务的构造函数
        """
        self.config = config if config is not None else get_config()
        self.executable = executable or self.config.executable
        self.cwd = cwd
        self._pump_factory = pump_factory

        self.lines: EventChannel[LineEvent] = EventChannel("lines")
        self.progress: EventChannel[ProgressEvent] = EventChannel("progress")

    def build_request(self, source: str, destination: str, options: str = "") -> RunRequest:
        """构造本次运行的 RunRequest。"""
        return build_request(self.executable, source, destination, options, cwd=self.cwd)

    async def run(
        self,
        source: str,
        destination: str,
        options: str = "",
        cancel_token: CancelToken | None = None,
        *,
        on_line: Callable[[LineEvent], None] | None = None,
        on_progress: Callable[[ProgressEvent], None] | None = None,
    ) -> RunOutcome:
        """运行复制工具直到结束或被取消。

        Args:
            source: 源路径（不做校验）
            destination: 目标路径（不做校验）
            options: 原样追加的参数串
            cancel_token: 取消令牌，可在任意时刻、任意线程触发
            on_line: 仅对本次运行生效的 LineEvent 订阅
            on_progress: 仅对本次运行生效的 ProgressEvent 订阅

        Returns:
            RunOutcome

        Raises:
            LaunchError: 子进程无法启动（此时不会触发任何回调）
        """
        request = self.build_request(source, destination, options)
        return await self.run_request(
            request, cancel_token, on_line=on_line, on_progress=on_progress
        )

    async def run_request(
        self,
        request: RunRequest,
        cancel_token: CancelToken | None = None,
        *,
        on_line: Callable[[LineEvent], None] | None = None,
        on_progress: Callable[[ProgressEvent], None] | None = None,
    ) -> RunOutcome:
        """按已构造好的 RunRequest 运行。语义同 run()。"""
        if cancel_token is not None and cancel_token.is_cancelled:
            logger.info("Cancel token already triggered, not starting the run")
            return RunOutcome.cancellation()

        unsubscribers = []
        if on_line is not None:
            unsubscribers.append(self.lines.subscribe(on_line))
        if on_progress is not None:
            unsubscribers.append(self.progress.subscribe(on_progress))

        supervisor = ProcessSupervisor(
            request,
            on_line=self.lines.publish,
            on_progress=self.progress.publish,
            encoding=self.config.encoding,
            chunk_size=self.config.chunk_size,
            term_timeout=self.config.term_timeout,
            kill_timeout=self.config.kill_timeout,
            drain_timeout=self.config.drain_timeout,
            pump_factory=self._pump_factory,
        )

        try:
            await supervisor.start(cancel_token)
            logger.info(f"Run started pid={supervisor.pid}: {request.executable} {request.command_line}")

            exit_code = await supervisor.wait_exit()
            # Exit does not imply drained: pumps may still hold buffered output.
            # Unbounded unless a kill is issued, then drain_timeout applies.
            await supervisor.wait_drained()

            if supervisor.cancelled:
                logger.info(f"Run cancelled pid={supervisor.pid}")
                return RunOutcome.cancellation()

            logger.info(f"Run finished pid={supervisor.pid} exit_code={exit_code}")
            return RunOutcome.completed(exit_code)

        except anyio.get_cancelled_exc_class():
            logger.info(f"Run interrupted by task cancellation pid={supervisor.pid}")
            raise

        finally:
            await supervisor.close()
            for unsubscribe in unsubscribers:
                unsubscribe()
