"""rcopy-runner 异常类。

只有 LaunchError 会穿过运行边界抛给调用方；
流读取失败与终止失败都在内部吸收。
"""

from __future__ import annotations

__all__ = [
    "RunnerError",
    "LaunchError",
]


class RunnerError(Exception):
    """rcopy-runner 基础异常。"""
    pass


class LaunchError(RunnerError):
    """子进程无法启动（可执行文件不存在、无权限等）。

    Attributes:
        executable: 请求启动的可执行文件
        reason: 失败原因
    """

    def __init__(self, executable: str, reason: str) -> None:
        self.executable = executable
        self.reason = reason
        super().__init__(f"Failed to start '{executable}': {reason}")
