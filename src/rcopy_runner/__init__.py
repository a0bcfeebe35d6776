"""rcopy-runner - 运行外部复制工具，流式转发输出与进度，支持取消整个进程树。

环境变量:
    RCR_EXECUTABLE: 复制工具 (默认 robocopy)
    RCR_MODE: 复制模式 mirror/copy (默认 mirror)
    RCR_THREADS: /MT 线程数 (默认 CPU 核数)

用法:
    rcopy-runner SOURCE DESTINATION
"""

__version__ = "0.1.0"

from .coordinator import RunCoordinator, RunOutcome
from .errors import LaunchError, RunnerError
from .events import EventChannel, LineEvent, ProgressEvent
from .runtime import CancelToken, RunRequest, extract_progress, quote

__all__ = [
    "__version__",
    "CancelToken",
    "EventChannel",
    "LaunchError",
    "LineEvent",
    "ProgressEvent",
    "RunCoordinator",
    "RunOutcome",
    "RunRequest",
    "RunnerError",
    "extract_progress",
    "quote",
]
