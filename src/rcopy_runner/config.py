"""RCR 环境变量配置管理。

环境变量:
    RCR_EXECUTABLE: 复制工具的可执行文件
        - 默认 robocopy，通过 PATH 查找

    RCR_MODE: 复制模式
        - mirror = 镜像 (默认，/MIR)
        - copy = 仅复制，不删除目标多余文件 (/E)

    RCR_THREADS: /MT 线程数
        - 默认 CPU 核数
        - 限制在 1-128 范围

    RCR_ENCODING: 子进程输出的解码方式
        - 默认使用系统首选编码

    RCR_CHUNK_SIZE: 每次读取的字节数
        - 默认 1024

    RCR_TERM_TIMEOUT / RCR_KILL_TIMEOUT: 终止进程树时的等待时间（秒）
        - 默认 2.0 / 1.0

    RCR_DRAIN_TIMEOUT: 取消后等待输出流排空的时间（秒）
        - 默认 5.0，超时后放弃读取

    RCR_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    RCR_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
        - 在此时间窗口内第二次 Ctrl+C 将强制退出
"""

from __future__ import annotations

import locale
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = [
    "Config",
    "CopyMode",
    "MIN_THREADS",
    "MAX_THREADS",
    "build_options",
    "clamp_threads",
    "load_config",
    "get_config",
    "reload_config",
]

MIN_THREADS = 1
MAX_THREADS = 128

DEFAULT_EXECUTABLE = "robocopy"
DEFAULT_CHUNK_SIZE = 1024
MAX_CHUNK_SIZE = 1024 * 1024


class CopyMode(Enum):
    """复制模式。

    - MIRROR: 镜像目录树，目标中多余的文件会被删除
    - COPY: 复制子目录（含空目录），不删除目标文件
    """

    MIRROR = "mirror"
    COPY = "copy"

    @property
    def flags(self) -> str:
        """该模式的默认参数。"""
        return _MODE_FLAGS[self]

    @classmethod
    def from_string(cls, value: str) -> "CopyMode":
        """从字符串解析模式。

        Args:
            value: 模式字符串 (mirror/copy)

        Returns:
            对应的 CopyMode 枚举值，无效值返回 MIRROR
        """
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.MIRROR  # 默认值


_MODE_FLAGS: dict[CopyMode, str] = {
    CopyMode.MIRROR: "/MIR /COPY:DATSO /Z /R:3 /W:2 /V /NP /TEE",
    CopyMode.COPY: "/E /COPY:DAT /Z /R:3 /W:2 /V /NP /TEE",
}


def clamp_threads(value: int) -> int:
    """把线程数限制在 MIN_THREADS-MAX_THREADS 范围。"""
    return max(MIN_THREADS, min(value, MAX_THREADS))


def build_options(mode: CopyMode, threads: int, extra: str = "") -> str:
    """拼接传给复制工具的参数串。

    Args:
        mode: 复制模式
        threads: /MT 线程数（会被限制范围）
        extra: 追加的原样参数

    Returns:
        形如 "/MIR ... /MT:8" 的参数串
    """
    options = f"{mode.flags} /MT:{clamp_threads(threads)}"
    if extra and extra.strip():
        options = f"{options} {extra.strip()}"
    return options


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """解析浮点数环境变量，并限制范围。"""
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_threads(value: str | None) -> int:
    """解析线程数环境变量。"""
    default = os.cpu_count() or MIN_THREADS
    if not value:
        return clamp_threads(default)
    try:
        return clamp_threads(int(value))
    except ValueError:
        return clamp_threads(default)


def _parse_chunk_size(value: str | None) -> int:
    """解析读取块大小环境变量。"""
    if not value:
        return DEFAULT_CHUNK_SIZE
    try:
        return max(1, min(int(value), MAX_CHUNK_SIZE))
    except ValueError:
        return DEFAULT_CHUNK_SIZE


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "rcopy-runner"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"rcr_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """RCR 配置。

    Attributes:
        executable: 复制工具可执行文件
        mode: 复制模式
        threads: /MT 线程数
        encoding: 子进程输出解码方式
        chunk_size: 每次读取的字节数
        term_timeout: 发送 SIGTERM 后的等待时间（秒）
        kill_timeout: 发送 SIGKILL 后的等待时间（秒）
        drain_timeout: 取消后等待输出流排空的时间（秒）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        sigint_double_tap_window: 双击退出窗口时间（秒）
    """

    executable: str = DEFAULT_EXECUTABLE
    mode: CopyMode = CopyMode.MIRROR
    threads: int = MIN_THREADS
    encoding: str = "utf-8"
    chunk_size: int = DEFAULT_CHUNK_SIZE
    term_timeout: float = 2.0
    kill_timeout: float = 1.0
    drain_timeout: float = 5.0
    log_debug: bool = False
    log_file: str | None = None
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        return (
            f"Config(executable={self.executable}, "
            f"mode={self.mode.value}, "
            f"threads={self.threads}, "
            f"encoding={self.encoding}, "
            f"chunk_size={self.chunk_size}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"drain_timeout={self.drain_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("RCR_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        executable=os.environ.get("RCR_EXECUTABLE", "").strip() or DEFAULT_EXECUTABLE,
        mode=CopyMode.from_string(os.environ.get("RCR_MODE", "")),
        threads=_parse_threads(os.environ.get("RCR_THREADS")),
        encoding=(
            os.environ.get("RCR_ENCODING", "").strip()
            or locale.getpreferredencoding(False)
        ),
        chunk_size=_parse_chunk_size(os.environ.get("RCR_CHUNK_SIZE")),
        term_timeout=_parse_float(os.environ.get("RCR_TERM_TIMEOUT"), 2.0, 0.0, 60.0),
        kill_timeout=_parse_float(os.environ.get("RCR_KILL_TIMEOUT"), 1.0, 0.0, 60.0),
        drain_timeout=_parse_float(os.environ.get("RCR_DRAIN_TIMEOUT"), 5.0, 0.0, 300.0),
        log_debug=log_debug,
        log_file=log_file,
        sigint_double_tap_window=_parse_float(
            os.environ.get("RCR_SIGINT_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
