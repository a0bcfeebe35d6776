"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import sys
import time
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from rcopy_runner.config import Config  # noqa: E402
from rcopy_runner.coordinator import RunCoordinator  # noqa: E402

# 模拟复制工具
FAKE_COPY_PATH = PROJECT_ROOT / "tests" / "fixtures" / "fake_copy.py"


def is_alive(pid: int) -> bool:
    """进程是否仍在运行（僵尸进程视为已退出）。"""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True

    stat = Path(f"/proc/{pid}/stat")
    try:
        # 第三个字段是状态，Z 表示僵尸
        state = stat.read_text().rsplit(")", 1)[1].split()[0]
    except (OSError, IndexError):
        return True
    return state != "Z"


def wait_until_dead(pid: int, timeout: float = 3.0) -> bool:
    """轮询直到进程退出或超时。"""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if not is_alive(pid):
            return True
        time.sleep(0.05)
    return not is_alive(pid)


@pytest.fixture
def fake_copy_path() -> Path:
    """模拟复制工具脚本路径。"""
    return FAKE_COPY_PATH


@pytest.fixture
def test_config() -> Config:
    """较短超时的测试配置。"""
    return Config(
        executable=sys.executable,
        encoding="utf-8",
        chunk_size=1024,
        term_timeout=0.5,
        kill_timeout=0.5,
        drain_timeout=2.0,
    )


@pytest.fixture
def coordinator(test_config: Config) -> RunCoordinator:
    """以当前 Python 解释器作为"复制工具"的编排器。

    source 传入 fake_copy.py 的路径，因此命令行形如：
        python "fake_copy.py" "dest" --progress 10,55,100
    """
    return RunCoordinator(sys.executable, config=test_config)
