"""命令行入口测试。"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

from rcopy_runner.app import (
    EXIT_LAUNCH_FAILED,
    EXIT_USAGE,
    assemble_options,
    build_parser,
    run_copy,
)
from rcopy_runner.config import Config, CopyMode


class TestParser:
    """参数解析测试。"""

    def test_defaults_from_config(self):
        """默认值取自配置。"""
        config = Config(executable="robocopy", mode=CopyMode.COPY, threads=8)

        args = build_parser(config).parse_args(["C:\\Data", "D:\\Backup"])

        assert args.source == "C:\\Data"
        assert args.destination == "D:\\Backup"
        assert args.mode == "copy"
        assert args.threads == 8
        assert args.options is None
        assert args.extra == ""
        assert args.executable == "robocopy"

    def test_invalid_mode_rejected(self):
        """无效模式报错退出。"""
        with pytest.raises(SystemExit):
            build_parser(Config()).parse_args(["a", "b", "--mode", "move"])


class TestAssembleOptions:
    """参数串拼接测试。"""

    def test_preset(self):
        """使用模式预设。"""
        args = build_parser(Config()).parse_args(["a", "b", "--mode", "mirror", "--threads", "4"])

        assert assemble_options(args) == "/MIR /COPY:DATSO /Z /R:3 /W:2 /V /NP /TEE /MT:4"

    def test_custom_options_replace_preset(self):
        """自定义参数替换预设，仍追加 /MT。"""
        args = build_parser(Config()).parse_args(
            ["a", "b", "--options", "/E /XO", "--threads", "300", "--extra", "/XF *.tmp"]
        )

        assert assemble_options(args) == "/E /XO /MT:128 /XF *.tmp"


class TestRunCopy:
    """一次完整运行的测试。"""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_exit_code_and_summary(
        self, test_config: Config, fake_copy_path: Path, capsys
    ):
        """子进程退出码原样返回，并打印摘要。"""
        args = build_parser(test_config).parse_args(
            [
                str(fake_copy_path),
                "dest",
                "--options=--progress 20,80 --interval 0.05 --exit-code 1",
            ]
        )

        code = await run_copy(args, test_config)

        out = capsys.readouterr().out
        assert code == 1
        assert "80%" in out
        assert "DONE" in out
        assert f"{sys.executable} exited with code 1." in out

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_progress_logged_at_info(
        self, test_config: Config, fake_copy_path: Path, caplog
    ):
        """默认 INFO 级别即可看到进度日志，重复百分比只记一次。"""
        caplog.set_level(logging.INFO, logger="rcopy_runner")
        args = build_parser(test_config).parse_args(
            [str(fake_copy_path), "dest", "--options=--progress 20,80,80 --interval 0.15"]
        )

        code = await run_copy(args, test_config)

        messages = [
            r.getMessage() for r in caplog.records
            if r.name == "rcopy_runner.app" and r.levelno == logging.INFO
        ]
        assert code == 0
        assert [m for m in messages if m.startswith("Progress ")] == [
            "Progress 20% (stdout)",
            "Progress 80% (stdout)",
        ]

    @pytest.mark.asyncio
    async def test_launch_failure(self, test_config: Config, capsys):
        """无法启动时返回 127。"""
        args = build_parser(test_config).parse_args(
            ["C:\\Data", "D:\\Backup", "--executable", "nonexistent_copy_tool_xyz_123"]
        )

        code = await run_copy(args, test_config)

        assert code == EXIT_LAUNCH_FAILED
        assert "Error: Failed to start" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_empty_source(self, test_config: Config, capsys):
        """源路径为空时不启动。"""
        args = build_parser(test_config).parse_args(["  ", "D:\\Backup"])

        code = await run_copy(args, test_config)

        assert code == EXIT_USAGE
        assert "Source and Destination must be set." in capsys.readouterr().err
