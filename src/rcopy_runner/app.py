"""rcopy-runner 命令行入口。

包含日志配置、参数解析和一次复制运行的生命周期管理。

退出码:
    子进程的原始退出码；取消时为 130；无法启动时为 127；参数错误时为 2。
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from . import __version__
from .config import (
    MAX_THREADS,
    MIN_THREADS,
    Config,
    CopyMode,
    build_options,
    clamp_threads,
    get_config,
)
from .coordinator import RunCoordinator
from .errors import LaunchError
from .events import LineEvent, ProgressEvent
from .runtime.cancellation import CancelToken
from .runtime.command import format_command_line
from .signal_manager import SignalManager

__all__ = ["build_parser", "run_copy", "main"]

logger = logging.getLogger(__name__)

EXIT_CANCELLED = 130  # 128 + SIGINT(2)
EXIT_LAUNCH_FAILED = 127
EXIT_USAGE = 2


def build_parser(config: Config) -> argparse.ArgumentParser:
    """构建命令行解析器，默认值取自配置。"""
    parser = argparse.ArgumentParser(
        prog="rcopy-runner",
        description="Run a copy tool, stream its output and progress, Ctrl+C to cancel.",
    )
    parser.add_argument("source", help="Source directory (passed through unvalidated)")
    parser.add_argument("destination", help="Destination directory (passed through unvalidated)")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in CopyMode],
        default=config.mode.value,
        help=f"Copy mode flags preset (default: {config.mode.value})",
    )
    parser.add_argument(
        "--threads",
        type=int,
        default=config.threads,
        help=f"/MT thread count, clamped to {MIN_THREADS}-{MAX_THREADS} (default: {config.threads})",
    )
    parser.add_argument(
        "--options",
        default=None,
        help="Replace the mode preset with these flags (/MT is still appended)",
    )
    parser.add_argument("--extra", default="", help="Flags appended verbatim after the preset")
    parser.add_argument(
        "--executable",
        default=config.executable,
        help=f"Copy tool to run (default: {config.executable})",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def assemble_options(args: argparse.Namespace) -> str:
    """根据命令行参数拼出传给复制工具的参数串。"""
    mode = CopyMode.from_string(args.mode)
    if args.options is None:
        return build_options(mode, args.threads, args.extra)

    options = f"{args.options.strip()} /MT:{clamp_threads(args.threads)}"
    if args.extra and args.extra.strip():
        options = f"{options} {args.extra.strip()}"
    return options.strip()


async def run_copy(args: argparse.Namespace, config: Config) -> int:
    """执行一次复制运行并返回进程退出码。"""
    if not args.source.strip() or not args.destination.strip():
        print("Source and Destination must be set.", file=sys.stderr)
        return EXIT_USAGE

    token = CancelToken()
    coordinator = RunCoordinator(args.executable, config=config)
    run_task: asyncio.Task | None = None

    def on_force_exit() -> None:
        if run_task and not run_task.done():
            run_task.cancel()

    signal_manager = SignalManager(token, on_force_exit=on_force_exit)

    last_percent: int | None = None

    def on_line(event: LineEvent) -> None:
        sys.stdout.write(event.text)
        sys.stdout.flush()

    def on_progress(event: ProgressEvent) -> None:
        nonlocal last_percent
        if event.percent != last_percent:
            last_percent = event.percent
            logger.info(f"Progress {event.percent}% ({event.stream})")

    options = assemble_options(args)
    request = coordinator.build_request(args.source, args.destination, options)
    print(format_command_line(request), flush=True)

    await signal_manager.start()
    try:
        run_task = asyncio.create_task(
            coordinator.run_request(request, token, on_line=on_line, on_progress=on_progress),
            name="copy-run",
        )
        try:
            outcome = await run_task
        except asyncio.CancelledError:
            print("\nOperation canceled.", flush=True)
            return EXIT_CANCELLED
        except LaunchError as e:
            print(f"Error: {e}", file=sys.stderr, flush=True)
            return EXIT_LAUNCH_FAILED

        if outcome.cancelled:
            print("\nOperation canceled.", flush=True)
            return EXIT_CANCELLED

        print(f"\n{args.executable} exited with code {outcome.exit_code}.", flush=True)
        return outcome.exit_code if outcome.exit_code is not None else 0

    finally:
        await signal_manager.stop()


def setup_logging(config: Config) -> None:
    """配置日志输出。"""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 rcopy_runner 命名空间启用详细日志
    logging.getLogger("rcopy_runner").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """主入口点。"""
    config = get_config()
    setup_logging(config)

    args = build_parser(config).parse_args(argv)
    logger.debug(f"Starting rcopy-runner: {config}")

    sys.exit(asyncio.run(run_copy(args, config)))


if __name__ == "__main__":
    main()
