"""Runtime module for copy-tool process supervision.

This module provides isolated process execution with concurrent stream
draining, progress extraction and reliable subtree termination.
"""

from __future__ import annotations

from .cancellation import CancelToken
from .command import RunRequest, build_request, format_command_line, quote
from .progress import extract_progress
from .stream_pump import StreamPump
from .supervisor import ProcessHandle, ProcessSupervisor

__all__ = [
    "CancelToken",
    "ProcessHandle",
    "ProcessSupervisor",
    "RunRequest",
    "StreamPump",
    "build_request",
    "extract_progress",
    "format_command_line",
    "quote",
]
