"""运行事件模型与订阅通道。

- LineEvent: 从 stdout/stderr 读到的一段原始文本（不保证按行切分）
- ProgressEvent: 从文本中解析出的百分比，范围 0-100，不保证单调
- EventChannel: 显式的订阅/退订通道，替代可被随意改写的公共事件字段

回调在事件循环线程上同步触发，跨线程投递由调用方负责。
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "StreamName",
    "LineEvent",
    "ProgressEvent",
    "EventChannel",
]

logger = logging.getLogger(__name__)

StreamName = Literal["stdout", "stderr"]


class RunEventBase(BaseModel):
    """运行事件基类。

    Attributes:
        stream: 事件来源的输出流
        timestamp: Unix 时间戳（秒）
    """

    model_config = ConfigDict(frozen=True)

    stream: StreamName
    timestamp: float = Field(default_factory=time.time)


class LineEvent(RunEventBase):
    """一段输出文本，可能是半行，也可能包含多行。"""

    text: str


class ProgressEvent(RunEventBase):
    """进度百分比。"""

    percent: int = Field(ge=0, le=100)


E = TypeVar("E")


class EventChannel(Generic[E]):
    """单类型事件的订阅通道。

    同一个回调重复订阅只会登记一次；某个订阅者抛出的异常会被记录
    并吞掉，不影响其它订阅者，也不会中断读取输出流的任务。

    Example:
        ```python
        channel: EventChannel[LineEvent] = EventChannel("lines")
        unsubscribe = channel.subscribe(lambda e: print(e.text, end=""))
        try:
            await coordinator.run(...)
        finally:
            unsubscribe()
        ```
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: list[Callable[[E], None]] = []

    @property
    def subscriber_count(self) -> int:
        """当前订阅者数量。"""
        return len(self._subscribers)

    def subscribe(self, callback: Callable[[E], None]) -> Callable[[], None]:
        """订阅事件。

        Returns:
            退订函数，重复调用无副作用
        """
        if callback not in self._subscribers:
            self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Callable[[E], None]) -> bool:
        """退订事件。

        Returns:
            回调此前是否已订阅
        """
        if callback in self._subscribers:
            self._subscribers.remove(callback)
            return True
        return False

    def publish(self, event: E) -> None:
        """把事件同步分发给所有订阅者。"""
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Error in {self.name} subscriber: {e}")

    def clear(self) -> None:
        """移除所有订阅者。"""
        self._subscribers.clear()
