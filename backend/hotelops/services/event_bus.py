"""
事件总线 - 预订领域事件的发布/订阅

服务在事务提交之后才调用 publish，处理器看到的一定是已落库的状态；
处理器抛出的异常只记录到发布结果和日志里，不会回滚业务数据，
也不会阻止同一事件的其他处理器执行。
"""
from typing import Callable, Dict, List, Any, Optional, Tuple, Union
from dataclasses import dataclass, field
from datetime import datetime
from collections import deque
import logging
import threading
import uuid

from hotelops.models.events import EventType

logger = logging.getLogger(__name__)

EventKey = Union[EventType, str]
Handler = Callable[["Event"], None]


def _event_key(event_type: EventKey) -> str:
    """枚举与字符串事件名统一成字符串键"""
    if isinstance(event_type, EventType):
        return event_type.value
    return str(event_type)


def _new_event_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:8]}"


@dataclass
class Event:
    """
    领域事件

    Attributes:
        event_type: EventType 或同名字符串
        timestamp: 业务发生时间（由服务注入的时钟给出）
        data: 事件负载，来自 models.events 中各数据类的 to_dict()
        source: 发布方服务名
    """
    event_type: EventKey
    timestamp: datetime
    data: Dict[str, Any]
    source: str = ""
    event_id: str = field(default_factory=_new_event_id)

    @property
    def key(self) -> str:
        return _event_key(self.event_type)

    @property
    def booking_id(self) -> Optional[int]:
        return self.data.get("booking_id")


@dataclass
class PublishResult:
    """一次发布的投递结果"""
    event_type: str
    delivered: int = 0
    errors: List[Tuple[str, Exception]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class EventBus:
    """
    内存事件总线（线程安全）

    应用内共享模块级实例 event_bus；测试可以直接 EventBus() 得到隔离的总线。
    """

    def __init__(self, history_size: int = 100):
        self._subscribers: Dict[str, List[Handler]] = {}
        self._history: deque = deque(maxlen=history_size)
        self._lock = threading.RLock()

    def subscribe(self, event_type: EventKey, handler: Handler) -> None:
        """订阅事件，同一处理器重复订阅只保留一次"""
        key = _event_key(event_type)
        with self._lock:
            handlers = self._subscribers.setdefault(key, [])
            if handler not in handlers:
                handlers.append(handler)
                logger.debug(f"Handler {handler.__name__} subscribed to {key}")

    def unsubscribe(self, event_type: EventKey, handler: Handler) -> None:
        key = _event_key(event_type)
        with self._lock:
            handlers = self._subscribers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)
                logger.debug(f"Handler {handler.__name__} unsubscribed from {key}")

    def publish(self, event: Event) -> PublishResult:
        """
        同步投递给所有订阅者

        Returns:
            PublishResult，失败的处理器及其异常在 errors 中
        """
        key = event.key
        with self._lock:
            self._history.append(event)
            handlers = list(self._subscribers.get(key, []))

        result = PublishResult(event_type=key)
        for handler in handlers:
            try:
                handler(event)
                result.delivered += 1
            except Exception as e:
                result.errors.append((handler.__name__, e))
                logger.error(
                    f"Event handler {handler.__name__} failed for {key} "
                    f"(booking {event.booking_id}): {e}",
                    exc_info=True
                )
        return result

    def get_history(self, event_type: Optional[EventKey] = None,
                    booking_id: Optional[int] = None, limit: int = 50) -> List[Event]:
        """
        最近发布的事件，最新的在前

        Args:
            event_type: 只看某类事件
            booking_id: 只看某个预订的事件
        """
        with self._lock:
            history = list(self._history)
        if event_type is not None:
            key = _event_key(event_type)
            history = [e for e in history if e.key == key]
        if booking_id is not None:
            history = [e for e in history if e.booking_id == booking_id]
        return list(reversed(history))[:limit]

    def get_subscribers(self) -> Dict[str, List[str]]:
        with self._lock:
            return {
                key: [h.__name__ for h in handlers]
                for key, handlers in self._subscribers.items()
            }

    def reset(self) -> None:
        """清空订阅与历史（测试用）"""
        with self._lock:
            self._subscribers.clear()
            self._history.clear()


# 全局事件总线实例
event_bus = EventBus()
