"""EventHub -- 内存中的事件发布/订阅

事件名 -> 有序监听器列表，注册顺序即通知顺序。
emit 依次 await 每个监听器（同步或异步均可），单个监听器抛出的异常
只记录日志，不影响后续监听器，也不会传播给调用方。
"""

import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

log = structlog.get_logger()

Listener = Callable[[Any], Awaitable[None] | None]


class _Subscription:
    """一次注册；取消订阅按对象身份移除，同一回调可重复注册"""

    __slots__ = ("event_name", "callback")

    def __init__(self, event_name: str, callback: Listener) -> None:
        self.event_name = event_name
        self.callback = callback


class EventHub:
    """事件中心"""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[_Subscription]] = defaultdict(list)

    def on(self, event_name: str, callback: Listener) -> Callable[[], None]:
        """注册监听器

        Returns:
            取消订阅函数，只移除本次注册；重复调用无副作用
        """
        subscription = _Subscription(event_name, callback)
        self._subscribers[event_name].append(subscription)

        def unsubscribe() -> None:
            self._remove(subscription)

        return unsubscribe

    def _remove(self, subscription: _Subscription) -> None:
        subscribers = self._subscribers.get(subscription.event_name)
        if not subscribers:
            return
        remaining = [s for s in subscribers if s is not subscription]
        if remaining:
            self._subscribers[subscription.event_name] = remaining
        else:
            del self._subscribers[subscription.event_name]

    async def emit(self, event_name: str, payload: Any = None) -> None:
        """按注册顺序通知监听器，等待全部完成后返回"""
        # 快照：监听器在回调中注册/取消注册不影响本次分发
        for subscription in list(self._subscribers.get(event_name, ())):
            try:
                result = subscription.callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log.error(
                    "event_listener_failed",
                    event_name=event_name,
                    error_type=type(e).__name__,
                    error=str(e),
                )

    def listener_count(self, event_name: str | None = None) -> int:
        """监听器数量；event_name 为 None 时统计全部"""
        if event_name is not None:
            return len(self._subscribers.get(event_name, ()))
        return sum(len(subs) for subs in self._subscribers.values())

    def clear(self) -> None:
        """移除全部监听器"""
        self._subscribers.clear()
