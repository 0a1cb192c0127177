"""EventHub 测试 -- 顺序通知、异常隔离、按注册取消订阅"""

from planwise.automation import EventHub


class TestEmit:
    async def test_listeners_called_in_order(self):
        hub = EventHub()
        calls: list[str] = []
        hub.on("task.created", lambda payload: calls.append(f"first:{payload}"))

        async def second(payload):
            calls.append(f"second:{payload}")

        hub.on("task.created", second)
        await hub.emit("task.created", "t1")
        assert calls == ["first:t1", "second:t1"]

    async def test_failing_listener_isolated(self):
        """抛异常的监听器不影响后续监听器，emit 本身不抛出"""
        hub = EventHub()
        calls: list[str] = []

        def broken(payload):
            raise RuntimeError("boom")

        async def broken_async(payload):
            raise ValueError("async boom")

        hub.on("task.completed", broken)
        hub.on("task.completed", broken_async)
        hub.on("task.completed", lambda payload: calls.append("after"))

        await hub.emit("task.completed", {})
        assert calls == ["after"]

    async def test_emit_without_listeners(self):
        await EventHub().emit("nothing.here")

    async def test_registration_during_emit_not_notified(self):
        """分发使用快照：回调中新注册的监听器下一次才生效"""
        hub = EventHub()
        calls: list[str] = []

        def register_more(payload):
            calls.append("outer")
            hub.on("evt", lambda p: calls.append("inner"))

        hub.on("evt", register_more)
        await hub.emit("evt")
        assert calls == ["outer"]
        await hub.emit("evt")
        assert calls == ["outer", "outer", "inner"]


class TestUnsubscribe:
    async def test_removes_only_that_registration(self):
        """同一回调注册两次，取消一次后仍保留一次"""
        hub = EventHub()
        calls: list[object] = []
        unsubscribe = hub.on("evt", calls.append)
        hub.on("evt", calls.append)

        unsubscribe()
        unsubscribe()
        await hub.emit("evt", 1)
        assert calls == [1]
        assert hub.listener_count("evt") == 1

    async def test_listener_count_and_clear(self):
        hub = EventHub()
        hub.on("a", print)
        hub.on("b", print)
        hub.on("b", print)
        assert hub.listener_count() == 3
        assert hub.listener_count("b") == 2
        hub.clear()
        assert hub.listener_count() == 0
