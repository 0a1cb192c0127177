"""Planwise 测试配置 -- 临时数据库 + 可控时钟 + 服务 fixture"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from planwise.automation import RuleService, TriggerManager, reset_trigger_manager
from planwise.core.config import AutomationConfig
from planwise.core.store import StoreGroup, create_store_group
from planwise.tasks import TaskService, TimeTracker

# 2026-03-02 是周一
START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """已初始化的临时数据库"""
    group = await create_store_group(str(tmp_path / "sqlite" / "planwise.db"))
    yield group
    await group.close()


@pytest_asyncio.fixture
async def trigger_manager(clock: FakeClock) -> AsyncGenerator[TriggerManager, None]:
    """UTC 时区、使用可控时钟的 TriggerManager"""
    manager = TriggerManager(AutomationConfig(), clock=clock, tz=UTC)
    yield manager
    manager.cleanup()
    reset_trigger_manager()


@pytest_asyncio.fixture
async def task_service(store_group, trigger_manager, clock) -> TaskService:
    return TaskService(store_group, trigger_manager, clock=clock)


@pytest_asyncio.fixture
async def rule_service(store_group, trigger_manager, clock) -> RuleService:
    return RuleService(store_group, trigger_manager, clock=clock)


@pytest_asyncio.fixture
async def time_tracker(task_service, clock) -> TimeTracker:
    return TimeTracker(task_service, clock=clock)
