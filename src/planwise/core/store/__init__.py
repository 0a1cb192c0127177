"""Planwise Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from pathlib import Path

import aiosqlite
import structlog

from .protocols import KeyRange, RecordStore
from .record_store import (
    SqliteRecordStore,
    rule_record_store,
    task_record_store,
    utc_text,
)
from .sqlite_init import init_db, verify_wal_mode
from .transaction import transaction

log = structlog.get_logger()


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接和同一把写锁"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.task_records: RecordStore = task_record_store(conn)
        self.rule_records: RecordStore = rule_record_store(conn)
        self._write_lock = asyncio.Lock()

    def transaction(
        self, readonly: bool = False
    ) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        """开启 readonly / readwrite 事务

        用法:
            async with stores.transaction():
                await stores.task_records.put(record)
        """
        return transaction(self.conn, self._write_lock, readonly=readonly)

    async def close(self) -> None:
        """关闭数据库连接"""
        await self.conn.close()


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径（":memory:" 使用内存库）

    Returns:
        StoreGroup 实例
    """
    if db_path != ":memory:":
        # 确保数据库目录存在
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    await init_db(conn)
    # 部分文件系统（网络盘等）不支持 WAL，SQLite 会静默保留原 journal 模式
    if db_path != ":memory:" and not await verify_wal_mode(conn):
        log.warning("sqlite_wal_not_enabled", db_path=db_path)

    return StoreGroup(conn=conn)


__all__ = [
    "KeyRange",
    "RecordStore",
    "SqliteRecordStore",
    "StoreGroup",
    "create_store_group",
    "init_db",
    "transaction",
    "utc_text",
]
