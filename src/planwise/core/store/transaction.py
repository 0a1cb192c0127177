"""事务封装

readwrite 事务：获取 StoreGroup 写锁 -> BEGIN IMMEDIATE -> 正常退出提交，异常回滚并重新抛出。
readonly 事务：不加锁、不开启显式事务，只提供与 readwrite 对称的调用方式。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite


@asynccontextmanager
async def transaction(
    conn: aiosqlite.Connection,
    write_lock: asyncio.Lock,
    readonly: bool = False,
) -> AsyncIterator[aiosqlite.Connection]:
    """在共享连接上开启事务

    Args:
        conn: 数据库连接（所有 RecordStore 共享）
        write_lock: 串行化写事务的锁
        readonly: True 时仅读取，不加锁

    Raises:
        Exception: 事务体内的任何异常在回滚后原样抛出
    """
    if readonly:
        yield conn
        return

    async with write_lock:
        await conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise
