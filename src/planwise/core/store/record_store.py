"""RecordStore SQLite 实现

每张表一个主键列 + data（JSON）列 + 若干索引列。
索引列的值由 extractor 从记录中提取，写入时与 data 同步更新。
注意：写方法不自动提交事务，需由调用方通过 StoreGroup.transaction 管理。
"""

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from .protocols import KeyRange

IndexExtractor = Callable[[dict[str, Any]], Any]


def utc_text(value: Any) -> str | None:
    """将 datetime / ISO 字符串统一为 UTC ISO 文本，保证索引列可按字典序比较"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


class SqliteRecordStore:
    """RecordStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        table: str,
        key_column: str,
        indexes: dict[str, IndexExtractor],
    ) -> None:
        """
        Args:
            conn: 共享数据库连接
            table: 表名
            key_column: 主键列名（同时也是记录中的主键字段名）
            indexes: 索引名 -> 从记录提取索引值的函数；索引名即列名
        """
        self._conn = conn
        self._table = table
        self._key_column = key_column
        self._indexes = indexes

    async def get(self, key: str) -> dict[str, Any] | None:
        """按主键读取记录"""
        cursor = await self._conn.execute(
            f"SELECT data FROM {self._table} WHERE {self._key_column} = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def get_all(self) -> list[dict[str, Any]]:
        """读取全部记录"""
        cursor = await self._conn.execute(f"SELECT data FROM {self._table}")
        rows = await cursor.fetchall()
        return [json.loads(row[0]) for row in rows]

    async def add(self, record: dict[str, Any]) -> None:
        """插入新记录（主键冲突抛出 aiosqlite.IntegrityError）"""
        columns, values = self._row_values(record)
        placeholders = ", ".join("?" for _ in columns)
        await self._conn.execute(
            f"INSERT INTO {self._table} ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )

    async def put(self, record: dict[str, Any]) -> None:
        """插入或覆盖记录"""
        columns, values = self._row_values(record)
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(
            f"{col} = excluded.{col}" for col in columns if col != self._key_column
        )
        await self._conn.execute(
            f"""
            INSERT INTO {self._table} ({', '.join(columns)}) VALUES ({placeholders})
            ON CONFLICT({self._key_column}) DO UPDATE SET {updates}
            """,
            values,
        )

    async def delete(self, key: str) -> bool:
        """删除记录，返回是否确有记录被删除"""
        cursor = await self._conn.execute(
            f"DELETE FROM {self._table} WHERE {self._key_column} = ?",
            (key,),
        )
        return cursor.rowcount > 0

    async def query_by_index(
        self,
        index_name: str,
        key: Any | KeyRange,
    ) -> list[dict[str, Any]]:
        """按索引精确值或 KeyRange 查询

        key 为 None 时匹配索引列为 NULL 的记录。
        """
        if index_name not in self._indexes:
            raise KeyError(f"{self._table} 没有索引 {index_name}")

        clauses: list[str] = []
        params: list[Any] = []
        if isinstance(key, KeyRange):
            if key.lower is not None:
                clauses.append(f"{index_name} {'>' if key.lower_open else '>='} ?")
                params.append(key.lower)
            if key.upper is not None:
                clauses.append(f"{index_name} {'<' if key.upper_open else '<='} ?")
                params.append(key.upper)
            # 范围查询不包含 NULL 值
            clauses.append(f"{index_name} IS NOT NULL")
        elif key is None:
            clauses.append(f"{index_name} IS NULL")
        else:
            clauses.append(f"{index_name} = ?")
            params.append(key)

        cursor = await self._conn.execute(
            f"SELECT data FROM {self._table} WHERE {' AND '.join(clauses)}",
            params,
        )
        rows = await cursor.fetchall()
        return [json.loads(row[0]) for row in rows]

    def _row_values(self, record: dict[str, Any]) -> tuple[list[str], list[Any]]:
        """记录 -> (列名列表, 值列表)"""
        columns = [self._key_column, "data"]
        values: list[Any] = [
            record[self._key_column],
            json.dumps(record, ensure_ascii=False),
        ]
        for name, extract in self._indexes.items():
            columns.append(name)
            values.append(extract(record))
        return columns, values


def task_record_store(conn: aiosqlite.Connection) -> SqliteRecordStore:
    """tasks 表的记录存储"""
    return SqliteRecordStore(
        conn,
        table="tasks",
        key_column="task_id",
        indexes={
            "status": lambda r: r["status"],
            "priority": lambda r: r["priority"],
            "context": lambda r: r["context"],
            "parent_id": lambda r: r.get("parent_id"),
            "due_date": lambda r: utc_text(r.get("due_date")),
            "deleted_at": lambda r: utc_text(r.get("deleted_at")),
            "created_at": lambda r: utc_text(r["created_at"]),
        },
    )


def rule_record_store(conn: aiosqlite.Connection) -> SqliteRecordStore:
    """automation_rules 表的记录存储"""
    return SqliteRecordStore(
        conn,
        table="automation_rules",
        key_column="rule_id",
        indexes={
            "enabled": lambda r: int(bool(r["enabled"])),
            "trigger_type": lambda r: r["trigger"]["type"],
            "priority": lambda r: int(r.get("priority", 0)),
            "created_at": lambda r: utc_text(r["created_at"]),
        },
    )
