"""RecordStore / 事务单元测试

测试内容：
1. get / put / add / delete
2. 索引查询（精确值、NULL、KeyRange）
3. 事务回滚
"""

from datetime import UTC, datetime, timedelta, timezone

import aiosqlite
import planwise.core.store as store_module
import pytest
from planwise.core.store import KeyRange, create_store_group, utc_text
from planwise.core.store.sqlite_init import (
    SCHEMA_VERSION,
    init_db,
    schema_version,
    verify_wal_mode,
)
from structlog.testing import CapturingLogger


def _record(task_id: str, **overrides) -> dict:
    record = {
        "task_id": task_id,
        "title": task_id,
        "status": "pending",
        "priority": "medium",
        "context": "personal",
        "parent_id": None,
        "due_date": None,
        "deleted_at": None,
        "created_at": "2026-03-02T09:00:00+00:00",
    }
    record.update(overrides)
    return record


class TestRecordStore:
    """SqliteRecordStore 读写"""

    async def test_wal_mode(self, store_group):
        assert await verify_wal_mode(store_group.conn) is True

    async def test_wal_unavailable_logged(self, tmp_path, monkeypatch):
        async def no_wal(conn):
            return False

        capture = CapturingLogger()
        monkeypatch.setattr(store_module, "verify_wal_mode", no_wal)
        monkeypatch.setattr(store_module, "log", capture)
        group = await create_store_group(str(tmp_path / "planwise.db"))
        await group.close()

        assert [call.method_name for call in capture.calls] == ["warning"]
        assert capture.calls[0].args == ("sqlite_wal_not_enabled",)

    async def test_memory_db_skips_wal_check(self, monkeypatch):
        capture = CapturingLogger()
        monkeypatch.setattr(store_module, "log", capture)
        group = await create_store_group(":memory:")
        try:
            assert await verify_wal_mode(group.conn) is False
        finally:
            await group.close()
        assert capture.calls == []

    async def test_schema_version(self, store_group):
        assert await schema_version(store_group.conn) == SCHEMA_VERSION
        # 重复初始化安全
        await init_db(store_group.conn)
        assert await schema_version(store_group.conn) == SCHEMA_VERSION

    async def test_newer_schema_rejected(self, store_group):
        await store_group.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1};")
        with pytest.raises(RuntimeError):
            await init_db(store_group.conn)

    async def test_put_and_get(self, store_group):
        """put 后可按主键读出完整记录"""
        async with store_group.transaction():
            await store_group.task_records.put(_record("t1", tags=["周报"]))
        row = await store_group.task_records.get("t1")
        assert row["tags"] == ["周报"]
        assert await store_group.task_records.get("missing") is None

    async def test_put_overwrites(self, store_group):
        async with store_group.transaction():
            await store_group.task_records.put(_record("t1"))
            await store_group.task_records.put(_record("t1", status="completed"))
        rows = await store_group.task_records.query_by_index("status", "completed")
        assert [r["task_id"] for r in rows] == ["t1"]
        assert await store_group.task_records.query_by_index("status", "pending") == []

    async def test_add_duplicate_raises(self, store_group):
        async with store_group.transaction():
            await store_group.task_records.add(_record("t1"))
        with pytest.raises(aiosqlite.IntegrityError):
            async with store_group.transaction():
                await store_group.task_records.add(_record("t1"))

    async def test_delete_reports_existence(self, store_group):
        async with store_group.transaction():
            await store_group.task_records.put(_record("t1"))
        async with store_group.transaction():
            assert await store_group.task_records.delete("t1") is True
            assert await store_group.task_records.delete("t1") is False


class TestIndexQueries:
    """query_by_index"""

    async def test_null_key_matches_null_column(self, store_group):
        async with store_group.transaction():
            await store_group.task_records.put(_record("top"))
            await store_group.task_records.put(_record("child", parent_id="top"))
        rows = await store_group.task_records.query_by_index("parent_id", None)
        assert [r["task_id"] for r in rows] == ["top"]

    async def test_key_range_excludes_null(self, store_group):
        """范围查询不返回索引列为 NULL 的记录"""
        async with store_group.transaction():
            await store_group.task_records.put(_record("a", due_date="2026-03-01T00:00:00+00:00"))
            await store_group.task_records.put(_record("b", due_date="2026-03-05T00:00:00+00:00"))
            await store_group.task_records.put(_record("c"))

        everything = await store_group.task_records.query_by_index("due_date", KeyRange())
        assert sorted(r["task_id"] for r in everything) == ["a", "b"]

        early = await store_group.task_records.query_by_index(
            "due_date", KeyRange(upper="2026-03-02T00:00:00+00:00")
        )
        assert [r["task_id"] for r in early] == ["a"]

    async def test_due_date_index_normalized_to_utc(self, store_group):
        """带时区偏移的时间写入索引前统一为 UTC"""
        async with store_group.transaction():
            await store_group.task_records.put(
                _record("shanghai", due_date="2026-03-02T08:00:00+08:00")
            )
        rows = await store_group.task_records.query_by_index(
            "due_date",
            KeyRange(lower="2026-03-02T00:00:00+00:00", upper="2026-03-02T00:00:00+00:00"),
        )
        assert [r["task_id"] for r in rows] == ["shanghai"]

    async def test_unknown_index(self, store_group):
        with pytest.raises(KeyError):
            await store_group.task_records.query_by_index("title", "x")


class TestTransaction:
    """事务回滚"""

    async def test_rollback_on_error(self, store_group):
        """事务体抛出异常时不落盘任何写入"""
        with pytest.raises(RuntimeError):
            async with store_group.transaction():
                await store_group.task_records.put(_record("t1"))
                raise RuntimeError("boom")
        assert await store_group.task_records.get("t1") is None

    async def test_commit_visible_after_reopen(self, tmp_path):
        """提交后的数据在新连接上可见"""
        from planwise.core.store import create_store_group

        db_path = str(tmp_path / "reopen.db")
        group = await create_store_group(db_path)
        async with group.transaction():
            await group.task_records.put(_record("t1"))
        await group.close()

        reopened = await create_store_group(db_path)
        try:
            assert await reopened.task_records.get("t1") is not None
        finally:
            await reopened.close()


class TestUtcText:
    def test_normalizes_offsets(self):
        value = datetime(2026, 3, 2, 8, 0, tzinfo=timezone(timedelta(hours=8)))
        assert utc_text(value) == "2026-03-02T00:00:00+00:00"

    def test_naive_is_utc(self):
        assert utc_text("2026-03-02T00:00:00") == "2026-03-02T00:00:00+00:00"

    def test_none_passthrough(self):
        assert utc_text(None) is None
        assert utc_text(datetime(2026, 3, 2, tzinfo=UTC)).endswith("+00:00")
