"""CLI 入口测试"""

import asyncio
import logging
import sys

import pytest
import structlog
from planwise.core.__main__ import main
from planwise.core.store import create_store_group
from planwise.tasks import TaskService


@pytest.fixture(autouse=True)
def _restore_logging():
    """main() 会配置全局日志，结束后还原"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "sqlite" / "planwise.db"
    monkeypatch.setenv("PLANWISE_DB_PATH", str(path))
    return path


def _run(monkeypatch, *args: str) -> None:
    monkeypatch.setattr(sys, "argv", ["planwise", *args])
    main()


async def _seed(db_path) -> None:
    store_group = await create_store_group(str(db_path))
    try:
        service = TaskService(store_group)
        await service.create({"task_id": "keep", "title": "保留"})
        await service.create({"task_id": "gone", "title": "删除"})
        await service.soft_delete("gone")
    finally:
        await store_group.close()


class TestCli:
    def test_usage(self, monkeypatch, capsys):
        with pytest.raises(SystemExit) as exc_info:
            _run(monkeypatch)
        assert exc_info.value.code == 1
        assert "用法" in capsys.readouterr().out

    def test_unknown_command(self, monkeypatch, capsys):
        with pytest.raises(SystemExit):
            _run(monkeypatch, "drop-all")
        assert "未知命令" in capsys.readouterr().out

    def test_init_db(self, db_path, monkeypatch, capsys):
        _run(monkeypatch, "init-db")
        assert db_path.exists()
        assert "初始化完成" in capsys.readouterr().out

    def test_list_and_purge(self, db_path, monkeypatch, capsys):
        asyncio.run(_seed(db_path))
        # 丢弃初始化数据时输出的日志
        capsys.readouterr()

        _run(monkeypatch, "list-tasks")
        out = capsys.readouterr().out
        assert "keep" in out and "gone" not in out
        assert "共 1 个任务" in out

        _run(monkeypatch, "list-tasks", "--all")
        out = capsys.readouterr().out
        assert "[已删除]" in out
        assert "共 2 个任务" in out

        _run(monkeypatch, "purge-deleted")
        assert "已永久删除 1 个任务" in capsys.readouterr().out
