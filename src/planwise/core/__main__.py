"""CLI 入口模块 -- python -m planwise.core <command>

支持的命令：
  init-db          创建数据库与表结构
  list-tasks       列出任务（--all 包含软删除任务）
  purge-deleted    永久删除全部软删除任务
"""

import asyncio
import sys

from planwise.logging_config import setup_logging

from .config import get_db_path

_USAGE = """用法: python -m planwise.core <command>
命令:
  init-db          创建数据库与表结构
  list-tasks       列出任务（--all 包含软删除任务）
  purge-deleted    永久删除全部软删除任务"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    setup_logging()
    command = sys.argv[1]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "list-tasks":
        asyncio.run(list_tasks(include_deleted="--all" in sys.argv[2:]))
    elif command == "purge-deleted":
        asyncio.run(purge_deleted())
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, list-tasks, purge-deleted")
        sys.exit(1)


async def init_database() -> None:
    """创建数据库文件并初始化表结构"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)
    await store_group.close()
    print("初始化完成")


async def list_tasks(include_deleted: bool = False) -> None:
    """打印任务列表"""
    from planwise.tasks import TaskService

    from .models import TaskFilter
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        tasks = await TaskService(store_group).list_tasks(
            TaskFilter(include_deleted=include_deleted)
        )
        for task in tasks:
            marker = " [已删除]" if task.is_deleted else ""
            print(f"{task.task_id}  {task.status.value:<12} {task.title}{marker}")
        print(f"共 {len(tasks)} 个任务")
    finally:
        await store_group.close()


async def purge_deleted() -> None:
    """永久删除软删除任务"""
    from planwise.tasks import TaskService

    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        count = await TaskService(store_group).purge_deleted()
        print(f"已永久删除 {count} 个任务")
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
