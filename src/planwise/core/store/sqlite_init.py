"""SQLite 数据库初始化

PRAGMA 配置 + 两张表 DDL + 索引创建。
记录以 JSON 存在 data 列，可查询字段冗余为索引列。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id     TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    status      TEXT NOT NULL DEFAULT 'pending',
    priority    TEXT NOT NULL DEFAULT 'medium',
    context     TEXT NOT NULL DEFAULT 'personal',
    parent_id   TEXT,
    due_date    TEXT,
    deleted_at  TEXT,
    created_at  TEXT NOT NULL
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks(priority);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_context ON tasks(context);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_parent_id ON tasks(parent_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks(due_date);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_deleted_at ON tasks(deleted_at);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);",
]

# automation_rules 表 DDL
_RULES_DDL = """
CREATE TABLE IF NOT EXISTS automation_rules (
    rule_id       TEXT PRIMARY KEY,
    data          TEXT NOT NULL,
    enabled       INTEGER NOT NULL DEFAULT 1,
    trigger_type  TEXT NOT NULL,
    priority      INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL
);
"""

_RULES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_rules_enabled ON automation_rules(enabled);",
    "CREATE INDEX IF NOT EXISTS idx_rules_trigger_type ON automation_rules(trigger_type);",
    "CREATE INDEX IF NOT EXISTS idx_rules_priority ON automation_rules(priority DESC);",
]


SCHEMA_VERSION = 1


async def init_db(conn: aiosqlite.Connection) -> None:
    """建表并写入 user_version；重复调用安全（全部 IF NOT EXISTS）

    Raises:
        RuntimeError: 数据库由更新版本的 schema 创建
    """
    version = await schema_version(conn)
    if version > SCHEMA_VERSION:
        raise RuntimeError(f"数据库 schema 版本 {version} 高于当前支持的 {SCHEMA_VERSION}")

    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    for ddl in (_TASKS_DDL, _RULES_DDL, *_TASKS_INDEXES, *_RULES_INDEXES):
        await conn.execute(ddl)
    await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
    await conn.commit()


async def schema_version(conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    return row[0] if row else 0


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """journal_mode 是否为 WAL（:memory: 库始终为 memory）"""
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
