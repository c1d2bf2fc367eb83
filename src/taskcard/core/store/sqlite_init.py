"""SQLite 数据库初始化

PRAGMA 配置 + 四张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id              TEXT PRIMARY KEY,
    team_id              TEXT NOT NULL,
    channel_id           TEXT,
    message_ts           TEXT,
    thread_ts            TEXT,
    source_permalink     TEXT,
    title                TEXT NOT NULL DEFAULT '',
    description          TEXT NOT NULL DEFAULT '',
    requester_user_id    TEXT NOT NULL,
    created_by_user_id   TEXT NOT NULL,
    task_type            TEXT NOT NULL,
    assignee_id          TEXT,
    assignee_label       TEXT,
    status               TEXT NOT NULL DEFAULT 'open',
    due_date             TEXT,
    total_count          INTEGER,
    completed_count      INTEGER,
    notified_at          TEXT,
    reminded_at          TEXT,
    requester_dept       TEXT,
    assignee_dept        TEXT,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL,
    completed_at         TEXT,
    cancelled_at         TEXT,
    cancelled_by_user_id TEXT
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_team_assignee ON tasks(team_id, assignee_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_team_requester ON tasks(team_id, requester_user_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks(due_date);",
]

# task_targets 表 DDL（群发目标快照）
_TARGETS_DDL = """
CREATE TABLE IF NOT EXISTS task_targets (
    task_id     TEXT NOT NULL,
    user_id     TEXT NOT NULL,
    created_at  TEXT NOT NULL,

    PRIMARY KEY (task_id, user_id),
    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

# task_completions 表 DDL（逐人完成记录）
_COMPLETIONS_DDL = """
CREATE TABLE IF NOT EXISTS task_completions (
    task_id       TEXT NOT NULL,
    user_id       TEXT NOT NULL,
    completed_at  TEXT NOT NULL,

    PRIMARY KEY (task_id, user_id),
    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_TARGET_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_task_targets_user ON task_targets(user_id);",
]

# thread_cards 表 DDL
_THREAD_CARDS_DDL = """
CREATE TABLE IF NOT EXISTS thread_cards (
    card_id     TEXT PRIMARY KEY,
    team_id     TEXT NOT NULL,
    channel_id  TEXT NOT NULL,
    message_ts  TEXT NOT NULL,
    card_ts     TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""

_THREAD_CARDS_INDEXES = [
    # 每条来源消息至多一张卡片
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_thread_cards_key "
        "ON thread_cards(team_id, channel_id, message_ts);"
    ),
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_TASKS_DDL)
    await conn.execute(_TARGETS_DDL)
    await conn.execute(_COMPLETIONS_DDL)
    await conn.execute(_THREAD_CARDS_DDL)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _TARGET_INDEXES + _THREAD_CARDS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
