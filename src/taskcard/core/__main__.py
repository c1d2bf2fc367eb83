"""CLI 入口模块 -- python -m taskcard.core <command>

支持的命令：
  init-db           初始化数据库（建表 + 索引）
  recount-progress  按完成记录重算群发任务计数
"""

import asyncio
import sys

from .config import get_db_path


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m taskcard.core <command>")
        print("命令:")
        print("  init-db           初始化数据库")
        print("  recount-progress  按完成记录重算群发任务计数")
        sys.exit(1)

    command = sys.argv[1]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "recount-progress":
        asyncio.run(recount_progress())
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, recount-progress")
        sys.exit(1)


async def init_database() -> None:
    """创建 Store 实例组（init_db 在其中执行）"""
    from .store import create_store_group, verify_wal_mode

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    try:
        wal = await verify_wal_mode(store_group.conn)
        print(f"初始化完成（WAL: {'on' if wal else 'off'}）")
    finally:
        await store_group.close()


async def recount_progress() -> None:
    """执行群发计数重建"""
    from .maintenance import recount_broadcast_progress
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    print("开始重算群发计数...")

    store_group = await create_store_group(db_path)
    try:
        drifted = await recount_broadcast_progress(store_group.task_store)
        print(f"重算完成，修正 {drifted} 个任务")
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
