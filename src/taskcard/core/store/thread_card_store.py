"""ThreadCardStore SQLite 实现

(team_id, channel_id, message_ts) -> card_ts 映射。首次发布时创建，
之后只更新 card_ts，不重新创建。
"""

import asyncio
from datetime import UTC, datetime

import aiosqlite
from ulid import ULID

from ..models.task import ThreadCard


class SqliteThreadCardStore:
    """ThreadCardStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        self._conn = conn
        self._write_lock = write_lock or asyncio.Lock()

    async def get_card(
        self,
        team_id: str,
        channel_id: str,
        message_ts: str,
    ) -> ThreadCard | None:
        """查询来源消息对应的卡片，不存在返回 None"""
        cursor = await self._conn.execute(
            """
            SELECT card_id, team_id, channel_id, message_ts, card_ts, updated_at
            FROM thread_cards
            WHERE team_id = ? AND channel_id = ? AND message_ts = ?
            """,
            (team_id, channel_id, message_ts),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_card(row)

    async def upsert_card(
        self,
        team_id: str,
        channel_id: str,
        message_ts: str,
        card_ts: str,
    ) -> ThreadCard:
        """写入卡片映射；键已存在时仅更新 card_ts / updated_at"""
        now = datetime.now(UTC).isoformat()
        async with self._write_lock:
            await self._conn.execute(
                """
                INSERT INTO thread_cards (card_id, team_id, channel_id, message_ts, card_ts, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (team_id, channel_id, message_ts)
                DO UPDATE SET card_ts = excluded.card_ts, updated_at = excluded.updated_at
                """,
                (str(ULID()), team_id, channel_id, message_ts, card_ts, now),
            )
            await self._conn.commit()
        card = await self.get_card(team_id, channel_id, message_ts)
        assert card is not None
        return card

    @staticmethod
    def _row_to_card(row: aiosqlite.Row) -> ThreadCard:
        return ThreadCard(
            card_id=row[0],
            team_id=row[1],
            channel_id=row[2],
            message_ts=row[3],
            card_ts=row[4],
            updated_at=datetime.fromisoformat(row[5]),
        )
