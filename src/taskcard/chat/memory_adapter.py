"""InMemoryChatAdapter -- memory 模式的 ChatClient 实现

不访问任何外部服务，把发布/更新/Home 视图记录在内存中，
用于本地运行和测试。fail_with 可为指定方法注入一次性异常。
"""

import asyncio
from itertools import count
from typing import Any

from .exceptions import ChatApiError, MessageNotFoundError
from .models import PostedMessage, UserGroup


class InMemoryChatAdapter:
    """ChatClient 的内存实现"""

    def __init__(self) -> None:
        self._ts_counter = count(1)
        # (channel, ts) -> 消息体
        self.messages: dict[tuple[str, str], dict[str, Any]] = {}
        self.posted: list[dict[str, Any]] = []
        self.updated: list[dict[str, Any]] = []
        self.home_views: dict[str, dict[str, Any]] = {}
        self.usergroups: dict[str, UserGroup] = {}
        self.dm_channels: dict[str, str] = {}
        self._failures: dict[str, list[Exception]] = {}

    # ---- 测试辅助 ----

    def add_usergroup(self, usergroup_id: str, handle: str, users: list[str]) -> None:
        self.usergroups[usergroup_id] = UserGroup(id=usergroup_id, handle=handle, users=users)

    def fail_with(self, method: str, error: Exception) -> None:
        """下一次调用 method 时抛出 error"""
        self._failures.setdefault(method, []).append(error)

    def delete_message(self, channel: str, ts: str) -> None:
        self.messages.pop((channel, ts), None)

    def dm_texts(self, user_id: str) -> list[str]:
        """发送给某用户的私聊文本"""
        channel = self.dm_channels.get(user_id)
        return [m["text"] for m in self.posted if channel and m["channel"] == channel]

    def _maybe_fail(self, method: str) -> None:
        queued = self._failures.get(method)
        if queued:
            raise queued.pop(0)

    # ---- ChatClient ----

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
        thread_ts: str | None = None,
    ) -> PostedMessage:
        self._maybe_fail("post_message")
        # 让出事件循环，便于并发测试交错执行
        await asyncio.sleep(0)
        ts = f"{next(self._ts_counter):010d}.000100"
        record = {
            "channel": channel,
            "ts": ts,
            "text": text,
            "blocks": blocks,
            "thread_ts": thread_ts,
        }
        self.messages[(channel, ts)] = record
        self.posted.append(record)
        return PostedMessage(channel=channel, ts=ts)

    async def update_message(
        self,
        channel: str,
        ts: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None:
        self._maybe_fail("update_message")
        await asyncio.sleep(0)
        if (channel, ts) not in self.messages:
            raise MessageNotFoundError("chat.update")
        record = self.messages[(channel, ts)]
        record.update(text=text, blocks=blocks)
        self.updated.append({"channel": channel, "ts": ts, "text": text, "blocks": blocks})

    async def get_permalink(self, channel: str, message_ts: str) -> str:
        self._maybe_fail("get_permalink")
        return f"https://chat.example/archives/{channel}/p{message_ts.replace('.', '')}"

    async def list_usergroups(self) -> list[UserGroup]:
        self._maybe_fail("list_usergroups")
        return list(self.usergroups.values())

    async def list_usergroup_members(self, usergroup_id: str) -> list[str]:
        self._maybe_fail("list_usergroup_members")
        group = self.usergroups.get(usergroup_id)
        if group is None:
            raise ChatApiError("usergroups.users.list", "no_such_subteam")
        return list(group.users)

    async def open_dm(self, user_id: str) -> str:
        self._maybe_fail("open_dm")
        return self.dm_channels.setdefault(user_id, f"D{user_id}")

    async def publish_home(self, user_id: str, view: dict[str, Any]) -> None:
        self._maybe_fail("publish_home")
        self.home_views[user_id] = view

    async def health_check(self) -> bool:
        return True
