"""ChatClient Protocol 接口定义

SlackWebClient 与 InMemoryChatAdapter 都满足此接口；
gateway 层只依赖接口，不关心具体平台。
"""

from typing import Any, Protocol

from .models import PostedMessage, UserGroup


class ChatClient(Protocol):
    """Chat 平台客户端接口"""

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
        thread_ts: str | None = None,
    ) -> PostedMessage:
        """发布消息（thread_ts 非空时发布到线程中）"""
        ...

    async def update_message(
        self,
        channel: str,
        ts: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None:
        """原地更新已发布的消息"""
        ...

    async def get_permalink(self, channel: str, message_ts: str) -> str:
        """获取消息永久链接"""
        ...

    async def list_usergroups(self) -> list[UserGroup]:
        """列出 workspace 内的用户组（含成员）"""
        ...

    async def list_usergroup_members(self, usergroup_id: str) -> list[str]:
        """列出用户组成员"""
        ...

    async def open_dm(self, user_id: str) -> str:
        """打开与用户的私聊，返回频道 ID"""
        ...

    async def publish_home(self, user_id: str, view: dict[str, Any]) -> None:
        """发布用户的 Home 视图"""
        ...

    async def health_check(self) -> bool:
        """检查平台可达性（不抛出异常）"""
        ...
