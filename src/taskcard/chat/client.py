"""SlackWebClient -- Slack Web API 调用封装

通过 httpx 调用 https://slack.com/api/{method}。平台约定 HTTP 200 + ok=false
表示业务错误，error 字段给出错误码；此处统一映射为 chat.exceptions 中的异常。
"""

import time
from typing import Any

import httpx
import structlog

from .exceptions import (
    ChatApiError,
    ChatPlatformError,
    ChatUnreachableError,
    MessageNotFoundError,
    NotInChannelError,
)
from .models import PostedMessage, UserGroup

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

# 连接类异常类型集合
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    OSError,
    TimeoutError,
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.TimeoutException,
)

# 限流与服务端错误可重试
_RECOVERABLE_STATUS = {429, 500, 502, 503, 504}


class SlackWebClient:
    """Slack Web API 客户端"""

    def __init__(
        self,
        bot_token: str,
        api_base_url: str = "https://slack.com/api",
        timeout_s: int = 10,
    ) -> None:
        """初始化客户端

        Args:
            bot_token: bot token（xoxb-...）
            api_base_url: Web API 基础 URL
            timeout_s: 请求超时（秒）
        """
        self._bot_token = bot_token
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout_s = timeout_s

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
        thread_ts: str | None = None,
    ) -> PostedMessage:
        body: dict[str, Any] = {"channel": channel, "text": text}
        if blocks is not None:
            body["blocks"] = blocks
        if thread_ts:
            body["thread_ts"] = thread_ts
        data = await self._call("chat.postMessage", json=body, channel=channel)
        return PostedMessage(channel=data.get("channel", channel), ts=data["ts"])

    async def update_message(
        self,
        channel: str,
        ts: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None:
        body: dict[str, Any] = {"channel": channel, "ts": ts, "text": text}
        if blocks is not None:
            body["blocks"] = blocks
        await self._call("chat.update", json=body, channel=channel)

    async def get_permalink(self, channel: str, message_ts: str) -> str:
        data = await self._call(
            "chat.getPermalink",
            data={"channel": channel, "message_ts": message_ts},
            channel=channel,
        )
        return data["permalink"]

    async def list_usergroups(self) -> list[UserGroup]:
        data = await self._call("usergroups.list", data={"include_users": "true"})
        groups: list[UserGroup] = []
        for group in data.get("usergroups", []):
            if not group.get("id") or not group.get("handle"):
                continue
            groups.append(
                UserGroup(
                    id=group["id"],
                    handle=str(group["handle"]).lstrip("@"),
                    users=list(group.get("users") or []),
                )
            )
        return groups

    async def list_usergroup_members(self, usergroup_id: str) -> list[str]:
        data = await self._call("usergroups.users.list", data={"usergroup": usergroup_id})
        return list(data.get("users") or [])

    async def open_dm(self, user_id: str) -> str:
        data = await self._call("conversations.open", json={"users": user_id})
        return data["channel"]["id"]

    async def publish_home(self, user_id: str, view: dict[str, Any]) -> None:
        await self._call("views.publish", json={"user_id": user_id, "view": view})

    async def health_check(self) -> bool:
        """检查 Slack API 可达性与 token 有效性（auth.test）

        Returns:
            True 如果 token 有效，False 如果不可达或异常

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        url = f"{self._api_base_url}/auth.test"
        try:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.post(
                    url,
                    headers=self._headers(),
                    timeout=HEALTH_CHECK_TIMEOUT_S,
                )
                return resp.status_code == 200 and bool(resp.json().get("ok"))
        except Exception as e:
            log.debug("chat_health_check_failed", url=url, error=str(e))
            return False

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._bot_token}"}

    async def _call(
        self,
        method: str,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        channel: str = "",
    ) -> dict[str, Any]:
        """调用 Web API 方法并返回解析后的响应体

        Raises:
            ChatUnreachableError: 连接失败或超时
            NotInChannelError: bot 不在频道中
            MessageNotFoundError: 目标消息不存在
            ChatApiError: 其他平台错误
        """
        url = f"{self._api_base_url}/{method}"
        start_time = time.monotonic()
        try:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.post(
                    url,
                    headers=self._headers(),
                    json=json,
                    data=data,
                    timeout=self._timeout_s,
                )
        except Exception as e:
            log.error(
                "chat_api_call_failed",
                method=method,
                error=str(e),
                error_type=type(e).__name__,
            )
            if isinstance(e, _CONNECTION_ERROR_TYPES):
                raise ChatUnreachableError(self._api_base_url, e) from e
            raise ChatPlatformError(f"{method} 调用失败: {e}") from e

        duration_ms = int((time.monotonic() - start_time) * 1000)

        if resp.status_code != 200:
            log.warning(
                "chat_api_http_error",
                method=method,
                status_code=resp.status_code,
                duration_ms=duration_ms,
            )
            raise ChatApiError(
                method,
                f"http_{resp.status_code}",
                recoverable=resp.status_code in _RECOVERABLE_STATUS,
            )

        body = resp.json()
        if not body.get("ok"):
            error_code = body.get("error", "unknown_error")
            log.warning(
                "chat_api_error",
                method=method,
                error_code=error_code,
                duration_ms=duration_ms,
            )
            if error_code == "not_in_channel":
                raise NotInChannelError(method, channel)
            if error_code == "message_not_found":
                raise MessageNotFoundError(method)
            raise ChatApiError(method, error_code)

        log.debug("chat_api_call_completed", method=method, duration_ms=duration_ms)
        return body
