"""TaskCard Chat -- 聊天平台访问层

taskcard.chat 的公开接口导出。
"""

from .client import SlackWebClient
from .config import ChatConfig, load_chat_config
from .exceptions import (
    ChatApiError,
    ChatPlatformError,
    ChatUnreachableError,
    MessageNotFoundError,
    NotInChannelError,
)
from .memory_adapter import InMemoryChatAdapter
from .models import PostedMessage, UserGroup
from .protocols import ChatClient


def create_chat_client(config: ChatConfig) -> ChatClient:
    """按运行模式创建 ChatClient"""
    if config.chat_mode == "memory":
        return InMemoryChatAdapter()
    return SlackWebClient(
        bot_token=config.bot_token.get_secret_value(),
        api_base_url=config.api_base_url,
        timeout_s=config.timeout_s,
    )


__all__ = [
    "ChatClient",
    "SlackWebClient",
    "InMemoryChatAdapter",
    "create_chat_client",
    "PostedMessage",
    "UserGroup",
    "ChatConfig",
    "load_chat_config",
    "ChatPlatformError",
    "ChatUnreachableError",
    "ChatApiError",
    "NotInChannelError",
    "MessageNotFoundError",
]
