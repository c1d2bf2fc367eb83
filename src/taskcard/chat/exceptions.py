"""Chat 平台异常体系

ChatUnreachableError 表示传输层失败（连接、超时）；ChatApiError 表示平台返回
ok=false 或非 2xx。NotInChannelError / MessageNotFoundError 是需要单独提示用户的
两个错误码。
"""


class ChatPlatformError(Exception):
    """Chat 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过用户操作或重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class ChatUnreachableError(ChatPlatformError):
    """Chat API 不可达（连接失败、超时、DNS 解析失败等）"""

    def __init__(self, base_url: str, original_error: Exception) -> None:
        """
        Args:
            base_url: 尝试连接的 API 地址
            original_error: 原始异常
        """
        super().__init__(
            f"Chat API 不可达: {base_url} -- {original_error}",
            recoverable=True,
        )
        self.base_url = base_url
        self.original_error = original_error


class ChatApiError(ChatPlatformError):
    """Chat API 返回错误"""

    def __init__(self, method: str, error_code: str, recoverable: bool = False) -> None:
        super().__init__(f"{method} 调用失败: {error_code}", recoverable=recoverable)
        self.method = method
        self.error_code = error_code


class NotInChannelError(ChatApiError):
    """bot 不在目标频道中，需要用户邀请"""

    def __init__(self, method: str, channel_id: str = "") -> None:
        super().__init__(method, "not_in_channel", recoverable=True)
        self.channel_id = channel_id


class MessageNotFoundError(ChatApiError):
    """目标消息已被删除（卡片失效）"""

    def __init__(self, method: str) -> None:
        super().__init__(method, "message_not_found", recoverable=False)
