"""Chat 平台数据模型"""

from pydantic import BaseModel, Field


class PostedMessage(BaseModel):
    """发布成功的消息"""

    channel: str
    ts: str = Field(description="消息标识")


class UserGroup(BaseModel):
    """用户组（用于部门映射）"""

    id: str
    handle: str = Field(description="不带 @ 的用户组 handle")
    users: list[str] = Field(default_factory=list)
