"""DirectoryPort -- 永久链接 / 部门 / 用户组展开

永久链接与部门解析是尽力而为：失败只记日志并返回 None，不阻塞任务创建。
用户组展开失败会导致目标快照不完整，因此抛出 UpstreamUnavailableError。

部门来自 *-all 用户组（或 TASKCARD_DEPT_ALL_HANDLES 指定的用户组），
部门键为去掉 -all 后缀的 handle。
"""

import re
import time
from typing import Protocol

import structlog

from taskcard.chat import ChatClient, ChatConfig, ChatPlatformError, UserGroup
from taskcard.core.config import DEPT_CACHE_TTL_S
from taskcard.core.errors import UpstreamUnavailableError

log = structlog.get_logger()

# <!subteam^S123|@handle> 或 <!subteam^S123>
_SUBTEAM_TOKEN_RE = re.compile(r"^<!subteam\^([A-Z0-9]+)(?:\|[^>]*)?>$")


class DirectoryPort(Protocol):
    """目录查询接口"""

    async def resolve_permalink(self, channel_id: str, message_ts: str) -> str | None: ...

    async def resolve_department(self, team_id: str, user_id: str) -> str | None: ...

    async def expand_group_to_users(self, team_id: str, group_ref: str) -> set[str]: ...

    async def list_departments(self, team_id: str) -> list[str]: ...


def dept_key_from_handle(handle: str) -> str:
    h = handle.lstrip("@")
    return h[:-4] if h.endswith("-all") else h


def parse_group_ref(group_ref: str) -> str:
    """用户组引用 -> 用户组 ID（接受原始 ID 或 subteam 标记）"""
    ref = group_ref.strip()
    m = _SUBTEAM_TOKEN_RE.match(ref)
    return m.group(1) if m else ref


class ChatDirectory:
    """基于 ChatClient 的 DirectoryPort 实现，部门映射按 team 缓存"""

    def __init__(
        self,
        chat: ChatClient,
        config: ChatConfig | None = None,
        ttl_s: float = DEPT_CACHE_TTL_S,
    ) -> None:
        self._chat = chat
        self._config = config or ChatConfig()
        self._ttl_s = ttl_s
        # team_id -> (加载时间, [(dept_key, members)])
        self._dept_cache: dict[str, tuple[float, list[tuple[str, set[str]]]]] = {}
        # (team_id, user_id) -> (解析时间, dept_key)
        self._user_cache: dict[tuple[str, str], tuple[float, str | None]] = {}

    async def resolve_permalink(self, channel_id: str, message_ts: str) -> str | None:
        try:
            return await self._chat.get_permalink(channel_id, message_ts)
        except ChatPlatformError as e:
            log.warning(
                "permalink_resolve_failed",
                channel_id=channel_id,
                message_ts=message_ts,
                error=str(e),
            )
            return None

    async def resolve_department(self, team_id: str, user_id: str) -> str | None:
        key = (team_id, user_id)
        cached = self._user_cache.get(key)
        if cached and time.monotonic() - cached[0] < self._ttl_s:
            return cached[1]

        try:
            departments = await self._load_departments(team_id)
        except ChatPlatformError as e:
            log.warning(
                "department_resolve_failed",
                team_id=team_id,
                user_id=user_id,
                error=str(e),
            )
            return None

        dept = next((k for k, members in departments if user_id in members), None)
        self._user_cache[key] = (time.monotonic(), dept)
        return dept

    async def list_departments(self, team_id: str) -> list[str]:
        try:
            departments = await self._load_departments(team_id)
        except ChatPlatformError as e:
            log.warning("department_list_failed", team_id=team_id, error=str(e))
            return []
        return [k for k, _ in departments]

    async def expand_group_to_users(self, team_id: str, group_ref: str) -> set[str]:
        usergroup_id = parse_group_ref(group_ref)
        try:
            members = await self._chat.list_usergroup_members(usergroup_id)
        except ChatPlatformError as e:
            log.warning(
                "usergroup_expand_failed",
                team_id=team_id,
                usergroup_id=usergroup_id,
                error=str(e),
            )
            raise UpstreamUnavailableError(
                f"Failed to expand user group {usergroup_id}: {e}",
                recoverable=e.recoverable,
                user_hint="Could not read the user group members. Please try again.",
            ) from e
        return set(members)

    async def _load_departments(self, team_id: str) -> list[tuple[str, set[str]]]:
        cached = self._dept_cache.get(team_id)
        if cached and time.monotonic() - cached[0] < self._ttl_s:
            return cached[1]

        groups = await self._chat.list_usergroups()
        departments = self._build_departments(groups)
        self._dept_cache[team_id] = (time.monotonic(), departments)
        log.debug("department_map_loaded", team_id=team_id, count=len(departments))
        return departments

    def _build_departments(self, groups: list[UserGroup]) -> list[tuple[str, set[str]]]:
        """部门顺序：TASKCARD_DEPT_PRIORITY 中的在前，其余按字母序"""
        by_handle = {g.handle: g for g in groups}
        if self._config.dept_all_handles:
            handles = [h for h in self._config.dept_all_handles if h in by_handle]
        else:
            handles = [h for h in by_handle if h.endswith("-all")]

        members_by_key: dict[str, set[str]] = {}
        for handle in sorted(set(handles)):
            members_by_key.setdefault(dept_key_from_handle(handle), set()).update(
                by_handle[handle].users
            )

        ordered = [k for k in self._config.dept_priority if k in members_by_key]
        ordered += [k for k in sorted(members_by_key) if k not in ordered]
        return [(k, members_by_key[k]) for k in ordered]
