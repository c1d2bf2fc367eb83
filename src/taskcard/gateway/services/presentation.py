"""PresentationPort -- 卡片渲染 / 私聊通知 / Home 看板

核心层只通过此接口触达用户界面。Home 看板的 HomePreferences 归展示层所有：
适配器按 (team_id, user_id) 保存最近一次的选择（进程内），
业务变更后重新发布看板时沿用该选择；核心层不读取也不保存界面状态。
"""

import json
from typing import Any, Literal, Protocol, get_args

import structlog
from pydantic import BaseModel, Field

from taskcard.chat import ChatClient, ChatPlatformError
from taskcard.core.config import DASHBOARD_LIST_LIMIT, DESCRIPTION_PREVIEW_LENGTH
from taskcard.core.diff import TaskDiff
from taskcard.core.models import NotificationKind, Task, TaskStatus
from taskcard.core.store.task_store import DEPT_ALL, DEPT_NONE, SqliteTaskStore

from .directory import DirectoryPort

log = structlog.get_logger()

STATUS_LABELS: dict[TaskStatus, str] = {
    TaskStatus.OPEN: "Open",
    TaskStatus.IN_PROGRESS: "In progress",
    TaskStatus.WAITING: "Waiting for confirmation",
    TaskStatus.DONE: "Done",
    TaskStatus.CANCELLED: "Cancelled",
}

NOTIFICATION_HEADLINES: dict[NotificationKind, str] = {
    NotificationKind.TASK_ASSIGNED: "📝 New task assigned to you",
    NotificationKind.TASK_COMPLETED: "✅ Task completed",
    NotificationKind.WAITING_FOR_CONFIRMATION: "🟧 Everyone has finished, please confirm",
    NotificationKind.TASK_EDITED: "✏️ Task updated",
    NotificationKind.TASK_CANCELLED: "🚫 Task cancelled",
    NotificationKind.DUE_REMINDER: "⏰ Task due today",
}

FIELD_LABELS: dict[str, str] = {
    "title": "Title",
    "description": "Description",
    "assignee_id": "Assignee",
    "due_date": "Due",
}

HomeMode = Literal["assigned_active", "assigned_done", "requested_active", "requested_done"]


class HomePreferences(BaseModel):
    """Home 看板的用户偏好：视图模式 + 部门筛选"""

    mode: HomeMode = Field(default="assigned_active", description="视图模式")
    dept_key: str = Field(default=DEPT_ALL, description="部门筛选：all / __none__ / 部门键")

    @property
    def view_type(self) -> str:
        return self.mode.split("_", 1)[0]

    @property
    def shows_done(self) -> bool:
        return self.mode.endswith("_done")


class CardContent(BaseModel):
    """渲染后的消息内容"""

    text: str = Field(description="通知 / 无障碍用的纯文本")
    blocks: list[dict[str, Any]] = Field(default_factory=list)


class PresentationPort(Protocol):
    """展示 / 通知接口"""

    def render_card(self, task: Task, completed: int | None = None) -> CardContent: ...

    async def notify_users(
        self,
        user_ids: list[str] | set[str],
        task: Task,
        kind: NotificationKind,
        changes: TaskDiff | None = None,
    ) -> int: ...

    async def render_and_publish(
        self,
        team_id: str,
        user_id: str,
        preferences: HomePreferences | None = None,
    ) -> None: ...


def no_mention(text: str) -> str:
    """去掉会触发提及的标记"""
    return (
        text.replace("<!channel>", "@channel")
        .replace("<!here>", "@here")
        .replace("<!everyone>", "@everyone")
    )


def format_due(task: Task) -> str:
    return task.due_date.strftime("%Y/%m/%d") if task.due_date else "Not set"


def dept_label(dept_key: str | None) -> str:
    return f"@{dept_key}" if dept_key else "Not set"


def assignee_display(task: Task) -> str:
    if task.is_broadcast:
        progress = f" ({task.completed_count or 0}/{task.total_count or 0} done)"
        return f"{task.assignee_label}{progress}"
    return f"<@{task.assignee_id}>"


def _section(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(text: str) -> dict[str, Any]:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


class ChatPresentationAdapter:
    """基于 ChatClient 的 PresentationPort 实现"""

    def __init__(
        self,
        chat: ChatClient,
        task_store: SqliteTaskStore,
        directory: DirectoryPort,
    ) -> None:
        self._chat = chat
        self._tasks = task_store
        self._directory = directory
        self._home_prefs: dict[tuple[str, str], HomePreferences] = {}

    # ---- 线程卡片 ----

    def render_card(self, task: Task, completed: int | None = None) -> CardContent:
        if completed is not None and task.is_broadcast:
            task = task.model_copy(update={"completed_count": completed})

        if task.source_permalink:
            source = f"<{task.source_permalink}|Open original message>"
        else:
            source = no_mention(f"> {task.description[:DESCRIPTION_PREVIEW_LENGTH]}")

        button_value = json.dumps({"team_id": task.team_id, "task_id": task.task_id})
        blocks = [
            {"type": "header", "text": {"type": "plain_text", "text": "⏱ Task"}},
            _section(f"*{no_mention(task.title)}*"),
            {"type": "divider"},
            _section(f"*Requester*: <@{task.requester_user_id}>"),
            _section(f"*Requester dept*: {dept_label(task.requester_dept)}"),
            _section(f"*Due*: {format_due(task)}"),
            _section(f"*Assignee*: {assignee_display(task)}"),
            _section(f"*Assignee dept*: {dept_label(task.assignee_dept)}"),
            _section(f"*Status*: {STATUS_LABELS[task.status]}"),
            {"type": "divider"},
            _section(f"*Source*\n{source}"),
            {"type": "divider"},
            {
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "Open details"},
                        "action_id": "open_detail_modal",
                        "value": button_value,
                    }
                ],
            },
            _context("✅ Complete the task from the details view"),
        ]
        text = f"Task: {no_mention(task.title)} ({STATUS_LABELS[task.status]})"
        return CardContent(text=text, blocks=blocks)

    # ---- 私聊通知 ----

    def render_notification(
        self,
        task: Task,
        kind: NotificationKind,
        changes: TaskDiff | None = None,
    ) -> str:
        lines = [
            NOTIFICATION_HEADLINES[kind],
            f"• Title: {no_mention(task.title)}",
            f"• Requester: <@{task.requester_user_id}>",
            f"• Assignee: {assignee_display(task)}",
            f"• Due: {format_due(task)}",
            f"• Status: {STATUS_LABELS[task.status]}",
        ]
        if changes is not None and not changes.is_empty:
            lines.append("Changes:")
            for change in changes.changes:
                label = FIELD_LABELS.get(change.field, change.field)
                before = change.before or "-"
                after = change.after or "-"
                if change.field == "assignee_id":
                    before = f"<@{before}>" if change.before else "-"
                    after = f"<@{after}>" if change.after else "-"
                lines.append(f"  ◦ {label}: {no_mention(before)} → {no_mention(after)}")
        if task.source_permalink:
            lines.append(f"<{task.source_permalink}|Open original message>")
        return "\n".join(lines)

    async def notify_users(
        self,
        user_ids: list[str] | set[str],
        task: Task,
        kind: NotificationKind,
        changes: TaskDiff | None = None,
    ) -> int:
        """逐个用户发送私聊通知；单个用户失败只记日志

        Returns:
            成功送达的用户数
        """
        text = self.render_notification(task, kind, changes)
        sent = 0
        for user_id in sorted(set(user_ids)):
            try:
                channel = await self._chat.open_dm(user_id)
                await self._chat.post_message(channel, text)
                sent += 1
            except ChatPlatformError as e:
                log.warning(
                    "notification_send_failed",
                    task_id=task.task_id,
                    user_id=user_id,
                    kind=kind.value,
                    error=str(e),
                )
        log.info(
            "notification_sent",
            task_id=task.task_id,
            kind=kind.value,
            recipients=sent,
        )
        return sent

    # ---- Home 看板 ----

    def get_preferences(self, team_id: str, user_id: str) -> HomePreferences:
        return self._home_prefs.get((team_id, user_id)) or HomePreferences()

    def update_preferences(
        self,
        team_id: str,
        user_id: str,
        mode: HomeMode | None = None,
        dept_key: str | None = None,
    ) -> HomePreferences:
        """合并更新用户的看板偏好，未传入的字段保持原值"""
        update: dict[str, str] = {}
        if mode is not None:
            update["mode"] = mode
        if dept_key is not None:
            update["dept_key"] = dept_key
        prefs = self.get_preferences(team_id, user_id).model_copy(update=update)
        self._home_prefs[(team_id, user_id)] = prefs
        return prefs

    async def render_and_publish(
        self,
        team_id: str,
        user_id: str,
        preferences: HomePreferences | None = None,
    ) -> None:
        """发布 Home 看板

        传入 preferences 时以其为准并记住；否则沿用该用户保存的偏好。
        """
        if preferences is not None:
            self._home_prefs[(team_id, user_id)] = preferences
        prefs = preferences or self.get_preferences(team_id, user_id)
        view = await self.build_home_view(team_id, user_id, prefs)
        await self._chat.publish_home(user_id, view)

    async def build_home_view(
        self,
        team_id: str,
        user_id: str,
        prefs: HomePreferences,
    ) -> dict[str, Any]:
        dept_keys = await self._directory.list_departments(team_id)
        dept_options = [
            {"text": {"type": "plain_text", "text": "All"}, "value": DEPT_ALL},
            {"text": {"type": "plain_text", "text": "Not set"}, "value": DEPT_NONE},
            *(
                {"text": {"type": "plain_text", "text": f"@{k}"}, "value": k}
                for k in dept_keys
            ),
        ]
        dept_select: dict[str, Any] = {
            "type": "static_select",
            "action_id": "home_dept_select",
            "options": dept_options,
        }
        selected = next((o for o in dept_options if o["value"] == prefs.dept_key), None)
        if selected is not None:
            dept_select["initial_option"] = selected

        blocks: list[dict[str, Any]] = [
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": "*View*"},
                "accessory": {
                    "type": "static_select",
                    "action_id": "home_mode_select",
                    "initial_option": {
                        "text": {"type": "plain_text", "text": prefs.mode},
                        "value": prefs.mode,
                    },
                    "options": [
                        {"text": {"type": "plain_text", "text": m}, "value": m}
                        for m in get_args(HomeMode)
                    ],
                },
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": "*Department*"},
                "accessory": dept_select,
            },
            {"type": "divider"},
        ]

        statuses = (
            [TaskStatus.DONE]
            if prefs.shows_done
            else [TaskStatus.OPEN, TaskStatus.IN_PROGRESS, TaskStatus.WAITING]
        )
        for status in statuses:
            tasks = await self._list_for_view(team_id, user_id, status, prefs)
            blocks.append(_section(f"*{STATUS_LABELS[status]}*"))
            if tasks:
                blocks.extend(self._home_line(t, prefs) for t in tasks)
            else:
                blocks.append(_context(f"(no {STATUS_LABELS[status].lower()} tasks)"))
            blocks.append({"type": "divider"})

        return {"type": "home", "blocks": blocks}

    async def _list_for_view(
        self,
        team_id: str,
        user_id: str,
        status: TaskStatus,
        prefs: HomePreferences,
    ) -> list[Task]:
        if prefs.view_type == "requested":
            return await self._tasks.list_tasks_for_requester(
                team_id, user_id, status, prefs.dept_key, limit=DASHBOARD_LIST_LIMIT
            )
        assigned = await self._tasks.list_tasks_for_assignee(
            team_id, user_id, status, prefs.dept_key, limit=DASHBOARD_LIST_LIMIT
        )
        # 群发目标没有负责人部门，仅在不按部门筛选时列出
        if prefs.dept_key in ("", DEPT_ALL):
            assigned += await self._tasks.list_tasks_for_target(
                team_id, user_id, status, limit=DASHBOARD_LIST_LIMIT
            )
        return assigned[:DASHBOARD_LIST_LIMIT]

    @staticmethod
    def _home_line(task: Task, prefs: HomePreferences) -> dict[str, Any]:
        if prefs.view_type == "requested":
            detail = f"Due: {format_due(task)} / Assignee: {assignee_display(task)}"
        else:
            detail = f"Due: {format_due(task)} / Requester: <@{task.requester_user_id}>"
        return {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*{no_mention(task.title)}*\n{detail}"},
            "accessory": {
                "type": "button",
                "text": {"type": "plain_text", "text": "Details"},
                "action_id": "open_detail_modal",
                "value": json.dumps({"team_id": task.team_id, "task_id": task.task_id}),
            },
        }
