"""TaskLifecycleController 测试

测试内容：
1. 个人 / 群发分类与创建校验
2. 权限：依赖者 R / 负责人 U / 无关用户 X
3. 取消后任何修改均为冲突
4. 群发逐人完成、全员完成单次通知、强制确认
5. 编辑差异与通知
6. 副作用失败不影响写入
"""

import asyncio
from datetime import date
from unittest.mock import patch

import pytest
from taskcard.chat import ChatApiError, InMemoryChatAdapter, NotInChannelError
from taskcard.core.errors import (
    ConflictError,
    InvalidCommandError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamUnavailableError,
)
from taskcard.core.models import (
    CancelTask,
    ChangeStatus,
    CompleteTask,
    ConfirmBroadcastDone,
    ContentPatch,
    CreateTask,
    EditTask,
    TaskStatus,
    TaskType,
)
from taskcard.core.store import StoreGroup
from taskcard.gateway.services.lifecycle import TaskLifecycleController
from taskcard.gateway.services.thread_cards import NOT_IN_CHANNEL_HINT

TEAM = "T0001"
SALES = "<!subteam^S1|@sales-all>"


def _create(**overrides) -> CreateTask:
    fields = {
        "team_id": TEAM,
        "actor_user_id": "UREQ",
        "channel_id": "C100",
        "message_ts": "1700000000.000100",
        "description": "Prepare the report",
        "assignee_user_ids": ["UASG"],
    }
    fields.update(overrides)
    return CreateTask(**fields)


async def _personal(controller: TaskLifecycleController, **overrides):
    return (await controller.execute(_create(**overrides))).task


async def _broadcast(controller: TaskLifecycleController, **overrides):
    fields = {"assignee_user_ids": [], "group_refs": [SALES]}
    fields.update(overrides)
    return (await controller.execute(_create(**fields))).task


class TestCreate:
    """创建与分类"""

    async def test_single_user_is_personal(
        self, controller: TaskLifecycleController, chat: InMemoryChatAdapter
    ):
        result = await controller.execute(_create())
        task = result.task

        assert task.task_type == TaskType.PERSONAL
        assert task.assignee_id == "UASG"
        assert task.title == "Prepare the report"
        assert task.requester_dept == "ops"
        assert task.assignee_dept is None
        assert task.source_permalink.startswith("https://chat.example/archives/C100/")
        assert result.notice is None
        assert "New task assigned" in chat.dm_texts("UASG")[0]
        assert {"UREQ", "UASG"} <= set(chat.home_views)

    async def test_group_is_broadcast(
        self, controller: TaskLifecycleController, store_group, chat: InMemoryChatAdapter
    ):
        task = await _broadcast(controller)

        assert task.task_type == TaskType.BROADCAST
        assert task.assignee_id is None
        assert task.assignee_label == SALES
        assert (task.completed_count, task.total_count) == (0, 3)
        targets = await store_group.task_store.list_target_ids(TEAM, task.task_id)
        assert targets == ["UA", "UB", "UC"]
        for user in targets:
            assert len(chat.dm_texts(user)) == 1

    async def test_multiple_users_is_broadcast(self, controller: TaskLifecycleController):
        task = await _personal(controller, assignee_user_ids=["UB", "UA"])

        assert task.task_type == TaskType.BROADCAST
        assert task.assignee_label == "<@UA> <@UB>"
        assert task.total_count == 2

    async def test_group_snapshot_not_affected_by_later_changes(
        self, controller: TaskLifecycleController, store_group, chat: InMemoryChatAdapter
    ):
        """创建后用户组成员变化不影响目标快照"""
        task = await _broadcast(controller)
        chat.add_usergroup("S1", "sales-all", ["UA", "UZ"])

        targets = await store_group.task_store.list_target_ids(TEAM, task.task_id)
        assert targets == ["UA", "UB", "UC"]

    async def test_no_assignee_rejected(self, controller: TaskLifecycleController):
        with pytest.raises(InvalidCommandError):
            await controller.execute(_create(assignee_user_ids=[]))

    async def test_terminal_initial_status_rejected(self, controller: TaskLifecycleController):
        with pytest.raises(InvalidCommandError):
            await controller.execute(_create(initial_status=TaskStatus.DONE))

    async def test_group_expansion_failure(
        self, controller: TaskLifecycleController, store_group
    ):
        """用户组展开失败时不创建任务"""
        with pytest.raises(UpstreamUnavailableError):
            await controller.execute(_create(assignee_user_ids=[], group_refs=["S404"]))
        assert await store_group.task_store.list_broadcast_tasks() == []

    async def test_initial_status_kept_for_personal(self, controller: TaskLifecycleController):
        task = await _personal(controller, initial_status=TaskStatus.IN_PROGRESS)
        assert task.status == TaskStatus.IN_PROGRESS

    async def test_not_in_channel_notice(
        self, controller: TaskLifecycleController, chat: InMemoryChatAdapter
    ):
        """卡片发布失败不影响任务创建，操作者收到提示"""
        chat.fail_with("post_message", NotInChannelError("chat.postMessage", "C100"))

        result = await controller.execute(_create())
        assert result.notice == NOT_IN_CHANNEL_HINT
        assert result.task.status == TaskStatus.OPEN


class TestPermissions:
    """R = 依赖者，U = 负责人，X = 无关用户"""

    async def test_outsider_cannot_change_status(self, controller: TaskLifecycleController):
        task = await _personal(controller)
        with pytest.raises(PermissionDeniedError):
            await controller.execute(
                ChangeStatus(
                    team_id=TEAM,
                    task_id=task.task_id,
                    actor_user_id="UX",
                    status=TaskStatus.IN_PROGRESS,
                )
            )

    async def test_assignee_changes_status(self, controller: TaskLifecycleController):
        task = await _personal(controller)
        result = await controller.execute(
            ChangeStatus(
                team_id=TEAM,
                task_id=task.task_id,
                actor_user_id="UASG",
                status=TaskStatus.IN_PROGRESS,
            )
        )
        assert result.task.status == TaskStatus.IN_PROGRESS

    async def test_complete_after_cancel_conflicts(self, controller: TaskLifecycleController):
        task = await _personal(controller)
        await controller.execute(
            CancelTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UREQ")
        )

        with pytest.raises(ConflictError):
            await controller.execute(
                CompleteTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UASG")
            )

    async def test_only_requester_cancels(self, controller: TaskLifecycleController):
        task = await _personal(controller)
        with pytest.raises(PermissionDeniedError):
            await controller.execute(
                CancelTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UASG")
            )

    async def test_cancel_twice_conflicts(self, controller: TaskLifecycleController):
        task = await _personal(controller)
        cmd = CancelTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UREQ")
        await controller.execute(cmd)
        with pytest.raises(ConflictError):
            await controller.execute(cmd)

    async def test_other_team_not_found(self, controller: TaskLifecycleController):
        task = await _personal(controller)
        with pytest.raises(NotFoundError):
            await controller.execute(
                CompleteTask(team_id="T_OTHER", task_id=task.task_id, actor_user_id="UASG")
            )


class TestChangeStatus:
    async def test_same_status_is_noop(self, controller: TaskLifecycleController):
        task = await _personal(controller)
        result = await controller.execute(
            ChangeStatus(
                team_id=TEAM,
                task_id=task.task_id,
                actor_user_id="UASG",
                status=TaskStatus.OPEN,
            )
        )
        assert result.changed is False

    async def test_cancelled_requires_cancel_operation(
        self, controller: TaskLifecycleController
    ):
        task = await _personal(controller)
        with pytest.raises(InvalidCommandError):
            await controller.execute(
                ChangeStatus(
                    team_id=TEAM,
                    task_id=task.task_id,
                    actor_user_id="UREQ",
                    status=TaskStatus.CANCELLED,
                )
            )

    async def test_broadcast_status_not_settable(self, controller: TaskLifecycleController):
        task = await _broadcast(controller)
        with pytest.raises(PermissionDeniedError):
            await controller.execute(
                ChangeStatus(
                    team_id=TEAM,
                    task_id=task.task_id,
                    actor_user_id="UREQ",
                    status=TaskStatus.IN_PROGRESS,
                )
            )

    async def test_personal_complete_notifies_requester(
        self, controller: TaskLifecycleController, chat: InMemoryChatAdapter
    ):
        task = await _personal(controller)
        result = await controller.execute(
            CompleteTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UASG")
        )

        assert result.task.status == TaskStatus.DONE
        assert result.task.completed_at is not None
        assert "Task completed" in chat.dm_texts("UREQ")[-1]


class TestBroadcastCompletion:
    """群发逐人完成"""

    async def test_non_target_cannot_complete(self, controller: TaskLifecycleController):
        task = await _broadcast(controller)
        with pytest.raises(PermissionDeniedError):
            await controller.execute(
                CompleteTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UX")
            )

    async def test_all_done_notifies_once(
        self, controller: TaskLifecycleController, chat: InMemoryChatAdapter
    ):
        task = await _broadcast(controller)

        statuses = []
        for user in ("UA", "UB", "UC"):
            result = await controller.execute(
                CompleteTask(team_id=TEAM, task_id=task.task_id, actor_user_id=user)
            )
            statuses.append(result.task.status)
        assert statuses == [TaskStatus.IN_PROGRESS, TaskStatus.IN_PROGRESS, TaskStatus.WAITING]

        repeat = await controller.execute(
            CompleteTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UA")
        )
        assert repeat.changed is False
        assert repeat.task.completed_count == 3

        confirm_requests = [t for t in chat.dm_texts("UREQ") if "please confirm" in t]
        assert len(confirm_requests) == 1

    async def test_concurrent_completions_notify_once(
        self, controller: TaskLifecycleController, chat: InMemoryChatAdapter
    ):
        task = await _broadcast(controller)

        results = await asyncio.gather(
            *(
                controller.execute(
                    CompleteTask(team_id=TEAM, task_id=task.task_id, actor_user_id=user)
                )
                for user in ("UA", "UB", "UC")
            )
        )
        assert sum(r.progress.should_notify_requester for r in results) == 1
        confirm_requests = [t for t in chat.dm_texts("UREQ") if "please confirm" in t]
        assert len(confirm_requests) == 1

    async def test_cancel_between_check_and_write_conflicts(
        self, controller: TaskLifecycleController, store_group: StoreGroup
    ):
        """完成前的检查通过后任务被并发取消：不写入完成记录并返回冲突"""
        task = await _broadcast(controller)
        tasks = store_group.task_store
        real_is_target = tasks.is_target

        async def _cancel_then_check(team_id, task_id, user_id):
            await tasks.cancel_task(team_id, task_id, "UREQ")
            return await real_is_target(team_id, task_id, user_id)

        with patch.object(tasks, "is_target", new=_cancel_then_check):
            with pytest.raises(ConflictError):
                await controller.execute(
                    CompleteTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UA")
                )

        assert await tasks.count_completions(TEAM, task.task_id) == 0
        reloaded = await tasks.get_task(TEAM, task.task_id)
        assert reloaded.status == TaskStatus.CANCELLED
        assert reloaded.completed_count == 0

    async def test_anyone_confirms_done(self, controller: TaskLifecycleController):
        """任何人都可以确认群发任务完成，包括全员未完成时"""
        task = await _broadcast(controller)
        await controller.execute(
            CompleteTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UA")
        )

        result = await controller.execute(
            ConfirmBroadcastDone(team_id=TEAM, task_id=task.task_id, actor_user_id="UX")
        )
        assert result.task.status == TaskStatus.DONE
        assert result.task.completed_count == 1

        with pytest.raises(ConflictError):
            await controller.execute(
                CompleteTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UB")
            )

    async def test_confirm_personal_conflicts(self, controller: TaskLifecycleController):
        task = await _personal(controller)
        with pytest.raises(ConflictError):
            await controller.execute(
                ConfirmBroadcastDone(team_id=TEAM, task_id=task.task_id, actor_user_id="UREQ")
            )

    async def test_cancel_notifies_targets(
        self, controller: TaskLifecycleController, chat: InMemoryChatAdapter
    ):
        task = await _broadcast(controller)
        await controller.execute(
            CancelTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UREQ")
        )
        for user in ("UA", "UB", "UC"):
            assert "Task cancelled" in chat.dm_texts(user)[-1]


class TestEdit:
    async def test_due_date_change_notifies_assignee(
        self, controller: TaskLifecycleController, chat: InMemoryChatAdapter
    ):
        task = await _personal(controller)
        result = await controller.execute(
            EditTask(
                team_id=TEAM,
                task_id=task.task_id,
                actor_user_id="UREQ",
                patch=ContentPatch(due_date=date(2026, 5, 1)),
            )
        )

        assert result.diff.fields == ["due_date"]
        assert result.task.due_date == date(2026, 5, 1)
        edited = chat.dm_texts("UASG")[-1]
        assert "Task updated" in edited
        assert "- → 2026-05-01" in edited

    async def test_no_change_is_noop(
        self, controller: TaskLifecycleController, chat: InMemoryChatAdapter
    ):
        task = await _personal(controller)
        before = len(chat.posted)
        result = await controller.execute(
            EditTask(
                team_id=TEAM,
                task_id=task.task_id,
                actor_user_id="UASG",
                patch=ContentPatch(title=task.title, assignee_id="UASG"),
            )
        )
        assert result.changed is False
        assert len(chat.posted) == before

    async def test_assignee_change_resolves_dept(self, controller: TaskLifecycleController):
        task = await _personal(controller)
        result = await controller.execute(
            EditTask(
                team_id=TEAM,
                task_id=task.task_id,
                actor_user_id="UREQ",
                patch=ContentPatch(assignee_id="UA"),
            )
        )
        assert result.task.assignee_id == "UA"
        assert result.task.assignee_dept == "sales"

    async def test_outsider_cannot_edit(self, controller: TaskLifecycleController):
        task = await _personal(controller)
        with pytest.raises(PermissionDeniedError):
            await controller.execute(
                EditTask(
                    team_id=TEAM,
                    task_id=task.task_id,
                    actor_user_id="UX",
                    patch=ContentPatch(title="Hijacked"),
                )
            )

    async def test_broadcast_targets_fixed(self, controller: TaskLifecycleController):
        task = await _broadcast(controller)
        with pytest.raises(InvalidCommandError):
            await controller.execute(
                EditTask(
                    team_id=TEAM,
                    task_id=task.task_id,
                    actor_user_id="UREQ",
                    patch=ContentPatch(assignee_id="UA"),
                )
            )

    async def test_broadcast_edit_requester_only(self, controller: TaskLifecycleController):
        task = await _broadcast(controller)
        with pytest.raises(PermissionDeniedError):
            await controller.execute(
                EditTask(
                    team_id=TEAM,
                    task_id=task.task_id,
                    actor_user_id="UA",
                    patch=ContentPatch(title="Mine now"),
                )
            )


class TestSideEffects:
    async def test_notification_failure_does_not_roll_back(
        self, controller: TaskLifecycleController, chat: InMemoryChatAdapter, store_group
    ):
        task = await _personal(controller)
        chat.fail_with("open_dm", ChatApiError("conversations.open", "user_not_found"))

        result = await controller.execute(
            CompleteTask(team_id=TEAM, task_id=task.task_id, actor_user_id="UASG")
        )
        assert result.task.status == TaskStatus.DONE
        loaded = await store_group.task_store.get_task(TEAM, task.task_id)
        assert loaded.status == TaskStatus.DONE

    async def test_card_updated_in_place(
        self, controller: TaskLifecycleController, chat: InMemoryChatAdapter
    ):
        task = await _personal(controller)
        await controller.execute(
            ChangeStatus(
                team_id=TEAM,
                task_id=task.task_id,
                actor_user_id="UASG",
                status=TaskStatus.IN_PROGRESS,
            )
        )

        cards = [m for m in chat.posted if m["channel"] == "C100"]
        assert len(cards) == 1
        assert "In progress" in chat.messages[("C100", cards[0]["ts"])]["text"]

    async def test_home_republish_keeps_selected_mode(
        self, controller: TaskLifecycleController, presentation, chat: InMemoryChatAdapter
    ):
        """任务变更后重新发布的看板沿用用户选择的视图"""
        presentation.update_preferences(TEAM, "UREQ", mode="requested_active")
        task = await _personal(controller)
        await controller.execute(
            ChangeStatus(
                team_id=TEAM,
                task_id=task.task_id,
                actor_user_id="UASG",
                status=TaskStatus.IN_PROGRESS,
            )
        )

        mode_select = next(
            b["accessory"]
            for b in chat.home_views["UREQ"]["blocks"]
            if (b.get("accessory") or {}).get("action_id") == "home_mode_select"
        )
        assert mode_select["initial_option"]["value"] == "requested_active"
