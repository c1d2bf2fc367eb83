"""TaskLifecycleController -- 任务生命周期业务逻辑

所有外部触发映射为 TaskCommand 后由 execute() 分发。每个操作遵循：
1. 重新读取任务（不信任调用方持有的快照）
2. 权限校验
3. 终态检查
4. 条件写入（expected_statuses 防止并发覆盖）
写入成功后再执行副作用（线程卡片、私聊通知、Home 看板刷新）；
副作用失败只记录日志，不回滚已提交的写入。
"""

from datetime import UTC, datetime

import structlog
from pydantic import BaseModel

from taskcard.core.diff import TaskDiff, compute_task_diff
from taskcard.core.errors import (
    ConflictError,
    InvalidCommandError,
    PermissionDeniedError,
    UpstreamUnavailableError,
)
from taskcard.core.models import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    CancelTask,
    ChangeStatus,
    CompleteTask,
    ConfirmBroadcastDone,
    ContentPatch,
    CreateTask,
    EditTask,
    NotificationKind,
    Task,
    TaskCommand,
    TaskStatus,
    TaskType,
    validate_transition,
)
from taskcard.core.progress import BroadcastProgressTracker, ProgressSnapshot
from taskcard.core.store import StoreGroup, create_task_with_targets
from taskcard.core.title import generate_title_candidate
from ulid import ULID

from .directory import DirectoryPort
from .presentation import PresentationPort
from .thread_cards import ThreadCardService

log = structlog.get_logger()


class OperationResult(BaseModel):
    """一次生命周期操作的结果"""

    task: Task
    changed: bool = True
    notice: str | None = None
    progress: ProgressSnapshot | None = None
    diff: TaskDiff | None = None


class TaskLifecycleController:
    """任务生命周期控制器"""

    def __init__(
        self,
        store_group: StoreGroup,
        directory: DirectoryPort,
        presentation: PresentationPort,
        thread_cards: ThreadCardService,
    ) -> None:
        self._stores = store_group
        self._tasks = store_group.task_store
        self._directory = directory
        self._presentation = presentation
        self._thread_cards = thread_cards
        self._tracker = BroadcastProgressTracker(store_group.task_store)

    async def execute(self, command: TaskCommand) -> OperationResult:
        """按操作类型分发"""
        if isinstance(command, CreateTask):
            return await self.create_task(command)
        if isinstance(command, ChangeStatus):
            return await self.change_status(command)
        if isinstance(command, CompleteTask):
            return await self.complete(command)
        if isinstance(command, EditTask):
            return await self.edit(command)
        if isinstance(command, CancelTask):
            return await self.cancel(command)
        if isinstance(command, ConfirmBroadcastDone):
            return await self.confirm_broadcast_done(command)
        raise InvalidCommandError(f"Unsupported command: {type(command).__name__}")

    # ---- 创建 ----

    async def create_task(self, cmd: CreateTask) -> OperationResult:
        """创建任务

        恰好一个用户且未引用用户组时为个人任务，否则为群发任务。
        用户组在此时展开为目标快照，之后成员变化不影响该任务。
        """
        individuals = {u for u in cmd.assignee_user_ids if u}
        users = set(individuals)
        for group_ref in cmd.group_refs:
            users |= await self._directory.expand_group_to_users(cmd.team_id, group_ref)

        if not users:
            raise InvalidCommandError("At least one assignee or user group is required")
        if cmd.initial_status in TERMINAL_STATES:
            raise InvalidCommandError(
                f"Task cannot be created in terminal status {cmd.initial_status.value}"
            )

        task_type = (
            TaskType.PERSONAL
            if len(users) == 1 and not cmd.group_refs
            else TaskType.BROADCAST
        )
        requester = cmd.requester_user_id or cmd.actor_user_id
        now = datetime.now(UTC)

        source_permalink = None
        if cmd.channel_id and cmd.message_ts:
            source_permalink = await self._directory.resolve_permalink(
                cmd.channel_id, cmd.message_ts
            )
        requester_dept = await self._directory.resolve_department(cmd.team_id, requester)

        title = (cmd.title or "").strip() or generate_title_candidate(cmd.description)
        fields: dict = {
            "task_id": str(ULID()),
            "team_id": cmd.team_id,
            "channel_id": cmd.channel_id,
            "message_ts": cmd.message_ts,
            "thread_ts": cmd.thread_ts or cmd.message_ts,
            "source_permalink": source_permalink,
            "title": title,
            "description": cmd.description,
            "requester_user_id": requester,
            "created_by_user_id": cmd.actor_user_id,
            "task_type": task_type,
            "due_date": cmd.due_date,
            "requester_dept": requester_dept,
            "created_at": now,
            "updated_at": now,
        }
        targets: list[str] = []
        if task_type == TaskType.PERSONAL:
            (assignee,) = users
            fields.update(
                assignee_id=assignee,
                assignee_dept=await self._directory.resolve_department(cmd.team_id, assignee),
                status=cmd.initial_status,
            )
        else:
            targets = sorted(users)
            label_parts = [*cmd.group_refs, *(f"<@{u}>" for u in sorted(individuals))]
            fields.update(
                assignee_label=cmd.assignee_label or " ".join(label_parts),
                status=TaskStatus.OPEN,
                total_count=len(targets),
                completed_count=0,
            )

        task = await create_task_with_targets(
            self._stores.conn,
            self._tasks,
            Task(**fields),
            targets,
        )
        log.info(
            "task_created",
            task_id=task.task_id,
            team_id=task.team_id,
            task_type=task.task_type.value,
            target_count=len(targets),
        )

        recipients = targets if task.is_broadcast else [task.assignee_id]
        notice = await self._after_mutation(
            task,
            notify=[
                (self._others(recipients, cmd.actor_user_id), NotificationKind.TASK_ASSIGNED, None)
            ],
            publish=[requester, *recipients],
        )
        return OperationResult(task=task, notice=notice)

    # ---- 状态 ----

    async def change_status(self, cmd: ChangeStatus) -> OperationResult:
        """修改个人任务状态（群发任务的状态仅由系统推进）"""
        task = await self._tasks.get_task(cmd.team_id, cmd.task_id)
        if task.is_broadcast:
            raise PermissionDeniedError(
                "Broadcast task status advances automatically and cannot be set"
            )
        self._require_party(task, cmd.actor_user_id)
        if cmd.status == TaskStatus.CANCELLED:
            raise InvalidCommandError("Use the cancel operation to cancel a task")
        self._require_active(task)
        if cmd.status == task.status:
            return OperationResult(task=task, changed=False)
        if not validate_transition(task.status, cmd.status):
            raise ConflictError(
                f"Cannot transition from {task.status.value} to {cmd.status.value}"
            )

        updated = await self._tasks.update_status(
            cmd.team_id,
            cmd.task_id,
            cmd.status,
            expected_statuses={task.status},
        )
        log.info(
            "task_status_changed",
            task_id=task.task_id,
            from_status=task.status.value,
            to_status=updated.status.value,
            actor=cmd.actor_user_id,
        )

        notify = []
        if updated.status == TaskStatus.DONE:
            notify.append(
                (
                    self._others([updated.requester_user_id], cmd.actor_user_id),
                    NotificationKind.TASK_COMPLETED,
                    None,
                )
            )
        notice = await self._after_mutation(
            updated,
            notify=notify,
            publish=[updated.requester_user_id, updated.assignee_id],
        )
        return OperationResult(task=updated, notice=notice)

    async def complete(self, cmd: CompleteTask) -> OperationResult:
        """完成自己负责的部分

        个人任务等同于将状态改为 done；群发任务记录该目标的个人完成，
        重复完成为无操作，不会再次通知。
        """
        task = await self._tasks.get_task(cmd.team_id, cmd.task_id)
        if not task.is_broadcast:
            return await self.change_status(
                ChangeStatus(
                    team_id=cmd.team_id,
                    task_id=cmd.task_id,
                    actor_user_id=cmd.actor_user_id,
                    status=TaskStatus.DONE,
                )
            )

        if not await self._tasks.is_target(cmd.team_id, cmd.task_id, cmd.actor_user_id):
            raise PermissionDeniedError(
                f"User {cmd.actor_user_id} is not a target of task {cmd.task_id}"
            )
        self._require_active(task)

        inserted = await self._tasks.record_completion(
            cmd.team_id, cmd.task_id, cmd.actor_user_id
        )
        if not inserted:
            # 未写入：重复完成，或并发请求已终结该任务
            self._require_active(await self._tasks.get_task(cmd.team_id, cmd.task_id))
        # 重复完成也重新评估：计数以完成记录为准，评估本身幂等
        progress = await self._tracker.evaluate(cmd.team_id, cmd.task_id)
        updated = await self._tasks.get_task(cmd.team_id, cmd.task_id)

        if not inserted:
            log.info(
                "broadcast_completion_repeated",
                task_id=task.task_id,
                user_id=cmd.actor_user_id,
            )
            return OperationResult(task=updated, changed=False, progress=progress)

        log.info(
            "broadcast_completion_recorded",
            task_id=task.task_id,
            user_id=cmd.actor_user_id,
            completed=progress.completed,
            total=progress.total,
        )
        notify = []
        if progress.should_notify_requester:
            notify.append(
                (
                    [updated.requester_user_id],
                    NotificationKind.WAITING_FOR_CONFIRMATION,
                    None,
                )
            )
        notice = await self._after_mutation(
            updated,
            notify=notify,
            publish=[cmd.actor_user_id, updated.requester_user_id],
        )
        return OperationResult(task=updated, notice=notice, progress=progress)

    async def confirm_broadcast_done(self, cmd: ConfirmBroadcastDone) -> OperationResult:
        """将群发任务强制标记为 done

        不限制操作者：任何人都可以确认（包括非依赖者），
        全员未完成时也允许提前结束。
        """
        task = await self._tasks.get_task(cmd.team_id, cmd.task_id)
        if not task.is_broadcast:
            raise ConflictError("Only broadcast tasks can be confirmed as done")
        self._require_active(task)

        updated = await self._tasks.update_status(
            cmd.team_id,
            cmd.task_id,
            TaskStatus.DONE,
            expected_statuses=ACTIVE_STATES,
        )
        log.info(
            "broadcast_confirmed_done",
            task_id=task.task_id,
            actor=cmd.actor_user_id,
            completed=updated.completed_count,
            total=updated.total_count,
        )
        notice = await self._after_mutation(
            updated,
            notify=[
                (
                    self._others([updated.requester_user_id], cmd.actor_user_id),
                    NotificationKind.TASK_COMPLETED,
                    None,
                )
            ],
            publish=[cmd.actor_user_id, updated.requester_user_id],
        )
        return OperationResult(task=updated, notice=notice)

    # ---- 编辑 / 取消 ----

    async def edit(self, cmd: EditTask) -> OperationResult:
        """编辑内容 / 负责人 / 截止日期

        无实际变化时不写入也不通知。
        """
        task = await self._tasks.get_task(cmd.team_id, cmd.task_id)
        patch = cmd.patch
        if task.is_broadcast:
            self._require_requester(task, cmd.actor_user_id)
            if patch.assignee_id is not None:
                raise InvalidCommandError("Broadcast targets cannot be changed after creation")
        else:
            self._require_party(task, cmd.actor_user_id)
        self._require_active(task)

        proposed = self._apply_patch(task, patch)
        diff = compute_task_diff(task, proposed)
        if diff.is_empty:
            return OperationResult(task=task, changed=False, diff=diff)

        if "assignee_id" in diff.fields:
            patch = patch.model_copy(
                update={
                    "assignee_dept": await self._directory.resolve_department(
                        cmd.team_id, patch.assignee_id
                    )
                }
            )
        else:
            # 负责人未变化时不改写负责人部门
            patch = patch.model_copy(update={"assignee_id": None, "assignee_dept": None})
        updated = await self._tasks.update_content(
            cmd.team_id,
            cmd.task_id,
            patch,
            expected_statuses=ACTIVE_STATES,
        )
        log.info(
            "task_edited",
            task_id=task.task_id,
            fields=diff.fields,
            actor=cmd.actor_user_id,
        )

        if updated.is_broadcast:
            parties = await self._tasks.list_target_ids(cmd.team_id, cmd.task_id)
        else:
            parties = [updated.assignee_id, task.assignee_id]
        parties = [updated.requester_user_id, *parties]
        notice = await self._after_mutation(
            updated,
            notify=[
                (self._others(parties, cmd.actor_user_id), NotificationKind.TASK_EDITED, diff)
            ],
            publish=parties,
        )
        return OperationResult(task=updated, notice=notice, diff=diff)

    async def cancel(self, cmd: CancelTask) -> OperationResult:
        """取消任务（仅依赖者）"""
        task = await self._tasks.get_task(cmd.team_id, cmd.task_id)
        self._require_requester(task, cmd.actor_user_id)
        self._require_active(task)

        updated = await self._tasks.cancel_task(
            cmd.team_id,
            cmd.task_id,
            cmd.actor_user_id,
            expected_statuses=ACTIVE_STATES,
        )
        log.info("task_cancelled", task_id=task.task_id, actor=cmd.actor_user_id)

        if updated.is_broadcast:
            recipients = await self._tasks.list_target_ids(cmd.team_id, cmd.task_id)
        else:
            recipients = [updated.assignee_id]
        notice = await self._after_mutation(
            updated,
            notify=[
                (self._others(recipients, cmd.actor_user_id), NotificationKind.TASK_CANCELLED, None)
            ],
            publish=[updated.requester_user_id, *recipients],
        )
        return OperationResult(task=updated, notice=notice)

    # ---- 校验 ----

    @staticmethod
    def _require_party(task: Task, user_id: str) -> None:
        if user_id not in (task.requester_user_id, task.assignee_id):
            raise PermissionDeniedError(
                f"Only the requester or assignee can modify task {task.task_id}"
            )

    @staticmethod
    def _require_requester(task: Task, user_id: str) -> None:
        if user_id != task.requester_user_id:
            raise PermissionDeniedError(
                f"Only the requester can perform this operation on task {task.task_id}"
            )

    @staticmethod
    def _require_active(task: Task) -> None:
        if task.status in TERMINAL_STATES:
            raise ConflictError(f"Task {task.task_id} is already {task.status.value}")

    @staticmethod
    def _apply_patch(task: Task, patch: ContentPatch) -> Task:
        update: dict = {}
        for field in ("title", "description", "assignee_id"):
            value = getattr(patch, field)
            if value is not None:
                update[field] = value
        if patch.due_date_provided:
            update["due_date"] = patch.due_date
        return task.model_copy(update=update)

    @staticmethod
    def _others(user_ids, actor_user_id: str) -> list[str]:
        return sorted({u for u in user_ids if u and u != actor_user_id})

    # ---- 副作用 ----

    async def _after_mutation(
        self,
        task: Task,
        notify: list[tuple[list[str], NotificationKind, TaskDiff | None]],
        publish: list[str | None],
    ) -> str | None:
        """写入成功后的副作用；返回需要展示给操作者的提示"""
        notice = None
        try:
            await self._thread_cards.refresh(task)
        except UpstreamUnavailableError as e:
            notice = e.user_hint or e.message
            log.warning(
                "thread_card_refresh_failed",
                task_id=task.task_id,
                code=e.code,
                recoverable=e.recoverable,
            )

        for user_ids, kind, changes in notify:
            if not user_ids:
                continue
            try:
                await self._presentation.notify_users(user_ids, task, kind, changes)
            except Exception as e:
                log.error(
                    "notification_failed",
                    task_id=task.task_id,
                    kind=kind.value,
                    error_type=type(e).__name__,
                )

        for user_id in sorted({u for u in publish if u}):
            try:
                await self._presentation.render_and_publish(task.team_id, user_id)
            except Exception as e:
                log.warning(
                    "home_publish_failed",
                    task_id=task.task_id,
                    user_id=user_id,
                    error_type=type(e).__name__,
                )
        return notice
