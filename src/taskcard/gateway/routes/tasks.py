"""任务路由

POST  /api/tasks                    创建任务
GET   /api/tasks                    看板列表（role=assignee/requester/target）
GET   /api/tasks/{task_id}          任务详情（含群发目标与完成记录）
POST  /api/tasks/{task_id}/status   修改个人任务状态
POST  /api/tasks/{task_id}/complete 完成自己负责的部分
POST  /api/tasks/{task_id}/cancel   取消任务
POST  /api/tasks/{task_id}/confirm  确认群发任务完成
PATCH /api/tasks/{task_id}          编辑内容

业务错误由 main.py 注册的 TaskCardError 处理器统一转换为
{"error": {"code", "message"}}。
"""

from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from taskcard.core.config import DASHBOARD_LIST_LIMIT
from taskcard.core.models import (
    CancelTask,
    ChangeStatus,
    CompleteTask,
    ConfirmBroadcastDone,
    ContentPatch,
    CreateTask,
    EditTask,
    Task,
    TaskStatus,
)
from taskcard.core.store.task_store import DEPT_ALL

from ..deps import get_controller, get_store_group
from ..services.lifecycle import OperationResult

router = APIRouter()


class ActorRequest(BaseModel):
    """携带操作者的请求体"""

    team_id: str
    actor_user_id: str


class StatusRequest(ActorRequest):
    status: TaskStatus


class EditRequest(ActorRequest):
    """编辑请求；due_date 显式传 null 表示清空"""

    title: str | None = None
    description: str | None = None
    assignee_id: str | None = None
    due_date: date | None = None

    def to_patch(self) -> ContentPatch:
        fields = self.model_dump(
            include={"title", "description", "assignee_id", "due_date"},
            exclude_unset=True,
        )
        return ContentPatch(**fields)


class TaskListResponse(BaseModel):
    """任务列表响应"""

    tasks: list[Task]


class TaskDetailResponse(BaseModel):
    """任务详情响应"""

    task: Task
    target_user_ids: list[str] = Field(default_factory=list)
    completed_user_ids: list[str] = Field(default_factory=list)


@router.post("/api/tasks", status_code=201, response_model=OperationResult)
async def create_task(body: CreateTask, controller=Depends(get_controller)):
    """创建任务"""
    return await controller.execute(body)


@router.get("/api/tasks", response_model=TaskListResponse)
async def list_tasks(
    team_id: str = Query(description="租户"),
    user_id: str = Query(description="看板所属用户"),
    role: Literal["assignee", "requester", "target"] = Query(default="assignee"),
    status: TaskStatus = Query(default=TaskStatus.OPEN),
    dept: str = Query(default=DEPT_ALL, description="部门筛选：all / __none__ / 部门键"),
    limit: int = Query(default=DASHBOARD_LIST_LIMIT, ge=1, le=100),
    store_group=Depends(get_store_group),
):
    """按角色 + 状态查询看板列表"""
    tasks = store_group.task_store
    if role == "requester":
        result = await tasks.list_tasks_for_requester(team_id, user_id, status, dept, limit)
    elif role == "target":
        result = await tasks.list_tasks_for_target(team_id, user_id, status, limit)
    else:
        result = await tasks.list_tasks_for_assignee(team_id, user_id, status, dept, limit)
    return TaskListResponse(tasks=result)


@router.get("/api/tasks/{task_id}", response_model=TaskDetailResponse)
async def get_task_detail(
    task_id: str,
    team_id: str = Query(description="租户"),
    store_group=Depends(get_store_group),
):
    """查询任务详情；群发任务附带目标与完成记录"""
    tasks = store_group.task_store
    task = await tasks.get_task(team_id, task_id)
    if not task.is_broadcast:
        return TaskDetailResponse(task=task)
    return TaskDetailResponse(
        task=task,
        target_user_ids=await tasks.list_target_ids(team_id, task_id),
        completed_user_ids=await tasks.list_completion_ids(team_id, task_id),
    )


@router.post("/api/tasks/{task_id}/status", response_model=OperationResult)
async def change_status(
    task_id: str,
    body: StatusRequest,
    controller=Depends(get_controller),
):
    """修改个人任务状态"""
    return await controller.execute(
        ChangeStatus(
            team_id=body.team_id,
            task_id=task_id,
            actor_user_id=body.actor_user_id,
            status=body.status,
        )
    )


@router.post("/api/tasks/{task_id}/complete", response_model=OperationResult)
async def complete_task(
    task_id: str,
    body: ActorRequest,
    controller=Depends(get_controller),
):
    """完成自己负责的部分"""
    return await controller.execute(
        CompleteTask(team_id=body.team_id, task_id=task_id, actor_user_id=body.actor_user_id)
    )


@router.post("/api/tasks/{task_id}/cancel", response_model=OperationResult)
async def cancel_task(
    task_id: str,
    body: ActorRequest,
    controller=Depends(get_controller),
):
    """取消任务（仅依赖者）"""
    return await controller.execute(
        CancelTask(team_id=body.team_id, task_id=task_id, actor_user_id=body.actor_user_id)
    )


@router.post("/api/tasks/{task_id}/confirm", response_model=OperationResult)
async def confirm_task(
    task_id: str,
    body: ActorRequest,
    controller=Depends(get_controller),
):
    """确认群发任务完成"""
    return await controller.execute(
        ConfirmBroadcastDone(
            team_id=body.team_id,
            task_id=task_id,
            actor_user_id=body.actor_user_id,
        )
    )


@router.patch("/api/tasks/{task_id}", response_model=OperationResult)
async def edit_task(
    task_id: str,
    body: EditRequest,
    controller=Depends(get_controller),
):
    """编辑内容 / 负责人 / 截止日期"""
    return await controller.execute(
        EditTask(
            team_id=body.team_id,
            task_id=task_id,
            actor_user_id=body.actor_user_id,
            patch=body.to_patch(),
        )
    )
