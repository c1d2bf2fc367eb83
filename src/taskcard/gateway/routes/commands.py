"""通用命令路由

POST /api/commands: 接收任意 TaskCommand（按 op 字段判别），
供快捷方式 / 表情回应 / 弹窗提交等入口统一投递。
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends
from taskcard.core.models import TaskCommand

from ..deps import get_controller
from ..services.lifecycle import OperationResult

router = APIRouter()


@router.post("/api/commands", response_model=OperationResult)
async def execute_command(
    command: Annotated[TaskCommand, Body()],
    controller=Depends(get_controller),
):
    """执行一条生命周期命令"""
    return await controller.execute(command)
