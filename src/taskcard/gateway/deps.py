"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request
from taskcard.core.store import StoreGroup

from .services.lifecycle import TaskLifecycleController
from .services.presentation import ChatPresentationAdapter
from .services.reminders import ReminderScheduler


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_controller(request: Request) -> TaskLifecycleController:
    """从 app.state 获取生命周期控制器"""
    return request.app.state.controller


def get_presentation(request: Request) -> ChatPresentationAdapter:
    """从 app.state 获取展示适配器"""
    return request.app.state.presentation


def get_reminder_scheduler(request: Request) -> ReminderScheduler:
    """从 app.state 获取到期提醒调度器"""
    return request.app.state.reminder_scheduler
