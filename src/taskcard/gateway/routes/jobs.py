"""后台任务路由

POST /api/jobs/reminders: 立即执行一轮到期提醒（外部 cron 或运维手动触发）。
"""

from datetime import date

from fastapi import APIRouter, Depends, Query

from ..deps import get_reminder_scheduler

router = APIRouter()


@router.post("/api/jobs/reminders")
async def run_reminders(
    day: date | None = Query(default=None, description="提醒日期，默认当天（按配置时区）"),
    scheduler=Depends(get_reminder_scheduler),
):
    """执行到期提醒并返回提醒的任务数"""
    if day is None:
        reminded = await scheduler.run_once()
    else:
        reminded = await scheduler.run_for(day)
    return {"reminded": reminded}
