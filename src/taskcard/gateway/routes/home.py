"""Home 看板路由

GET /api/home/preferences: 查询用户当前的看板偏好
PUT /api/home/preferences: 切换视图模式 / 部门筛选并立即重新发布看板
                          （对应 Home 上 home_mode_select / home_dept_select 的选择）
"""

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from taskcard.chat import ChatPlatformError

from ..deps import get_presentation
from ..services.presentation import ChatPresentationAdapter, HomeMode, HomePreferences

log = structlog.get_logger()

router = APIRouter()


class PreferencesUpdate(BaseModel):
    """偏好更新请求；未传入的字段保持原值"""

    team_id: str
    user_id: str
    mode: HomeMode | None = None
    dept_key: str | None = Field(default=None, description="all / __none__ / 部门键")


class PreferencesResponse(BaseModel):
    preferences: HomePreferences
    published: bool = Field(description="看板是否已成功重新发布")


@router.get("/api/home/preferences", response_model=HomePreferences)
async def get_home_preferences(
    team_id: str = Query(description="租户"),
    user_id: str = Query(description="用户"),
    presentation: ChatPresentationAdapter = Depends(get_presentation),
):
    return presentation.get_preferences(team_id, user_id)


@router.put("/api/home/preferences", response_model=PreferencesResponse)
async def update_home_preferences(
    body: PreferencesUpdate,
    presentation: ChatPresentationAdapter = Depends(get_presentation),
):
    """保存选择并重新发布；发布失败时偏好仍然生效"""
    prefs = presentation.update_preferences(
        body.team_id, body.user_id, mode=body.mode, dept_key=body.dept_key
    )
    published = True
    try:
        await presentation.render_and_publish(body.team_id, body.user_id)
    except ChatPlatformError as e:
        log.warning(
            "home_publish_failed",
            user_id=body.user_id,
            error_type=type(e).__name__,
        )
        published = False
    log.info(
        "home_preferences_updated",
        user_id=body.user_id,
        mode=prefs.mode,
        dept_key=prefs.dept_key,
    )
    return PreferencesResponse(preferences=prefs, published=published)
