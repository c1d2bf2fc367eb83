"""任务编辑差异计算

编辑通知只列出真正变化的字段。比较基于字符串等价；
截止日期先统一为 ISO YYYY-MM-DD 再比较，避免 date / datetime / 字符串
表示不同导致的误报。
"""

import re
from datetime import date, datetime

from pydantic import BaseModel, Field

from .models.task import Task

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_SLASH_DATE_RE = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")

# 参与比较的字段（按通知展示顺序）
DIFF_FIELDS: tuple[str, ...] = ("title", "description", "assignee_id", "due_date")


class FieldChange(BaseModel):
    """单个字段的变更"""

    field: str
    before: str | None = None
    after: str | None = None


class TaskDiff(BaseModel):
    """两次任务快照之间的变更集合"""

    changes: list[FieldChange] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @property
    def fields(self) -> list[str]:
        return [c.field for c in self.changes]


def normalize_due_date(value: date | datetime | str | None) -> str | None:
    """截止日期规范化为 YYYY-MM-DD；无法识别的字符串原样返回"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    m = _ISO_DATE_RE.match(text)
    if m:
        return f"{m.group(1)}-{m.group(2)}-{m.group(3)}"
    m = _SLASH_DATE_RE.match(text)
    if m:
        return f"{m.group(1)}-{int(m.group(2)):02d}-{int(m.group(3)):02d}"
    return text


def _as_text(field: str, value) -> str | None:
    if field == "due_date":
        return normalize_due_date(value)
    if value is None:
        return None
    return str(value)


def compute_task_diff(before: Task | dict, after: Task | dict) -> TaskDiff:
    """计算编辑前后的字段差异

    Args:
        before: 编辑前快照（Task 或字段字典）
        after: 编辑后快照

    Returns:
        TaskDiff，仅包含发生变化的字段
    """
    old = before.model_dump() if isinstance(before, Task) else before
    new = after.model_dump() if isinstance(after, Task) else after

    changes: list[FieldChange] = []
    for field in DIFF_FIELDS:
        old_value = _as_text(field, old.get(field))
        new_value = _as_text(field, new.get(field))
        if old_value != new_value:
            changes.append(FieldChange(field=field, before=old_value, after=new_value))
    return TaskDiff(changes=changes)
