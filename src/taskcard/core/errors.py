"""TaskCard 异常体系

NotFound / PermissionDenied / Conflict 在任何写入之前检测，向用户展示即可，不升级为故障。
UpstreamUnavailable 表示聊天平台调用失败，区分可恢复（提示用户操作）与不可恢复。
"""


class TaskCardError(Exception):
    """TaskCard 基础异常"""

    code: str = "TASKCARD_ERROR"
    status_code: int = 500

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(TaskCardError):
    """任务在当前 team 分区中不存在"""

    code = "TASK_NOT_FOUND"
    status_code = 404

    def __init__(self, team_id: str, task_id: str) -> None:
        super().__init__(f"Task {task_id} does not exist in team {team_id}")
        self.team_id = team_id
        self.task_id = task_id


class PermissionDeniedError(TaskCardError):
    """操作者无权执行该操作"""

    code = "PERMISSION_DENIED"
    status_code = 403


class ConflictError(TaskCardError):
    """终态任务上的操作，或单次操作的重复执行"""

    code = "TASK_CONFLICT"
    status_code = 409


class InvalidTaskError(TaskCardError):
    """任务字段与 task_type 不一致"""

    code = "INVALID_TASK"
    status_code = 400


class InvalidCommandError(TaskCardError):
    """命令参数校验失败（如未指定任何负责人）"""

    code = "INVALID_COMMAND"
    status_code = 400


class UpstreamUnavailableError(TaskCardError):
    """聊天平台 API 调用失败

    recoverable=True 时 user_hint 给出用户可执行的补救提示（如邀请 bot 进频道）。
    """

    code = "UPSTREAM_UNAVAILABLE"
    status_code = 502

    def __init__(
        self,
        message: str,
        recoverable: bool = True,
        user_hint: str = "",
        code: str | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.recoverable = recoverable
        self.user_hint = user_hint
