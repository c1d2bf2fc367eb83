"""线程卡片 upsert

每条来源消息至多一张卡片：(team_id, channel_id, message_ts) 已有映射时原地更新，
否则在会话根消息的线程中发布并记录映射。卡片被删除后不会重新发布。
"""

import structlog

from taskcard.chat import (
    ChatClient,
    ChatPlatformError,
    MessageNotFoundError,
    NotInChannelError,
)
from taskcard.core.errors import UpstreamUnavailableError
from taskcard.core.models import Task, ThreadCard
from taskcard.core.store.protocols import ThreadCardStore

from .presentation import PresentationPort

log = structlog.get_logger()

NOT_IN_CHANNEL_HINT = (
    "The bot is not a member of this channel, so the task card could not be posted. "
    "Invite it with /invite and try again."
)
STALE_CARD_HINT = "The task card in this thread was deleted and will not be posted again."


def is_direct_message(channel_id: str) -> bool:
    return channel_id.startswith("D")


class ThreadCardService:
    """线程卡片服务"""

    def __init__(
        self,
        card_store: ThreadCardStore,
        chat: ChatClient,
        presentation: PresentationPort,
    ) -> None:
        self._cards = card_store
        self._chat = chat
        self._presentation = presentation

    async def refresh(self, task: Task) -> ThreadCard | None:
        """发布或更新任务卡片

        Returns:
            卡片映射；私聊来源或无来源消息的任务返回 None

        Raises:
            UpstreamUnavailableError: 平台调用失败（user_hint 给出用户提示）
        """
        key = task.card_key
        if key is None:
            log.debug("thread_card_skipped", task_id=task.task_id, reason="no_source_message")
            return None
        team_id, channel_id, message_ts = key
        if is_direct_message(channel_id):
            log.debug("thread_card_skipped", task_id=task.task_id, reason="direct_message")
            return None

        content = self._presentation.render_card(task)
        existing = await self._cards.get_card(team_id, channel_id, message_ts)

        try:
            if existing is not None:
                await self._chat.update_message(
                    channel_id,
                    existing.card_ts,
                    content.text,
                    content.blocks,
                )
                log.debug("thread_card_updated", task_id=task.task_id, card_ts=existing.card_ts)
                return await self._cards.upsert_card(
                    team_id, channel_id, message_ts, existing.card_ts
                )

            posted = await self._chat.post_message(
                channel_id,
                content.text,
                content.blocks,
                thread_ts=task.thread_ts or message_ts,
            )
        except NotInChannelError as e:
            log.warning("thread_card_not_in_channel", task_id=task.task_id, channel_id=channel_id)
            raise UpstreamUnavailableError(
                f"Bot is not in channel {channel_id}",
                recoverable=True,
                user_hint=NOT_IN_CHANNEL_HINT,
                code="NOT_IN_CHANNEL",
            ) from e
        except MessageNotFoundError as e:
            log.warning(
                "thread_card_stale",
                task_id=task.task_id,
                card_ts=existing.card_ts if existing else None,
            )
            raise UpstreamUnavailableError(
                f"Thread card for task {task.task_id} no longer exists",
                recoverable=False,
                user_hint=STALE_CARD_HINT,
                code="THREAD_CARD_STALE",
            ) from e
        except ChatPlatformError as e:
            log.error(
                "thread_card_post_failed",
                task_id=task.task_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise UpstreamUnavailableError(
                f"Failed to publish thread card: {e}",
                recoverable=e.recoverable,
            ) from e

        log.info("thread_card_posted", task_id=task.task_id, card_ts=posted.ts)
        return await self._cards.upsert_card(team_id, channel_id, message_ts, posted.ts)
