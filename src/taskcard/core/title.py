"""任务标题候选生成

从消息正文派生短标题：去掉 URL / 提及 / 表情 / 用户组标记与常见寒暄前缀，
取第一句，超过 TITLE_MAX_LENGTH 截断并追加省略号。
"""

import re

from .config import TITLE_MAX_LENGTH

DEFAULT_TITLE = "(task)"

_URL_RE = re.compile(r"https?://\S+")
_USER_MENTION_RE = re.compile(r"<@[A-Z0-9]+>")
_CHANNEL_MENTION_RE = re.compile(r"<#[A-Z0-9]+\|[^>]+>")
_EMOJI_RE = re.compile(r":[a-z0-9_+-]+:", re.IGNORECASE)
_SUBTEAM_RE = re.compile(r"<!subteam\^[A-Z0-9]+(\|[^>]+)?>")
_BRACKETS_RE = re.compile(r"[【】\[\]（）()]")
_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_END_RE = re.compile(r"[\n。！？!?]")
_GREETING_PREFIX_RE = re.compile(
    r"^(すみません|恐縮ですが|お疲れ様です|取り急ぎ|ごめん|失礼|お願い|至急|急ぎ)\s*"
)
_REQUEST_SUFFIX_RE = re.compile(r"(お願いします。?|ください|してもらえますか|して下さい)$")


def generate_title_candidate(text: str | None, max_length: int = TITLE_MAX_LENGTH) -> str:
    """根据正文生成标题候选"""
    if not text:
        return DEFAULT_TITLE

    s = text.replace("\r\n", "\n")
    for pattern in (_URL_RE, _USER_MENTION_RE, _CHANNEL_MENTION_RE, _EMOJI_RE, _SUBTEAM_RE):
        s = pattern.sub("", s)

    # 按第一句截取（在折叠空白之前切分，保留换行作为句界）
    first = next((part for part in _SENTENCE_END_RE.split(s) if part.strip()), s)

    first = _BRACKETS_RE.sub(" ", first)
    first = _WHITESPACE_RE.sub(" ", first).strip()
    first = _GREETING_PREFIX_RE.sub("", first)
    title = _REQUEST_SUFFIX_RE.sub("", first).strip()

    if not title:
        return DEFAULT_TITLE
    if len(title) > max_length:
        title = title[:max_length] + "…"
    return title
