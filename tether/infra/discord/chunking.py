"""消息分片：按平台单条消息上限切分长文本并保持顺序。"""

from __future__ import annotations

DISCORD_MAX_MESSAGE_LENGTH = 2000


def split_message(content: str, limit: int = DISCORD_MAX_MESSAGE_LENGTH) -> list[str]:
    """优先在换行处切分，其次空格，最后按上限硬切。

    切分点必须落在上限一半之后，避免产生过短分片。
    """
    chunks: list[str] = []
    remaining = content
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break

        split_at = remaining.rfind("\n", 0, limit + 1)
        if split_at < limit // 2:
            split_at = remaining.rfind(" ", 0, limit + 1)
        if split_at < limit // 2:
            split_at = limit

        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].strip()
    return chunks
