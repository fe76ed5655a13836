from typing import Protocol

from ..domain.entity.turn_message import ConversationKey

class StatusStore(Protocol):
    """状態スナップショットの永続化インターフェース"""

    async def load_recent(self, key: ConversationKey, limit: int) -> list[dict]:
        """
        直近 limit 件のスナップショットを古い順で取得する（末尾が最新）

        Args:
            key: 会話ログのキー
            limit: 取得件数

        Returns:
            list[dict]: 状態スナップショット
        """

    async def append(self, key: ConversationKey, status_data: dict) -> None:
        """スナップショットを1件追記する"""
