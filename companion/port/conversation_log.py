from typing import Protocol

from ..domain.entity.turn_message import ConversationKey, ConversationTurnMessage

class ConversationLog(Protocol):
    """
    会話ログ（参加者 × 会話空間ごとの追記専用ログ）のインターフェース

    書き込みはセグメント配信スケジューラーだけが行う。
    """

    async def read_last(self, key: ConversationKey, k: int) -> list[ConversationTurnMessage]:
        """
        末尾 k 件を古い順で取得する

        Args:
            key: 会話ログのキー
            k: 取得件数

        Returns:
            list[ConversationTurnMessage]: position が設定されたメッセージ（古い順）
        """

    async def append(self, key: ConversationKey, message: ConversationTurnMessage) -> int:
        """
        1件追記し、その位置を返す

        Args:
            key: 会話ログのキー
            message: 追記するメッセージ

        Returns:
            int: 追記したメッセージの位置（0始まり）
        """
