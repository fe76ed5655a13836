"""
HistoryService - 履歴管理サービス

責務:
- 会話ログの連続する同一ロールのメッセージをまとめる
- 直近 memoryRounds 往復分の履歴ウィンドウを切り出す
- 末尾の未返信ユーザーメッセージを今回の入力側に回す
"""

from typing import List

from ...domain.entity.turn_message import ConversationTurnMessage, Role

Turn = List[ConversationTurnMessage]


class HistoryService:
    """履歴管理サービス"""

    def group_turns(self, messages: List[ConversationTurnMessage]) -> List[Turn]:
        """
        連続する同一ロールのメッセージを1ターンにまとめる

        次のアシスタント返信までに複数のユーザーメッセージがある場合、
        それらは1つのユーザーターンになります。複数セグメントで配信された
        アシスタント返信も同様に1ターンになります。

        Args:
            messages: 古い順のメッセージ一覧

        Returns:
            List[Turn]: 古い順のターン一覧
        """
        turns: List[Turn] = []
        for message in messages:
            if turns and turns[-1][0].role == message.role:
                turns[-1].append(message)
            else:
                turns.append([message])
        return turns

    def split_pending_user_turn(self, turns: List[Turn]) -> tuple[List[Turn], Turn]:
        """
        末尾の未返信ユーザーターンを切り離す

        Returns:
            (残りのターン, 未返信ユーザーメッセージ)。末尾がユーザーでなければ後者は空。
        """
        if turns and turns[-1][0].role == Role.USER:
            return turns[:-1], turns[-1]
        return turns, []

    def recent_rounds(self, turns: List[Turn], memory_rounds: int) -> List[Turn]:
        """
        直近 memory_rounds 往復分（ユーザー + アシスタント）のターンを返す

        Args:
            turns: 古い順のターン一覧
            memory_rounds: 往復数（0なら履歴を含めない）
        """
        if memory_rounds <= 0:
            return []
        return turns[-memory_rounds * 2:]

    def recent_turns(self, turns: List[Turn], limit: int) -> List[Turn]:
        """直近 limit ターンを返す"""
        if limit <= 0:
            return []
        return turns[-limit:]
