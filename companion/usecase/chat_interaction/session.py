"""
ConversationSession / SessionRegistry - 会話セッションと実行中ターンの管理

責務:
- 会話空間ごとのセッション（状態スナップショット、実行中ターン）の保持
- 参加者ごとに実行中の補完リクエストを1つに制限する

同時実行ポリシー（取り消して置き換え）:
    同じ参加者の新しいターンが開始されると、実行中のターン（どちらの会話空間でも）を
    取り消し、その後片付けを待ってから新しいターンを開始する。
    取り消されたターンの呼び出し元には TurnSupersededError が送出される。
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional, Set, TypeVar

from ...domain.entity.turn_message import ConversationKey
from ...domain.exception.chat_exceptions import TurnSupersededError
from ...infra.logging_config import get_logger
from .status_tracker import StatusTracker

logger = get_logger("pipeline.session")

T = TypeVar("T")


class ConversationSession:
    """
    会話空間ごとのセッション

    Attributes:
        key: 会話ログのキー
        status: 状態スナップショットの保持
        current_task: 実行中のターン（なければNone）
        status_restored: 永続化済みの状態を読み込み済みか
    """

    def __init__(self, key: ConversationKey, status_history_limit: int = 5) -> None:
        self.key = key
        self.status = StatusTracker(status_history_limit)
        self.current_task: Optional[asyncio.Task] = None
        self.status_restored = False

    @property
    def busy(self) -> bool:
        return self.current_task is not None and not self.current_task.done()


class SessionRegistry:
    """セッションの登録簿と、参加者単位の実行中ターン管理"""

    def __init__(self, status_history_limit: int = 5) -> None:
        self.status_history_limit = status_history_limit
        self._sessions: Dict[ConversationKey, ConversationSession] = {}
        self._active: Dict[str, ConversationSession] = {}
        self._superseded: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    def get(self, key: ConversationKey) -> ConversationSession:
        """セッションを取得する（なければ作成）"""
        session = self._sessions.get(key)
        if session is None:
            session = ConversationSession(key, self.status_history_limit)
            self._sessions[key] = session
        return session

    def active_session(self, participant_id: str) -> Optional[ConversationSession]:
        session = self._active.get(participant_id)
        if session is not None and session.busy:
            return session
        return None

    async def cancel(self, participant_id: str) -> bool:
        """
        参加者の実行中ターンを取り消し、終了を待つ

        Returns:
            bool: 取り消したターンがあった場合True
        """
        session = self.active_session(participant_id)
        if session is None or session.current_task is None:
            return False
        task = session.current_task
        self._superseded.add(task)
        task.cancel()
        # 取り消したターンの結果は元の呼び出し元が受け取る
        await asyncio.gather(task, return_exceptions=True)
        logger.info("In-flight turn cancelled", extra={"conversation": str(session.key)})
        return True

    async def run_turn(self, key: ConversationKey, turn: Callable[[ConversationSession], Awaitable[T]]) -> T:
        """
        ターンを実行する（同じ参加者の実行中ターンは取り消して置き換える）

        Args:
            key: 対象の会話ログのキー
            turn: セッションを受け取ってターンを実行するコルーチン関数

        Returns:
            ターンの戻り値

        Raises:
            TurnSupersededError: 実行中に新しいターンで置き換えられた場合
        """
        session = self.get(key)
        async with self._lock:
            await self.cancel(key.participant_id)
            task = asyncio.ensure_future(turn(session))
            session.current_task = task
            self._active[key.participant_id] = session

        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            caller_cancelled = current is not None and current.cancelling() > 0
            if task in self._superseded and not caller_cancelled:
                raise TurnSupersededError(key.participant_id)
            raise
        finally:
            self._superseded.discard(task)
            if session.current_task is task:
                session.current_task = None
            if self._active.get(key.participant_id) is session and session.current_task is None:
                del self._active[key.participant_id]
