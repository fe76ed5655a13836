"""
DeliveryScheduler - セグメント配信スケジューラー

責務:
- セグメントを順番に会話ログへ保存し、即座に配信する
- セグメント間に揺らぎ付きの待機を挟み、自然な送信間隔を再現する
- ユーザーメッセージの保存（会話ログへの書き込みはこのクラスだけが行う）

配信は厳密に逐次で、保存順と配信順は常に一致します。
キャンセルされた場合、保存済みのセグメントは残り、未配信のものは破棄されます。
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from ...domain.entity.message_segment import MessageSegment, SegmentKind
from ...domain.entity.turn_message import ContentKind, ConversationKey, ConversationTurnMessage, Role
from ...infra.logging_config import get_logger
from ...port.conversation_log import ConversationLog

logger = get_logger("pipeline.delivery")


@dataclass(frozen=True)
class DeliveredSegment:
    """配信済みセグメント（会話ログ上の位置付き）"""
    key: ConversationKey
    position: int
    segment: MessageSegment
    message: ConversationTurnMessage


SegmentEmitter = Callable[[DeliveredSegment], None]


def segment_to_turn_message(segment: MessageSegment) -> ConversationTurnMessage:
    """セグメントを会話ログ用のアシスタントメッセージに変換する"""
    if segment.kind == SegmentKind.TEXT:
        return ConversationTurnMessage.plain(Role.ASSISTANT, str(segment.payload))
    return ConversationTurnMessage(
        role=Role.ASSISTANT,
        content_kind=ContentKind.STRUCTURED_EVENT,
        event=segment.to_event(),
    )


class DeliveryScheduler:
    """セグメント配信スケジューラー"""

    def __init__(
        self,
        conversation_log: ConversationLog,
        base_delay: float = 0.4,
        jitter: float = 0.2,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Args:
            conversation_log: 会話ログ
            base_delay: セグメント間の基本待機秒数
            jitter: 基本待機に加える最大揺らぎ秒数
            sleep: 待機関数（テスト用の差し替え）
            rng: 揺らぎ用の乱数生成器
        """
        self.conversation_log = conversation_log
        self.base_delay = base_delay
        self.jitter = jitter
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    def pacing_interval(self) -> float:
        """次のセグメントまでの待機秒数"""
        return self.base_delay + self._rng.uniform(0, self.jitter)

    async def record_user_message(self, key: ConversationKey, message: ConversationTurnMessage) -> int:
        """
        ユーザーメッセージを会話ログに保存する

        Returns:
            int: 保存位置
        """
        if message.role != Role.USER:
            raise ValueError("record_user_message only accepts user messages")
        position = await self.conversation_log.append(key, message)
        message.position = position
        logger.debug("User message recorded", extra={"conversation": str(key), "position": position})
        return position

    async def deliver(
        self,
        key: ConversationKey,
        segments: List[MessageSegment],
        emit: SegmentEmitter
    ) -> List[DeliveredSegment]:
        """
        セグメントを順番に保存・配信する

        Args:
            key: 配信先の会話ログのキー
            segments: 出現順のセグメント
            emit: 保存直後に同期的に呼ばれる配信コールバック

        Returns:
            List[DeliveredSegment]: 配信済みのセグメント（保存順）
        """
        delivered: List[DeliveredSegment] = []
        ordered = sorted(segments, key=lambda s: s.sequence)
        for index, segment in enumerate(ordered):
            if index > 0:
                await self._sleep(self.pacing_interval())
            # 保存と配信は1ステップとして扱い、途中でキャンセルされても分断しない
            step = asyncio.ensure_future(self._persist_and_emit(key, segment, emit))
            try:
                item = await asyncio.shield(step)
            except asyncio.CancelledError:
                # 実行中のステップが終わるまでターンの取り消しを完了させない
                await asyncio.wait({step})
                if not step.cancelled() and step.exception() is not None:
                    logger.error(
                        "Segment delivery failed during cancellation",
                        extra={"conversation": str(key), "error": str(step.exception())}
                    )
                raise
            delivered.append(item)

        logger.info(
            "Segments delivered",
            extra={"conversation": str(key), "count": len(delivered)}
        )
        return delivered

    async def _persist_and_emit(
        self,
        key: ConversationKey,
        segment: MessageSegment,
        emit: SegmentEmitter
    ) -> DeliveredSegment:
        message = segment_to_turn_message(segment)
        position = await self.conversation_log.append(key, message)
        message.position = position
        item = DeliveredSegment(key=key, position=position, segment=segment, message=message)
        emit(item)
        return item
