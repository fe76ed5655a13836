"""
チャットインタラクション管理ユースケース

このモジュールは、ユーザーと相手キャラクター（LLM）との1ターン分の応答パイプラインを
統合的に管理する中核的なユースケースを提供します。

パイプライン:
    ContextAssembler → StreamingService → EnvelopeDecoder
    → InlineTagParser → DeliveryScheduler

主要機能:
- ユーザーメッセージの投稿
- 応答の要求（コンテキスト組み立てから配信まで）
- 会話履歴の取得
- 実行中ターンの取り消し

アーキテクチャ:
- ドメイン層のエンティティを操作
- ポート層のインターフェースを介してインフラにアクセス
- 会話ログへの書き込みは DeliveryScheduler に一任
"""

from dataclasses import dataclass, field
from typing import List, Optional

from ...domain.entity.participant import ParticipantProfile
from ...domain.entity.reply_envelope import ReplyEnvelope
from ...domain.entity.turn_message import (
    AttachmentRef,
    ConversationKey,
    ConversationTurnMessage,
    Role,
)
from ...domain.exception.chat_exceptions import (
    InvalidConversationMessageError,
    ParticipantNotFoundError,
)
from ...infra.logging_config import get_logger
from ...port.completion_client import CompletionClient
from ...port.conversation_log import ConversationLog
from ...port.profile_repository import ProfileRepository
from ...port.status_store import StatusStore
from .context_assembler import AssemblyRequest, ContextAssembler
from .delivery_scheduler import DeliveredSegment, DeliveryScheduler, SegmentEmitter
from .envelope_decoder import EnvelopeDecoder
from .inline_tag_parser import InlineTagParser
from .session import ConversationSession, SessionRegistry
from .streaming_service import StreamingService

logger = get_logger("pipeline")


@dataclass
class TurnResult:
    """
    1ターンの結果

    Attributes:
        envelope: デコードされた返信エンベロープ
        delivered: 配信済みのセグメント（保存順）
    """
    envelope: ReplyEnvelope
    delivered: List[DeliveredSegment] = field(default_factory=list)


def _discard(_: DeliveredSegment) -> None:
    pass


class ChatInteraction:
    """
    応答パイプラインを管理するユースケースクラス

    Attributes:
        conversation_log (ConversationLog): 会話ログ（読み取りのみ）
        profile_repo (ProfileRepository): 参加者設定の取得
        completion_client (CompletionClient): 補完エンドポイントとの通信
        assembler (ContextAssembler): コンテキスト組み立て
        decoder (EnvelopeDecoder): エンベロープのデコード
        tag_parser (InlineTagParser): インラインタグの解析
        scheduler (DeliveryScheduler): 保存と配信
        sessions (SessionRegistry): セッションと実行中ターンの管理
        status_store (StatusStore): 状態スナップショットの永続化（Noneならメモリ上のみ）
    """

    def __init__(
        self,
        conversation_log: ConversationLog,
        profile_repo: ProfileRepository,
        completion_client: CompletionClient,
        assembler: ContextAssembler,
        scheduler: DeliveryScheduler,
        sessions: SessionRegistry,
        decoder: Optional[EnvelopeDecoder] = None,
        tag_parser: Optional[InlineTagParser] = None,
        status_store: Optional[StatusStore] = None,
        model: Optional[str] = None,
        history_fetch_limit: int = 200
    ) -> None:
        self.conversation_log = conversation_log
        self.profile_repo = profile_repo
        self.completion_client = completion_client
        self.assembler = assembler
        self.scheduler = scheduler
        self.sessions = sessions
        self.decoder = decoder or EnvelopeDecoder()
        self.tag_parser = tag_parser or InlineTagParser()
        self.model = model
        self.history_fetch_limit = history_fetch_limit
        self.status_store = status_store

    async def post_user_message(
        self,
        key: ConversationKey,
        text: Optional[str] = None,
        attachments: Optional[List[AttachmentRef]] = None
    ) -> ConversationTurnMessage:
        """
        ユーザーメッセージを会話ログに保存する（応答は要求しない）

        Args:
            key: 対象の会話ログのキー
            text: メッセージ本文
            attachments: 添付参照

        Returns:
            ConversationTurnMessage: 位置が設定された保存済みメッセージ

        Raises:
            InvalidConversationMessageError: 本文も添付もない場合
        """
        message = self._build_user_message(text, attachments)
        if message is None:
            raise InvalidConversationMessageError("message requires text or attachments")
        await self.scheduler.record_user_message(key, message)
        return message

    async def request_reply(
        self,
        key: ConversationKey,
        user_input: str = "",
        attachments: Optional[List[AttachmentRef]] = None,
        emit: Optional[SegmentEmitter] = None,
        session_id: Optional[str] = None
    ) -> TurnResult:
        """
        相手キャラクターの応答を生成し、セグメントとして配信する

        同じ参加者の実行中ターンがある場合は取り消して置き換えます。

        Args:
            key: 対象の会話ログのキー
            user_input: 今回のユーザー入力（空の場合は既存の履歴に対して応答する）
            attachments: 今回の入力の添付参照
            emit: セグメント配信時に呼ばれるコールバック
            session_id: 補完エンドポイントに渡すセッションID

        Returns:
            TurnResult: エンベロープと配信済みセグメント

        Raises:
            ParticipantNotFoundError: 参加者設定が存在しない場合
            TransportError: 補完エンドポイントとの通信に失敗した場合
            TurnSupersededError: 新しいターンで置き換えられた場合
        """
        async def turn(session: ConversationSession) -> TurnResult:
            return await self._run_turn(
                session,
                user_input=user_input or "",
                attachments=list(attachments or []),
                emit=emit or _discard,
                session_id=session_id or f"{key.participant_id}-{key.space.value}",
            )

        return await self.sessions.run_turn(key, turn)

    async def cancel_reply(self, participant_id: str) -> bool:
        """参加者の実行中ターンを取り消す"""
        return await self.sessions.cancel(participant_id)

    async def get_history(self, key: ConversationKey, limit: int = 50) -> List[ConversationTurnMessage]:
        """会話ログの末尾 limit 件を古い順で返す"""
        return await self.conversation_log.read_last(key, limit)

    async def _run_turn(
        self,
        session: ConversationSession,
        user_input: str,
        attachments: List[AttachmentRef],
        emit: SegmentEmitter,
        session_id: str
    ) -> TurnResult:
        key = session.key
        profile = await self._load_profile(key.participant_id)
        await self._restore_status(session)

        history = await self.conversation_log.read_last(key, self.history_fetch_limit)
        other_history = await self.conversation_log.read_last(key.counterpart(), self.history_fetch_limit)
        request = await self._build_assembly_request(profile, history, other_history, session)
        request.user_input = user_input
        request.input_attachments = attachments

        context = await self.assembler.assemble(request)

        user_message = self._build_user_message(user_input, attachments)
        if user_message is not None:
            await self.scheduler.record_user_message(key, user_message)

        transport = StreamingService(self.completion_client, self.model)
        raw_text = await transport.stream_completion(context, session_id)

        envelope = self.decoder.decode(raw_text)
        session.status.record(envelope.status_data)
        if self.status_store is not None and envelope.status_data is not None:
            await self.status_store.append(key, envelope.status_data)
        segments = self.tag_parser.parse(envelope.chat_reply_text)

        delivered = await self.scheduler.deliver(key, segments, emit)
        logger.info(
            "Turn completed",
            extra={
                "conversation": str(key),
                "segments": len(delivered),
                "has_status": envelope.status_data is not None,
            }
        )
        return TurnResult(envelope=envelope, delivered=delivered)

    async def _restore_status(self, session: ConversationSession) -> None:
        if session.status_restored or self.status_store is None:
            return
        snapshots = await self.status_store.load_recent(session.key, session.status.history_limit + 1)
        session.status.restore(snapshots)
        session.status_restored = True

    async def _load_profile(self, participant_id: str) -> ParticipantProfile:
        profile = await self.profile_repo.get_profile(participant_id)
        if profile is None:
            raise ParticipantNotFoundError(participant_id)
        return profile

    async def _build_assembly_request(
        self,
        profile: ParticipantProfile,
        history: List[ConversationTurnMessage],
        other_history: List[ConversationTurnMessage],
        session: ConversationSession
    ) -> AssemblyRequest:
        lore_entries = await self.profile_repo.get_lore_entries(profile.lore_ids) if profile.lore_ids else []
        world = await self.profile_repo.get_world(profile.world_id) if profile.world_id else None
        world_lore = []
        if world is not None and world.lore_ids:
            world_lore = await self.profile_repo.get_lore_entries(list(world.lore_ids))
        masks = await self.profile_repo.get_masks(profile.mask_ids) if profile.mask_ids else []

        return AssemblyRequest(
            profile=profile,
            history=history,
            other_space_history=other_history,
            lore_entries=lore_entries,
            world=world,
            world_lore=world_lore,
            masks=masks,
            live_status=session.status.live,
            status_history=session.status.history,
        )

    @staticmethod
    def _build_user_message(
        text: Optional[str],
        attachments: Optional[List[AttachmentRef]]
    ) -> Optional[ConversationTurnMessage]:
        text = text if text and text.strip() else None
        if attachments:
            try:
                return ConversationTurnMessage.with_attachments(Role.USER, attachments, text)
            except ValueError as e:
                raise InvalidConversationMessageError(str(e)) from e
        if text is None:
            return None
        return ConversationTurnMessage.plain(Role.USER, text)
