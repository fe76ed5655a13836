from typing import Optional

from ..port.attachment_store import AttachmentStore
from ..port.completion_client import CompletionClient
from ..port.conversation_log import ConversationLog
from ..port.profile_repository import ProfileRepository
from ..port.status_store import StatusStore
from ..usecase.chat_interaction.context_assembler import ContextAssembler
from ..usecase.chat_interaction.delivery_scheduler import DeliveryScheduler
from ..usecase.chat_interaction.main import ChatInteraction
from ..usecase.chat_interaction.session import SessionRegistry
from .config import Settings
from .snapshot_client import SnapshotCompletionClient
from .tortoise_client.attachment_repository import TortoiseAttachmentStore
from .tortoise_client.conversation_log_repo import TortoiseConversationLog
from .tortoise_client.profile_repository import TortoiseProfileRepository
from .tortoise_client.status_repository import TortoiseStatusStore


class DIContainer:
    """依存性注入コンテナ"""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings
        self._completion_client: Optional[CompletionClient] = None
        self._conversation_log: Optional[ConversationLog] = None
        self._attachment_store: Optional[AttachmentStore] = None
        self._profile_repository: Optional[ProfileRepository] = None
        self._status_store: Optional[StatusStore] = None
        self._sessions: Optional[SessionRegistry] = None
        self._chat_interaction: Optional[ChatInteraction] = None

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = Settings()
        return self._settings

    @property
    def completion_client(self) -> CompletionClient:
        """補完クライアントのシングルトンインスタンスを取得"""
        if self._completion_client is None:
            self._completion_client = SnapshotCompletionClient(
                endpoint=self.settings.completion_endpoint,
                api_key=self.settings.completion_api_key,
                default_model=self.settings.completion_model,
                timeout=self.settings.request_timeout_seconds,
            )
        return self._completion_client

    @property
    def conversation_log(self) -> ConversationLog:
        """会話ログのシングルトンインスタンスを取得（採番ロックを共有するため）"""
        if self._conversation_log is None:
            self._conversation_log = TortoiseConversationLog()
        return self._conversation_log

    @property
    def attachment_store(self) -> AttachmentStore:
        if self._attachment_store is None:
            self._attachment_store = TortoiseAttachmentStore()
        return self._attachment_store

    @property
    def profile_repository(self) -> ProfileRepository:
        if self._profile_repository is None:
            self._profile_repository = TortoiseProfileRepository()
        return self._profile_repository

    @property
    def status_store(self) -> StatusStore:
        if self._status_store is None:
            self._status_store = TortoiseStatusStore()
        return self._status_store

    @property
    def sessions(self) -> SessionRegistry:
        """セッション登録簿のシングルトンインスタンスを取得"""
        if self._sessions is None:
            self._sessions = SessionRegistry(self.settings.status_history_limit)
        return self._sessions

    @property
    def chat_interaction(self) -> ChatInteraction:
        """応答パイプライン全体を組み立てて取得"""
        if self._chat_interaction is None:
            settings = self.settings
            assembler = ContextAssembler(
                self.attachment_store,
                lore_char_budget=settings.lore_char_budget,
                max_context_chars=settings.max_context_chars,
                background_turns=settings.background_turns,
                status_history_limit=settings.status_history_limit,
            )
            scheduler = DeliveryScheduler(
                self.conversation_log,
                base_delay=settings.pacing_base_seconds,
                jitter=settings.pacing_jitter_seconds,
            )
            self._chat_interaction = ChatInteraction(
                conversation_log=self.conversation_log,
                profile_repo=self.profile_repository,
                completion_client=self.completion_client,
                assembler=assembler,
                scheduler=scheduler,
                sessions=self.sessions,
                status_store=self.status_store,
                model=settings.completion_model,
                history_fetch_limit=settings.history_fetch_limit,
            )
        return self._chat_interaction

    async def aclose(self) -> None:
        """保持しているHTTPクライアントを閉じる"""
        if self._completion_client is not None and hasattr(self._completion_client, "aclose"):
            await self._completion_client.aclose()
        self._completion_client = None
        self._chat_interaction = None


# グローバルDIコンテナインスタンス
_container = DIContainer()


def get_chat_interaction() -> ChatInteraction:
    """ChatInteractionを取得"""
    return _container.chat_interaction


def get_profile_repository() -> ProfileRepository:
    """プロファイルリポジトリを取得"""
    return _container.profile_repository


def get_attachment_store() -> AttachmentStore:
    """添付ストアを取得"""
    return _container.attachment_store


def get_container() -> DIContainer:
    """DIコンテナを取得（テスト用）"""
    return _container
