"""
FastAPI依存性注入の定義

このモジュールは、FastAPIエンドポイントで使用される依存性注入関数を提供します。
DIコンテナから適切なサービスインスタンスを取得し、FastAPIの依存性システムに
統合するためのアダプターレイヤーとして機能します。

テストでは app.dependency_overrides でこれらの関数を差し替えます。
"""

from ..config import Settings
from ..di import get_attachment_store, get_chat_interaction, get_container, get_profile_repository
from ...port.attachment_store import AttachmentStore
from ...port.profile_repository import ProfileRepository
from ...usecase.chat_interaction.main import ChatInteraction


def get_chat_interaction_dependency() -> ChatInteraction:
    """
    ChatInteractionの依存性を取得

    セッション登録簿を共有する必要があるため、DIコンテナのシングルトンを返します。

    Returns:
        ChatInteraction: 応答パイプライン
    """
    return get_chat_interaction()


def get_profile_repository_dependency() -> ProfileRepository:
    """
    プロファイルリポジトリの依存性を取得

    Returns:
        ProfileRepository: 参加者設定と世界観データのアクセスインスタンス
    """
    return get_profile_repository()


def get_attachment_store_dependency() -> AttachmentStore:
    """
    添付ストアの依存性を取得

    Returns:
        AttachmentStore: 添付ストアインスタンス
    """
    return get_attachment_store()


def get_settings_dependency() -> Settings:
    """アプリケーション設定を取得"""
    return get_container().settings
