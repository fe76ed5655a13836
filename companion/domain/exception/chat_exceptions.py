"""チャット関連の例外クラス"""

from typing import Optional

class ChatException(Exception):
    """チャット関連の基底例外クラス"""
    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code

class TransportError(ChatException):
    """
    補完エンドポイントとの通信失敗

    ユーザーに提示される唯一のエラー種別。自動リトライは行わない。
    """
    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Completion transport error: {reason}", "TRANSPORT_ERROR")
        self.reason = reason
        self.status_code = status_code

class AttachmentMissingError(ChatException):
    """添付ファイルが解決できない場合の例外（プレースホルダーに置換される）"""
    def __init__(self, payload_ref: str):
        super().__init__(f"Attachment not found: {payload_ref}", "ATTACHMENT_MISSING")
        self.payload_ref = payload_ref

class ParticipantNotFoundError(ChatException):
    """参加者設定が見つからない場合の例外"""
    def __init__(self, participant_id: str):
        super().__init__(f"Participant not found: {participant_id}", "PARTICIPANT_NOT_FOUND")
        self.participant_id = participant_id

class InvalidConversationMessageError(ChatException):
    """会話メッセージの内容が不正な場合の例外"""
    def __init__(self, reason: str):
        super().__init__(f"Invalid conversation message: {reason}", "INVALID_MESSAGE")

class TurnSupersededError(ChatException):
    """同じ参加者の新しいターンによって実行中のターンが取り消された場合の例外"""
    def __init__(self, participant_id: str):
        super().__init__(f"Turn superseded by a newer request: {participant_id}", "TURN_SUPERSEDED")
        self.participant_id = participant_id
