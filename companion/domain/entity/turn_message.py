"""
会話ログに保存されるメッセージエンティティ

このモジュールは、会話ログ（参加者 × 会話空間ごとの追記専用ログ）に
保存される1件分の対話単位を表現するドメインエンティティを提供します。

主要要素:
- Role: メッセージの送信者役割
- ContentKind: メッセージ本文の種別
- ConversationSpace: 同じ参加者が持つ2つの独立した会話空間
- ConversationKey: 会話ログのキー（参加者ID + 会話空間）
- AttachmentRef: 外部ストレージ上の添付ファイルへの参照
- ConversationTurnMessage: 会話ログ上の1メッセージ

設計原則:
- 添付ファイルは参照のみを保持し、バイト列をインラインで持たない
- contentKind ごとに意味を持つフィールドを構築時に検証する
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """
    メッセージの送信者役割

    Values:
        SYSTEM: システムからの制御メッセージ
        USER: ユーザーからのメッセージ
        ASSISTANT: 相手キャラクター（LLM）からのメッセージ
    """
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ContentKind(str, Enum):
    """メッセージ本文の種別"""
    PLAIN_TEXT = "plainText"
    MULTIMODAL = "multimodal"          # テキスト + 画像
    FILE_REFERENCE = "fileReference"   # ドキュメント参照
    STRUCTURED_EVENT = "structuredEvent"  # 音声・紅包などの構造化イベント


class AttachmentKind(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"


class ConversationSpace(str, Enum):
    """
    同一参加者が持つ2つの会話空間

    ペルソナや世界観は共有するが、メッセージログは共有しない。
    """
    PRIMARY = "primary"
    SECONDARY = "secondary"

    def other(self) -> "ConversationSpace":
        """もう一方の会話空間を返す"""
        if self is ConversationSpace.PRIMARY:
            return ConversationSpace.SECONDARY
        return ConversationSpace.PRIMARY


@dataclass(frozen=True)
class ConversationKey:
    """会話ログのキー（参加者ID + 会話空間）"""
    participant_id: str
    space: ConversationSpace

    def counterpart(self) -> "ConversationKey":
        """同じ参加者のもう一方の会話空間のキー"""
        return ConversationKey(self.participant_id, self.space.other())

    def __str__(self) -> str:
        return f"{self.participant_id}:{self.space.value}"


@dataclass(frozen=True)
class AttachmentRef:
    """
    外部の添付ストレージへの参照

    Attributes:
        kind: 画像かドキュメントか
        payload_ref: 添付ストアが解決する不透明な参照文字列
        filename: 表示用のファイル名（任意）
    """
    kind: AttachmentKind
    payload_ref: str
    filename: Optional[str] = None


@dataclass
class ConversationTurnMessage:
    """
    会話ログ上の1メッセージ

    contentKind ごとに意味を持つフィールドが異なります:
        - PLAIN_TEXT: text（添付なし）
        - MULTIMODAL: 画像添付1件以上（text はキャプションとして任意）
        - FILE_REFERENCE: ドキュメント添付1件以上
        - STRUCTURED_EVENT: event（音声・紅包などのペイロード）

    Attributes:
        role: 送信者役割
        content_kind: 本文の種別
        text: テキスト本文
        attachments: 添付参照の順序付きリスト
        event: 構造化イベントのペイロード（"type" キーを含む）
        position: ログ上の位置（保存済みの場合のみ設定）

    Raises:
        ValueError: contentKind とフィールドの組み合わせが不正な場合
    """
    role: Role
    content_kind: ContentKind
    text: Optional[str] = None
    attachments: list[AttachmentRef] = field(default_factory=list)
    event: Optional[dict] = None
    position: Optional[int] = None

    def __post_init__(self) -> None:
        kind = self.content_kind
        if kind == ContentKind.PLAIN_TEXT:
            if self.text is None or self.attachments:
                raise ValueError("plainText message requires text and no attachments")
        elif kind == ContentKind.MULTIMODAL:
            if not any(a.kind == AttachmentKind.IMAGE for a in self.attachments):
                raise ValueError("multimodal message requires at least one image attachment")
        elif kind == ContentKind.FILE_REFERENCE:
            if not any(a.kind == AttachmentKind.DOCUMENT for a in self.attachments):
                raise ValueError("fileReference message requires at least one document attachment")
        elif kind == ContentKind.STRUCTURED_EVENT:
            if not self.event or "type" not in self.event:
                raise ValueError("structuredEvent message requires an event payload with a type")

    @classmethod
    def plain(cls, role: Role, text: str) -> "ConversationTurnMessage":
        return cls(role=role, content_kind=ContentKind.PLAIN_TEXT, text=text)

    @classmethod
    def with_attachments(
        cls,
        role: Role,
        attachments: list[AttachmentRef],
        text: Optional[str] = None
    ) -> "ConversationTurnMessage":
        """添付の種類から contentKind を決めてメッセージを作成する"""
        if any(a.kind == AttachmentKind.IMAGE for a in attachments):
            kind = ContentKind.MULTIMODAL
        else:
            kind = ContentKind.FILE_REFERENCE
        return cls(role=role, content_kind=kind, text=text, attachments=list(attachments))
