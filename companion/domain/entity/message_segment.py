"""
メッセージセグメントエンティティ

LLMの返信テキストをインラインタグ解析した結果の、配信可能な最小単位。
セグメントは出現順の連番（sequence）を持ち、この順序は保存・配信まで維持されます。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class SegmentKind(str, Enum):
    """セグメント種別"""
    TEXT = "text"
    VOICE_CLIP = "voiceClip"
    MONETARY_GIFT = "monetaryGift"


@dataclass(frozen=True)
class VoiceClip:
    """音声メッセージ（秒数は文字列のまま保持する）"""
    duration_seconds: str
    transcript: str


@dataclass(frozen=True)
class MonetaryGift:
    """紅包（金額は10進文字列のまま保持する）"""
    amount: str
    greeting: str


SegmentPayload = Union[str, VoiceClip, MonetaryGift]


@dataclass(frozen=True)
class MessageSegment:
    """
    配信単位のセグメント

    Attributes:
        kind: セグメント種別
        payload: 種別ごとのペイロード
            - TEXT: str
            - VOICE_CLIP: VoiceClip
            - MONETARY_GIFT: MonetaryGift
        sequence: 元テキスト中での出現順（0始まり）
    """
    kind: SegmentKind
    payload: SegmentPayload
    sequence: int = 0

    @classmethod
    def text(cls, content: str, sequence: int = 0) -> "MessageSegment":
        return cls(SegmentKind.TEXT, content, sequence)

    @classmethod
    def voice(cls, duration_seconds: str, transcript: str, sequence: int = 0) -> "MessageSegment":
        return cls(SegmentKind.VOICE_CLIP, VoiceClip(duration_seconds, transcript), sequence)

    @classmethod
    def gift(cls, amount: str, greeting: str, sequence: int = 0) -> "MessageSegment":
        return cls(SegmentKind.MONETARY_GIFT, MonetaryGift(amount, greeting), sequence)

    def to_event(self) -> dict:
        """会話ログに保存する構造化イベントのペイロードに変換する"""
        if self.kind == SegmentKind.VOICE_CLIP:
            return {"type": "voice", "duration": self.payload.duration_seconds, "text": self.payload.transcript}
        if self.kind == SegmentKind.MONETARY_GIFT:
            return {"type": "red-packet", "amount": self.payload.amount, "greeting": self.payload.greeting}
        raise ValueError("text segments are stored as plain text, not as events")

    @classmethod
    def from_event(cls, event: dict, sequence: int = 0) -> "MessageSegment":
        """構造化イベントのペイロードからセグメントを復元する"""
        event_type = event.get("type")
        if event_type == "voice":
            return cls.voice(str(event.get("duration", "")), str(event.get("text", "")), sequence)
        if event_type == "red-packet":
            return cls.gift(str(event.get("amount", "")), str(event.get("greeting", "")), sequence)
        raise ValueError(f"Unknown event type: {event_type}")
