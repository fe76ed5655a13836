"""
プロンプトコンテキストエンティティ

1ターン分のLLM入力として組み立てられる、役割付きコンテンツブロックの順序付き列。
ターンごとに新規作成され、リクエスト完了後に破棄されます（永続化しない）。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from .turn_message import Role


class BlockSource(str, Enum):
    """
    ブロックの出所（優先順位の並びと一致する）
    """
    STYLE = "style"
    LORE = "lore"
    WORLD = "world"
    PERSONA = "persona"
    USER_PERSONA = "user_persona"
    MASK = "mask"
    BACKGROUND = "background"
    STATUS = "status"
    HISTORY = "history"
    INPUT = "input"


# マルチモーダルのパーツ: {"type": "text", "text": ...} / {"type": "image_url", "image_url": {"url": ...}}
ContentPart = dict
BlockContent = Union[str, list[ContentPart]]


@dataclass
class PromptBlock:
    role: Role
    source: BlockSource
    content: BlockContent

    def char_count(self) -> int:
        """文字数予算の計算に使う長さ（画像パーツは数えない）"""
        if isinstance(self.content, str):
            return len(self.content)
        return sum(len(part.get("text", "")) for part in self.content if part.get("type") == "text")

    def to_message(self) -> dict:
        return {"role": self.role.value, "content": self.content}


@dataclass
class PromptContext:
    """
    1ターン分のLLM入力

    Attributes:
        participant_id: 対象参加者のID
        blocks: 優先順位順に並んだブロック
    """
    participant_id: str
    blocks: list[PromptBlock] = field(default_factory=list)

    def to_messages(self) -> list[dict]:
        """送信用の role/content 辞書のリストに変換する"""
        return [block.to_message() for block in self.blocks]

    def total_chars(self) -> int:
        return sum(block.char_count() for block in self.blocks)

    def sources(self) -> list[BlockSource]:
        return [block.source for block in self.blocks]

    def has_user_turn(self) -> bool:
        return any(block.role == Role.USER for block in self.blocks)
