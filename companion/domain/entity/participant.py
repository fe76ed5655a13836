"""
参加者設定エンティティ

コンテキスト組み立てに必要な、相手キャラクターのペルソナ、ユーザーペルソナ、
世界観（ワールド設定・設定資料）、仮面（重ね掛けペルソナ）を表現します。
"""

from dataclasses import dataclass, field
from typing import Optional


DEFAULT_MEMORY_ROUNDS = 10


@dataclass(frozen=True)
class LoreEntry:
    """世界観の設定資料1件（id で重複排除される）"""
    id: str
    title: str
    content: str


@dataclass(frozen=True)
class WorldSetting:
    """アクティブな世界設定"""
    id: str
    name: str
    description: str
    lore_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Persona:
    """相手キャラクターのペルソナとシステム指示"""
    name: str
    description: str = ""
    system_prompt: str = ""


@dataclass(frozen=True)
class UserPersona:
    name: str
    description: str = ""


@dataclass(frozen=True)
class Mask:
    """参加者に重ねて適用するオーバーレイペルソナ"""
    id: str
    name: str
    description: str


@dataclass
class ParticipantProfile:
    """
    参加者（相手キャラクター）の設定

    Attributes:
        participant_id: 参加者ID
        persona: 相手キャラクターのペルソナ
        user_persona: ユーザー側のペルソナ（任意）
        style_directives: 口調・振る舞いに関する指示
        lore_ids: バインドされた設定資料のID（順序を保持）
        world_id: アクティブな世界設定のID
        mask_ids: 適用する仮面のID
        memory_rounds: プロンプトに含める直近の往復数
    """
    participant_id: str
    persona: Persona
    user_persona: Optional[UserPersona] = None
    style_directives: list[str] = field(default_factory=list)
    lore_ids: list[str] = field(default_factory=list)
    world_id: Optional[str] = None
    mask_ids: list[str] = field(default_factory=list)
    memory_rounds: int = DEFAULT_MEMORY_ROUNDS

    def __post_init__(self) -> None:
        if self.memory_rounds < 0:
            raise ValueError("memory_rounds must not be negative")
