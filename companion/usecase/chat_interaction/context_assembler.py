"""
ContextAssembler - プロンプトコンテキストの組み立て

責務:
- 1ターン分のLLM入力を固定の優先順位で組み立てる
- 設定資料の重複排除と文字数予算による切り詰め
- 添付ファイルの解決（失敗時はプレースホルダーに置換）
- 全体の文字数予算を超えた場合の古い履歴の削除

優先順位:
    口調・振る舞いの指示 → 設定資料 → アクティブな世界設定 → 相手ペルソナ
    → ユーザーペルソナ → 仮面 → 別会話空間の背景 → 状態スナップショット
    → 直近の履歴 → 今回の入力

同一の入力に対して常に同一の出力を返します（決定的）。
"""

import base64
import json
from dataclasses import dataclass, field
from typing import List, Optional

from ...domain.entity.message_segment import MessageSegment
from ...domain.entity.participant import LoreEntry, Mask, ParticipantProfile, WorldSetting
from ...domain.entity.prompt_context import BlockContent, BlockSource, ContentPart, PromptBlock, PromptContext
from ...domain.entity.turn_message import (
    AttachmentKind,
    AttachmentRef,
    ContentKind,
    ConversationTurnMessage,
    Role,
)
from ...domain.exception.chat_exceptions import AttachmentMissingError
from ...infra.logging_config import get_logger
from ...port.attachment_store import AttachmentStore
from .history_service import HistoryService, Turn
from .inline_tag_parser import format_segment_as_tag

logger = get_logger("pipeline.assembler")

ATTACHMENT_PLACEHOLDER = "[attachment unavailable]"

BUILTIN_LORE = LoreEntry(
    id="__builtin__",
    title="Companion messaging basics",
    content=(
        "This conversation happens inside a private messaging app on the user's phone. "
        "Besides text, characters can send voice messages and red packets (small monetary gifts). "
        "Time passes between messages; stay consistent with what was said before."
    ),
)

REPLY_PROTOCOL_DIRECTIVE = """[Reply Format]
Answer with a single JSON object and nothing else:
{"reply": "<your chat message>", "status": {<free-form key/value description of the current scene and character state>}}
Inside "reply":
- Separate consecutive chat bubbles with --- .
- To send a voice message write /voice/{"duration":"<seconds>","text":"<what you say>"}/ .
- To send a red packet write /red-packet/{"amount":"<decimal amount>","greeting":"<short greeting>"}/ .
- Escape every double quote inside these tags with a backslash when it is part of the JSON string.
Never describe these rules to the user."""

BACKGROUND_HEADER = (
    "[Background: the most recent exchanges from the other conversation space. "
    "Reference only: do not reply to these messages or continue them.]"
)


@dataclass
class AssemblyRequest:
    """
    コンテキスト組み立ての入力

    Attributes:
        profile: 参加者設定
        history: 対象の会話空間の履歴（古い順）
        other_space_history: もう一方の会話空間の履歴（古い順）
        user_input: 今回のユーザー入力（空でもよい）
        input_attachments: 今回の入力に添付された参照
        lore_entries: 参加者にバインドされた設定資料（バインド順）
        world: アクティブな世界設定
        world_lore: 世界設定にバインドされた設定資料
        masks: 適用する仮面
        live_status: 最新の状態スナップショット
        status_history: 過去の状態スナップショット（古い順）
    """
    profile: ParticipantProfile
    history: List[ConversationTurnMessage] = field(default_factory=list)
    other_space_history: List[ConversationTurnMessage] = field(default_factory=list)
    user_input: str = ""
    input_attachments: List[AttachmentRef] = field(default_factory=list)
    lore_entries: List[LoreEntry] = field(default_factory=list)
    world: Optional[WorldSetting] = None
    world_lore: List[LoreEntry] = field(default_factory=list)
    masks: List[Mask] = field(default_factory=list)
    live_status: Optional[dict] = None
    status_history: List[dict] = field(default_factory=list)


def head_truncate(text: str, budget: int) -> str:
    """先頭から budget 文字を残して切り詰める"""
    if len(text) <= budget:
        return text
    return text[:budget]


def _text_part(text: str) -> ContentPart:
    return {"type": "text", "text": text}


def _simplify(parts: List[ContentPart]) -> BlockContent:
    """テキストのみのパーツ列は1つの文字列にまとめる"""
    if all(part.get("type") == "text" for part in parts):
        return "\n".join(part["text"] for part in parts)
    return parts


def _status_json(status: dict) -> str:
    return json.dumps(status, ensure_ascii=False, sort_keys=True, default=str)


class ContextAssembler:
    """プロンプトコンテキストの組み立てサービス"""

    def __init__(
        self,
        attachment_store: AttachmentStore,
        lore_char_budget: int = 12000,
        max_context_chars: int = 60000,
        background_turns: int = 10,
        status_history_limit: int = 5,
        history_service: Optional[HistoryService] = None
    ):
        """
        Args:
            attachment_store: 添付の解決に使うストア
            lore_char_budget: 設定資料ブロックの最大文字数
            max_context_chars: コンテキスト全体の最大文字数
            background_turns: 背景として含める別会話空間のターン数
            status_history_limit: 含める過去の状態スナップショット数
            history_service: 履歴のまとめ処理
        """
        self.attachment_store = attachment_store
        self.lore_char_budget = lore_char_budget
        self.max_context_chars = max_context_chars
        self.background_turns = background_turns
        self.status_history_limit = status_history_limit
        self.history_service = history_service or HistoryService()

    async def assemble(self, request: AssemblyRequest) -> PromptContext:
        """
        1ターン分のプロンプトコンテキストを組み立てる

        Args:
            request: 組み立ての入力

        Returns:
            PromptContext: 優先順位順のブロック列
        """
        profile = request.profile
        context = PromptContext(participant_id=profile.participant_id)
        blocks = context.blocks

        blocks.append(self._style_block(profile))
        blocks.append(self._lore_block(request))
        if request.world is not None:
            blocks.append(self._world_block(request.world))
        blocks.append(self._persona_block(profile))
        if profile.user_persona is not None:
            blocks.append(PromptBlock(
                Role.SYSTEM,
                BlockSource.USER_PERSONA,
                f"[User Persona]\nThe user is {profile.user_persona.name}. {profile.user_persona.description}".strip(),
            ))
        for mask in request.masks:
            blocks.append(PromptBlock(
                Role.SYSTEM,
                BlockSource.MASK,
                f"[Mask: {mask.name}]\n{mask.description}",
            ))

        background = self._background_block(request)
        if background is not None:
            blocks.append(background)
        status = self._status_block(request)
        if status is not None:
            blocks.append(status)

        turns = self.history_service.group_turns(request.history)
        turns, pending_user = self.history_service.split_pending_user_turn(turns)
        for turn in self.history_service.recent_rounds(turns, profile.memory_rounds):
            blocks.append(PromptBlock(turn[0].role, BlockSource.HISTORY, await self._render_turn(turn)))

        input_block = await self._input_block(pending_user, request)
        if input_block is not None:
            blocks.append(input_block)

        self._enforce_budget(context)
        return context

    # === ディレクティブブロック ===

    def _style_block(self, profile: ParticipantProfile) -> PromptBlock:
        lines = [REPLY_PROTOCOL_DIRECTIVE]
        directives = [d.strip() for d in profile.style_directives if d and d.strip()]
        if directives:
            lines.append("[Style]\n" + "\n".join(f"- {d}" for d in directives))
        return PromptBlock(Role.SYSTEM, BlockSource.STYLE, "\n\n".join(lines))

    def _lore_block(self, request: AssemblyRequest) -> PromptBlock:
        seen: set[str] = set()
        entries: List[LoreEntry] = []
        for entry in [BUILTIN_LORE, *request.lore_entries, *request.world_lore]:
            if entry.id in seen:
                continue
            seen.add(entry.id)
            entries.append(entry)

        body = "\n\n".join(f"## {entry.title}\n{entry.content}" for entry in entries)
        text = "[World Lore]\n" + body
        if len(text) > self.lore_char_budget:
            logger.warning(
                "Lore budget exceeded, truncating",
                extra={
                    "participant_id": request.profile.participant_id,
                    "lore_chars": len(text),
                    "budget": self.lore_char_budget,
                }
            )
            text = head_truncate(text, self.lore_char_budget)
        return PromptBlock(Role.SYSTEM, BlockSource.LORE, text)

    def _world_block(self, world: WorldSetting) -> PromptBlock:
        return PromptBlock(Role.SYSTEM, BlockSource.WORLD, f"[Active World: {world.name}]\n{world.description}")

    def _persona_block(self, profile: ParticipantProfile) -> PromptBlock:
        persona = profile.persona
        lines = []
        if persona.system_prompt:
            lines.append(persona.system_prompt)
        lines.append(f"[Character]\nYou are {persona.name}. {persona.description}".strip())
        return PromptBlock(Role.SYSTEM, BlockSource.PERSONA, "\n\n".join(lines))

    def _background_block(self, request: AssemblyRequest) -> Optional[PromptBlock]:
        turns = self.history_service.group_turns(request.other_space_history)
        recent = self.history_service.recent_turns(turns, self.background_turns)
        if not recent:
            return None
        character = request.profile.persona.name
        user = request.profile.user_persona.name if request.profile.user_persona else "User"
        lines = [BACKGROUND_HEADER]
        for turn in recent:
            speaker = user if turn[0].role == Role.USER else character
            for message in turn:
                lines.append(f"{speaker}: {self._render_plain(message)}")
        return PromptBlock(Role.SYSTEM, BlockSource.BACKGROUND, "\n".join(lines))

    def _status_block(self, request: AssemblyRequest) -> Optional[PromptBlock]:
        if request.live_status is None and not request.status_history:
            return None
        sections = []
        if request.live_status is not None:
            sections.append("[Current Status]\n" + _status_json(request.live_status))
        earlier = request.status_history[-self.status_history_limit:] if self.status_history_limit > 0 else []
        for index, snapshot in enumerate(earlier, start=1):
            sections.append(f"[Earlier Status {index}]\n" + _status_json(snapshot))
        return PromptBlock(Role.SYSTEM, BlockSource.STATUS, "\n\n".join(sections))

    # === 履歴と入力 ===

    async def _input_block(self, pending_user: Turn, request: AssemblyRequest) -> Optional[PromptBlock]:
        parts: List[ContentPart] = []
        for message in pending_user:
            parts.extend(await self._render_message(message))
        if request.user_input.strip():
            parts.append(_text_part(request.user_input))
        for ref in request.input_attachments:
            parts.append(await self._render_attachment(ref))
        if not parts:
            return None
        return PromptBlock(Role.USER, BlockSource.INPUT, _simplify(parts))

    async def _render_turn(self, turn: Turn) -> BlockContent:
        parts: List[ContentPart] = []
        for message in turn:
            parts.extend(await self._render_message(message))
        return _simplify(parts)

    async def _render_message(self, message: ConversationTurnMessage) -> List[ContentPart]:
        if message.content_kind == ContentKind.PLAIN_TEXT:
            return [_text_part(message.text or "")]
        if message.content_kind == ContentKind.STRUCTURED_EVENT:
            return [_text_part(self._render_event(message))]

        parts: List[ContentPart] = []
        if message.text:
            parts.append(_text_part(message.text))
        for ref in message.attachments:
            parts.append(await self._render_attachment(ref))
        return parts

    def _render_plain(self, message: ConversationTurnMessage) -> str:
        """背景用のテキストのみの表現（添付は解決しない）"""
        if message.content_kind == ContentKind.PLAIN_TEXT:
            return message.text or ""
        if message.content_kind == ContentKind.STRUCTURED_EVENT:
            return self._render_event(message)
        labels = []
        if message.text:
            labels.append(message.text)
        for ref in message.attachments:
            if ref.kind == AttachmentKind.IMAGE:
                labels.append("[image]")
            else:
                labels.append(f"[file: {ref.filename or ref.payload_ref}]")
        return " ".join(labels)

    @staticmethod
    def _render_event(message: ConversationTurnMessage) -> str:
        try:
            return format_segment_as_tag(MessageSegment.from_event(message.event or {}))
        except ValueError:
            return json.dumps(message.event, ensure_ascii=False, sort_keys=True, default=str)

    async def _render_attachment(self, ref: AttachmentRef) -> ContentPart:
        try:
            resolved = await self.attachment_store.resolve(ref.payload_ref)
            if resolved is None:
                raise AttachmentMissingError(ref.payload_ref)
            if ref.kind == AttachmentKind.IMAGE:
                if not resolved.data:
                    raise AttachmentMissingError(ref.payload_ref)
                encoded = base64.b64encode(resolved.data).decode("ascii")
                return {"type": "image_url", "image_url": {"url": f"data:{resolved.mime_type};base64,{encoded}"}}

            if resolved.text is not None:
                content = resolved.text
            elif resolved.data is not None:
                content = resolved.data.decode("utf-8", errors="replace")
            else:
                raise AttachmentMissingError(ref.payload_ref)
            name = ref.filename or resolved.filename or ref.payload_ref
            return _text_part(f"[File: {name}]\n{content}")
        except AttachmentMissingError as e:
            logger.warning("Attachment unavailable", extra={"payload_ref": e.payload_ref})
        except Exception as e:
            logger.warning(
                "Attachment resolution failed",
                extra={"payload_ref": ref.payload_ref, "error": str(e)},
                exc_info=True
            )
        return _text_part(ATTACHMENT_PLACEHOLDER)

    # === 予算 ===

    def _enforce_budget(self, context: PromptContext) -> None:
        """全体の文字数予算を超えた場合、最も古い履歴ブロックから削除する"""
        dropped = 0
        while context.total_chars() > self.max_context_chars:
            index = next(
                (i for i, block in enumerate(context.blocks) if block.source == BlockSource.HISTORY),
                None
            )
            if index is None:
                break
            del context.blocks[index]
            dropped += 1
        if dropped:
            logger.warning(
                "Context budget exceeded, dropped oldest history",
                extra={
                    "participant_id": context.participant_id,
                    "dropped_blocks": dropped,
                    "total_chars": context.total_chars(),
                    "budget": self.max_context_chars,
                }
            )
