"""
ContextAssembler Unit Tests

優先順位、設定資料の重複排除、履歴のまとめ、添付の解決、予算の検証
"""

import pytest
from unittest.mock import AsyncMock

from companion.domain.entity.participant import (
    LoreEntry,
    Mask,
    ParticipantProfile,
    Persona,
    UserPersona,
    WorldSetting,
)
from companion.domain.entity.prompt_context import BlockSource
from companion.domain.entity.turn_message import (
    AttachmentKind,
    AttachmentRef,
    ContentKind,
    ConversationTurnMessage,
    Role,
)
from companion.port.attachment_store import AttachmentStore
from companion.port.dto.attachment_dto import ResolvedAttachment
from companion.usecase.chat_interaction.context_assembler import (
    ATTACHMENT_PLACEHOLDER,
    BUILTIN_LORE,
    AssemblyRequest,
    ContextAssembler,
    head_truncate,
)


def user(text):
    return ConversationTurnMessage.plain(Role.USER, text)


def assistant(text):
    return ConversationTurnMessage.plain(Role.ASSISTANT, text)


class TestContextAssembler:
    """ContextAssemblerの包括的テスト"""

    @pytest.fixture
    def attachment_store(self):
        store = AsyncMock(spec=AttachmentStore)
        store.resolve.return_value = None
        return store

    @pytest.fixture
    def assembler(self, attachment_store):
        return ContextAssembler(attachment_store)

    @pytest.fixture
    def profile(self):
        return ParticipantProfile(
            participant_id="p1",
            persona=Persona(name="Mio", description="A cheerful barista.", system_prompt="Stay in character."),
        )

    @pytest.fixture
    def full_profile(self):
        return ParticipantProfile(
            participant_id="p1",
            persona=Persona(name="Mio", description="A cheerful barista."),
            user_persona=UserPersona(name="Ken", description="A night-shift nurse."),
            style_directives=["Use short sentences."],
            memory_rounds=10,
        )

    # === 優先順位 ===

    @pytest.mark.asyncio
    async def test_full_precedence_order(self, assembler, full_profile):
        # Given
        request = AssemblyRequest(
            profile=full_profile,
            history=[user("hi"), assistant("hello")],
            other_space_history=[user("elsewhere")],
            user_input="how are you?",
            lore_entries=[LoreEntry("l1", "Town", "A seaside town.")],
            world=WorldSetting("w1", "Harbor", "Foggy mornings."),
            masks=[Mask("m1", "Cat ears", "Ends sentences with nya.")],
            live_status={"mood": "sleepy"},
        )

        # When
        context = await assembler.assemble(request)

        # Then
        assert context.sources() == [
            BlockSource.STYLE,
            BlockSource.LORE,
            BlockSource.WORLD,
            BlockSource.PERSONA,
            BlockSource.USER_PERSONA,
            BlockSource.MASK,
            BlockSource.BACKGROUND,
            BlockSource.STATUS,
            BlockSource.HISTORY,
            BlockSource.HISTORY,
            BlockSource.INPUT,
        ]
        assert context.blocks[-1].content == "how are you?"

    @pytest.mark.asyncio
    async def test_deterministic_for_identical_input(self, assembler, full_profile):
        request = AssemblyRequest(
            profile=full_profile,
            history=[user("a"), assistant("b")],
            user_input="c",
            live_status={"b": 2, "a": 1},
        )

        first = await assembler.assemble(request)
        second = await assembler.assemble(request)

        assert first.to_messages() == second.to_messages()

    @pytest.mark.asyncio
    async def test_empty_input_without_history_has_no_user_turn(self, assembler, profile):
        """空入力・履歴なしなら指示ブロックのみでユーザーターンを含まない"""
        context = await assembler.assemble(AssemblyRequest(profile=profile))

        assert not context.has_user_turn()
        assert all(block.role == Role.SYSTEM for block in context.blocks)
        assert BlockSource.INPUT not in context.sources()

    # === 設定資料 ===

    @pytest.mark.asyncio
    async def test_builtin_lore_present_without_bindings(self, assembler, profile):
        context = await assembler.assemble(AssemblyRequest(profile=profile))

        lore = next(b for b in context.blocks if b.source == BlockSource.LORE)
        assert BUILTIN_LORE.title in lore.content

    @pytest.mark.asyncio
    async def test_lore_deduplicated_and_builtin_first(self, assembler, profile):
        # Given: 同じIDが参加者と世界設定の両方にバインドされている
        a = LoreEntry("a", "Alpha", "first")
        b = LoreEntry("b", "Beta", "second")
        request = AssemblyRequest(profile=profile, lore_entries=[a, b], world_lore=[b])

        # When
        context = await assembler.assemble(request)

        # Then
        lore = next(blk for blk in context.blocks if blk.source == BlockSource.LORE).content
        assert lore.count("## Beta") == 1
        assert lore.index(BUILTIN_LORE.title) < lore.index("## Alpha") < lore.index("## Beta")

    @pytest.mark.asyncio
    async def test_lore_is_head_truncated(self, attachment_store, profile):
        assembler = ContextAssembler(attachment_store, lore_char_budget=100)
        request = AssemblyRequest(profile=profile, lore_entries=[LoreEntry("big", "Big", "x" * 500)])

        context = await assembler.assemble(request)

        lore = next(b for b in context.blocks if b.source == BlockSource.LORE).content
        assert len(lore) == 100
        assert lore.startswith("[World Lore]")

    def test_head_truncate(self):
        assert head_truncate("abcdef", 3) == "abc"
        assert head_truncate("ab", 3) == "ab"

    # === 背景と状態 ===

    @pytest.mark.asyncio
    async def test_background_is_marked_reference_only(self, assembler, full_profile):
        other = [user(f"u{i}") if i % 2 == 0 else assistant(f"a{i}") for i in range(30)]

        context = await assembler.assemble(AssemblyRequest(profile=full_profile, other_space_history=other))

        background = next(b for b in context.blocks if b.source == BlockSource.BACKGROUND).content
        assert "do not reply" in background
        assert "Ken: u28" in background
        assert "Mio: a29" in background
        # 直近10ターンのみ
        assert "u18" not in background
        assert "u20" in background

    @pytest.mark.asyncio
    async def test_status_block_keeps_last_five_history(self, assembler, profile):
        history = [{"step": i} for i in range(8)]

        context = await assembler.assemble(AssemblyRequest(
            profile=profile,
            live_status={"step": 8},
            status_history=history,
        ))

        status = next(b for b in context.blocks if b.source == BlockSource.STATUS).content
        assert '[Current Status]\n{"step": 8}' in status
        assert status.count("[Earlier Status") == 5
        assert '{"step": 2}' not in status
        assert '{"step": 3}' in status

    # === 履歴 ===

    @pytest.mark.asyncio
    async def test_consecutive_user_messages_are_merged(self, assembler, profile):
        history = [user("one"), user("two"), assistant("reply"), user("three")]

        context = await assembler.assemble(AssemblyRequest(profile=profile, history=history))

        history_blocks = [b for b in context.blocks if b.source == BlockSource.HISTORY]
        assert [b.content for b in history_blocks] == ["one\ntwo", "reply"]
        # 末尾の未返信メッセージは入力ブロックに回る
        assert context.blocks[-1].source == BlockSource.INPUT
        assert context.blocks[-1].content == "three"

    @pytest.mark.asyncio
    async def test_pending_user_messages_merge_with_input(self, assembler, profile):
        history = [assistant("hey"), user("are you there?")]

        context = await assembler.assemble(AssemblyRequest(profile=profile, history=history, user_input="hello?"))

        assert context.blocks[-1].content == "are you there?\nhello?"
        assert [b.role for b in context.blocks if b.source in (BlockSource.HISTORY, BlockSource.INPUT)] == [
            Role.ASSISTANT, Role.USER
        ]

    @pytest.mark.asyncio
    async def test_memory_rounds_window(self, assembler):
        profile = ParticipantProfile(participant_id="p1", persona=Persona(name="Mio"), memory_rounds=2)
        history = []
        for i in range(6):
            history += [user(f"u{i}"), assistant(f"a{i}")]

        context = await assembler.assemble(AssemblyRequest(profile=profile, history=history))

        assert [b.content for b in context.blocks if b.source == BlockSource.HISTORY] == ["u4", "a4", "u5", "a5"]

    @pytest.mark.asyncio
    async def test_structured_events_rendered_as_tags(self, assembler, profile):
        event = ConversationTurnMessage(
            role=Role.ASSISTANT,
            content_kind=ContentKind.STRUCTURED_EVENT,
            event={"type": "voice", "duration": "4", "text": "good night"},
        )

        context = await assembler.assemble(AssemblyRequest(profile=profile, history=[user("night"), event]))

        history_blocks = [b for b in context.blocks if b.source == BlockSource.HISTORY]
        assert history_blocks[-1].content == '/voice/{"duration": "4", "text": "good night"}/'

    @pytest.mark.asyncio
    async def test_budget_drops_oldest_history_first(self, attachment_store, profile):
        history = [user("x" * 400), assistant("y" * 400), user("z" * 400), assistant("w" * 400)]
        base = await ContextAssembler(attachment_store).assemble(AssemblyRequest(profile=profile))
        assembler = ContextAssembler(attachment_store, max_context_chars=base.total_chars() + 900)

        context = await assembler.assemble(AssemblyRequest(profile=profile, history=history))

        contents = [b.content for b in context.blocks if b.source == BlockSource.HISTORY]
        assert contents == ["z" * 400, "w" * 400]

    # === 添付 ===

    @pytest.mark.asyncio
    async def test_missing_attachment_becomes_placeholder(self, assembler, profile):
        ref = AttachmentRef(AttachmentKind.DOCUMENT, "missing-ref", "notes.txt")

        context = await assembler.assemble(AssemblyRequest(profile=profile, user_input="see file", input_attachments=[ref]))

        assert context.blocks[-1].content == f"see file\n{ATTACHMENT_PLACEHOLDER}"

    @pytest.mark.asyncio
    async def test_attachment_store_failure_becomes_placeholder(self, attachment_store, assembler, profile):
        attachment_store.resolve.side_effect = RuntimeError("storage offline")
        ref = AttachmentRef(AttachmentKind.IMAGE, "img-1")

        context = await assembler.assemble(AssemblyRequest(profile=profile, input_attachments=[ref]))

        assert context.blocks[-1].content == ATTACHMENT_PLACEHOLDER

    @pytest.mark.asyncio
    async def test_image_and_document_resolution(self, attachment_store, assembler, profile):
        async def resolve(ref):
            if ref == "img":
                return ResolvedAttachment(AttachmentKind.IMAGE, "image/png", data=b"\x89PNG")
            return ResolvedAttachment(AttachmentKind.DOCUMENT, "text/plain", text="menu: latte", filename="menu.txt")

        attachment_store.resolve.side_effect = resolve
        message = ConversationTurnMessage.with_attachments(
            Role.USER,
            [AttachmentRef(AttachmentKind.IMAGE, "img"), AttachmentRef(AttachmentKind.DOCUMENT, "doc")],
            text="look",
        )

        context = await assembler.assemble(AssemblyRequest(profile=profile, history=[message]))

        parts = context.blocks[-1].content
        assert parts[0] == {"type": "text", "text": "look"}
        assert parts[1]["type"] == "image_url"
        assert parts[1]["image_url"]["url"].startswith("data:image/png;base64,")
        assert parts[2] == {"type": "text", "text": "[File: menu.txt]\nmenu: latte"}
