import asyncio
from typing import Dict, List

from ...domain.entity.turn_message import (
    AttachmentKind,
    AttachmentRef,
    ContentKind,
    ConversationKey,
    ConversationTurnMessage,
    Role,
)
from ...port.conversation_log import ConversationLog
from .models import ConversationEntry


def _attachments_to_json(attachments: List[AttachmentRef]) -> list:
    return [
        {"kind": a.kind.value, "payload_ref": a.payload_ref, "filename": a.filename}
        for a in attachments
    ]


def _attachments_from_json(data: list) -> List[AttachmentRef]:
    return [
        AttachmentRef(
            kind=AttachmentKind(item["kind"]),
            payload_ref=item["payload_ref"],
            filename=item.get("filename"),
        )
        for item in data or []
    ]


def entry_to_message(entry: ConversationEntry) -> ConversationTurnMessage:
    return ConversationTurnMessage(
        role=Role(entry.role),
        content_kind=ContentKind(entry.content_kind),
        text=entry.text,
        attachments=_attachments_from_json(entry.attachments),
        event=entry.event,
        position=entry.position,
    )


class TortoiseConversationLog(ConversationLog):
    """
    Tortoise ORM を用いた ConversationLog の実装

    位置の採番はキーごとのロックで直列化する。
    """

    def __init__(self) -> None:
        self._locks: Dict[ConversationKey, asyncio.Lock] = {}

    def _lock_for(self, key: ConversationKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def read_last(self, key: ConversationKey, k: int) -> List[ConversationTurnMessage]:
        """末尾 k 件を古い順で取得"""
        if k <= 0:
            return []
        entries = await ConversationEntry.filter(
            participant_id=key.participant_id,
            space=key.space.value
        ).order_by("-position").limit(k)
        return [entry_to_message(entry) for entry in reversed(entries)]

    async def append(self, key: ConversationKey, message: ConversationTurnMessage) -> int:
        """1件追記し、その位置を返す"""
        async with self._lock_for(key):
            position = await ConversationEntry.filter(
                participant_id=key.participant_id,
                space=key.space.value
            ).count()
            await ConversationEntry.create(
                participant_id=key.participant_id,
                space=key.space.value,
                position=position,
                role=message.role.value,
                content_kind=message.content_kind.value,
                text=message.text,
                attachments=_attachments_to_json(message.attachments),
                event=message.event,
            )
        return position
