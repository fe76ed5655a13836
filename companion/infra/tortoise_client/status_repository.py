from typing import List

from ...domain.entity.turn_message import ConversationKey
from ...port.status_store import StatusStore
from .models import StatusSnapshotRecord


class TortoiseStatusStore(StatusStore):
    """Tortoise ORM を用いた StatusStore の実装"""

    async def load_recent(self, key: ConversationKey, limit: int) -> List[dict]:
        if limit <= 0:
            return []
        records = await StatusSnapshotRecord.filter(
            participant_id=key.participant_id,
            space=key.space.value
        ).order_by("-id").limit(limit)
        return [record.status for record in reversed(records)]

    async def append(self, key: ConversationKey, status_data: dict) -> None:
        await StatusSnapshotRecord.create(
            participant_id=key.participant_id,
            space=key.space.value,
            status=status_data,
        )
