from typing import List, Optional

from ...domain.entity.participant import (
    LoreEntry,
    Mask,
    ParticipantProfile,
    Persona,
    UserPersona,
    WorldSetting,
)
from ...port.profile_repository import ProfileRepository
from .models import LoreRecord, MaskRecord, ParticipantRecord, WorldRecord


def _in_requested_order(records: list, ids: List[str]) -> list:
    by_id = {record.id: record for record in records}
    ordered = []
    seen = set()
    for record_id in ids:
        if record_id in by_id and record_id not in seen:
            ordered.append(by_id[record_id])
            seen.add(record_id)
    return ordered


class TortoiseProfileRepository(ProfileRepository):
    """
    Tortoise ORM を用いた ProfileRepository の実装
    """

    async def get_profile(self, participant_id: str) -> Optional[ParticipantProfile]:
        record = await ParticipantRecord.get_or_none(participant_id=participant_id)
        if record is None:
            return None
        user_persona = None
        if record.user_persona:
            user_persona = UserPersona(
                name=record.user_persona.get("name", ""),
                description=record.user_persona.get("description", ""),
            )
        return ParticipantProfile(
            participant_id=record.participant_id,
            persona=Persona(
                name=record.persona_name,
                description=record.persona_description,
                system_prompt=record.system_prompt,
            ),
            user_persona=user_persona,
            style_directives=list(record.style_directives or []),
            lore_ids=list(record.lore_ids or []),
            world_id=record.world_id,
            mask_ids=list(record.mask_ids or []),
            memory_rounds=record.memory_rounds,
        )

    async def save_profile(self, profile: ParticipantProfile) -> None:
        user_persona = None
        if profile.user_persona is not None:
            user_persona = {
                "name": profile.user_persona.name,
                "description": profile.user_persona.description,
            }
        await ParticipantRecord.update_or_create(
            participant_id=profile.participant_id,
            defaults={
                "persona_name": profile.persona.name,
                "persona_description": profile.persona.description,
                "system_prompt": profile.persona.system_prompt,
                "user_persona": user_persona,
                "style_directives": list(profile.style_directives),
                "lore_ids": list(profile.lore_ids),
                "world_id": profile.world_id,
                "mask_ids": list(profile.mask_ids),
                "memory_rounds": profile.memory_rounds,
            }
        )

    async def get_lore_entries(self, lore_ids: List[str]) -> List[LoreEntry]:
        if not lore_ids:
            return []
        records = await LoreRecord.filter(id__in=lore_ids)
        return [
            LoreEntry(id=r.id, title=r.title, content=r.content)
            for r in _in_requested_order(records, lore_ids)
        ]

    async def save_lore_entry(self, entry: LoreEntry) -> None:
        await LoreRecord.update_or_create(
            id=entry.id,
            defaults={"title": entry.title, "content": entry.content}
        )

    async def get_world(self, world_id: str) -> Optional[WorldSetting]:
        record = await WorldRecord.get_or_none(id=world_id)
        if record is None:
            return None
        return WorldSetting(
            id=record.id,
            name=record.name,
            description=record.description,
            lore_ids=tuple(record.lore_ids or []),
        )

    async def save_world(self, world: WorldSetting) -> None:
        await WorldRecord.update_or_create(
            id=world.id,
            defaults={
                "name": world.name,
                "description": world.description,
                "lore_ids": list(world.lore_ids),
            }
        )

    async def get_masks(self, mask_ids: List[str]) -> List[Mask]:
        if not mask_ids:
            return []
        records = await MaskRecord.filter(id__in=mask_ids)
        return [
            Mask(id=r.id, name=r.name, description=r.description)
            for r in _in_requested_order(records, mask_ids)
        ]

    async def save_mask(self, mask: Mask) -> None:
        await MaskRecord.update_or_create(
            id=mask.id,
            defaults={"name": mask.name, "description": mask.description}
        )
