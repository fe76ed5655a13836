from fastapi import APIRouter, Depends

from ..dependencies import get_profile_repository_dependency, get_settings_dependency
from ..schemas import (
    ParticipantUpsertRequest, ParticipantResponse,
    LoreUpsertRequest, WorldUpsertRequest, MaskUpsertRequest,
)
from ...config import Settings
from ...logging_config import get_logger
from ....domain.entity.participant import (
    LoreEntry,
    Mask,
    ParticipantProfile,
    Persona,
    UserPersona,
    WorldSetting,
)
from ....port.profile_repository import ProfileRepository

router = APIRouter(
    prefix="/api/v1",
    tags=["profiles"]
)

logger = get_logger("api.profiles")


@router.put("/participants/{participant_id}", response_model=ParticipantResponse)
async def upsert_participant(
    participant_id: str,
    req: ParticipantUpsertRequest,
    profile_repo: ProfileRepository = Depends(get_profile_repository_dependency),
    settings: Settings = Depends(get_settings_dependency)
):
    """
    参加者設定（ペルソナ、世界観の紐付け、記憶ラウンド数）を作成または更新する
    """
    memory_rounds = req.memory_rounds if req.memory_rounds is not None else settings.default_memory_rounds
    user_persona = None
    if req.user_persona is not None:
        user_persona = UserPersona(name=req.user_persona.name, description=req.user_persona.description)

    profile = ParticipantProfile(
        participant_id=participant_id,
        persona=Persona(
            name=req.persona.name,
            description=req.persona.description,
            system_prompt=req.persona.system_prompt,
        ),
        user_persona=user_persona,
        style_directives=req.style_directives,
        lore_ids=req.lore_ids,
        world_id=req.world_id,
        mask_ids=req.mask_ids,
        memory_rounds=memory_rounds,
    )
    await profile_repo.save_profile(profile)
    logger.info("Participant profile saved", extra={"participant_id": participant_id})

    return ParticipantResponse(
        participant_id=participant_id,
        persona=req.persona,
        user_persona=req.user_persona,
        style_directives=req.style_directives,
        lore_ids=req.lore_ids,
        world_id=req.world_id,
        mask_ids=req.mask_ids,
        memory_rounds=memory_rounds,
    )


@router.put("/lore/{lore_id}")
async def upsert_lore(
    lore_id: str,
    req: LoreUpsertRequest,
    profile_repo: ProfileRepository = Depends(get_profile_repository_dependency)
):
    """設定資料を作成または更新する"""
    await profile_repo.save_lore_entry(LoreEntry(id=lore_id, title=req.title, content=req.content))
    return {"id": lore_id, "title": req.title}


@router.put("/worlds/{world_id}")
async def upsert_world(
    world_id: str,
    req: WorldUpsertRequest,
    profile_repo: ProfileRepository = Depends(get_profile_repository_dependency)
):
    """世界設定を作成または更新する"""
    await profile_repo.save_world(WorldSetting(
        id=world_id,
        name=req.name,
        description=req.description,
        lore_ids=tuple(req.lore_ids),
    ))
    return {"id": world_id, "name": req.name, "lore_ids": req.lore_ids}


@router.put("/masks/{mask_id}")
async def upsert_mask(
    mask_id: str,
    req: MaskUpsertRequest,
    profile_repo: ProfileRepository = Depends(get_profile_repository_dependency)
):
    """仮面を作成または更新する"""
    await profile_repo.save_mask(Mask(id=mask_id, name=req.name, description=req.description))
    return {"id": mask_id, "name": req.name}
