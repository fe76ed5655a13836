from typing import Protocol, Optional

from ..domain.entity.participant import ParticipantProfile, LoreEntry, WorldSetting, Mask

class ProfileRepository(Protocol):
    """参加者設定と世界観データの永続化インターフェース"""

    async def get_profile(self, participant_id: str) -> Optional[ParticipantProfile]:
        """参加者設定を取得する（存在しない場合はNone）"""

    async def save_profile(self, profile: ParticipantProfile) -> None:
        """参加者設定を作成または更新する"""

    async def get_lore_entries(self, lore_ids: list[str]) -> list[LoreEntry]:
        """
        指定IDの設定資料を取得する

        Note:
            存在しないIDはスキップされる。返却順は lore_ids の順序に従う。
        """

    async def save_lore_entry(self, entry: LoreEntry) -> None:
        """設定資料を作成または更新する"""

    async def get_world(self, world_id: str) -> Optional[WorldSetting]:
        """世界設定を取得する（存在しない場合はNone）"""

    async def save_world(self, world: WorldSetting) -> None:
        """世界設定を作成または更新する"""

    async def get_masks(self, mask_ids: list[str]) -> list[Mask]:
        """指定IDの仮面を mask_ids の順序で取得する（存在しないIDはスキップ）"""

    async def save_mask(self, mask: Mask) -> None:
        """仮面を作成または更新する"""
