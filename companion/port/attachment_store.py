from typing import Protocol, Optional

from .dto.attachment_dto import ResolvedAttachment, NewAttachmentDTO

class AttachmentStore(Protocol):
    """外部の添付ストレージへのインターフェース"""

    async def resolve(self, payload_ref: str) -> Optional[ResolvedAttachment]:
        """
        参照を添付の中身に解決する

        Args:
            payload_ref: 添付の不透明な参照

        Returns:
            Optional[ResolvedAttachment]: 見つからない場合はNone（例外は投げない）
        """

    async def save(self, attachment: NewAttachmentDTO) -> str:
        """
        添付を保存し、その参照を返す

        Args:
            attachment: 保存する添付

        Returns:
            str: 新しい参照
        """
