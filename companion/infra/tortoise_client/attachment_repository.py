import uuid
from typing import Optional

from tortoise.exceptions import BaseORMException

from ...domain.entity.turn_message import AttachmentKind
from ...port.attachment_store import AttachmentStore
from ...port.dto.attachment_dto import NewAttachmentDTO, ResolvedAttachment
from ..logging_config import get_logger
from .models import AttachmentBlob

logger = get_logger("infra.attachments")


class TortoiseAttachmentStore(AttachmentStore):
    """
    Tortoise ORM を用いた AttachmentStore の実装
    """

    async def resolve(self, payload_ref: str) -> Optional[ResolvedAttachment]:
        """参照を解決する（見つからない・読めない場合はNone）"""
        try:
            blob = await AttachmentBlob.get_or_none(ref=payload_ref)
        except BaseORMException as e:
            logger.warning("Attachment lookup failed", extra={"payload_ref": payload_ref, "error": str(e)})
            return None
        if blob is None:
            return None
        return ResolvedAttachment(
            kind=AttachmentKind(blob.kind),
            mime_type=blob.mime_type,
            data=bytes(blob.data) if blob.data is not None else None,
            text=blob.text_content,
            filename=blob.filename,
        )

    async def save(self, attachment: NewAttachmentDTO) -> str:
        """添付を保存し、新しい参照を返す"""
        if attachment.data is None and attachment.text is None:
            raise ValueError("Attachment requires data or text")
        ref = uuid.uuid4().hex
        await AttachmentBlob.create(
            ref=ref,
            kind=attachment.kind.value,
            mime_type=attachment.mime_type,
            filename=attachment.filename,
            text_content=attachment.text,
            data=attachment.data,
        )
        return ref
