import base64
import binascii

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import get_attachment_store_dependency
from ..schemas import AttachmentUploadRequest, AttachmentUploadResponse
from ...logging_config import get_logger
from ....port.attachment_store import AttachmentStore
from ....port.dto.attachment_dto import NewAttachmentDTO

router = APIRouter(
    prefix="/api/v1/attachments",
    tags=["attachments"]
)

logger = get_logger("api.attachments")


@router.post("", response_model=AttachmentUploadResponse)
async def upload_attachment(
    req: AttachmentUploadRequest,
    store: AttachmentStore = Depends(get_attachment_store_dependency)
):
    """
    添付を保存し、メッセージから参照するための payload_ref を返す
    """
    data = None
    if req.data_base64 is not None:
        try:
            data = base64.b64decode(req.data_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="data_base64 is not valid base64")

    ref = await store.save(NewAttachmentDTO(
        kind=req.kind,
        mime_type=req.mime_type,
        data=data,
        text=req.text,
        filename=req.filename,
    ))
    logger.info("Attachment stored", extra={"payload_ref": ref, "kind": req.kind.value})
    return AttachmentUploadResponse(payload_ref=ref)
