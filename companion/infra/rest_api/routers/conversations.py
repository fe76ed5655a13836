from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from typing import List, Optional
import asyncio
import json

from ..dependencies import get_chat_interaction_dependency, get_profile_repository_dependency
from ..error_handlers import chat_exception_payload
from ..rate_limiter import limiter, REPLY_RATE_LIMIT
from ..schemas import (
    AttachmentRefSchema,
    ConversationMessageResponse,
    HistoryResponse,
    ReplyRequest,
    UserMessageRequest,
)
from ...logging_config import get_logger
from ....domain.entity.message_segment import SegmentKind
from ....domain.entity.turn_message import (
    AttachmentRef,
    ConversationKey,
    ConversationSpace,
    ConversationTurnMessage,
)
from ....domain.exception.chat_exceptions import ChatException, ParticipantNotFoundError
from ....port.profile_repository import ProfileRepository
from ....usecase.chat_interaction.delivery_scheduler import DeliveredSegment
from ....usecase.chat_interaction.main import ChatInteraction

router = APIRouter(
    prefix="/api/v1/participants",
    tags=["conversations"]
)

logger = get_logger("api.conversations")


def _to_attachment_refs(items: List[AttachmentRefSchema]) -> List[AttachmentRef]:
    return [AttachmentRef(kind=a.kind, payload_ref=a.payload_ref, filename=a.filename) for a in items]


def to_message_response(message: ConversationTurnMessage) -> ConversationMessageResponse:
    return ConversationMessageResponse(
        position=message.position if message.position is not None else -1,
        role=message.role.value,
        content_kind=message.content_kind.value,
        text=message.text,
        attachments=[
            AttachmentRefSchema(kind=a.kind, payload_ref=a.payload_ref, filename=a.filename)
            for a in message.attachments
        ],
        event=message.event,
    )


def segment_event(delivered: DeliveredSegment) -> dict:
    """配信済みセグメントをSSEイベントに変換する"""
    data = {
        "type": "segment",
        "position": delivered.position,
        "kind": delivered.segment.kind.value,
    }
    if delivered.segment.kind == SegmentKind.TEXT:
        data["text"] = delivered.segment.payload
    else:
        data["event"] = delivered.segment.to_event()
    return data


def _sse(data: dict) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


@router.post("/{participant_id}/spaces/{space}/messages", response_model=ConversationMessageResponse)
async def post_message(
    participant_id: str,
    space: ConversationSpace,
    req: UserMessageRequest,
    interaction: ChatInteraction = Depends(get_chat_interaction_dependency)
):
    """
    ユーザーメッセージを会話ログに保存する（応答は要求しない）
    """
    key = ConversationKey(participant_id, space)
    message = await interaction.post_user_message(key, req.content, _to_attachment_refs(req.attachments))
    return to_message_response(message)


@router.get("/{participant_id}/spaces/{space}/history", response_model=HistoryResponse)
async def get_history(
    participant_id: str,
    space: ConversationSpace,
    limit: int = Query(default=50, ge=1, le=500),
    interaction: ChatInteraction = Depends(get_chat_interaction_dependency)
):
    """
    会話ログの末尾 limit 件を古い順で返す
    """
    key = ConversationKey(participant_id, space)
    messages = await interaction.get_history(key, limit)
    return HistoryResponse(
        participant_id=participant_id,
        space=space.value,
        messages=[to_message_response(m) for m in messages]
    )


@router.delete("/{participant_id}/reply")
async def cancel_reply(
    participant_id: str,
    interaction: ChatInteraction = Depends(get_chat_interaction_dependency)
):
    """参加者の実行中の応答を取り消す"""
    cancelled = await interaction.cancel_reply(participant_id)
    return {"cancelled": cancelled}


@router.post("/{participant_id}/spaces/{space}/reply/stream")
@limiter.limit(REPLY_RATE_LIMIT)
async def reply_stream(
    request: Request,
    participant_id: str,
    space: ConversationSpace,
    req: Optional[ReplyRequest] = None,
    interaction: ChatInteraction = Depends(get_chat_interaction_dependency),
    profile_repo: ProfileRepository = Depends(get_profile_repository_dependency)
):
    """
    相手キャラクターの応答を生成し、配信されたセグメントをSSEで返す

    Events:
        - segment: 保存・配信された1セグメント（position, kind, text または event）
        - status: デコードされた状態データ（あれば）
        - error: エラー情報（error_type, user_message, retry_available）
        - [DONE]: ストリーム終了
    """
    req = req or ReplyRequest()
    key = ConversationKey(participant_id, space)

    # ストリームを開く前に参加者の存在を確認して404を返す
    if await profile_repo.get_profile(participant_id) is None:
        raise ParticipantNotFoundError(participant_id)

    queue: asyncio.Queue = asyncio.Queue()

    def emit(delivered: DeliveredSegment) -> None:
        queue.put_nowait(segment_event(delivered))

    async def run_turn() -> None:
        try:
            result = await interaction.request_reply(
                key,
                user_input=req.content or "",
                attachments=_to_attachment_refs(req.attachments),
                emit=emit,
                session_id=req.session_id,
            )
            if result.envelope.status_data is not None:
                queue.put_nowait({"type": "status", "status": result.envelope.status_data})
        except ChatException as e:
            logger.warning(
                f"Reply failed: {e.__class__.__name__}",
                extra={"conversation": str(key), "error_code": e.error_code, "error": str(e)}
            )
            queue.put_nowait({"type": "error", **chat_exception_payload(e)})
        except Exception:
            logger.error("Reply stream failed", extra={"conversation": str(key)}, exc_info=True)
            queue.put_nowait({
                "type": "error",
                "error_type": "internal_error",
                "user_message": "Internal server error occurred during streaming",
                "retry_available": True,
            })
        finally:
            queue.put_nowait(None)

    async def generate_sse():
        task = asyncio.create_task(run_turn())
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield _sse(item)
        finally:
            # クライアント切断時はターンを取り消す
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        # ストリーム終了マーカー
        yield "data: [DONE]\n\n"

    return StreamingResponse(
        generate_sse(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )
