import re
import uuid
from typing import Optional

from ...domain.entity.prompt_context import PromptContext

_SESSION_ID_INVALID = re.compile(r"[^A-Za-z0-9_-]")
SESSION_ID_MIN_LENGTH = 2
SESSION_ID_MAX_LENGTH = 64


def sanitize_session_id(raw: Optional[str]) -> str:
    """
    セッションIDを [A-Za-z0-9_-]、2〜64文字に正規化する

    不正な文字は "_" に置換し、長すぎる場合は切り詰め、短すぎる場合は "_" で埋める。
    空の場合はランダムなIDを生成する。
    """
    cleaned = _SESSION_ID_INVALID.sub("_", raw or "")[:SESSION_ID_MAX_LENGTH]
    if not cleaned:
        return uuid.uuid4().hex
    return cleaned.ljust(SESSION_ID_MIN_LENGTH, "_")


def format_context_to_payload(
    context: PromptContext,
    session_id: str,
    request_id: str,
    model: Optional[str] = None
) -> dict:
    payload = {
        "session_id": sanitize_session_id(session_id),
        "request_id": request_id,
        "messages": context.to_messages(),
        "stream": True,
    }
    if model:
        payload["model"] = model
    return payload
