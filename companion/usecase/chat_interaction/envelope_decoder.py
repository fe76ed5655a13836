"""
EnvelopeDecoder - 返信エンベロープのデコード

責務:
- LLMの生出力から {reply, status} 構造を取り出す
- 非準拠な出力を生テキストとして扱うフォールバック

デコードは全域関数であり、どのような入力でも例外を投げずに
利用可能な chat_reply_text を返します。
"""

import json
from typing import Any, Optional

from ...domain.entity.reply_envelope import ReplyEnvelope
from ...infra.logging_config import get_logger

logger = get_logger("pipeline.decoder")

_FENCE = "```"


def strip_code_fence(text: str) -> str:
    """
    先頭・末尾のコードフェンスを1つずつ取り除く

    先頭フェンスは言語指定（```json 等）を含む行ごと取り除く。
    """
    cleaned = text.strip()
    if cleaned.startswith(_FENCE):
        newline = cleaned.find("\n")
        cleaned = cleaned[newline + 1:] if newline != -1 else cleaned[len(_FENCE):]
    if cleaned.endswith(_FENCE):
        cleaned = cleaned[:-len(_FENCE)]
    return cleaned.strip()


def _parse_object(text: str) -> Optional[dict]:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    try:
        parsed: Any = json.loads(text[first:last + 1])
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


class EnvelopeDecoder:
    """返信エンベロープのデコーダー"""

    def decode(self, raw_text: str) -> ReplyEnvelope:
        """
        生テキストを ReplyEnvelope にデコードする

        Args:
            raw_text: 補完エンドポイントから得た最終テキスト

        Returns:
            ReplyEnvelope: デコード結果（失敗時は生テキストをそのまま本文とする）
        """
        if not isinstance(raw_text, str):
            raw_text = "" if raw_text is None else str(raw_text)

        parsed = _parse_object(strip_code_fence(raw_text))
        if parsed is None:
            if "{" in raw_text:
                logger.debug("Envelope not decodable, using raw text", extra={"length": len(raw_text)})
            return ReplyEnvelope(chat_reply_text=raw_text)

        reply = parsed.get("reply")
        if isinstance(reply, str) and reply.strip():
            chat_reply_text = reply
        else:
            chat_reply_text = raw_text

        status = parsed.get("status")
        status_data = status if isinstance(status, dict) else None

        return ReplyEnvelope(chat_reply_text=chat_reply_text, status_data=status_data)


_default_decoder = EnvelopeDecoder()


def decode_envelope(raw_text: str) -> ReplyEnvelope:
    """モジュールレベルのショートカット"""
    return _default_decoder.decode(raw_text)
