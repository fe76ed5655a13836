"""
StreamingService - スナップショット形式のストリーミング応答処理

責務:
- 補完エンドポイントへのリクエスト送信
- 行区切りイベントのデコード
- スナップショットの上書き蓄積による最終テキストの確定

状態遷移:
    IDLE → CONNECTED → STREAMING → COMPLETED | FAILED

各 replyDelta イベントはそれまでの全文を持つため、蓄積テキストは
追記ではなく常に上書きされます。自動リトライは行いません。
"""

import json
import uuid
from enum import Enum
from typing import AsyncIterator, Optional

from ...domain.entity.prompt_context import PromptContext
from ...domain.entity.snapshot_event import CompletionSnapshotEvent, SnapshotEventKind
from ...domain.exception.chat_exceptions import TransportError
from ...infra.logging_config import get_logger
from ...infra.presentators.format_api_input import format_context_to_payload
from ...port.completion_client import CompletionClient

logger = get_logger("pipeline.transport")

DONE_MARKER = "[DONE]"


class TransportState(str, Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class MalformedEventError(ValueError):
    """イベント行が解釈できない場合の例外"""


class SnapshotEventDecoder:
    """
    行単位のイベントデコーダー

    対応する行:
        event: <name>        次の data 行のイベント名
        data: [DONE]         ストリーム終了マーカー
        data: <json>         イベント本体
        : comment / 空行     無視
    """

    def __init__(self) -> None:
        self._pending_event: Optional[str] = None

    def feed(self, line: str) -> Optional[CompletionSnapshotEvent]:
        """
        1行を解釈する

        Returns:
            Optional[CompletionSnapshotEvent]: イベントにならない行はNone

        Raises:
            MalformedEventError: data 行のJSONが壊れている場合
        """
        line = line.rstrip("\r")
        if not line or line.startswith(":"):
            return None
        if line.startswith("event:"):
            self._pending_event = line[len("event:"):].strip() or None
            return None
        if not line.startswith("data:"):
            return None

        data = line[len("data:"):].strip()
        event_name, self._pending_event = self._pending_event, None
        if data == DONE_MARKER:
            return CompletionSnapshotEvent(SnapshotEventKind.DONE)

        try:
            body = json.loads(data)
        except ValueError as e:
            raise MalformedEventError(f"malformed event data: {data[:80]}") from e
        if not isinstance(body, dict):
            raise MalformedEventError("event data is not an object")

        event_type = body.get("type") or event_name
        if event_type == "error":
            error = body.get("error")
            if isinstance(error, dict):
                message = error.get("message") or error.get("code")
            else:
                message = error or body.get("message")
            return CompletionSnapshotEvent(SnapshotEventKind.ERROR, error_message=str(message or "unknown error"))

        if event_type == "reply":
            payload = body.get("payload") or {}
            if not isinstance(payload, dict):
                raise MalformedEventError("reply payload is not an object")
            if payload.get("is_from_self"):
                # ユーザー自身の発言のエコーは応答ではない
                return None
            content = payload.get("content")
            if content is None:
                content = ""
            if not isinstance(content, str):
                raise MalformedEventError("reply content is not a string")
            return CompletionSnapshotEvent(
                SnapshotEventKind.REPLY_DELTA,
                full_text_so_far=content,
                is_final=bool(payload.get("is_final")),
            )

        return None


class StreamingService:
    """ストリーミング転送クライアント"""

    def __init__(self, completion_client: CompletionClient, model: Optional[str] = None):
        """
        Args:
            completion_client: 補完エンドポイントとの通信インターフェース
            model: リクエストに含めるモデル名
        """
        self.completion_client = completion_client
        self.model = model
        self.state = TransportState.IDLE
        self.accumulated_text = ""

    async def stream_completion(self, context: PromptContext, session_id: str) -> str:
        """
        プロンプトコンテキストを送信し、最終的な蓄積テキストを返す

        Args:
            context: 今回のプロンプトコンテキスト
            session_id: セッション識別子（送信前にサニタイズされる）

        Returns:
            str: 最後に受信したスナップショットの全文

        Raises:
            TransportError: 通信失敗、エラーイベント、不正なイベント、空の応答の場合
        """
        self.state = TransportState.IDLE
        self.accumulated_text = ""
        payload = format_context_to_payload(
            context,
            session_id=session_id,
            request_id=str(uuid.uuid4()),
            model=self.model,
        )
        decoder = SnapshotEventDecoder()
        received_reply = False

        lines: Optional[AsyncIterator[str]] = None
        try:
            lines = self.completion_client.open_stream(payload)
            self.state = TransportState.CONNECTED
            async for line in lines:
                event = decoder.feed(line)
                if event is None:
                    continue

                if event.kind == SnapshotEventKind.ERROR:
                    raise TransportError(event.error_message or "error event")

                if event.kind == SnapshotEventKind.REPLY_DELTA:
                    self.state = TransportState.STREAMING
                    received_reply = True
                    self.accumulated_text = event.full_text_so_far or ""
                    if not event.is_final:
                        continue

                # 終了マーカー（DONE または is_final の reply）
                if not received_reply or not self.accumulated_text.strip():
                    raise TransportError("empty response")
                self.state = TransportState.COMPLETED
                logger.info(
                    "Completion stream finished",
                    extra={
                        "participant_id": context.participant_id,
                        "session_id": payload["session_id"],
                        "chars": len(self.accumulated_text),
                    }
                )
                return self.accumulated_text

            if not received_reply:
                raise TransportError("empty response")
            raise TransportError("stream closed before end marker")

        except TransportError as e:
            self._fail(context, e.reason)
            raise
        except MalformedEventError as e:
            self._fail(context, str(e))
            raise TransportError(str(e)) from e
        except Exception as e:
            self._fail(context, str(e))
            raise TransportError(f"Failed to stream completion: {str(e)}") from e
        except BaseException:
            # キャンセル等: 部分テキストは出力しない
            self.state = TransportState.FAILED
            raise
        finally:
            aclose = getattr(lines, "aclose", None)
            if aclose is not None:
                await aclose()

    def _fail(self, context: PromptContext, reason: str) -> None:
        self.state = TransportState.FAILED
        logger.warning(
            "Completion stream failed",
            extra={"participant_id": context.participant_id, "reason": reason}
        )
