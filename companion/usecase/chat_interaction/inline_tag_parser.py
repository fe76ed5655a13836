"""
InlineTagParser - インラインタグの解析

責務:
- 返信テキストを区切り記号（---）でセグメントに分割
- /type/{json}/ 形式のタグを音声・紅包セグメントに変換
- 解析に失敗したタグを生テキストのまま残す（内容を捨てない）

タグの文法:
    /voice/{"duration":"5","text":"こんにちは"}/
    /red-packet/{"amount":"52.00","greeting":"お誕生日おめでとう"}/
    /gift/{"amount":"5.20","greeting":"どうぞ"}/          (red-packet の別名)

正規表現ではなく小さなトークナイザーで走査し、JSON本体の波括弧は
文字列リテラルを考慮して対応を取ります（ネストした括弧に対応するため）。
"""

import json
from typing import Any, Optional

from ...domain.entity.message_segment import MessageSegment, SegmentKind
from ...infra.logging_config import get_logger

logger = get_logger("pipeline.tags")

SEGMENT_SEPARATOR = "---"

# 長いキーワードから順に照合する
TAG_KEYWORDS: dict[str, SegmentKind] = {
    "red-packet": SegmentKind.MONETARY_GIFT,
    "voice": SegmentKind.VOICE_CLIP,
    "gift": SegmentKind.MONETARY_GIFT,
}

_KEYWORD_FOR_KIND = {
    SegmentKind.VOICE_CLIP: "voice",
    SegmentKind.MONETARY_GIFT: "red-packet",
}


def find_closing_brace(text: str, start: int) -> int:
    """
    text[start] の '{' に対応する '}' の位置を返す

    本体が {\\"key\\": ...} のようにエスケープ済みの引用符で書かれている場合は
    \\" を文字列の区切りとして扱う。対応が取れない場合は -1 を返す。
    """
    if start >= len(text) or text[start] != "{":
        return -1
    escaped_mode = text.startswith('{\\"', start)
    depth = 0
    in_string = False
    i = start
    n = len(text)
    while i < n:
        c = text[i]
        if escaped_mode:
            if c == "\\" and i + 1 < n:
                if text[i + 1] == '"':
                    in_string = not in_string
                i += 2
                continue
        elif in_string:
            if c == "\\":
                i += 2
                continue
            if c == '"':
                in_string = False
            i += 1
            continue
        elif c == '"':
            in_string = True
            i += 1
            continue

        if not in_string:
            if c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
                if depth == 0:
                    return i
        i += 1
    return -1


def _match_tag(text: str, slash: int) -> Optional[tuple[SegmentKind, int, int]]:
    """
    text[slash] から始まるタグを照合する

    Returns:
        (種別, 本体開始位置, タグ終端の次の位置) または None
    """
    for keyword, kind in TAG_KEYWORDS.items():
        head = "/" + keyword + "/"
        if not text.startswith(head, slash):
            continue
        body_start = slash + len(head)
        body_end = find_closing_brace(text, body_start)
        if body_end == -1:
            return None
        if body_end + 1 >= len(text) or text[body_end + 1] != "/":
            return None
        return kind, body_start, body_end + 2
    return None


def _decode_body(body: str) -> Optional[dict]:
    """
    タグ本体をJSONとして解釈する

    そのままのJSONとして読めなければ、\\" を " に戻してから再度読む。
    """
    for candidate in (body, body.replace('\\"', '"')):
        try:
            parsed: Any = json.loads(candidate)
        except (ValueError, RecursionError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _build_tag_segment(kind: SegmentKind, body: dict, sequence: int) -> MessageSegment:
    if kind == SegmentKind.VOICE_CLIP:
        return MessageSegment.voice(_as_text(body.get("duration")), _as_text(body.get("text")), sequence)
    return MessageSegment.gift(_as_text(body.get("amount")), _as_text(body.get("greeting")), sequence)


class InlineTagParser:
    """インラインタグパーサー"""

    def parse(self, chat_reply_text: str) -> list[MessageSegment]:
        """
        返信テキストを順序付きのセグメント列に変換する

        Args:
            chat_reply_text: エンベロープから取り出した返信本文

        Returns:
            list[MessageSegment]: 出現順の連番付きセグメント（空のセグメントは含まない）
        """
        if not isinstance(chat_reply_text, str) or not chat_reply_text:
            return []

        segments: list[MessageSegment] = []
        for raw_segment in chat_reply_text.split(SEGMENT_SEPARATOR):
            self._scan(raw_segment, segments)
        return segments

    def _scan(self, raw: str, out: list[MessageSegment]) -> None:
        cursor = 0      # 未出力テキストの開始位置
        search = 0      # 次の '/' を探す位置
        while True:
            slash = raw.find("/", search)
            if slash == -1:
                break
            match = _match_tag(raw, slash)
            if match is None:
                search = slash + 1
                continue

            kind, body_start, tag_end = match
            self._emit_text(raw[cursor:slash], out)

            body = _decode_body(raw[body_start:tag_end - 1])
            if body is None:
                logger.info(
                    "Malformed inline tag kept as text",
                    extra={"tag_kind": kind.value, "tag_length": tag_end - slash}
                )
                out.append(MessageSegment.text(raw[slash:tag_end], len(out)))
            else:
                out.append(_build_tag_segment(kind, body, len(out)))

            cursor = search = tag_end

        self._emit_text(raw[cursor:], out)

    @staticmethod
    def _emit_text(text: str, out: list[MessageSegment]) -> None:
        stripped = text.strip()
        if stripped:
            out.append(MessageSegment.text(stripped, len(out)))


def format_segment_as_tag(segment: MessageSegment) -> str:
    """
    セグメントをタグ文法の文字列に戻す（履歴をLLMに見せる際に使用）
    """
    if segment.kind == SegmentKind.TEXT:
        return str(segment.payload)
    if segment.kind == SegmentKind.VOICE_CLIP:
        body = {"duration": segment.payload.duration_seconds, "text": segment.payload.transcript}
    else:
        body = {"amount": segment.payload.amount, "greeting": segment.payload.greeting}
    keyword = _KEYWORD_FOR_KIND[segment.kind]
    return f"/{keyword}/{json.dumps(body, ensure_ascii=False)}/"


_default_parser = InlineTagParser()


def parse_segments(chat_reply_text: str) -> list[MessageSegment]:
    """モジュールレベルのショートカット"""
    return _default_parser.parse(chat_reply_text)
