"""
InlineTagParser Unit Tests

区切り記号による分割、タグの解釈、解析失敗時のフォールバックを検証
"""

import pytest

from companion.domain.entity.message_segment import MessageSegment, SegmentKind, VoiceClip, MonetaryGift
from companion.usecase.chat_interaction.inline_tag_parser import (
    InlineTagParser,
    find_closing_brace,
    format_segment_as_tag,
    parse_segments,
)


class TestFindClosingBrace:

    def test_nested_braces(self):
        text = '{"a": {"b": 1}}/'
        assert find_closing_brace(text, 0) == len(text) - 2

    def test_braces_inside_strings_are_ignored(self):
        text = '{"text": "smile }:)"}'
        assert find_closing_brace(text, 0) == len(text) - 1

    def test_escaped_quote_body(self):
        text = '{\\"text\\":\\"a}b\\"}'
        assert find_closing_brace(text, 0) == len(text) - 1

    def test_unbalanced_returns_minus_one(self):
        assert find_closing_brace('{"a": 1', 0) == -1


class TestInlineTagParser:
    """InlineTagParserの包括的テスト"""

    @pytest.fixture
    def parser(self):
        return InlineTagParser()

    def test_plain_text_single_segment(self, parser):
        segments = parser.parse("こんにちは")

        assert segments == [MessageSegment.text("こんにちは", 0)]

    def test_voice_tag_becomes_voice_clip(self, parser):
        """正しいタグは音声セグメント1件になり、テキストは生じない"""
        segments = parser.parse('/voice/{"duration":"5","text":"hi"}/')

        assert len(segments) == 1
        assert segments[0].kind == SegmentKind.VOICE_CLIP
        assert segments[0].payload == VoiceClip(duration_seconds="5", transcript="hi")

    def test_red_packet_tag_becomes_gift(self, parser):
        segments = parser.parse('/red-packet/{"amount":"52.00","greeting":"お誕生日おめでとう"}/')

        assert len(segments) == 1
        assert segments[0].kind == SegmentKind.MONETARY_GIFT
        assert segments[0].payload == MonetaryGift(amount="52.00", greeting="お誕生日おめでとう")

    def test_gift_alias_becomes_gift(self, parser):
        segments = parser.parse('/gift/{"amount":"5.20","greeting":"hi"}/')

        assert len(segments) == 1
        assert segments[0].kind == SegmentKind.MONETARY_GIFT
        assert segments[0].payload == MonetaryGift(amount="5.20", greeting="hi")
        assert format_segment_as_tag(segments[0]).startswith("/red-packet/")

    def test_escaped_quotes_are_unescaped(self, parser):
        segments = parser.parse('/voice/{\\"duration\\":\\"3\\",\\"text\\":\\"yo\\"}/')

        assert segments[0].kind == SegmentKind.VOICE_CLIP
        assert segments[0].payload == VoiceClip("3", "yo")

    def test_escaped_quotes_inside_transcript(self, parser):
        segments = parser.parse('/voice/{"duration":"2","text":"she said \\"hi\\""}/')

        assert segments[0].kind == SegmentKind.VOICE_CLIP
        assert segments[0].payload.transcript == 'she said "hi"'

    def test_malformed_tag_is_kept_verbatim(self, parser):
        """解析できないタグは元の文字列のままテキストになる"""
        segments = parser.parse("/voice/{bad json}/")

        assert segments == [MessageSegment.text("/voice/{bad json}/", 0)]

    def test_separator_ordering(self, parser):
        segments = parser.parse('a---/voice/{"duration":"1","text":"x"}/---b')

        assert [s.kind for s in segments] == [SegmentKind.TEXT, SegmentKind.VOICE_CLIP, SegmentKind.TEXT]
        assert segments[0].payload == "a"
        assert segments[2].payload == "b"
        assert [s.sequence for s in segments] == [0, 1, 2]

    def test_text_around_tag_within_one_segment(self, parser):
        segments = parser.parse('before /voice/{"duration":"1","text":"x"}/ after')

        assert [s.kind for s in segments] == [SegmentKind.TEXT, SegmentKind.VOICE_CLIP, SegmentKind.TEXT]
        assert segments[0].payload == "before"
        assert segments[2].payload == "after"

    def test_blank_segments_are_dropped(self, parser):
        segments = parser.parse("a---   ---\n---b")

        assert [s.payload for s in segments] == ["a", "b"]

    def test_unknown_keyword_stays_text(self, parser):
        segments = parser.parse('/sticker/{"id":"1"}/ and a/b path')

        assert segments == [MessageSegment.text('/sticker/{"id":"1"}/ and a/b path', 0)]

    def test_unterminated_tag_stays_text(self, parser):
        segments = parser.parse('/voice/{"duration":"1"')

        assert segments == [MessageSegment.text('/voice/{"duration":"1"', 0)]

    def test_nested_braces_in_body(self, parser):
        segments = parser.parse('/voice/{"duration":"1","text":"{wink}"}/')

        assert segments[0].payload == VoiceClip("1", "{wink}")

    def test_invalid_body_fails_open(self, parser):
        segments = parser.parse('/voice/{"a"}/')

        assert segments == [MessageSegment.text('/voice/{"a"}/', 0)]

    @pytest.mark.parametrize("text", ["", "---", "/", "//", "/voice/", "/voice/{", "/red-packet/{}}/"])
    def test_total_for_odd_input(self, parser, text):
        segments = parser.parse(text)

        assert all(s.kind != SegmentKind.TEXT or s.payload.strip() for s in segments)

    def test_format_segment_as_tag_parses_back(self):
        segment = MessageSegment.gift("8.88", "恭喜发财")

        assert parse_segments(format_segment_as_tag(segment)) == [segment]
