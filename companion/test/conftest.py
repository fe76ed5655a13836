"""
テスト共通のフィクスチャ
"""

import asyncio
from collections import defaultdict

import pytest

from companion.domain.entity.turn_message import ConversationKey, ConversationSpace


class InMemoryConversationLog:
    """メモリ上の会話ログ（ConversationLog ポートの実装）"""

    def __init__(self):
        self.entries = defaultdict(list)
        self.append_delay = 0.0

    async def read_last(self, key, k):
        if k <= 0:
            return []
        return list(self.entries[key][-k:])

    async def append(self, key, message):
        if self.append_delay:
            await asyncio.sleep(self.append_delay)
        self.entries[key].append(message)
        return len(self.entries[key]) - 1


@pytest.fixture
def conversation_log():
    return InMemoryConversationLog()


@pytest.fixture
def primary_key():
    return ConversationKey("p1", ConversationSpace.PRIMARY)


@pytest.fixture
def no_sleep():
    """待機時間を記録するだけの sleep"""
    calls = []

    async def sleep(seconds):
        calls.append(seconds)
        await asyncio.sleep(0)

    sleep.calls = calls
    return sleep
