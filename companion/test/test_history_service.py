"""
HistoryService / StatusTracker Unit Tests
"""

import pytest

from companion.domain.entity.turn_message import ConversationTurnMessage, Role
from companion.usecase.chat_interaction.history_service import HistoryService
from companion.usecase.chat_interaction.status_tracker import StatusTracker


def msg(role, text):
    return ConversationTurnMessage.plain(role, text)


class TestHistoryService:
    """HistoryServiceの包括的テスト"""

    @pytest.fixture
    def service(self):
        return HistoryService()

    @pytest.fixture
    def sample_mixed_history(self):
        """ユーザーの連投とアシスタントの複数セグメントを含む履歴"""
        return [
            msg(Role.USER, "Hello"),
            msg(Role.USER, "Are you awake?"),
            msg(Role.ASSISTANT, "Yes"),
            msg(Role.ASSISTANT, "Just woke up"),
            msg(Role.USER, "Good morning"),
        ]

    def test_group_turns_merges_same_role(self, service, sample_mixed_history):
        turns = service.group_turns(sample_mixed_history)

        assert [[m.text for m in t] for t in turns] == [
            ["Hello", "Are you awake?"],
            ["Yes", "Just woke up"],
            ["Good morning"],
        ]

    def test_group_turns_empty(self, service):
        assert service.group_turns([]) == []

    def test_split_pending_user_turn(self, service, sample_mixed_history):
        turns, pending = service.split_pending_user_turn(service.group_turns(sample_mixed_history))

        assert len(turns) == 2
        assert [m.text for m in pending] == ["Good morning"]

    def test_no_pending_when_assistant_last(self, service):
        turns = service.group_turns([msg(Role.USER, "a"), msg(Role.ASSISTANT, "b")])

        remaining, pending = service.split_pending_user_turn(turns)

        assert remaining == turns
        assert pending == []

    def test_recent_rounds(self, service):
        turns = [[msg(Role.USER, str(i))] if i % 2 == 0 else [msg(Role.ASSISTANT, str(i))] for i in range(10)]

        assert len(service.recent_rounds(turns, 2)) == 4
        assert service.recent_rounds(turns, 0) == []
        assert len(service.recent_rounds(turns, 50)) == 10

    def test_recent_turns(self, service):
        turns = [[msg(Role.USER, "x")]] * 5

        assert len(service.recent_turns(turns, 3)) == 3
        assert service.recent_turns(turns, 0) == []


class TestStatusTracker:

    def test_initially_empty(self):
        tracker = StatusTracker()

        assert tracker.live is None
        assert tracker.history == []

    def test_record_moves_previous_to_history(self):
        tracker = StatusTracker(history_limit=5)
        for i in range(8):
            tracker.record({"step": i})

        assert tracker.live == {"step": 7}
        assert tracker.history == [{"step": i} for i in range(2, 7)]

    def test_restore_from_snapshots(self):
        tracker = StatusTracker(history_limit=2)
        tracker.record({"stale": True})

        tracker.restore([{"step": 0}, {"step": 1}, {"step": 2}, {"step": 3}])

        assert tracker.live == {"step": 3}
        assert tracker.history == [{"step": 1}, {"step": 2}]

    def test_none_is_ignored(self):
        tracker = StatusTracker()
        tracker.record({"mood": "calm"})
        tracker.record(None)

        assert tracker.live == {"mood": "calm"}
        assert tracker.history == []

    def test_snapshots_are_copies(self):
        tracker = StatusTracker()
        status = {"inventory": ["key"]}
        tracker.record(status)
        status["inventory"].append("map")

        live = tracker.live
        live["inventory"].append("coin")

        assert tracker.live == {"inventory": ["key"]}
