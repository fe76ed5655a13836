import copy
from collections import deque
from typing import Optional


class StatusTracker:
    """
    物語世界の状態スナップショットの保持

    最新の状態（live）と、それ以前の状態を最大 history_limit 件保持します。
    """

    def __init__(self, history_limit: int = 5) -> None:
        self.history_limit = history_limit
        self._live: Optional[dict] = None
        self._history: deque[dict] = deque(maxlen=max(history_limit, 0))

    @property
    def live(self) -> Optional[dict]:
        return copy.deepcopy(self._live)

    @property
    def history(self) -> list[dict]:
        """古い順の過去スナップショット"""
        return [copy.deepcopy(s) for s in self._history]

    def record(self, status_data: Optional[dict]) -> None:
        """
        新しい状態を記録する

        Noneの場合（モデルが状態を省略した、またはデコードに失敗した）は何もしない。
        """
        if status_data is None:
            return
        if self._live is not None:
            self._history.append(self._live)
        self._live = copy.deepcopy(status_data)

    def restore(self, snapshots: list[dict]) -> None:
        """
        永続化済みのスナップショット（古い順、末尾が最新）から状態を復元する
        """
        self._history.clear()
        self._live = None
        for snapshot in snapshots:
            self.record(snapshot)
