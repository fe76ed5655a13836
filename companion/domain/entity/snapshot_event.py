from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SnapshotEventKind(str, Enum):
    REPLY_DELTA = "replyDelta"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class CompletionSnapshotEvent:
    """
    ストリーミング転送の1イベント

    REPLY_DELTA の full_text_so_far はそれまでに生成された全文であり、差分ではない。
    受信側は前回の蓄積テキストを上書きしなければならない。
    """
    kind: SnapshotEventKind
    full_text_so_far: Optional[str] = None
    error_message: Optional[str] = None
    is_final: bool = False
