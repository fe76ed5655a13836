from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ReplyEnvelope:
    """
    LLM出力をデコードした構造化結果

    Attributes:
        chat_reply_text: チャット本文（デコード失敗時は生テキスト）
        status_data: 物語世界の状態を表す任意のキー/値（省略・失敗時はNone）
    """
    chat_reply_text: str
    status_data: Optional[dict] = None
