from typing import Protocol, AsyncIterator

class CompletionClient(Protocol):
    """補完エンドポイントとの通信を抽象化するインターフェース"""

    def open_stream(self, payload: dict) -> AsyncIterator[str]:
        """
        リクエストを送信し、行区切りのイベントストリームを1行ずつ返す

        Args:
            payload: 送信するリクエストボディ（シリアライズ済みのプロンプトコンテキスト等）

        Yields:
            レスポンスの生の行（改行なし）

        Raises:
            TransportError: 非2xx応答、接続断、タイムアウトの場合
        """
