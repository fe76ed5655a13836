import os
import httpx
import asyncio
from typing import AsyncGenerator, Optional
from dotenv import load_dotenv

from ..domain.exception.chat_exceptions import TransportError
from .logging_config import get_logger

logger = get_logger("infra.completion")


class SnapshotCompletionClient:
    """スナップショット形式のストリーミング補完エンドポイントと連携するクライアント"""

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        SnapshotCompletionClient のコンストラクタ

        Args:
            endpoint: 補完エンドポイントのURL
            api_key: APIキー（Noneの場合は環境変数 COMPLETION_API_KEY、.env の順に探す）
            default_model: デフォルトで使用するモデル名
            timeout: リクエストのタイムアウト秒数
            transport: httpx のトランスポート（テスト用の差し替え）
        """
        self.endpoint = endpoint
        self.api_key = api_key or os.environ.get("COMPLETION_API_KEY")
        if not self.api_key:
            load_dotenv()
            self.api_key = os.environ.get("COMPLETION_API_KEY")

        self.model = default_model
        self.timeout = timeout
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self.api_key:
            self.headers["Authorization"] = f"Bearer {self.api_key}"
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        """スレッドセーフなクライアント取得"""
        if self._client is None:
            async with self._client_lock:
                if self._client is None:  # ダブルチェックロッキング
                    self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def open_stream(self, payload: dict) -> AsyncGenerator[str, None]:
        """
        リクエストを送信し、レスポンスを1行ずつ返す

        Args:
            payload: リクエストボディ

        Yields:
            レスポンスの行

        Raises:
            TransportError: 非2xx応答、タイムアウト、接続断の場合
        """
        client = await self._ensure_client()

        data = dict(payload)
        if self.model and "model" not in data:
            data["model"] = self.model

        try:
            async with client.stream(
                "POST",
                self.endpoint,
                headers=self.headers,
                json=data
            ) as response:
                response.raise_for_status()

                async for line in response.aiter_lines():
                    yield line

        except httpx.TimeoutException:
            raise TransportError("completion request timed out")
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning("Completion endpoint returned an error status", extra={"status_code": status_code})
            raise TransportError(f"completion endpoint returned {status_code}", status_code=status_code)
        except httpx.HTTPError as e:
            raise TransportError(f"connection error: {e.__class__.__name__}")

    async def aclose(self):
        """HTTPクライアントを閉じる"""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        """非同期コンテキストマネージャーのエントリー"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """非同期コンテキストマネージャーの終了時にリソースをクリーンアップ"""
        await self.aclose()
