from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, Response

from ..config import Settings


def get_identifier(request: Request) -> str:
    """
    リクエストの識別子を取得する。
    パスに参加者IDがある場合は参加者単位、
    それ以外はIPアドレスを使用する。
    """
    participant_id = request.path_params.get("participant_id")
    if participant_id:
        return f"participant:{participant_id}"
    return get_remote_address(request)


# レート制限の設定
limiter = Limiter(key_func=get_identifier)

REPLY_RATE_LIMIT = Settings().reply_rate_limit


# レート制限エラーハンドラー
def rate_limit_error_handler(request: Request, exc: RateLimitExceeded) -> Response:
    response = Response(
        content='{"error_type": "rate_limited", "user_message": "リクエストが多すぎます。しばらく待ってから再試行してください。", "retry_available": true}',
        status_code=429,
        headers={
            "Retry-After": str(exc.retry_after) if hasattr(exc, "retry_after") else "60",
            "Content-Type": "application/json"
        }
    )
    return response
