from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Dict, Any

from ..logging_config import get_logger
from ...domain.exception.chat_exceptions import (
    ChatException,
    TransportError,
    ParticipantNotFoundError,
    InvalidConversationMessageError,
    TurnSupersededError,
)

logger = get_logger("api.errors")


def create_error_response(
    error_type: str,
    user_message: str,
    detail: Any = None,
    status_code: int = 500,
    retry_available: bool = False,
    additional_data: Dict[str, Any] = None
) -> JSONResponse:
    """統一されたエラーレスポンスを作成"""
    content = {
        "error_type": error_type,
        "user_message": user_message,
        "retry_available": retry_available
    }

    if detail:
        content["detail"] = detail

    if additional_data:
        content.update(additional_data)

    return JSONResponse(
        status_code=status_code,
        content=content
    )


def chat_exception_status(exc: ChatException) -> int:
    """チャット例外に対応するHTTPステータスコード"""
    status_code_map = {
        ParticipantNotFoundError: status.HTTP_404_NOT_FOUND,
        InvalidConversationMessageError: status.HTTP_400_BAD_REQUEST,
        TurnSupersededError: status.HTTP_409_CONFLICT,
        TransportError: status.HTTP_502_BAD_GATEWAY,
    }
    return status_code_map.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)


def chat_exception_payload(exc: ChatException) -> Dict[str, Any]:
    """SSEのエラーイベントとHTTPレスポンスで共通のエラー内容"""
    return {
        "error_type": exc.error_code or "chat_error",
        "user_message": str(exc),
        "retry_available": isinstance(exc, TransportError),
    }


async def handle_validation_error(request: Request, exc: ValueError):
    """バリデーションエラーのハンドリング"""
    logger.warning(
        "Validation error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error": str(exc)
        }
    )

    return create_error_response(
        error_type="validation_error",
        user_message="入力内容に問題があります。内容を確認してください。",
        detail=str(exc),
        status_code=status.HTTP_400_BAD_REQUEST,
        retry_available=False
    )


async def handle_chat_exception(request: Request, exc: ChatException):
    """チャット例外のハンドリング"""
    status_code = chat_exception_status(exc)
    payload = chat_exception_payload(exc)

    logger.warning(
        f"Chat exception: {exc.__class__.__name__}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_code": exc.error_code,
            "error": str(exc)
        }
    )

    return create_error_response(
        error_type=payload["error_type"],
        user_message=payload["user_message"],
        status_code=status_code,
        retry_available=payload["retry_available"]
    )


async def handle_validation_exception(request: Request, exc: RequestValidationError):
    """FastAPIバリデーションエラーのハンドリング"""
    logger.warning(
        "FastAPI validation error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors()
        }
    )

    return create_error_response(
        error_type="validation_error",
        user_message="入力データが無効です",
        detail=jsonable_errors(exc),
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        retry_available=False
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx に例外オブジェクトが入ることがあるため文字列化する
    return [
        {key: (value if key != "ctx" else {k: str(v) for k, v in value.items()}) for key, value in error.items()}
        for error in exc.errors()
    ]


async def handle_generic_error(request: Request, exc: Exception):
    """その他のエラーのハンドリング"""
    logger.error(
        "Unhandled exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error": str(exc),
            "error_type": type(exc).__name__
        },
        exc_info=True
    )

    return create_error_response(
        error_type="internal_error",
        user_message="予期しないエラーが発生しました。問題が続く場合はサポートにお問い合わせください。",
        detail=str(exc) if request.app.debug else None,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        retry_available=True
    )
