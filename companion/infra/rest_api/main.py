import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from tortoise import Tortoise

from ..config import Settings
from ..di import get_container
from ..logging_config import LoggingMiddleware, get_logger
from ..tortoise_client.config import get_tortoise_config
from ...domain.exception.chat_exceptions import ChatException

from .routers.profiles import router as profiles_router
from .routers.attachments import router as attachments_router
from .routers.conversations import router as conversations_router
from .error_handlers import (
    handle_validation_error,
    handle_generic_error,
    handle_chat_exception,
    handle_validation_exception,
)
from .rate_limiter import limiter, rate_limit_error_handler

# Initialize settings and logger
settings = Settings()
log_level = logging.INFO if settings.environment == "production" else logging.DEBUG
logger = get_logger("app", level=log_level)

app = FastAPI(
    title="Companion Chat Pipeline API",
    version="0.1.0"
)

# レート制限の設定
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_error_handler)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# CORS 設定（環境設定に基づく）
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 各機能モジュールのルーター登録
app.include_router(profiles_router)
app.include_router(attachments_router)
app.include_router(conversations_router)


@app.on_event("startup")
async def startup_event():
    """アプリケーション起動時の初期化処理"""
    logger.info("Application starting up", extra={"environment": settings.environment})

    await Tortoise.init(config=get_tortoise_config(settings.database_url))
    await Tortoise.generate_schemas(safe=True)
    logger.info("Tortoise ORM initialized")


@app.on_event("shutdown")
async def shutdown_event():
    """アプリケーション終了時のクリーンアップ"""
    await get_container().aclose()
    await Tortoise.close_connections()
    logger.info("Application shutdown complete")


@app.get("/api/v1/health")
async def health_check():
    """ヘルスチェックエンドポイント"""
    return {"status": "healthy", "version": "0.1.0"}


# エラーハンドラーの登録
app.add_exception_handler(ChatException, handle_chat_exception)
app.add_exception_handler(RequestValidationError, handle_validation_exception)
app.add_exception_handler(ValueError, handle_validation_error)
app.add_exception_handler(Exception, handle_generic_error)


#uvicorn companion.infra.rest_api.main:app --reload
