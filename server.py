# -*- coding: utf-8 -*-
"""
===================================
Messenger 機器人 - FastAPI 服務入口
===================================

職責：
1. Webhook 訂閱驗證（GET /webhook）
2. 接收推送並在後臺任務中分發（POST /webhook）
3. 健康檢查接口
4. 生命週期內構造運行時、加載命令、啟停定時問候

啟動方式：
    python main.py
    uvicorn server:app --host 0.0.0.0 --port 3000
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel

from bot.handler import handle_webhook, process_events, verify_webhook
from bot.models import WebhookResponse
from bot.runtime import BotRuntime, create_runtime
from config import get_config
from scheduler import MomentScheduler, create_moment_scheduler

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


class RootResponse(BaseModel):
    """根路由響應"""
    message: str
    version: str


class HealthResponse(BaseModel):
    """健康檢查響應"""
    status: str
    timestamp: str
    commands: int
    pending_replies: int


def to_http_response(webhook_response: WebhookResponse) -> Response:
    """WebhookResponse -> FastAPI 響應（字符串按純文本返回）"""
    if isinstance(webhook_response.body, str):
        return PlainTextResponse(
            content=webhook_response.body,
            status_code=webhook_response.status_code,
            headers=webhook_response.headers,
        )
    return JSONResponse(
        content=webhook_response.body,
        status_code=webhook_response.status_code,
        headers=webhook_response.headers,
    )


def start_moments(runtime: BotRuntime) -> MomentScheduler:
    """構造並在後臺線程啟動定時問候調度器"""
    scheduler = create_moment_scheduler(runtime)
    scheduler.start_background()
    return scheduler


def create_app(runtime: Optional[BotRuntime] = None, enable_moments: Optional[bool] = None) -> FastAPI:
    """
    創建並配置 FastAPI 應用實例

    Args:
        runtime: 已構造的運行時（測試時注入）；為空時在啟動階段按配置創建並加載命令
        enable_moments: 是否啟動定時問候（默認讀取 MOMENTS_ENABLED；注入運行時時默認關閉）

    Returns:
        配置完成的 FastAPI 應用實例
    """

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        owns_runtime = runtime is None
        if owns_runtime:
            config = get_config()
            for warning in config.validate():
                logger.warning(warning)
            app.state.runtime = create_runtime(config)
            app.state.runtime.registry.load()
        else:
            app.state.runtime = runtime

        moments_on = enable_moments
        if moments_on is None:
            moments_on = owns_runtime and app.state.runtime.config.moments_enabled

        app.state.moment_scheduler = start_moments(app.state.runtime) if moments_on else None
        try:
            yield
        finally:
            if app.state.moment_scheduler is not None:
                app.state.moment_scheduler.stop()
            if owns_runtime:
                app.state.runtime.close()

    app = FastAPI(
        title="Messenger Command Bot",
        description="Messenger webhook 命令機器人",
        version=APP_VERSION,
        lifespan=app_lifespan,
    )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"[Server] 請求處理異常: {request.method} {request.url.path}: {exc}")
        return PlainTextResponse("Something broke!", status_code=500)

    @app.get("/", response_model=RootResponse, tags=["Health"], summary="服務狀態")
    async def root() -> RootResponse:
        return RootResponse(message="Messenger bot is running", version=APP_VERSION)

    @app.get("/webhook", tags=["Webhook"], summary="訂閱驗證")
    async def webhook_verify(request: Request) -> Response:
        return to_http_response(verify_webhook(request.app.state.runtime, dict(request.query_params)))

    @app.post("/webhook", tags=["Webhook"], summary="接收推送")
    async def webhook_receive(request: Request, background_tasks: BackgroundTasks) -> Response:
        bot_runtime = request.app.state.runtime
        body = await request.body()
        events, webhook_response = handle_webhook(bot_runtime, dict(request.headers), body)
        if events:
            background_tasks.add_task(process_events, bot_runtime, events)
        return to_http_response(webhook_response)

    @app.get("/api/health", response_model=HealthResponse, tags=["Health"], summary="健康檢查")
    async def health_check(request: Request) -> HealthResponse:
        bot_runtime = request.app.state.runtime
        return HealthResponse(
            status="ok",
            timestamp=datetime.now().isoformat(),
            commands=len(bot_runtime.registry),
            pending_replies=len(bot_runtime.correlations),
        )

    return app


# 供 uvicorn server:app 使用
app = create_app()
