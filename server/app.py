# app.py

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.trade_api import router as trade_router
from api.rating_api import router as rating_router
from services.reputation_service import ReputationEngine
from services.trade_service import TradeEngine

DEFAULT_CORS_ORIGINS = "http://127.0.0.1:5500,http://localhost:5500"


def create_app(repository=None, notifier=None):
    """
    创建并配置 Web 应用

    repository 默认使用 MySQL；测试时传入 InMemoryRepository
    """
    if repository is None:
        from db.repository import MySQLRepository
        repository = MySQLRepository()

    app = FastAPI(title="Barter Marketplace Trade Core", version="1.0")

    origins = os.environ.get("MARKET_CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],  # 允许所有HTTP方法
        allow_headers=["*"],  # 允许所有HTTP头
    )

    app.state.repository = repository
    app.state.trade_engine = TradeEngine(repository, notifier=notifier)
    app.state.reputation_engine = ReputationEngine(repository)

    register_routes(app)

    return app


def register_routes(app):
    """
    把 trade_api / rating_api 挂上去
    """
    app.include_router(trade_router)
    app.include_router(rating_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:create_app",
        factory=True,
        host="0.0.0.0",
        port=int(os.environ.get("MARKET_PORT", "8000")),
    )
