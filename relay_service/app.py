"""
Relay Service 主应用

接收第三方 Webhook (工单、评论、任意 JSON)，按规则匹配后转发到 Telegram。

运行方式:
    python -m relay_service.app
    # 或
    uvicorn relay_service.app:app --host 0.0.0.0 --port 3000

数据存储:
    - 默认使用 SQLite 数据库 (data/relay_service.db)
    - 支持 MySQL (通过 DATABASE_URL 环境变量配置)
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import config, mask_token
from .database import database_lifespan, check_database_connection
from .routes import webhook_router, rules_router, logs_router, settings_router, polls_router

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ============== FastAPI 应用 ==============

@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    async with database_lifespan():
        await config.initialize()

        for warning in config.validate():
            logger.warning(f"配置警告: {warning}")

        logger.info(f"Relay Service 启动 v{VERSION}")
        logger.info(f"  端口: {config.port}")
        logger.info(f"  Telegram 超时: {config.telegram_timeout}s")

        yield

        logger.info("Relay Service 关闭")


# 创建 FastAPI 应用
app = FastAPI(
    title="Relay Service",
    description="Webhook 通知转发服务 - 按规则把事件推送到 Telegram",
    version=VERSION,
    lifespan=lifespan
)

# CORS 中间件 (管理台前端单独部署)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(webhook_router)
app.include_router(rules_router)
app.include_router(logs_router)
app.include_router(settings_router)
app.include_router(polls_router)


# ============== 基础路由 ==============

@app.get("/")
async def root() -> dict:
    """根路径"""
    return {
        "service": "Relay Service",
        "version": VERSION,
        "status": "running"
    }


@app.get("/health")
async def health() -> dict:
    """健康检查"""
    database_ok = await check_database_connection()
    return {
        "status": "healthy" if database_ok else "unhealthy",
        "database": "ok" if database_ok else "error",
        "config_warnings": config.validate(),
        "bot_token": mask_token(config.telegram_bot_token) or None,
        "version": VERSION
    }


# ============== 入口点 ==============

def main():
    """主函数"""
    import uvicorn

    config.load_env()
    uvicorn.run(
        "relay_service.app:app",
        host="0.0.0.0",
        port=config.port,
        reload=False
    )


if __name__ == "__main__":
    main()
