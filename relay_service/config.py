"""
Relay Service 配置管理

配置来源:
- 环境变量: 端口、默认 Bot Token、Telegram 请求超时
- 数据库 system_config 表: 通过管理 API 设置的全局 Bot Token (优先于环境变量)

使用方式:
    from relay_service.config import config
    await config.initialize()
    token = config.telegram_bot_token   # Optional[str]
"""
import logging
import os
from typing import Optional

from .database import get_db_manager
from .repository import get_system_config_repository

logger = logging.getLogger(__name__)

# 默认端口
DEFAULT_PORT = 3000

# Telegram / 外部 HTTP 请求超时时间（秒）
DEFAULT_TELEGRAM_TIMEOUT = 10.0

# system_config 中保存全局 Token 的键
GLOBAL_BOT_TOKEN_KEY = "global_bot_token"

# 旧版管理台写入的占位 Token，等同于未配置
PLACEHOLDER_TOKENS = frozenset({"YOUR_TOKEN", "ВАШ_ТОКЕН_ЗДЕСЬ"})


def normalize_token(token: Optional[str]) -> Optional[str]:
    """
    规范化 Bot Token

    空字符串、纯空白和旧版占位值都视为未配置，返回 None
    """
    if not token or not isinstance(token, str):
        return None
    token = token.strip()
    if not token or token in PLACEHOLDER_TOKENS:
        return None
    return token


def mask_token(token: Optional[str]) -> str:
    """脱敏显示 Token (只保留前 5 位)"""
    if not token:
        return ""
    return token[:5] + "***"


class RelayConfig:
    """
    服务配置

    环境变量:
        RELAY_PORT: 监听端口 (默认 3000)
        TELEGRAM_BOT_TOKEN: 默认 Bot Token (可选)
        TELEGRAM_TIMEOUT: 外部 HTTP 请求超时秒数 (默认 10)
    """

    def __init__(self):
        self.port: int = DEFAULT_PORT
        self.telegram_timeout: float = DEFAULT_TELEGRAM_TIMEOUT
        self.telegram_bot_token: Optional[str] = None

    def load_env(self):
        """从环境变量加载基本配置"""
        if os.getenv("RELAY_PORT"):
            self.port = int(os.getenv("RELAY_PORT"))
        if os.getenv("TELEGRAM_TIMEOUT"):
            self.telegram_timeout = float(os.getenv("TELEGRAM_TIMEOUT"))
        self.telegram_bot_token = normalize_token(os.getenv("TELEGRAM_BOT_TOKEN"))

    async def initialize(self):
        """初始化配置 - 环境变量 + 数据库中的全局 Token"""
        self.load_env()

        try:
            async with get_db_manager().get_session() as session:
                repo = get_system_config_repository(session)
                stored = normalize_token(await repo.get_value(GLOBAL_BOT_TOKEN_KEY, ""))
            if stored:
                self.telegram_bot_token = stored
                logger.info("已从数据库加载全局 Bot Token")
        except Exception as e:
            logger.error(f"从数据库加载全局 Bot Token 失败: {e}")

        logger.info(f"全局 Bot Token: {mask_token(self.telegram_bot_token) or '未配置'}")

    async def set_global_token(self, token: str):
        """
        设置全局 Bot Token 并持久化

        调用方负责先校验 Token 的有效性
        """
        token = normalize_token(token)
        if not token:
            raise ValueError("无效的 Bot Token")

        async with get_db_manager().get_session() as session:
            repo = get_system_config_repository(session)
            await repo.set(GLOBAL_BOT_TOKEN_KEY, token, description="全局 Telegram Bot Token")

        self.telegram_bot_token = token
        logger.info("全局 Bot Token 已更新")

    def validate(self) -> list[str]:
        """验证配置，返回警告列表"""
        errors = []
        if not self.telegram_bot_token:
            errors.append("未配置全局 Bot Token，未设置 botToken 的规则将无法投递")
        if self.telegram_timeout <= 0:
            errors.append(f"TELEGRAM_TIMEOUT 必须大于 0: {self.telegram_timeout}")
        return errors


# ============== 全局配置实例 ==============

config = RelayConfig()
