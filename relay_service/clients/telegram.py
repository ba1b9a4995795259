"""
Telegram Bot API 客户端

封装本服务用到的 Telegram Bot API 操作:
- 发送文本消息 (sendMessage)
- 校验 Bot Token (getMe)

所有请求都使用显式超时 (默认取 config.telegram_timeout)
"""
import logging
from typing import Optional, Dict, Any

import httpx

from ..config import config

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"

# Telegram 单条消息的最大长度
MAX_MESSAGE_LENGTH = 4096


def truncate_text(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """截断超长消息，末尾加省略提示"""
    if len(text) <= limit:
        return text
    suffix = "\n\n... (消息过长，已截断)"
    return text[:limit - len(suffix)] + suffix


class TelegramClient:
    """Telegram Bot API 客户端"""

    def __init__(self, bot_token: str, timeout: Optional[float] = None):
        """
        初始化客户端

        Args:
            bot_token: Bot Token (从 @BotFather 获取)
            timeout: 请求超时秒数，默认使用 config.telegram_timeout
        """
        self.bot_token = bot_token
        self.timeout = timeout if timeout is not None else config.telegram_timeout
        self.base_url = f"{TELEGRAM_API_BASE}/bot{bot_token}"

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        parse_mode: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        发送文本消息

        Args:
            chat_id: 聊天 ID
            text: 消息文本 (超过 4096 字符会被截断)
            parse_mode: 解析模式 (Markdown, HTML, 或 None 表示纯文本)

        Returns:
            Telegram 返回的 JSON

        Raises:
            httpx.HTTPStatusError: Telegram 返回非 2xx
            httpx.HTTPError: 网络错误或超时
        """
        url = f"{self.base_url}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": truncate_text(text),
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, json=payload)
            response.raise_for_status()
            return response.json()

    async def get_me(self) -> Dict[str, Any]:
        """获取 Bot 信息 (用于校验 Token)"""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(f"{self.base_url}/getMe")
            response.raise_for_status()
            return response.json()


def _error_detail(error: Exception) -> Any:
    """提取错误详情: Telegram 返回的 JSON 优先，否则使用异常文本"""
    if isinstance(error, httpx.HTTPStatusError):
        try:
            return error.response.json()
        except ValueError:
            return error.response.text or str(error)
    return str(error) or type(error).__name__


def describe_error(detail: Any) -> str:
    """把错误详情转成一句可读的说明"""
    if isinstance(detail, dict):
        if detail.get("description"):
            return str(detail["description"])
        return f"Telegram 错误 {detail.get('error_code', '未知')}"
    return str(detail)


class TelegramSink:
    """
    通知发送端

    对 TelegramClient 的包装，不抛异常，统一返回:
        {"success": True, "response": <Telegram JSON>}
        {"success": False, "error": <Telegram 错误 JSON 或异常文本>}
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    async def send(self, token: str, chat_id: int | str, text: str) -> Dict[str, Any]:
        """向一个聊天发送消息"""
        client = TelegramClient(token, timeout=self.timeout)
        try:
            response = await client.send_message(chat_id, text)
            return {"success": True, "response": response}
        except Exception as e:
            detail = _error_detail(e)
            logger.error(f"发送 Telegram 消息失败: chat_id={chat_id}, error={detail}")
            return {"success": False, "error": detail}

    async def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        用 getMe 校验 Bot Token

        Returns:
            Bot 信息 (getMe 的 result)，Token 无效或请求失败时返回 None
        """
        try:
            data = await TelegramClient(token, timeout=self.timeout).get_me()
        except Exception as e:
            logger.warning(f"Bot Token 校验失败: {_error_detail(e)}")
            return None
        if not isinstance(data, dict) or not data.get("ok"):
            return None
        return data.get("result") or {}
