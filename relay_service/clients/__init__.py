"""
外部服务客户端

- telegram: Telegram Bot API 客户端与通知发送端
"""
from .telegram import TelegramClient, TelegramSink

__all__ = ["TelegramClient", "TelegramSink"]
