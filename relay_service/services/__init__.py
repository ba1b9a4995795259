"""
服务模块
"""
from .dispatcher import Dispatcher, DispatchOutcome
from .webhook_log import record_webhook
from .poller import execute_poll, normalize_poll

__all__ = ["Dispatcher", "DispatchOutcome", "record_webhook", "execute_poll", "normalize_poll"]
