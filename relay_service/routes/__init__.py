"""
路由模块
"""
from .webhook import router as webhook_router
from .rules import router as rules_router
from .logs import router as logs_router
from .settings import router as settings_router
from .polls import router as polls_router

__all__ = ["webhook_router", "rules_router", "logs_router", "settings_router", "polls_router"]
