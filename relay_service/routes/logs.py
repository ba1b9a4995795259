"""
Webhook 日志 API 路由

/api/webhook-logs/* 相关接口
"""
import logging

from fastapi import APIRouter

from ..database import get_db_manager
from ..repository import get_webhook_log_repository, MAX_WEBHOOK_LOGS
from .common import error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook-logs", tags=["logs"])


@router.get("")
async def list_webhook_logs(limit: int = MAX_WEBHOOK_LOGS) -> dict:
    """获取最近的 Webhook 日志 (新的在前)"""
    limit = min(max(limit, 1), MAX_WEBHOOK_LOGS)
    async with get_db_manager().get_session() as session:
        logs = await get_webhook_log_repository(session).get_recent(limit=limit)
        return {
            "success": True,
            "logs": [log.to_dict() for log in logs],
            "total": len(logs),
        }


@router.get("/{log_id}")
async def get_webhook_log(log_id: int):
    """获取单条日志"""
    async with get_db_manager().get_session() as session:
        log = await get_webhook_log_repository(session).get_by_id(log_id)
        if not log:
            return error_response(404, "Log not found")
        return {"success": True, "log": log.to_dict()}


@router.delete("")
async def clear_webhook_logs() -> dict:
    """清空所有日志"""
    async with get_db_manager().get_session() as session:
        deleted = await get_webhook_log_repository(session).clear()
    return {"success": True, "deleted": deleted}
