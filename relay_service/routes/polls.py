"""
HTTP 轮询管理 API 路由

/api/polls/* 相关接口。轮询不在服务内定时执行，由外部调度器调用 /run 触发。
"""
import logging

from fastapi import APIRouter, Request

from ..config import config
from ..database import get_db_manager
from ..repository import get_poll_repository, get_poll_run_repository
from ..services.poller import execute_poll, normalize_poll
from .common import error_response, read_json_object

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/polls", tags=["polls"])

MAX_HISTORY_LIMIT = 200
DEFAULT_HISTORY_LIMIT = 100


def _missing_required(fields: dict) -> bool:
    return not fields["name"] or not fields["url"] or not fields["chat_id"]


@router.get("")
async def list_polls() -> dict:
    """获取所有轮询配置"""
    async with get_db_manager().get_session() as session:
        polls = await get_poll_repository(session).get_all()
        return {
            "success": True,
            "polls": [poll.to_dict() for poll in polls],
            "total": len(polls),
        }


@router.get("/history")
async def get_poll_history(pollId: int | None = None, limit: int = DEFAULT_HISTORY_LIMIT) -> dict:
    """
    获取轮询执行记录 (新的在前)

    Query:
        pollId: 只看某个轮询 (可选)
        limit: 条数，1 ~ 200，默认 100
    """
    limit = min(MAX_HISTORY_LIMIT, max(1, limit))
    async with get_db_manager().get_session() as session:
        runs = await get_poll_run_repository(session).get_recent(poll_id=pollId, limit=limit)
        return {
            "success": True,
            "runs": [run.to_dict() for run in runs],
            "total": len(runs),
        }


@router.post("")
async def create_poll(request: Request):
    """
    创建轮询

    Body (camelCase):
        name, url, chatId 必填；method, headersJson, bodyJson, conditionJson,
        messageTemplate, botToken, enabled, onlyOnChange, continueAfterMatch,
        timeoutSec (>= 3), intervalSec (>= 5) 可选
    """
    data = await read_json_object(request)
    if data is None:
        return error_response(400, "Invalid JSON body")

    fields = normalize_poll(data)
    if _missing_required(fields):
        return error_response(400, "name, url and chatId are required")

    async with get_db_manager().get_session() as session:
        poll = await get_poll_repository(session).create(**fields)
        return {"success": True, "poll": poll.to_dict()}


@router.put("/{poll_id}")
async def update_poll(poll_id: int, request: Request):
    """更新轮询 (与现有配置合并后重新规范化)"""
    data = await read_json_object(request)
    if data is None:
        return error_response(400, "Invalid JSON body")

    async with get_db_manager().get_session() as session:
        repo = get_poll_repository(session)
        poll = await repo.get_by_id(poll_id)
        if not poll:
            return error_response(404, "Poll not found")

        fields = normalize_poll(data, current=poll.to_dict())
        if _missing_required(fields):
            return error_response(400, "name, url and chatId are required")

        poll = await repo.update(poll_id, **fields)
        return {"success": True, "poll": poll.to_dict()}


@router.delete("/{poll_id}")
async def delete_poll(poll_id: int):
    """删除轮询"""
    async with get_db_manager().get_session() as session:
        deleted = await get_poll_repository(session).delete(poll_id)
    if not deleted:
        return error_response(404, "Poll not found")
    return {"success": True}


@router.post("/{poll_id}/run")
async def run_poll(poll_id: int):
    """立即执行一次轮询 (已停用的轮询也会执行)"""
    async with get_db_manager().get_session() as session:
        poll = await get_poll_repository(session).get_by_id(poll_id)
    if not poll:
        return error_response(404, "Poll not found")

    run = await execute_poll(poll, default_token=config.telegram_bot_token, force=True)
    return {"success": True, "run": run}
