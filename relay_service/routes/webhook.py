"""
Webhook 接收路由

POST /webhook: 接收第三方事件，按规则分发到 Telegram
"""
import logging

import httpx
from fastapi import APIRouter, Request

from ..clients.telegram import TelegramSink
from ..config import config
from ..database import get_db_manager
from ..repository import get_rule_repository
from ..services.dispatcher import Dispatcher
from ..services.webhook_log import record_webhook
from .common import error_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])

VERIFY_EVENT = "webhook.verify"


async def _verify_callback(body: dict) -> dict:
    """
    处理 webhook.verify 事件: 请求 payload.callback 完成验证

    回调失败只记录日志，始终返回 {"verified": true}
    """
    payload = body.get("payload")
    callback_url = payload.get("callback") if isinstance(payload, dict) else None

    if callback_url:
        try:
            async with httpx.AsyncClient(timeout=config.telegram_timeout) as client:
                response = await client.get(str(callback_url))
                response.raise_for_status()
            logger.info("Webhook 验证成功")
        except Exception as e:
            logger.error(f"Webhook 验证回调失败: {e}")

    return {"verified": True}


@router.post("/webhook")
async def receive_webhook(request: Request):
    """
    接收 Webhook

    请求体可以是 {"event": ..., "payload": {...}} 信封，也可以直接是数据本身。

    Returns:
        {"matched": int, "sent": int, "telegram_results": [...]}
    """
    try:
        body = await request.json()
    except ValueError:
        return error_response(400, "Invalid JSON body")

    if isinstance(body, dict) and body.get("event") == VERIFY_EVENT:
        return await _verify_callback(body)

    payload = body
    if isinstance(body, dict) and body.get("payload") is not None:
        payload = body["payload"]

    try:
        async with get_db_manager().get_session() as session:
            rules = await get_rule_repository(session).get_all()
    except Exception as e:
        logger.error(f"读取规则失败: {e}", exc_info=True)
        return error_response(500, "Failed to load rules")

    dispatcher = Dispatcher(TelegramSink(), default_token=config.telegram_bot_token)
    outcome = await dispatcher.dispatch(payload, rules, raw_body=body)

    await record_webhook(body, outcome.matched, outcome.total_rules, outcome.results)

    return {
        "matched": outcome.matched,
        "sent": outcome.sent,
        "telegram_results": outcome.results,
    }
