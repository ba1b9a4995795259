"""
全局设置 API 路由

- /api/bot-token: 查看/设置全局 Bot Token
- /api/test-send: 发送测试消息
"""
import logging

from fastapi import APIRouter, Request

from ..clients.telegram import TelegramSink, describe_error
from ..config import config, mask_token, normalize_token
from .common import error_response, read_json_object

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["settings"])


@router.get("/bot-token")
async def get_bot_token() -> dict:
    """获取全局 Bot Token (脱敏)"""
    token = config.telegram_bot_token
    return {
        "success": True,
        "botToken": mask_token(token),
        "isSet": token is not None,
    }


@router.post("/bot-token")
async def set_bot_token(request: Request):
    """
    设置全局 Bot Token

    Body:
        botToken: str - 先用 getMe 校验，通过后写入 system_config
    """
    data = await read_json_object(request)
    if data is None:
        return error_response(400, "Invalid JSON body")

    token = normalize_token(data.get("botToken"))
    if not token:
        return error_response(400, "Invalid token")

    bot_info = await TelegramSink().verify_token(token)
    if bot_info is None:
        return error_response(400, "Invalid bot token")

    await config.set_global_token(token)
    return {
        "success": True,
        "botToken": mask_token(token),
        "bot": bot_info,
    }


@router.post("/test-send")
async def test_send(request: Request):
    """
    发送测试消息

    Body:
        chatId: str (必填)
        message: str (必填)
        botToken: str (可选，默认使用全局 Token)
    """
    data = await read_json_object(request)
    if data is None:
        return error_response(400, "Invalid JSON body")

    chat_id = data.get("chatId")
    message = data.get("message")
    if not chat_id or not message:
        return error_response(400, "chatId and message required")

    token = normalize_token(data.get("botToken")) or config.telegram_bot_token
    if not token:
        return error_response(400, "Bot token is required")

    result = await TelegramSink().send(token, chat_id, str(message))
    if not result["success"]:
        return error_response(400, describe_error(result["error"]))
    return {"success": True, "response": result["response"]}
