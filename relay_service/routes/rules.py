"""
规则管理 API 路由

/api/rules/* 相关接口
"""
import logging
from typing import Any

from fastapi import APIRouter, Request

from ..clients.telegram import TelegramSink
from ..config import normalize_token
from ..database import get_db_manager
from ..repository import get_rule_repository
from .common import error_response, read_json_object

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rules", tags=["rules"])


class RuleValidationError(ValueError):
    """规则请求体校验失败"""


def _optional_str(data: dict, key: str) -> str | None:
    if key not in data or data[key] is None:
        return None
    return str(data[key])


def _parse_chat_ids(value: Any) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        raise RuleValidationError("chatIds must be an array")
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


async def _validate_bot_token(token: Any) -> str:
    """校验 Bot Token (非空且 getMe 成功)，返回规范化后的 Token"""
    normalized = normalize_token(token)
    if not normalized:
        raise RuleValidationError("Bot token is required")
    if await TelegramSink().verify_token(normalized) is None:
        raise RuleValidationError("Invalid bot token")
    return normalized


def _parse_rule_fields(data: dict) -> dict:
    """把 camelCase 请求体转换为 Repository 参数 (只包含请求中出现的字段)"""
    fields = {}
    for key, field in (("name", "name"), ("condition", "condition"), ("chatId", "chat_id"),
                       ("messageTemplate", "message_template")):
        value = _optional_str(data, key)
        if value is not None:
            fields[field] = value.strip() if field == "chat_id" else value
    if "chatIds" in data:
        fields["chat_ids"] = _parse_chat_ids(data["chatIds"])
    if "enabled" in data:
        fields["enabled"] = data["enabled"] is not False
    return fields


@router.get("")
async def list_rules() -> dict:
    """获取所有规则"""
    async with get_db_manager().get_session() as session:
        rules = await get_rule_repository(session).get_all()
        return {
            "success": True,
            "rules": [rule.to_dict() for rule in rules],
            "total": len(rules),
        }


@router.get("/{rule_id}")
async def get_rule(rule_id: int):
    """获取单条规则"""
    async with get_db_manager().get_session() as session:
        rule = await get_rule_repository(session).get_by_id(rule_id)
        if not rule:
            return error_response(404, "Rule not found")
        return {"success": True, "rule": rule.to_dict()}


@router.post("")
async def create_rule(request: Request):
    """
    创建规则

    Body:
        name: str
        condition: str - 条件表达式，例如 payload.category === "incident"
        chatId: str
        chatIds: list[str] (可选，非空时优先于 chatId)
        botToken: str - 必填，先用 getMe 校验，无效时返回 400
        messageTemplate: str (可选)
        enabled: bool (默认 true)
    """
    data = await read_json_object(request)
    if data is None:
        return error_response(400, "Invalid JSON body")

    try:
        fields = _parse_rule_fields(data)
        bot_token = await _validate_bot_token(data.get("botToken"))
    except RuleValidationError as e:
        return error_response(400, str(e))

    async with get_db_manager().get_session() as session:
        rule = await get_rule_repository(session).create(
            name=fields.get("name", ""),
            condition=fields.get("condition", ""),
            bot_token=bot_token,
            chat_id=fields.get("chat_id"),
            chat_ids=fields.get("chat_ids"),
            message_template=fields.get("message_template", ""),
            enabled=fields.get("enabled", True),
        )
        return {"success": True, "rule": rule.to_dict()}


@router.put("/{rule_id}")
async def update_rule(rule_id: int, request: Request):
    """
    部分更新规则

    只覆盖请求中出现的字段；请求中带 botToken 时重新校验
    """
    data = await read_json_object(request)
    if data is None:
        return error_response(400, "Invalid JSON body")

    async with get_db_manager().get_session() as session:
        repo = get_rule_repository(session)
        if not await repo.get_by_id(rule_id):
            return error_response(404, "Rule not found")

        try:
            fields = _parse_rule_fields(data)
            if "botToken" in data:
                fields["bot_token"] = await _validate_bot_token(data["botToken"])
        except RuleValidationError as e:
            return error_response(400, str(e))

        rule = await repo.update(rule_id, **fields)
        return {"success": True, "rule": rule.to_dict()}


@router.delete("/{rule_id}")
async def delete_rule(rule_id: int):
    """删除规则"""
    async with get_db_manager().get_session() as session:
        deleted = await get_rule_repository(session).delete(rule_id)
    if not deleted:
        return error_response(404, "Rule not found")
    return {"success": True}
