"""
HTTP 轮询

按轮询配置请求目标 URL，对返回的 JSON 求值结构化条件，命中时发送 Telegram 通知，
并写入一条执行记录 (poll_runs)。

本模块只负责单次执行，周期调度由外部触发 (POST /api/polls/{id}/run)。
"""
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from ..clients.telegram import TelegramSink
from ..condition import evaluate_structured_condition
from ..config import config, normalize_token
from ..database import get_db_manager
from ..formatter import format_message
from ..models import Poll
from ..repository import get_poll_repository, get_poll_run_repository

logger = logging.getLogger(__name__)

# 轮询间隔与超时的下限/默认值 (秒)
MIN_INTERVAL_SEC = 5
DEFAULT_INTERVAL_SEC = 60
MIN_TIMEOUT_SEC = 3
DEFAULT_TIMEOUT_SEC = 10

# 执行记录中响应内容的最大长度
MAX_SNIPPET_CHARS = 10000

METHODS_WITHOUT_BODY = ("GET", "HEAD")

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")


# ============== 配置规范化 ==============

def _parse_int(value: Any, default: int) -> int:
    """宽松解析整数 ("15s" -> 15)，失败时返回 default"""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value) or default
    match = _INT_PREFIX.match(str(value)) if value is not None else None
    return (int(match.group(1)) or default) if match else default


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def normalize_poll(data: dict, current: Optional[dict] = None) -> dict:
    """
    规范化轮询配置

    Args:
        data: 请求体 (camelCase 字段)
        current: 已有配置 (Poll.to_dict())，用于部分更新时合并

    Returns:
        Poll 模型字段 (snake_case)
    """
    merged = {**(current or {}), **(data or {})}

    return {
        "name": str(merged.get("name") or "").strip(),
        "url": str(merged.get("url") or "").strip(),
        "method": str(merged.get("method") or "GET").strip().upper(),
        "headers_json": _text(merged.get("headersJson")),
        "body_json": _text(merged.get("bodyJson")),
        "condition_json": _text(merged.get("conditionJson")),
        "message_template": _text(merged.get("messageTemplate")),
        "chat_id": str(merged.get("chatId") or "").strip(),
        "bot_token": _text(merged.get("botToken")).strip(),
        "enabled": merged.get("enabled") is not False,
        "only_on_change": merged.get("onlyOnChange") is not False,
        "continue_after_match": merged.get("continueAfterMatch") is not False,
        "timeout_sec": max(MIN_TIMEOUT_SEC, _parse_int(merged.get("timeoutSec"), DEFAULT_TIMEOUT_SEC)),
        "interval_sec": max(MIN_INTERVAL_SEC, _parse_int(merged.get("intervalSec"), DEFAULT_INTERVAL_SEC)),
    }


def parse_json_safe(text: Any, fallback: Any) -> Any:
    """解析 JSON 文本，空值或解析失败时返回 fallback"""
    if not text or not isinstance(text, str):
        return fallback
    try:
        return json.loads(text)
    except ValueError:
        return fallback


def make_snippet(data: Any, limit: int = MAX_SNIPPET_CHARS) -> Optional[str]:
    """响应内容片段 (超长时截断并以 ... 结尾)"""
    try:
        text = json.dumps(data, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        return None
    return text if len(text) <= limit else text[:limit - 3] + "..."


def _response_data(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or {}


def _error_message(error: Exception) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        data = _response_data(error.response)
        if isinstance(data, dict) and data.get("description"):
            return str(data["description"])
    return str(error) or type(error).__name__ or "Unknown error"


# ============== 执行 ==============

async def _request(poll: Poll) -> httpx.Response:
    headers = parse_json_safe(poll.headers_json, {})
    if not isinstance(headers, dict):
        headers = {}
    headers = {str(k): str(v) for k, v in headers.items()}

    body = parse_json_safe(poll.body_json, None)
    method = poll.method or "GET"

    kwargs = {"headers": headers}
    if body is not None and method.upper() not in METHODS_WITHOUT_BODY:
        kwargs["json"] = body

    async with httpx.AsyncClient(timeout=float(poll.timeout_sec)) as client:
        response = await client.request(method, poll.url, **kwargs)
        response.raise_for_status()
        return response


async def _notify(poll: Poll, payload: Any, sink, default_token: Optional[str]) -> bool:
    token = normalize_token(poll.bot_token) or normalize_token(default_token)
    if not token or not poll.chat_id:
        logger.warning(f"轮询 {poll.id} 缺少 Bot Token 或 chatId，跳过发送")
        return False

    text = format_message(payload, payload, poll.message_template)
    result = await sink.send(token, poll.chat_id, text)
    return result.get("success") is True


async def execute_poll(
    poll: Poll,
    sink=None,
    default_token: Optional[str] = None,
    force: bool = False,
) -> Optional[dict]:
    """
    执行一次轮询

    Args:
        poll: 轮询配置
        sink: 通知发送端，默认 TelegramSink
        default_token: 全局 Bot Token，默认取 config.telegram_bot_token
        force: 为 True 时即使轮询已停用也执行

    Returns:
        执行记录 (PollRun.to_dict())，轮询已停用且未强制执行时返回 None
    """
    if not poll.enabled and not force:
        return None

    if sink is None:
        sink = TelegramSink()
    if default_token is None:
        default_token = config.telegram_bot_token

    method = poll.method or "GET"
    run_fields = {
        "request_method": method,
        "request_url": poll.url,
        "request_headers": poll.headers_json or "",
        "request_body": poll.body_json or "",
    }
    poll_updates = {"last_checked_at": datetime.now(timezone.utc).replace(tzinfo=None)}

    try:
        response = await _request(poll)
        payload = _response_data(response)
        matched = evaluate_structured_condition(poll.condition_json, payload)

        sent = False
        if matched and (not poll.only_on_change or not poll.last_match):
            sent = await _notify(poll, payload, sink, default_token)

        if matched and sent and not poll.continue_after_match:
            poll_updates["enabled"] = False
            logger.info(f"轮询 {poll.id} 命中后自动停用")

        poll_updates.update(last_match=matched, last_error=None)
        run_fields.update(
            status="success",
            matched=matched,
            sent=sent,
            response_snippet=make_snippet(payload),
            response_status=response.status_code,
            response_headers=json.dumps(dict(response.headers)),
        )
        logger.info(f"轮询 {poll.id} 执行完成: matched={matched}, sent={sent}")
    except Exception as e:
        error_message = _error_message(e)
        logger.error(f"轮询 {poll.id} 执行失败: {error_message}")

        error_response = e.response if isinstance(e, httpx.HTTPStatusError) else None
        poll_updates["last_error"] = error_message
        run_fields.update(
            status="error",
            matched=False,
            sent=False,
            error_message=error_message,
            response_snippet=make_snippet(_response_data(error_response)) if error_response is not None else None,
            response_status=error_response.status_code if error_response is not None else None,
            response_headers=json.dumps(dict(error_response.headers)) if error_response is not None else None,
        )

    async with get_db_manager().get_session() as session:
        await get_poll_repository(session).update(poll.id, **poll_updates)
        run = await get_poll_run_repository(session).create(poll.id, **run_fields)
        return run.to_dict()
