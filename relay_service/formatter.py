"""
通知消息格式化

把 Webhook payload 转成发送到 Telegram 的文本，两种模式:

1. 模板模式: 规则配置了 message_template 时，替换其中的 ${path} / {{path}} 占位符
2. 默认模式: 按固定优先级提取常见工单字段 (ID、主题、发起人、状态、备注...)，
   都没有时退回到事件摘要或 JSON 原文

格式化过程中的任何异常都会转成一条可见的错误文本，不会向上抛出。
"""
import json
import logging
import re
from datetime import datetime
from typing import Any, Optional

from .translations import translate
from .utils.paths import get_value_by_path

logger = logging.getLogger(__name__)

# JSON 原文的最大长度
MAX_JSON_DUMP_CHARS = 4000

# 模板路径中可省略的前缀段
TEMPLATE_PATH_PREFIXES = ("payload", "response", "trigger")

# ${path} 或 {{path}}
PLACEHOLDER_PATTERN = re.compile(r"\$\{\s*([^{}]*?)\s*\}|\{\{\s*([^{}]*?)\s*\}\}")

# 按顺序输出的附加字段: (候选键, 标签键)
ADDITIONAL_FIELDS = (
    (("team", "team_name"), "team"),
    (("category",), "category"),
    (("impact",), "impact"),
    (("priority",), "priority"),
    (("urgency",), "urgency"),
)

SLA_FIELDS = ("response_target_at", "resolution_target_at")

UNKNOWN_AUTHOR = "Unknown"


# ============== 取值工具 ==============

def _present(value: Any) -> bool:
    return value is not None and value != ""


def _dig(data: Any, *keys: str) -> Any:
    """按键逐层取值，任一层不是 dict 或缺失时返回 None"""
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _first_present(*values: Any) -> Any:
    for value in values:
        if _present(value):
            return value
    return None


def to_display(value: Any) -> str:
    """把 JSON 值转成显示文本 (布尔值、整数浮点数按 JavaScript 的写法)"""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def dump_json(data: Any, limit: int = MAX_JSON_DUMP_CHARS) -> str:
    """JSON 原文 (截断到 limit 个字符)"""
    return json.dumps(data, ensure_ascii=False, indent=2, default=str)[:limit]


def format_timestamp(value: Any) -> str:
    """
    把 ISO 时间字符串格式化为 YYYY-MM-DD HH:MM

    带时区的时间转换为本地时间；无法解析时原样返回
    """
    if not isinstance(value, str):
        return to_display(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return value
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed.strftime("%Y-%m-%d %H:%M")


# ============== 模板模式 ==============

def _strip_prefix(path: str) -> str:
    head, _, rest = path.partition(".")
    return rest if head in TEMPLATE_PATH_PREFIXES else path


def render_template(template: str, data: Any) -> str:
    """
    替换模板中的 ${path} / {{path}} 占位符

    - 路径开头的 payload / response / trigger 段会被去掉
    - 值不存在或为 null 时保留占位符原文
    - 对象和数组按 JSON 输出

    Args:
        template: 消息模板
        data: 用于取值的数据 (通常是 payload)
    """
    def replace(match: re.Match) -> str:
        raw_path = match.group(1) if match.group(1) is not None else match.group(2)
        path = _strip_prefix(raw_path.strip())
        value = data if not path else get_value_by_path(data, path)
        if value is None:
            return match.group(0)
        return to_display(value)

    return PLACEHOLDER_PATTERN.sub(replace, template)


# ============== 默认模式 ==============

def _author_line(author: Any, account: Any) -> str:
    line = to_display(author)
    if _present(account):
        line += f" @{to_display(account)}"
    return line


def _collect_notes(note: Any) -> list[dict]:
    """note 可以是单个对象或对象列表；空值、空列表和非对象条目都不算备注"""
    if isinstance(note, dict):
        return [note]
    if isinstance(note, list):
        return [item for item in note if isinstance(item, dict)]
    return []


def _format_notes(notes: list[dict]) -> list[str]:
    lines = [f"📝 {translate('note')}:"]
    for index, note in enumerate(notes, start=1):
        author = _first_present(_dig(note, "person", "name"), _dig(note, "person_name")) or UNKNOWN_AUTHOR
        account = _first_present(_dig(note, "account", "name"), _dig(note, "person", "account", "name"))
        text = _dig(note, "text")
        created_at = _dig(note, "created_at")

        line = f"{index}. {_author_line(author, account)}"
        if _present(created_at):
            line += f" ({format_timestamp(created_at)})"
        line += f": {to_display(text) if _present(text) else ''}"
        lines.append(line)
    return lines


def _format_sections(raw_body: Any, payload: dict) -> list[str]:
    parts: list[str] = []

    if _present(payload.get("id")):
        parts.append(f"🆔 {translate('id')}: {to_display(payload['id'])}")

    if _present(payload.get("subject")):
        parts.append(f"📋 {translate('subject')}: {to_display(payload['subject'])}")

    requester = _dig(payload, "requested_by", "name")
    if _present(requester):
        account = _dig(payload, "requested_by", "account", "name")
        parts.append(f"👤 {translate('requested_by.name')}: {_author_line(requester, account)}")

    if _present(payload.get("status")):
        parts.append(f"📊 {translate('status')}: {to_display(payload['status'])}")

    for field in SLA_FIELDS:
        if _present(payload.get(field)):
            parts.append(f"⏰ {translate(field)}: {format_timestamp(payload[field])}")

    for keys, label_key in ADDITIONAL_FIELDS:
        value = _first_present(*(payload.get(key) for key in keys))
        if value is not None:
            parts.append(f"{translate(label_key)}: {to_display(value)}")

    notes = _collect_notes(payload.get("note"))
    if notes:
        parts.extend(_format_notes(notes))
    elif _present(payload.get("text")) or _present(payload.get("message")):
        author = _first_present(
            payload.get("author"),
            payload.get("person_name"),
            _dig(raw_body, "person_name"),
            _dig(payload, "requested_by", "name"),
        ) or UNKNOWN_AUTHOR
        account = _first_present(
            _dig(payload, "account", "name"),
            _dig(payload, "requested_by", "account", "name"),
        )
        text = _first_present(payload.get("text"), payload.get("message"))
        parts.append(f"💬 {translate('message')}: {_author_line(author, account)}: {to_display(text)}")

    return parts


def _format_fallback(raw_body: Any, payload: Any) -> str:
    summary = [
        f"{translate(key)}: {to_display(raw_body[key])}"
        for key in ("event", "object_id", "person_name")
        if isinstance(raw_body, dict) and _present(raw_body.get(key))
    ]
    if summary:
        return "🔔 " + " | ".join(summary)
    return f"📦 {translate('payload')} (JSON):\n{dump_json(payload)}"


def format_message(raw_body: Any, payload: Any, template: Optional[str] = None) -> str:
    """
    生成通知消息文本

    Args:
        raw_body: 原始请求体 (可能是带 event / object_id 的信封)
        payload: 实际数据 (信封中的 payload 字段，或整个请求体)
        template: 规则的消息模板，为空时使用默认格式

    Returns:
        消息文本 (失败时返回错误说明文本)
    """
    if isinstance(template, str) and template.strip():
        try:
            return render_template(template, payload)
        except Exception as e:
            logger.error(f"模板渲染失败: {e}", exc_info=True)
            return f"❌ 模板渲染失败: {e}\n\n{translate('payload')}:\n{dump_json(payload)}"

    try:
        parts = _format_sections(raw_body, payload) if isinstance(payload, dict) else []
        if not parts:
            parts.append(_format_fallback(raw_body, payload))
        return "\n".join(parts)
    except Exception as e:
        logger.error(f"消息格式化失败: {e}", exc_info=True)
        return f"❌ 消息格式化失败: {e}\n📦 {translate('payload')}:\n{dump_json(payload if payload is not None else raw_body)}"
