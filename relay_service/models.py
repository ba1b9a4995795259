"""
Relay Service 数据库模型

使用 SQLAlchemy ORM 定义数据库表结构:
- rules: 存储转发规则 (条件 + 目标 chat + 模板)
- webhook_logs: 存储 Webhook 处理日志 (最多保留 100 条)
- polls / poll_runs: 存储轮询配置与执行记录
- system_config: 存储全局配置 (例如全局 Bot Token)

支持多种数据库引擎:
- 开发/测试: SQLite (内存或文件)
- 生产: MySQL
"""
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    String, Boolean, Integer, Text, DateTime, JSON, Index
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ============== Base Class ==============

class Base(DeclarativeBase):
    """所有模型的基类"""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    """UTC ISO 时间 (例如 2024-05-01T10:00:00.000Z)，数据库读回的无时区时间按 UTC 处理"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ============== 转发规则 ==============

class Rule(Base):
    """
    转发规则表

    每条规则包含:
    - 匹配条件: condition (JavaScript 风格的布尔表达式，作用于 payload)
    - 投递目标: chat_id / chat_ids
    - Bot Token: bot_token (为空时使用全局 Token)
    - 消息模板: message_template (可选，支持 ${path} / {{path}} 占位符)
    - 状态: enabled
    """
    __tablename__ = "rules"

    # 主键 (自增，单调递增)
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        default="",
        comment="规则名称"
    )

    condition: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="匹配条件表达式，例如 payload.category === \"incident\""
    )

    chat_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Telegram Chat ID (单个)"
    )

    chat_ids: Mapped[Optional[list]] = mapped_column(
        JSON,
        nullable=True,
        comment="Telegram Chat ID 列表 (非空时优先于 chat_id)"
    )

    bot_token: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        default="",
        comment="规则级 Bot Token (为空时使用全局 Token)"
    )

    message_template: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        default="",
        comment="消息模板 (可选)"
    )

    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="是否启用"
    )

    encoding: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="utf8",
        comment="消息编码 (固定 utf8)"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
        comment="创建时间"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        comment="更新时间"
    )

    __table_args__ = (
        Index("idx_rules_enabled", "enabled"),
    )

    def __repr__(self) -> str:
        return f"<Rule(id={self.id}, name={self.name}, enabled={self.enabled})>"

    def get_chat_ids(self) -> list[str]:
        """获取投递目标 (chat_ids 非空时优先，否则使用 chat_id)"""
        if isinstance(self.chat_ids, list):
            targets = [str(c).strip() for c in self.chat_ids if c is not None and str(c).strip()]
            if targets:
                return targets
        if self.chat_id and str(self.chat_id).strip():
            return [str(self.chat_id).strip()]
        return []

    def to_dict(self) -> dict:
        """转换为字典 (用于 API 返回，沿用管理台的 camelCase 字段名)"""
        return {
            "id": self.id,
            "name": self.name,
            "condition": self.condition,
            "chatId": self.chat_id or "",
            "chatIds": list(self.chat_ids) if self.chat_ids is not None else None,
            "botToken": self.bot_token or "",
            "messageTemplate": self.message_template or "",
            "enabled": self.enabled,
            "encoding": self.encoding,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


# ============== Webhook 日志 ==============

class WebhookLog(Base):
    """
    Webhook 处理日志表

    每次 Webhook 处理周期写入一条，记录原始请求体、匹配数量与投递结果。
    仅保留最近 100 条，写入时淘汰最旧的记录。
    """
    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
        index=True,
        comment="处理时间"
    )

    payload: Mapped[Any] = mapped_column(
        JSON,
        nullable=True,
        comment="原始请求体"
    )

    matched: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="匹配的规则数量"
    )

    total_rules: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="参与评估的规则总数"
    )

    telegram_results: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="投递结果列表 [{chatId, success, response|error}]"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="no_match",
        comment="状态: matched / no_match"
    )

    __table_args__ = (
        Index("idx_webhook_logs_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<WebhookLog(id={self.id}, matched={self.matched}, status={self.status})>"

    def to_dict(self) -> dict:
        """转换为字典 (用于 API 返回)"""
        return {
            "id": self.id,
            "timestamp": _isoformat(self.timestamp),
            "payload": self.payload,
            "matched": self.matched,
            "total_rules": self.total_rules,
            "telegram_results": self.telegram_results or [],
            "status": self.status,
        }


# ============== 轮询配置 ==============

class Poll(Base):
    """
    HTTP 轮询配置表

    定期 (由外部调度器触发) 请求目标 URL，对返回的 JSON 按结构化条件判断，
    命中时发送 Telegram 通知。
    """
    __tablename__ = "polls"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False, comment="轮询名称")

    url: Mapped[str] = mapped_column(String(1000), nullable=False, comment="请求 URL")

    method: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="GET",
        comment="HTTP 方法"
    )

    headers_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default="", comment="请求头 (JSON 文本)")

    body_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default="", comment="请求体 (JSON 文本)")

    condition_json: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        default="",
        comment="结构化条件 (JSON 文本): {logic, conditions: [{path, op, value}]}"
    )

    message_template: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default="", comment="消息模板")

    chat_id: Mapped[str] = mapped_column(String(100), nullable=False, comment="Telegram Chat ID")

    bot_token: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, default="", comment="Bot Token (可选)")

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, comment="是否启用")

    only_on_change: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="仅在匹配状态从未命中变为命中时发送"
    )

    continue_after_match: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="命中并发送后是否继续轮询 (否则自动停用)"
    )

    timeout_sec: Mapped[int] = mapped_column(Integer, nullable=False, default=10, comment="请求超时 (秒)")

    interval_sec: Mapped[int] = mapped_column(Integer, nullable=False, default=60, comment="轮询间隔 (秒)")

    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, comment="最后检查时间")

    last_match: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, comment="上次是否命中")

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="上次错误")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, comment="创建时间")

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        comment="更新时间"
    )

    def __repr__(self) -> str:
        return f"<Poll(id={self.id}, name={self.name}, enabled={self.enabled})>"

    def to_dict(self) -> dict:
        """转换为字典 (用于 API 返回)"""
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "method": self.method,
            "headersJson": self.headers_json or "",
            "bodyJson": self.body_json or "",
            "conditionJson": self.condition_json or "",
            "messageTemplate": self.message_template or "",
            "chatId": self.chat_id,
            "botToken": self.bot_token or "",
            "enabled": self.enabled,
            "onlyOnChange": self.only_on_change,
            "continueAfterMatch": self.continue_after_match,
            "timeoutSec": self.timeout_sec,
            "intervalSec": self.interval_sec,
            "lastCheckedAt": _isoformat(self.last_checked_at),
            "lastMatch": self.last_match,
            "lastError": self.last_error,
        }


class PollRun(Base):
    """
    轮询执行记录表

    仅保留最近 100 条
    """
    __tablename__ = "poll_runs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    poll_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True, comment="轮询 ID")

    status: Mapped[str] = mapped_column(String(20), nullable=False, comment="状态: success / error")

    matched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    response_snippet: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="响应内容片段")

    request_method: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    request_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    request_headers: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    request_body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    response_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    response_headers: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, index=True)

    __table_args__ = (
        Index("idx_poll_runs_poll_id", "poll_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<PollRun(id={self.id}, poll_id={self.poll_id}, status={self.status})>"

    def to_dict(self) -> dict:
        """转换为字典"""
        return {
            "id": self.id,
            "poll_id": self.poll_id,
            "status": self.status,
            "matched": self.matched,
            "sent": self.sent,
            "error_message": self.error_message,
            "response_snippet": self.response_snippet,
            "request_method": self.request_method,
            "request_url": self.request_url,
            "request_headers": self.request_headers,
            "request_body": self.request_body,
            "response_status": self.response_status,
            "response_headers": self.response_headers,
            "created_at": _isoformat(self.created_at),
        }


# ============== 系统配置模型 ==============

class SystemConfig(Base):
    """
    系统配置表

    存储全局配置项，如全局 Bot Token
    使用 key-value 形式存储
    """
    __tablename__ = "system_config"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    key: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
        comment="配置键"
    )

    value: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="配置值"
    )

    description: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="配置描述"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
        comment="创建时间"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        comment="更新时间"
    )

    def __repr__(self) -> str:
        return f"<SystemConfig(key={self.key})>"

    def to_dict(self) -> dict:
        """转换为字典"""
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "description": self.description,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }
