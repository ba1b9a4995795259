"""
Relay Service 数据库访问层 (Repository/DAO)

提供对数据库的 CRUD 操作，封装所有数据库访问逻辑。
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Rule, WebhookLog, Poll, PollRun, SystemConfig

logger = logging.getLogger(__name__)

# Webhook 日志与轮询记录的最大保留条数
MAX_WEBHOOK_LOGS = 100
MAX_POLL_RUNS = 100


# ============== Rule Repository ==============

class RuleRepository:
    """
    转发规则数据访问层

    提供对 rules 表的所有数据库操作
    """

    def __init__(self, session: AsyncSession):
        """
        初始化 Repository

        Args:
            session: SQLAlchemy AsyncSession
        """
        self.session = session

    async def create(
        self,
        name: str,
        condition: str,
        bot_token: str,
        chat_id: str | None = None,
        chat_ids: list[str] | None = None,
        message_template: str = "",
        enabled: bool = True,
    ) -> Rule:
        """
        创建新的转发规则

        Args:
            name: 规则名称
            condition: 匹配条件表达式
            bot_token: Bot Token
            chat_id: 单个 Chat ID
            chat_ids: Chat ID 列表 (非空时优先)
            message_template: 消息模板
            enabled: 是否启用

        Returns:
            创建的 Rule 对象
        """
        rule = Rule(
            name=name,
            condition=condition,
            bot_token=bot_token,
            chat_id=chat_id,
            chat_ids=chat_ids,
            message_template=(message_template or "").strip(),
            enabled=enabled,
            encoding="utf8",
        )

        self.session.add(rule)
        await self.session.flush()
        await self.session.refresh(rule)

        logger.info(f"创建规则: id={rule.id}, name={name}")
        return rule

    async def get_by_id(self, rule_id: int) -> Optional[Rule]:
        """根据 ID 获取规则"""
        stmt = select(Rule).where(Rule.id == rule_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all(self, enabled_only: bool = False) -> List[Rule]:
        """
        获取所有规则 (按存储顺序，即 ID 升序)

        Args:
            enabled_only: 是否只返回启用的规则
        """
        stmt = select(Rule)
        if enabled_only:
            stmt = stmt.where(Rule.enabled == True)
        stmt = stmt.order_by(Rule.id)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update(
        self,
        rule_id: int,
        name: str | None = None,
        condition: str | None = None,
        chat_id: str | None = None,
        chat_ids: list[str] | None = None,
        bot_token: str | None = None,
        message_template: str | None = None,
        enabled: bool | None = None,
    ) -> Optional[Rule]:
        """
        部分更新规则 (只覆盖传入的字段，后写入者生效)

        Returns:
            更新后的 Rule 对象，不存在时返回 None
        """
        update_data = {}
        if name is not None:
            update_data["name"] = name
        if condition is not None:
            update_data["condition"] = condition
        if chat_id is not None:
            update_data["chat_id"] = chat_id
        if chat_ids is not None:
            update_data["chat_ids"] = chat_ids
        if bot_token is not None:
            update_data["bot_token"] = bot_token
        if message_template is not None:
            update_data["message_template"] = message_template.strip()
        if enabled is not None:
            update_data["enabled"] = enabled

        rule = await self.get_by_id(rule_id)
        if not rule:
            return None
        if not update_data:
            return rule

        for key, value in update_data.items():
            setattr(rule, key, value)
        await self.session.flush()
        await self.session.refresh(rule)

        logger.info(f"更新规则: id={rule_id}, fields={list(update_data.keys())}")
        return rule

    async def delete(self, rule_id: int) -> bool:
        """删除规则，返回是否删除成功"""
        stmt = delete(Rule).where(Rule.id == rule_id)
        result = await self.session.execute(stmt)
        await self.session.flush()

        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info(f"删除规则: id={rule_id}")
        return deleted

    async def count(self, enabled_only: bool = False) -> int:
        """统计规则数量"""
        stmt = select(func.count(Rule.id))
        if enabled_only:
            stmt = stmt.where(Rule.enabled == True)
        result = await self.session.execute(stmt)
        return result.scalar_one()


# ============== WebhookLog Repository ==============

class WebhookLogRepository:
    """
    Webhook 日志数据访问层

    写入后自动裁剪，只保留最近 MAX_WEBHOOK_LOGS 条
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        payload,
        matched: int,
        total_rules: int,
        telegram_results: list[dict],
        keep: int = MAX_WEBHOOK_LOGS,
        timestamp: datetime | None = None,
    ) -> WebhookLog:
        """创建日志记录并淘汰最旧的记录 (timestamp 为空时使用当前时间)"""
        log = WebhookLog(
            payload=payload,
            matched=matched,
            total_rules=total_rules,
            telegram_results=telegram_results,
            status="matched" if matched > 0 else "no_match",
        )
        if timestamp is not None:
            if timestamp.tzinfo is not None:
                timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
            log.timestamp = timestamp
        self.session.add(log)
        await self.session.flush()
        await self.session.refresh(log)

        await self.trim(keep)
        return log

    async def trim(self, keep: int = MAX_WEBHOOK_LOGS) -> int:
        """删除超出保留条数的旧日志，返回删除条数"""
        stmt = (
            select(WebhookLog.id)
            .order_by(WebhookLog.id.desc())
            .offset(keep - 1)
            .limit(1)
        )
        cutoff = (await self.session.execute(stmt)).scalar_one_or_none()
        if cutoff is None:
            return 0

        result = await self.session.execute(
            delete(WebhookLog).where(WebhookLog.id < cutoff)
        )
        await self.session.flush()
        return result.rowcount or 0

    async def get_recent(self, limit: int = MAX_WEBHOOK_LOGS) -> List[WebhookLog]:
        """获取最近的日志 (新的在前)"""
        stmt = (
            select(WebhookLog)
            .order_by(WebhookLog.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_id(self, log_id: int) -> Optional[WebhookLog]:
        stmt = select(WebhookLog).where(WebhookLog.id == log_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def count(self) -> int:
        """获取日志总数"""
        result = await self.session.execute(select(func.count(WebhookLog.id)))
        return result.scalar() or 0

    async def clear(self) -> int:
        """清空所有日志"""
        result = await self.session.execute(delete(WebhookLog))
        await self.session.flush()
        deleted = result.rowcount or 0
        logger.info(f"清空 Webhook 日志: {deleted} 条")
        return deleted


# ============== Poll Repository ==============

class PollRepository:
    """
    轮询配置数据访问层
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> Poll:
        """创建轮询配置 (字段已由调用方规范化)"""
        poll = Poll(**fields)
        self.session.add(poll)
        await self.session.flush()
        await self.session.refresh(poll)
        logger.info(f"创建轮询: id={poll.id}, name={poll.name}")
        return poll

    async def get_by_id(self, poll_id: int) -> Optional[Poll]:
        stmt = select(Poll).where(Poll.id == poll_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all(self, enabled_only: bool = False) -> List[Poll]:
        stmt = select(Poll)
        if enabled_only:
            stmt = stmt.where(Poll.enabled == True)
        result = await self.session.execute(stmt.order_by(Poll.id))
        return list(result.scalars().all())

    async def update(self, poll_id: int, **fields) -> Optional[Poll]:
        """更新轮询配置 (只覆盖传入的字段)"""
        if fields:
            await self.session.execute(
                update(Poll).where(Poll.id == poll_id).values(**fields)
            )
            await self.session.flush()
        poll = await self.get_by_id(poll_id)
        if poll is not None:
            await self.session.refresh(poll)
        return poll

    async def delete(self, poll_id: int) -> bool:
        result = await self.session.execute(delete(Poll).where(Poll.id == poll_id))
        await self.session.flush()
        return (result.rowcount or 0) > 0


# ============== PollRun Repository ==============

class PollRunRepository:
    """
    轮询执行记录数据访问层

    写入后自动裁剪，只保留最近 MAX_POLL_RUNS 条
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, poll_id: int, status: str, keep: int = MAX_POLL_RUNS, **fields) -> PollRun:
        run = PollRun(poll_id=poll_id, status=status, **fields)
        self.session.add(run)
        await self.session.flush()
        await self.session.refresh(run)

        cutoff_stmt = (
            select(PollRun.id)
            .order_by(PollRun.id.desc())
            .offset(keep - 1)
            .limit(1)
        )
        cutoff = (await self.session.execute(cutoff_stmt)).scalar_one_or_none()
        if cutoff is not None:
            await self.session.execute(delete(PollRun).where(PollRun.id < cutoff))
            await self.session.flush()
        return run

    async def get_recent(self, poll_id: int | None = None, limit: int = 100) -> List[PollRun]:
        """获取最近的执行记录 (新的在前)，可按轮询过滤"""
        stmt = select(PollRun)
        if poll_id is not None:
            stmt = stmt.where(PollRun.poll_id == poll_id)
        stmt = stmt.order_by(PollRun.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


# ============== System Config Repository ==============

class SystemConfigRepository:
    """
    系统配置数据访问层

    提供对 system_config 表的所有数据库操作
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> SystemConfig | None:
        """获取配置项"""
        stmt = select(SystemConfig).where(SystemConfig.key == key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_value(self, key: str, default: str = "") -> str:
        """获取配置值"""
        config = await self.get(key)
        return config.value if config else default

    async def set(self, key: str, value: str, description: str = None) -> SystemConfig:
        """设置配置项 (不存在则创建)"""
        config = await self.get(key)

        if config:
            config.value = value
            if description is not None:
                config.description = description
            await self.session.flush()
        else:
            config = SystemConfig(
                key=key,
                value=value,
                description=description
            )
            self.session.add(config)
            await self.session.flush()
            await self.session.refresh(config)

        return config


# ============== 辅助函数 ==============

def get_rule_repository(session: AsyncSession) -> RuleRepository:
    """获取 RuleRepository 实例"""
    return RuleRepository(session)


def get_webhook_log_repository(session: AsyncSession) -> WebhookLogRepository:
    """获取 WebhookLogRepository 实例"""
    return WebhookLogRepository(session)


def get_poll_repository(session: AsyncSession) -> PollRepository:
    """获取 PollRepository 实例"""
    return PollRepository(session)


def get_poll_run_repository(session: AsyncSession) -> PollRunRepository:
    """获取 PollRunRepository 实例"""
    return PollRunRepository(session)


def get_system_config_repository(session: AsyncSession) -> SystemConfigRepository:
    """获取 SystemConfigRepository 实例"""
    return SystemConfigRepository(session)
