"""create_relay_tables

Revision ID: a1f3c9d20b7e
Revises:
Create Date: 2026-10-19 10:12:31.418204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1f3c9d20b7e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('rules',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('name', sa.String(length=200), nullable=False, comment='规则名称'),
    sa.Column('condition', sa.Text(), nullable=False, comment='匹配条件表达式'),
    sa.Column('chat_id', sa.String(length=100), nullable=True, comment='Telegram Chat ID (单个)'),
    sa.Column('chat_ids', sa.JSON(), nullable=True, comment='Telegram Chat ID 列表 (非空时优先于 chat_id)'),
    sa.Column('bot_token', sa.String(length=200), nullable=True, comment='规则级 Bot Token (为空时使用全局 Token)'),
    sa.Column('message_template', sa.Text(), nullable=True, comment='消息模板 (可选)'),
    sa.Column('enabled', sa.Boolean(), nullable=False, comment='是否启用'),
    sa.Column('encoding', sa.String(length=20), nullable=False, comment='消息编码 (固定 utf8)'),
    sa.Column('created_at', sa.DateTime(), nullable=False, comment='创建时间'),
    sa.Column('updated_at', sa.DateTime(), nullable=False, comment='更新时间'),
    sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('rules', schema=None) as batch_op:
        batch_op.create_index('idx_rules_enabled', ['enabled'], unique=False)

    op.create_table('webhook_logs',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('timestamp', sa.DateTime(), nullable=False, comment='处理时间'),
    sa.Column('payload', sa.JSON(), nullable=True, comment='原始请求体'),
    sa.Column('matched', sa.Integer(), nullable=False, comment='匹配的规则数量'),
    sa.Column('total_rules', sa.Integer(), nullable=False, comment='参与评估的规则总数'),
    sa.Column('telegram_results', sa.JSON(), nullable=False, comment='投递结果列表'),
    sa.Column('status', sa.String(length=20), nullable=False, comment='状态: matched / no_match'),
    sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('webhook_logs', schema=None) as batch_op:
        batch_op.create_index('idx_webhook_logs_status', ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_webhook_logs_timestamp'), ['timestamp'], unique=False)

    op.create_table('polls',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('name', sa.String(length=200), nullable=False, comment='轮询名称'),
    sa.Column('url', sa.String(length=1000), nullable=False, comment='请求 URL'),
    sa.Column('method', sa.String(length=10), nullable=False, comment='HTTP 方法'),
    sa.Column('headers_json', sa.Text(), nullable=True, comment='请求头 (JSON 文本)'),
    sa.Column('body_json', sa.Text(), nullable=True, comment='请求体 (JSON 文本)'),
    sa.Column('condition_json', sa.Text(), nullable=True, comment='结构化条件 (JSON 文本)'),
    sa.Column('message_template', sa.Text(), nullable=True, comment='消息模板'),
    sa.Column('chat_id', sa.String(length=100), nullable=False, comment='Telegram Chat ID'),
    sa.Column('bot_token', sa.String(length=200), nullable=True, comment='Bot Token (可选)'),
    sa.Column('enabled', sa.Boolean(), nullable=False, comment='是否启用'),
    sa.Column('only_on_change', sa.Boolean(), nullable=False, comment='仅在匹配状态从未命中变为命中时发送'),
    sa.Column('continue_after_match', sa.Boolean(), nullable=False, comment='命中并发送后是否继续轮询'),
    sa.Column('timeout_sec', sa.Integer(), nullable=False, comment='请求超时 (秒)'),
    sa.Column('interval_sec', sa.Integer(), nullable=False, comment='轮询间隔 (秒)'),
    sa.Column('last_checked_at', sa.DateTime(), nullable=True, comment='最后检查时间'),
    sa.Column('last_match', sa.Boolean(), nullable=False, comment='上次是否命中'),
    sa.Column('last_error', sa.Text(), nullable=True, comment='上次错误'),
    sa.Column('created_at', sa.DateTime(), nullable=False, comment='创建时间'),
    sa.Column('updated_at', sa.DateTime(), nullable=False, comment='更新时间'),
    sa.PrimaryKeyConstraint('id')
    )

    op.create_table('poll_runs',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('poll_id', sa.Integer(), nullable=False, comment='轮询 ID'),
    sa.Column('status', sa.String(length=20), nullable=False, comment='状态: success / error'),
    sa.Column('matched', sa.Boolean(), nullable=False),
    sa.Column('sent', sa.Boolean(), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('response_snippet', sa.Text(), nullable=True, comment='响应内容片段'),
    sa.Column('request_method', sa.String(length=10), nullable=True),
    sa.Column('request_url', sa.Text(), nullable=True),
    sa.Column('request_headers', sa.Text(), nullable=True),
    sa.Column('request_body', sa.Text(), nullable=True),
    sa.Column('response_status', sa.Integer(), nullable=True),
    sa.Column('response_headers', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('poll_runs', schema=None) as batch_op:
        batch_op.create_index('idx_poll_runs_poll_id', ['poll_id', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_poll_runs_poll_id'), ['poll_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_poll_runs_created_at'), ['created_at'], unique=False)

    op.create_table('system_config',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('key', sa.String(length=100), nullable=False, comment='配置键'),
    sa.Column('value', sa.Text(), nullable=False, comment='配置值'),
    sa.Column('description', sa.String(length=500), nullable=True, comment='配置描述'),
    sa.Column('created_at', sa.DateTime(), nullable=False, comment='创建时间'),
    sa.Column('updated_at', sa.DateTime(), nullable=False, comment='更新时间'),
    sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('system_config', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_system_config_key'), ['key'], unique=True)


def downgrade() -> None:
    """Downgrade schema."""
    with op.batch_alter_table('system_config', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_system_config_key'))
    op.drop_table('system_config')

    with op.batch_alter_table('poll_runs', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_poll_runs_created_at'))
        batch_op.drop_index(batch_op.f('ix_poll_runs_poll_id'))
        batch_op.drop_index('idx_poll_runs_poll_id')
    op.drop_table('poll_runs')

    op.drop_table('polls')

    with op.batch_alter_table('webhook_logs', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_webhook_logs_timestamp'))
        batch_op.drop_index('idx_webhook_logs_status')
    op.drop_table('webhook_logs')

    with op.batch_alter_table('rules', schema=None) as batch_op:
        batch_op.drop_index('idx_rules_enabled')
    op.drop_table('rules')
