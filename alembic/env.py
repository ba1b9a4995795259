"""Alembic 迁移环境配置

关键配置：
1. 从环境变量 DATABASE_URL 读取数据库连接 (未设置时使用 data/relay_service.db)
2. 导入项目模型 (relay_service.models)
3. async URL 转换为同步驱动 (SQLite/MySQL)
"""
import os
import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import engine_from_config, pool

# 将项目根目录添加到 Python 路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


# ============== 加载 .env 文件 ==============

def load_dotenv_file():
    """加载项目根目录的 .env 文件到环境变量 (不覆盖已有变量)"""
    env_path = project_root / ".env"
    if not env_path.exists():
        return False

    print(f"[Alembic] 加载 .env 文件: {env_path}")
    with open(env_path, "r") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                os.environ.setdefault(key.strip(), value.strip())
    return True


load_dotenv_file()

from alembic import context
from relay_service.database import build_database_url
from relay_service.models import Base

# ============== Alembic Config ==============

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


# ============== 数据库 URL 配置 ==============

def to_sync_url(database_url: str) -> str:
    """
    Alembic 需要同步引擎:
    sqlite+aiosqlite:///... -> sqlite:///...
    mysql+aiomysql://...    -> mysql+pymysql://...
    """
    if database_url.startswith("sqlite+aiosqlite"):
        return database_url.replace("sqlite+aiosqlite", "sqlite", 1)
    if database_url.startswith("mysql+aiomysql"):
        return database_url.replace("mysql+aiomysql", "mysql+pymysql", 1)
    return database_url


sync_url = to_sync_url(build_database_url())
# 转义 % 符号，避免 configparser 解析问题
config.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))
print(f"[Alembic] 数据库: {sync_url[:50]}...")

target_metadata = Base.metadata


# ============== 迁移执行函数 ==============

def run_migrations_offline() -> None:
    """离线模式运行迁移 (只生成 SQL 脚本)"""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,  # SQLite 支持 ALTER TABLE
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """在线模式运行迁移"""
    configuration = config.get_section(config.config_ini_section, {})
    if configuration.get("sqlalchemy.url", "").startswith("sqlite"):
        configuration["sqlalchemy.connect_args"] = {"check_same_thread": False}

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
            compare_type=True,
            compare_server_default=True,
        )

        with context.begin_transaction():
            context.run_migrations()


# ============== 入口点 ==============

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
