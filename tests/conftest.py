"""
pytest 配置文件
"""
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# 将项目根目录添加到 Python 路径
pkg_root = Path(__file__).parent.parent
if str(pkg_root) not in sys.path:
    sys.path.insert(0, str(pkg_root))

MEMORY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ============== 数据库测试 Fixtures ==============

@pytest_asyncio.fixture
async def memory_db():
    """内存 SQLite 数据库 (每个测试独立)"""
    from relay_service.database import DatabaseManager

    manager = DatabaseManager(MEMORY_DATABASE_URL)
    await manager.init_db()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def test_db_session(memory_db):
    """内存数据库上的 Session，测试结束时提交"""
    async with memory_db.get_session() as session:
        yield session


@pytest_asyncio.fixture
async def mock_db_manager(memory_db):
    """
    替换全局的 db_manager，使服务代码使用内存数据库
    """
    import relay_service.database as db_module

    original_db_manager = db_module.db_manager
    db_module.db_manager = memory_db

    yield memory_db

    db_module.db_manager = original_db_manager


# ============== 配置与 API Fixtures ==============

@pytest.fixture(autouse=True)
def reset_config():
    """每个测试前后恢复全局配置"""
    from relay_service.config import config

    original = (config.port, config.telegram_timeout, config.telegram_bot_token)
    config.telegram_bot_token = None

    yield config

    config.port, config.telegram_timeout, config.telegram_bot_token = original


@pytest_asyncio.fixture
async def test_client(mock_db_manager):
    """使用内存数据库的 API 客户端 (不触发 lifespan)"""
    from relay_service.app import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class FakeSink:
    """记录发送调用的通知发送端，可按 chat_id 指定失败"""

    def __init__(self, fail_chats=(), error="Bad Request: chat not found"):
        self.fail_chats = set(fail_chats)
        self.error = error
        self.calls = []

    async def send(self, token, chat_id, text):
        self.calls.append({"token": token, "chat_id": chat_id, "text": text})
        if chat_id in self.fail_chats:
            return {"success": False, "error": {"ok": False, "error_code": 400, "description": self.error}}
        return {"success": True, "response": {"ok": True, "result": {"message_id": len(self.calls)}}}


@pytest.fixture
def fake_sink():
    """默认全部发送成功的 FakeSink"""
    return FakeSink()


@pytest.fixture
def sink_factory():
    """构造 FakeSink，例如 sink_factory(fail_chats={"-100"})"""
    return FakeSink
