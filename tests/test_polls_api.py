"""
轮询管理 API 测试
"""
from unittest.mock import AsyncMock, patch

import pytest

from relay_service.repository import PollRunRepository


POLL_BODY = {
    "name": "status page",
    "url": "https://status.example.com/api/health",
    "chatId": "-5",
    "conditionJson": '{"conditions": [{"path": "status", "op": "==", "value": "down"}]}',
}


class TestPollsAPI:
    """/api/polls 测试"""

    @pytest.mark.asyncio
    async def test_create_and_list(self, test_client):
        response = await test_client.post("/api/polls", json={**POLL_BODY, "intervalSec": 1})

        assert response.status_code == 200
        poll = response.json()["poll"]
        assert poll["intervalSec"] == 5
        assert poll["timeoutSec"] == 10
        assert poll["onlyOnChange"] is True
        assert poll["lastCheckedAt"] is None

        response = await test_client.get("/api/polls")
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_create_requires_fields(self, test_client):
        response = await test_client.post("/api/polls", json={"name": "x"})
        assert response.status_code == 400
        assert response.json()["error"] == "name, url and chatId are required"

    @pytest.mark.asyncio
    async def test_update_merges(self, test_client):
        poll = (await test_client.post("/api/polls", json=POLL_BODY)).json()["poll"]

        response = await test_client.put(f"/api/polls/{poll['id']}", json={"method": "post", "enabled": False})

        updated = response.json()["poll"]
        assert updated["method"] == "POST"
        assert updated["enabled"] is False
        assert updated["url"] == POLL_BODY["url"]
        assert updated["conditionJson"] == POLL_BODY["conditionJson"]

    @pytest.mark.asyncio
    async def test_update_and_delete_missing(self, test_client):
        assert (await test_client.put("/api/polls/404", json={"name": "x"})).status_code == 404
        assert (await test_client.delete("/api/polls/404")).status_code == 404
        assert (await test_client.post("/api/polls/404/run")).status_code == 404

    @pytest.mark.asyncio
    async def test_delete(self, test_client):
        poll = (await test_client.post("/api/polls", json=POLL_BODY)).json()["poll"]

        response = await test_client.delete(f"/api/polls/{poll['id']}")
        assert response.json() == {"success": True}
        assert (await test_client.get("/api/polls")).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_run_forces_disabled_poll(self, test_client):
        poll = (await test_client.post("/api/polls", json={**POLL_BODY, "enabled": False})).json()["poll"]
        run = {"id": 1, "poll_id": poll["id"], "status": "success"}

        with patch("relay_service.routes.polls.execute_poll", new_callable=AsyncMock, return_value=run) as mock_exec:
            response = await test_client.post(f"/api/polls/{poll['id']}/run")

        assert response.json() == {"success": True, "run": run}
        assert mock_exec.await_args.kwargs["force"] is True
        assert mock_exec.await_args.args[0].id == poll["id"]

    @pytest.mark.asyncio
    async def test_history_filter_and_limit(self, test_client, mock_db_manager):
        async with mock_db_manager.get_session() as session:
            repo = PollRunRepository(session)
            for i in range(3):
                await repo.create(poll_id=1, status="success", matched=False, sent=False)
            await repo.create(poll_id=2, status="error", error_message="boom")

        response = await test_client.get("/api/polls/history", params={"pollId": 1, "limit": 2})
        runs = response.json()["runs"]
        assert len(runs) == 2
        assert all(run["poll_id"] == 1 for run in runs)
        assert runs[0]["id"] > runs[1]["id"]

        response = await test_client.get("/api/polls/history", params={"limit": 0})
        assert response.json()["total"] == 1

        response = await test_client.get("/api/polls/history")
        assert response.json()["total"] == 4
