"""
规则管理 API 测试
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest


def token_checker(valid=True):
    """替换 rules 路由中的 TelegramSink，verify_token 返回固定结果"""
    sink = MagicMock()
    sink.verify_token = AsyncMock(return_value={"id": 1, "username": "relay_bot"} if valid else None)
    return patch("relay_service.routes.rules.TelegramSink", return_value=sink), sink


class TestRulesAPI:
    """/api/rules 测试"""

    @pytest.mark.asyncio
    async def test_create_and_get(self, test_client):
        patcher, sink = token_checker()
        with patcher:
            response = await test_client.post("/api/rules", json={
                "name": "Incidents",
                "condition": 'payload.category === "incident"',
                "chatId": -100123,
                "botToken": "123:abc",
                "messageTemplate": "  #${id}  ",
            })

        assert response.status_code == 200
        rule = response.json()["rule"]
        assert rule["chatId"] == "-100123"
        assert rule["botToken"] == "123:abc"
        assert rule["messageTemplate"] == "#${id}"
        assert rule["enabled"] is True
        assert rule["encoding"] == "utf8"
        sink.verify_token.assert_awaited_once_with("123:abc")

        response = await test_client.get(f"/api/rules/{rule['id']}")
        assert response.json()["rule"]["name"] == "Incidents"

    @pytest.mark.asyncio
    async def test_create_with_invalid_token(self, test_client):
        patcher, _ = token_checker(valid=False)
        with patcher:
            response = await test_client.post("/api/rules", json={
                "name": "x", "condition": "true", "chatId": "-1", "botToken": "bad",
            })

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid bot token"}

        response = await test_client.get("/api/rules")
        assert response.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_create_requires_token(self, test_client):
        patcher, sink = token_checker()
        with patcher:
            for token in (None, "", "YOUR_TOKEN"):
                body = {"name": "x", "condition": "true", "chatId": "-1"}
                if token is not None:
                    body["botToken"] = token
                response = await test_client.post("/api/rules", json=body)

                assert response.status_code == 400
                assert response.json() == {"success": False, "error": "Bot token is required"}

        sink.verify_token.assert_not_awaited()
        assert (await test_client.get("/api/rules")).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_create_with_chat_ids(self, test_client):
        patcher, _ = token_checker()
        with patcher:
            response = await test_client.post("/api/rules", json={
                "name": "x", "condition": "true", "chatIds": ["-1", " ", "-2"], "botToken": " 123:abc ",
            })

        rule = response.json()["rule"]
        assert rule["botToken"] == "123:abc"
        assert rule["chatIds"] == ["-1", "-2"]

    @pytest.mark.asyncio
    async def test_create_rejects_bad_chat_ids(self, test_client):
        response = await test_client.post("/api/rules", json={"name": "x", "chatIds": "-1"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_partial_update(self, test_client):
        patcher, sink = token_checker()
        with patcher:
            created = (await test_client.post("/api/rules", json={
                "name": "old", "condition": "true", "chatId": "-1", "botToken": "123:abc",
            })).json()["rule"]
            sink.verify_token.reset_mock()

            response = await test_client.put(f"/api/rules/{created['id']}", json={"name": "new", "enabled": False})

        rule = response.json()["rule"]
        assert rule["name"] == "new"
        assert rule["enabled"] is False
        assert rule["condition"] == "true"
        assert rule["chatId"] == "-1"
        assert rule["botToken"] == "123:abc"
        sink.verify_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_revalidates_supplied_token(self, test_client):
        patcher, _ = token_checker()
        with patcher:
            created = (await test_client.post("/api/rules", json={
                "name": "r", "condition": "true", "chatId": "-1", "botToken": "123:abc",
            })).json()["rule"]

        patcher, _ = token_checker(valid=False)
        with patcher:
            response = await test_client.put(f"/api/rules/{created['id']}", json={"botToken": "bad"})
        assert response.status_code == 400

        response = await test_client.put(f"/api/rules/{created['id']}", json={"botToken": ""})
        assert response.status_code == 400
        assert response.json()["error"] == "Bot token is required"

    @pytest.mark.asyncio
    async def test_update_missing_rule(self, test_client):
        response = await test_client.put("/api/rules/999", json={"name": "x"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete(self, test_client):
        patcher, _ = token_checker()
        with patcher:
            created = (await test_client.post("/api/rules", json={
                "name": "r", "condition": "true", "botToken": "123:abc",
            })).json()["rule"]

        response = await test_client.delete(f"/api/rules/{created['id']}")
        assert response.json() == {"success": True}

        response = await test_client.delete(f"/api/rules/{created['id']}")
        assert response.status_code == 404

        response = await test_client.get(f"/api/rules/{created['id']}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_body(self, test_client):
        response = await test_client.post("/api/rules", json=["not", "an", "object"])
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_list_in_storage_order(self, test_client):
        patcher, _ = token_checker()
        with patcher:
            for name in ("a", "b", "c"):
                await test_client.post("/api/rules", json={"name": name, "condition": "true", "botToken": "123:abc"})

        response = await test_client.get("/api/rules")
        assert [r["name"] for r in response.json()["rules"]] == ["a", "b", "c"]
