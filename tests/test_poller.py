"""
HTTP 轮询执行测试
"""
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from relay_service.repository import PollRepository, PollRunRepository
from relay_service.services.poller import (
    execute_poll,
    make_snippet,
    normalize_poll,
    MAX_SNIPPET_CHARS,
)

POLL_URL = "https://status.example.com/api/health"

DOWN_CONDITION = json.dumps({"logic": "AND", "conditions": [{"path": "status", "op": "==", "value": "down"}]})


async def create_poll(db, **overrides):
    fields = normalize_poll({
        "name": "status page",
        "url": POLL_URL,
        "chatId": "-5",
        "botToken": "poll-token",
        "conditionJson": DOWN_CONDITION,
        "messageTemplate": "Service ${status}",
    })
    fields.update(overrides)
    async with db.get_session() as session:
        return await PollRepository(session).create(**fields)


async def reload_poll(db, poll_id):
    async with db.get_session() as session:
        return await PollRepository(session).get_by_id(poll_id)


def patch_http(response=None, error=None):
    """替换 poller 中的 httpx.AsyncClient"""
    client = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    if error is not None:
        client.request = AsyncMock(side_effect=error)
    else:
        client.request = AsyncMock(return_value=response)
    return patch("relay_service.services.poller.httpx.AsyncClient", return_value=client), client


def json_response(status_code, data, method="GET"):
    return httpx.Response(status_code, json=data, request=httpx.Request(method, POLL_URL))


class TestExecutePoll:
    """execute_poll 测试"""

    @pytest.mark.asyncio
    async def test_match_sends_and_records_run(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager)
        patcher, _ = patch_http(json_response(200, {"status": "down"}))

        with patcher:
            run = await execute_poll(poll, sink=fake_sink)

        assert run["status"] == "success"
        assert run["matched"] is True
        assert run["sent"] is True
        assert run["response_status"] == 200
        assert run["request_url"] == POLL_URL
        assert json.loads(run["response_snippet"]) == {"status": "down"}
        assert fake_sink.calls == [{"token": "poll-token", "chat_id": "-5", "text": "Service down"}]

        poll = await reload_poll(mock_db_manager, poll.id)
        assert poll.last_match is True
        assert poll.last_error is None
        assert poll.last_checked_at is not None

    @pytest.mark.asyncio
    async def test_no_match(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager)
        patcher, _ = patch_http(json_response(200, {"status": "up"}))

        with patcher:
            run = await execute_poll(poll, sink=fake_sink)

        assert run["matched"] is False
        assert run["sent"] is False
        assert fake_sink.calls == []

    @pytest.mark.asyncio
    async def test_only_on_change_suppresses_repeat(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager)

        patcher, _ = patch_http(json_response(200, {"status": "down"}))
        with patcher:
            await execute_poll(poll, sink=fake_sink)
            poll = await reload_poll(mock_db_manager, poll.id)
            run = await execute_poll(poll, sink=fake_sink)

        assert run["matched"] is True
        assert run["sent"] is False
        assert len(fake_sink.calls) == 1

    @pytest.mark.asyncio
    async def test_repeat_sent_when_only_on_change_disabled(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager, only_on_change=False)

        patcher, _ = patch_http(json_response(200, {"status": "down"}))
        with patcher:
            await execute_poll(poll, sink=fake_sink)
            poll = await reload_poll(mock_db_manager, poll.id)
            await execute_poll(poll, sink=fake_sink)

        assert len(fake_sink.calls) == 2

    @pytest.mark.asyncio
    async def test_stop_after_match(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager, continue_after_match=False)
        patcher, _ = patch_http(json_response(200, {"status": "down"}))

        with patcher:
            await execute_poll(poll, sink=fake_sink)

        poll = await reload_poll(mock_db_manager, poll.id)
        assert poll.enabled is False

    @pytest.mark.asyncio
    async def test_disabled_poll_requires_force(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager, enabled=False)
        patcher, client = patch_http(json_response(200, {"status": "up"}))

        with patcher:
            assert await execute_poll(poll, sink=fake_sink) is None
            client.request.assert_not_awaited()

            run = await execute_poll(poll, sink=fake_sink, force=True)
        assert run["status"] == "success"

    @pytest.mark.asyncio
    async def test_global_token_fallback(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager, bot_token="")
        patcher, _ = patch_http(json_response(200, {"status": "down"}))

        with patcher:
            await execute_poll(poll, sink=fake_sink, default_token="global-token")

        assert fake_sink.calls[0]["token"] == "global-token"

    @pytest.mark.asyncio
    async def test_request_headers_and_body(self, mock_db_manager, fake_sink):
        poll = await create_poll(
            mock_db_manager,
            method="POST",
            headers_json='{"Authorization": "Bearer x"}',
            body_json='{"query": "status"}',
        )
        patcher, client = patch_http(json_response(200, {"status": "up"}, method="POST"))

        with patcher:
            run = await execute_poll(poll, sink=fake_sink)

        client.request.assert_awaited_once_with(
            "POST", POLL_URL, headers={"Authorization": "Bearer x"}, json={"query": "status"}
        )
        assert run["request_method"] == "POST"
        assert run["request_body"] == '{"query": "status"}'

    @pytest.mark.asyncio
    async def test_get_never_sends_body(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager, body_json='{"query": "status"}')
        patcher, client = patch_http(json_response(200, {"status": "up"}))

        with patcher:
            await execute_poll(poll, sink=fake_sink)

        assert "json" not in client.request.await_args.kwargs

    @pytest.mark.asyncio
    async def test_http_error_recorded(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager)
        patcher, _ = patch_http(json_response(503, {"description": "maintenance"}))

        with patcher:
            run = await execute_poll(poll, sink=fake_sink)

        assert run["status"] == "error"
        assert run["error_message"] == "maintenance"
        assert run["response_status"] == 503
        assert json.loads(run["response_snippet"]) == {"description": "maintenance"}
        assert fake_sink.calls == []

        poll = await reload_poll(mock_db_manager, poll.id)
        assert poll.last_error == "maintenance"

    @pytest.mark.asyncio
    async def test_network_error_recorded(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager)
        patcher, _ = patch_http(error=httpx.ConnectError("connection refused"))

        with patcher:
            run = await execute_poll(poll, sink=fake_sink)

        assert run["status"] == "error"
        assert run["error_message"] == "connection refused"
        assert run["response_status"] is None

    @pytest.mark.asyncio
    async def test_runs_listed_newest_first(self, mock_db_manager, fake_sink):
        poll = await create_poll(mock_db_manager)
        patcher, _ = patch_http(json_response(200, {"status": "up"}))

        with patcher:
            first = await execute_poll(poll, sink=fake_sink)
            second = await execute_poll(poll, sink=fake_sink)

        async with mock_db_manager.get_session() as session:
            runs = await PollRunRepository(session).get_recent(poll_id=poll.id)
        assert [run.id for run in runs] == [second["id"], first["id"]]


class TestNormalizePoll:
    """normalize_poll 测试"""

    def test_defaults(self):
        fields = normalize_poll({"name": " n ", "url": " https://x ", "chatId": 42})

        assert fields["name"] == "n"
        assert fields["url"] == "https://x"
        assert fields["chat_id"] == "42"
        assert fields["method"] == "GET"
        assert fields["enabled"] is True
        assert fields["only_on_change"] is True
        assert fields["continue_after_match"] is True
        assert fields["timeout_sec"] == 10
        assert fields["interval_sec"] == 60

    def test_minimums_and_loose_ints(self):
        fields = normalize_poll({"timeoutSec": "1", "intervalSec": "30s", "method": "post"})

        assert fields["timeout_sec"] == 3
        assert fields["interval_sec"] == 30
        assert fields["method"] == "POST"

    def test_merge_with_current(self):
        current = {"name": "old", "url": "https://x", "chatId": "-1", "onlyOnChange": False, "timeoutSec": 20}
        fields = normalize_poll({"name": "new"}, current=current)

        assert fields["name"] == "new"
        assert fields["url"] == "https://x"
        assert fields["only_on_change"] is False
        assert fields["timeout_sec"] == 20

    def test_non_string_json_fields_dropped(self):
        fields = normalize_poll({"headersJson": {"a": 1}, "conditionJson": None})
        assert fields["headers_json"] == ""
        assert fields["condition_json"] == ""


class TestMakeSnippet:
    """make_snippet 测试"""

    def test_truncated(self):
        snippet = make_snippet({"blob": "x" * (MAX_SNIPPET_CHARS * 2)})
        assert len(snippet) == MAX_SNIPPET_CHARS
        assert snippet.endswith("...")

    def test_short(self):
        assert make_snippet([1]) == "[\n  1\n]"
