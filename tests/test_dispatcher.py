"""
规则分发测试
"""
from unittest.mock import patch

import pytest

from relay_service.models import Rule
from relay_service.services.dispatcher import Dispatcher, NO_CHAT_ERROR, NO_TOKEN_ERROR


def make_rule(rule_id, condition, chat_id="-100", chat_ids=None, bot_token="rule-token",
              message_template="", enabled=True):
    return Rule(
        id=rule_id,
        name=f"rule-{rule_id}",
        condition=condition,
        chat_id=chat_id,
        chat_ids=chat_ids,
        bot_token=bot_token,
        message_template=message_template,
        enabled=enabled,
    )


class TestDispatch:
    """Dispatcher.dispatch 测试"""

    @pytest.mark.asyncio
    async def test_category_rule_sends_formatted_message(self, fake_sink):
        rule = make_rule(1, 'payload.category === "incident"')
        dispatcher = Dispatcher(fake_sink)

        outcome = await dispatcher.dispatch({"category": "incident", "id": 9}, [rule])

        assert outcome.matched == 1
        assert outcome.sent == 1
        assert outcome.total_rules == 1
        assert fake_sink.calls == [{"token": "rule-token", "chat_id": "-100", "text": "🆔 ID: 9\n类别: incident"}]
        assert outcome.results[0]["chatId"] == "-100"
        assert outcome.results[0]["success"] is True

    @pytest.mark.asyncio
    async def test_no_match(self, fake_sink):
        rule = make_rule(1, 'payload.category === "incident"')
        outcome = await Dispatcher(fake_sink).dispatch({"category": "request"}, [rule])

        assert outcome.matched == 0
        assert outcome.results == []
        assert fake_sink.calls == []

    @pytest.mark.asyncio
    async def test_disabled_rule_never_evaluated(self, fake_sink):
        rule = make_rule(1, "true", enabled=False)
        with patch("relay_service.services.dispatcher.matches") as mock_matches:
            outcome = await Dispatcher(fake_sink).dispatch({}, [rule])

        mock_matches.assert_not_called()
        assert outcome.matched == 0
        assert outcome.total_rules == 1

    @pytest.mark.asyncio
    async def test_throwing_condition_does_not_affect_other_rules(self, fake_sink):
        rules = [
            make_rule(1, "payload.requester.name === 'x'"),
            make_rule(2, "true", chat_id="-200"),
        ]
        outcome = await Dispatcher(fake_sink).dispatch({}, rules)

        assert outcome.matched == 1
        assert [call["chat_id"] for call in fake_sink.calls] == ["-200"]

    @pytest.mark.asyncio
    async def test_two_chats_one_failing(self, sink_factory):
        sink = sink_factory(fail_chats={"-2"})
        rule = make_rule(1, "true", chat_ids=["-1", "-2"])

        outcome = await Dispatcher(sink).dispatch({"id": 1}, [rule])

        assert len(sink.calls) == 2
        assert [r["chatId"] for r in outcome.results] == ["-1", "-2"]
        assert outcome.results[0]["success"] is True
        assert outcome.results[1]["success"] is False
        assert outcome.results[1]["error"]["description"] == "Bad Request: chat not found"
        assert outcome.sent == 1

    @pytest.mark.asyncio
    async def test_chat_ids_override_chat_id(self, fake_sink):
        rule = make_rule(1, "true", chat_id="-9", chat_ids=["-1"])
        await Dispatcher(fake_sink).dispatch({}, [rule])
        assert [call["chat_id"] for call in fake_sink.calls] == ["-1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rule_token", ["", None, "YOUR_TOKEN", "ВАШ_ТОКЕН_ЗДЕСЬ"])
    async def test_missing_token_one_failure_per_rule(self, fake_sink, rule_token):
        rule = make_rule(1, "true", chat_ids=["-1", "-2"], bot_token=rule_token)

        outcome = await Dispatcher(fake_sink, default_token=None).dispatch({}, [rule])

        assert outcome.matched == 1
        assert fake_sink.calls == []
        assert outcome.results == [{"chatId": "-100", "success": False, "error": NO_TOKEN_ERROR}]

    @pytest.mark.asyncio
    async def test_default_token_used_when_rule_has_none(self, fake_sink):
        rule = make_rule(1, "true", bot_token="")
        await Dispatcher(fake_sink, default_token="global-token").dispatch({}, [rule])
        assert fake_sink.calls[0]["token"] == "global-token"

    @pytest.mark.asyncio
    async def test_placeholder_default_token_is_ignored(self, fake_sink):
        rule = make_rule(1, "true", bot_token="")
        outcome = await Dispatcher(fake_sink, default_token="YOUR_TOKEN").dispatch({}, [rule])
        assert outcome.results[0]["error"] == NO_TOKEN_ERROR

    @pytest.mark.asyncio
    async def test_no_chat_configured(self, fake_sink):
        rule = make_rule(1, "true", chat_id=None, chat_ids=[])
        outcome = await Dispatcher(fake_sink).dispatch({}, [rule])

        assert fake_sink.calls == []
        assert outcome.results == [{"chatId": None, "success": False, "error": NO_CHAT_ERROR}]

    @pytest.mark.asyncio
    async def test_sink_exception_isolated_per_chat(self, fake_sink):
        calls = []

        class FlakySink:
            async def send(self, token, chat_id, text):
                calls.append(chat_id)
                if chat_id == "-1":
                    raise RuntimeError("connection reset")
                return {"success": True, "response": {"ok": True}}

        rule = make_rule(1, "true", chat_ids=["-1", "-2"])
        outcome = await Dispatcher(FlakySink()).dispatch({}, [rule])

        assert calls == ["-1", "-2"]
        assert outcome.results[0] == {"chatId": "-1", "success": False, "error": "connection reset"}
        assert outcome.sent == 1

    @pytest.mark.asyncio
    async def test_rule_level_exception_recorded_and_loop_continues(self, fake_sink):
        rules = [make_rule(1, "true"), make_rule(2, "true", chat_id="-200")]
        with patch(
            "relay_service.services.dispatcher.format_message",
            side_effect=[RuntimeError("broken"), "ok"],
        ):
            outcome = await Dispatcher(fake_sink).dispatch({}, rules)

        assert outcome.matched == 2
        assert outcome.results[0] == {"chatId": "-100", "success": False, "error": "broken"}
        assert outcome.results[1]["chatId"] == "-200"
        assert outcome.sent == 1

    @pytest.mark.asyncio
    async def test_template_and_envelope(self, fake_sink):
        rule = make_rule(1, "payload.id > 0", message_template="#${id} ${payload.subject}")
        body = {"event": "ticket.created", "payload": {"id": 5, "subject": "Hi"}}

        await Dispatcher(fake_sink).dispatch(body["payload"], [rule], raw_body=body)

        assert fake_sink.calls[0]["text"] == "#5 Hi"
