"""Tests for the node executor and per-type handlers."""

import json
from datetime import date

import httpx
import pytest

from models.database import AutomationExecution, WhatsAppSettings
from models.flow import Flow, FlowNode
from services.messaging import WhatsAppChannel
from services.node_executor import NodeExecutor

from conftest import OWNER_ID, FakeAIService, FakeChannel, trigger_node

FLOW = Flow(id="flow-1", owner_id=OWNER_ID, trigger_type="webhook", nodes=[trigger_node()], edges=[])


def _execution(trigger_data=None, **state) -> AutomationExecution:
    trigger_data = trigger_data if trigger_data is not None else {"name": "Maria", "phone": "5511999998888"}
    return AutomationExecution(
        id="exec-1",
        flow_id=FLOW.id,
        owner_id=OWNER_ID,
        trigger_data=trigger_data,
        execution_state={"triggerData": trigger_data, **state},
    )


def _node(node_type: str, **data) -> FlowNode:
    return FlowNode(id=f"{node_type}-1", type=node_type, data=data)


async def _run(executor: NodeExecutor, node: FlowNode, execution=None, key: str = "exec-1:0"):
    return await executor.run(node, execution or _execution(), FLOW, key)


def _executor(database, settings, channel=None, ai=None, handler=None) -> NodeExecutor:
    transport = httpx.MockTransport(handler) if handler else None
    return NodeExecutor(database, channel or FakeChannel(), ai or FakeAIService(), settings,
                        http_transport=transport)


class TestMessageNode:
    """Tests for the message handler."""

    async def test_sends_interpolated_text(self, node_executor, channel) -> None:
        result = await _run(node_executor, _node("message", message="Olá {name}"))

        assert result.success is True
        assert result.data == {"messageSent": True, "message": "Olá Maria"}
        assert channel.sent == [(OWNER_ID, "5511999998888", "Olá Maria")]

    async def test_falls_back_to_description(self, node_executor) -> None:
        result = await _run(node_executor, _node("message", description="Oi {name}"))
        assert result.data["message"] == "Oi Maria"

    async def test_phone_from_state(self, node_executor, channel) -> None:
        execution = _execution(trigger_data={"name": "Maria"}, phone="5511000000000")
        await _run(node_executor, _node("message", message="x"), execution)
        assert channel.sent[0][1] == "5511000000000"

    async def test_send_failure_is_swallowed(self, database, settings) -> None:
        executor = _executor(database, settings, channel=FakeChannel(fail=True))
        result = await _run(executor, _node("message", message="Olá"))

        assert result.success is True
        assert result.data["messageSent"] is False

    async def test_no_phone(self, node_executor, channel) -> None:
        result = await _run(node_executor, _node("message", message="Olá"), _execution(trigger_data={}))
        assert result.success is True
        assert result.data["messageSent"] is False
        assert channel.sent == []

    async def test_same_step_is_not_sent_twice(self, node_executor, channel) -> None:
        message = _node("message", message="Olá {name}")
        await _run(node_executor, message, key="exec-1:0")
        again = await _run(node_executor, message, key="exec-1:0")
        await _run(node_executor, message, key="exec-1:1")

        assert again.data["messageSent"] is True
        assert len(channel.sent) == 2


class TestWhatsAppChannel:
    """Tests for the Evolution API channel."""

    async def test_posts_to_evolution(self, database, settings) -> None:
        await database.save_owner_settings(WhatsAppSettings(
            owner_id=OWNER_ID,
            evolution_api_url="https://evo.example.com/",
            evolution_api_key="evo-key",
            evolution_instance_name="clinic",
        ))
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201, json={"key": {"id": "msg-1"}})

        channel = WhatsAppChannel(database, settings, transport=httpx.MockTransport(handler))
        assert await channel.send_text(OWNER_ID, "5511999998888", "Olá") is True

        request = requests[0]
        assert str(request.url) == "https://evo.example.com/message/sendText/clinic"
        assert request.headers["apikey"] == "evo-key"
        assert json.loads(request.content) == {"number": "5511999998888", "text": "Olá"}

    async def test_not_configured(self, database, settings) -> None:
        channel = WhatsAppChannel(database, settings)
        assert await channel.send_text(OWNER_ID, "5511", "Olá") is False

    async def test_http_error_propagates(self, database, settings) -> None:
        await database.save_owner_settings(WhatsAppSettings(
            owner_id=OWNER_ID, evolution_api_url="https://evo.example.com", evolution_instance_name="clinic",
        ))
        channel = WhatsAppChannel(database, settings,
                                  transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        with pytest.raises(httpx.HTTPStatusError):
            await channel.send_text(OWNER_ID, "5511", "Olá")


class TestDelayNode:
    """Tests for the delay handler."""

    async def test_defers_instead_of_sleeping(self, node_executor) -> None:
        result = await _run(node_executor, _node("delay", delayMinutes=2))
        assert result.success is True
        assert result.data == {"delayed": True, "minutes": 2}
        assert result.defer_seconds == 120

    async def test_default_one_minute(self, node_executor) -> None:
        result = await _run(node_executor, _node("delay"))
        assert result.defer_seconds == 60

    async def test_invalid_minutes_fail_validation(self, node_executor) -> None:
        result = await _run(node_executor, _node("delay", delayMinutes="soon"))
        assert result.success is False
        assert "Invalid parameters" in result.error


class TestConditionNode:
    """Tests for the condition handler."""

    async def test_amount_below_threshold(self, node_executor) -> None:
        execution = _execution(trigger_data={"amount_cents": 5000})
        node = _node("condition", conditionField="amount_cents", conditionOperator="greater_than",
                     conditionValue="10000")
        result = await _run(node_executor, node, execution)
        assert result.success is True
        assert result.data == {"conditionResult": False}

    async def test_reads_earlier_node_output(self, node_executor) -> None:
        execution = _execution(messageSent=True)
        node = _node("condition", conditionField="messageSent", conditionOperator="equals",
                     conditionValue="true")
        result = await _run(node_executor, node, execution)
        assert result.data == {"conditionResult": True}


class TestCrmNode:
    """Tests for the CRM handler."""

    async def test_updates_lead(self, node_executor, database, lead) -> None:
        node = _node("crm", newStage="contacted", addTags=["contacted", "lead"], notes="Respondeu")
        result = await _run(node_executor, node)

        assert result.success is True
        assert result.data == {"crmUpdated": True, "leadId": lead.id}
        updated = await database.find_lead_by_phone(OWNER_ID, lead.phone)
        assert updated.stage_id == "contacted"
        assert updated.tags == ["lead", "contacted"]
        assert updated.notes == "Primeiro contato\nRespondeu"

    async def test_comma_separated_tags(self, node_executor, database, lead) -> None:
        await _run(node_executor, _node("crm", addTags="vip, retorno"))
        updated = await database.find_lead_by_phone(OWNER_ID, lead.phone)
        assert updated.tags == ["lead", "vip", "retorno"]

    async def test_no_lead_is_noop_success(self, node_executor) -> None:
        result = await _run(node_executor, _node("crm", addTags=["contacted"]))
        assert result.success is True
        assert result.data == {"crmUpdated": False, "leadId": None}

    async def test_retried_step_applies_once(self, node_executor, database, lead) -> None:
        node = _node("crm", notes="Respondeu")
        await _run(node_executor, node, key="exec-1:3")
        await _run(node_executor, node, key="exec-1:3")
        updated = await database.find_lead_by_phone(OWNER_ID, lead.phone)
        assert updated.notes == "Primeiro contato\nRespondeu"


class TestCalendarNode:
    """Tests for the calendar handler."""

    async def test_books_pending_appointment(self, node_executor, database, service) -> None:
        execution = _execution(trigger_data={"name": "Maria", "phone": "5511999998888", "email": "m@example.com"})
        result = await _run(node_executor, _node("calendar", appointmentDate="2026-11-02"), execution)

        assert result.success is True
        assert result.data["appointmentCreated"] is True
        [appointment] = await database.list_appointments(OWNER_ID)
        assert appointment.id == result.data["appointmentId"]
        assert appointment.service_id == service.id
        assert appointment.appointment_date == "2026-11-02"
        assert appointment.appointment_time == "10:00"
        assert appointment.status == "pending"
        assert appointment.client_email == "m@example.com"
        assert appointment.duration_minutes == 50
        assert appointment.amount_cents == 15000

    async def test_defaults(self, node_executor, database, service) -> None:
        await _run(node_executor, _node("calendar"), _execution(trigger_data={"phone": "5511"}))
        [appointment] = await database.list_appointments(OWNER_ID)
        assert appointment.client_name == "Cliente via Automação"
        assert appointment.appointment_date == date.today().isoformat()

    async def test_idempotent_per_step(self, node_executor, database, service) -> None:
        first = await _run(node_executor, _node("calendar"), key="exec-1:2")
        second = await _run(node_executor, _node("calendar"), key="exec-1:2")
        assert first.data["appointmentId"] == second.data["appointmentId"]
        assert len(await database.list_appointments(OWNER_ID)) == 1

    async def test_requires_phone(self, node_executor, database, service) -> None:
        result = await _run(node_executor, _node("calendar"), _execution(trigger_data={"name": "x"}))
        assert result.success is True
        assert result.data["appointmentCreated"] is False
        assert await database.list_appointments(OWNER_ID) == []

    async def test_requires_active_service(self, node_executor, database) -> None:
        result = await _run(node_executor, _node("calendar"))
        assert result.data["appointmentCreated"] is False


class TestCheckoutNode:
    """Tests for the checkout handler."""

    async def test_link_for_first_service(self, node_executor, service) -> None:
        result = await _run(node_executor, _node("checkout"))
        assert result.data == {"checkoutLink": f"https://shop.example.com/checkout/{service.id}"}

    async def test_no_service(self, node_executor) -> None:
        result = await _run(node_executor, _node("checkout"))
        assert result.data == {"checkoutLink": None}


class TestApiNode:
    """Tests for the API handler."""

    async def test_json_response(self, database, settings) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True, "items": [1, 2]})

        executor = _executor(database, settings, handler=handler)
        node = _node("api", apiUrl="https://api.example.com/leads", apiMethod="post",
                     apiHeaders={"X-Key": "k"}, apiBody={"phone": "5511"})
        result = await _run(executor, node)

        assert result.success is True
        assert result.data == {"apiResponse": {"ok": True, "items": [1, 2]}}
        assert seen[0].method == "POST"
        assert seen[0].headers["x-key"] == "k"
        assert json.loads(seen[0].content) == {"phone": "5511"}

    async def test_network_error(self, node_executor) -> None:
        result = await _run(node_executor, _node("api", apiUrl="https://api.example.com"))
        assert result.success is False
        assert result.error.startswith("API error:")

    async def test_non_json_response(self, database, settings) -> None:
        executor = _executor(database, settings, handler=lambda r: httpx.Response(200, text="<html>"))
        result = await _run(executor, _node("api", apiUrl="https://api.example.com"))
        assert result.success is False
        assert result.error.startswith("API error:")

    async def test_missing_url(self, node_executor) -> None:
        result = await _run(node_executor, _node("api"))
        assert result.success is False


class TestWebhookNode:
    """Tests for the webhook handler."""

    async def test_posts_state(self, database, settings) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(204)

        executor = _executor(database, settings, handler=handler)
        result = await _run(executor, _node("webhook", webhookUrl="https://hooks.example.com/x"))

        assert result.success is True
        assert result.data == {"webhookSent": True}
        body = seen[0]
        assert body["execution_id"] == "exec-1"
        assert body["flow_id"] == FLOW.id
        assert body["node_id"] == "webhook-1"
        assert body["state"]["triggerData"]["name"] == "Maria"
        assert "timestamp" in body

    async def test_failure_is_swallowed(self, node_executor) -> None:
        result = await _run(node_executor, _node("webhook", webhookUrl="https://hooks.example.com/x"))
        assert result.success is True
        assert result.data == {"webhookSent": False}


class TestAIAgentNode:
    """Tests for the AI agent handler."""

    async def test_reply(self, node_executor, ai_service) -> None:
        execution = _execution(trigger_data={"message": "Qual o preço?"})
        result = await _run(node_executor, _node("ai_agent", systemPrompt="Seja breve."), execution)

        assert result.success is True
        assert result.data == {"aiResponse": "Olá! Como posso ajudar?"}
        assert ai_service.calls == [(OWNER_ID, "Seja breve.", "Qual o preço?")]

    async def test_default_prompt(self, node_executor, ai_service) -> None:
        await _run(node_executor, _node("ai_agent"))
        assert ai_service.calls[0][1] == "Você é um assistente útil."

    async def test_no_provider_configured(self, database, settings) -> None:
        executor = _executor(database, settings, ai=FakeAIService(reply=None))
        result = await _run(executor, _node("ai_agent"))
        assert result.success is True
        assert result.data == {"aiResponse": None}

    async def test_provider_error(self, database, settings) -> None:
        executor = _executor(database, settings, ai=FakeAIService(error=RuntimeError("rate limited")))
        result = await _run(executor, _node("ai_agent"))
        assert result.success is False
        assert result.error == "AI error: rate limited"


class TestUnknownNode:
    """Tests for node types without a handler."""

    async def test_unknown_type_is_noop(self, node_executor) -> None:
        result = await _run(node_executor, _node("sticky_note", text="hi"))
        assert result.success is True
        assert result.data == {}

    async def test_trigger_is_noop(self, node_executor) -> None:
        result = await _run(node_executor, FlowNode(id="t", type="trigger"))
        assert result.success is True
        assert result.data == {}
