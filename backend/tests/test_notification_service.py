import json

import httpx
import pytest

from stockbook.errors import NotificationError
from stockbook.services import notification_service


@pytest.fixture
def telegram(app, monkeypatch):
    monkeypatch.setitem(app.config, "TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setitem(app.config, "TELEGRAM_CHAT_ID", "-1001")


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_not_configured_sends_nothing(product_a, make_invoice):
    invoice = make_invoice([(product_a, 1)]).invoice

    def handler(request):
        raise AssertionError("no request expected")

    assert notification_service.notify_invoice_created(invoice, client=_client(handler)) is False


def test_message_posted_to_chat(telegram, product_a, make_invoice):
    invoice = make_invoice([(product_a, 2)]).invoice
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

    assert notification_service.notify_invoice_created(invoice, client=_client(handler)) is True

    request = seen[0]
    assert request.url.path == "/bot123:abc/sendMessage"
    body = json.loads(request.content)
    assert body["chat_id"] == "-1001"
    assert body["text"].splitlines()[0] == "New invoice INV-0001"
    assert "Customer: Walk-in" in body["text"]
    assert "Total: ₹236.00" in body["text"]


def test_http_error_raises(telegram):
    client = _client(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(NotificationError) as excinfo:
        notification_service.send_message("hi", client=client)
    assert excinfo.value.details["status_code"] == 500


def test_rejected_message_raises(telegram):
    client = _client(lambda request: httpx.Response(200, json={"ok": False, "description": "chat not found"}))

    with pytest.raises(NotificationError, match="chat not found"):
        notification_service.send_message("hi", client=client)


def test_transport_error_raises(telegram):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NotificationError, match="request failed"):
        notification_service.send_message("hi", client=_client(handler))
