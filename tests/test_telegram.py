import json

import httpx
import pytest

from spamguard.services.telegram import TelegramApiError, TelegramGateway


def _gateway(handler, admin_group_id=-500):
    requests = []

    def record(request):
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return TelegramGateway("TOKEN", admin_group_id, http_client=client), requests


def _ok(result=True):
    return lambda request: httpx.Response(200, json={"ok": True, "result": result})


@pytest.mark.asyncio
async def test_delete_message_posts_to_bot_api():
    gateway, requests = _gateway(_ok())

    assert await gateway.delete_message(-100, 55) is True

    (request,) = requests
    assert str(request.url) == "https://api.telegram.org/botTOKEN/deleteMessage"
    assert json.loads(request.content) == {"chat_id": -100, "message_id": 55}


@pytest.mark.asyncio
async def test_delete_message_refused_returns_false():
    gateway, _ = _gateway(
        lambda request: httpx.Response(
            400, json={"ok": False, "error_code": 400, "description": "message can't be deleted"}
        )
    )

    assert await gateway.delete_message(-100, 55) is False


@pytest.mark.asyncio
async def test_call_raises_api_error_with_details():
    gateway, _ = _gateway(
        lambda request: httpx.Response(403, json={"ok": False, "error_code": 403, "description": "bot was kicked"})
    )

    with pytest.raises(TelegramApiError) as excinfo:
        await gateway.call("getChat", {"chat_id": -1})

    assert excinfo.value.error_code == 403
    assert excinfo.value.description == "bot was kicked"


@pytest.mark.asyncio
async def test_notify_admin_uses_html_parse_mode():
    gateway, requests = _gateway(_ok({"message_id": 1}))

    assert await gateway.notify_admin("<b>Spam deleted</b>") is True

    payload = json.loads(requests[0].content)
    assert payload["chat_id"] == -500
    assert payload["parse_mode"] == "HTML"
    assert payload["disable_web_page_preview"] is True


@pytest.mark.asyncio
async def test_notify_admin_without_admin_group_is_skipped():
    gateway, requests = _gateway(_ok(), admin_group_id=0)

    assert await gateway.notify_admin("text") is False
    assert requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, expected",
    [("member", True), ("administrator", True), ("restricted", True), ("left", False), ("kicked", False)],
)
async def test_is_member(status, expected):
    gateway, _ = _gateway(_ok({"status": status}))

    assert await gateway.is_member(-100, 7) is expected


@pytest.mark.asyncio
async def test_is_member_failure_counts_as_non_member():
    def boom(request):
        raise httpx.ConnectError("down", request=request)

    gateway, _ = _gateway(boom)

    assert await gateway.is_member(-100, 7) is False


@pytest.mark.asyncio
async def test_get_updates_sends_offset_and_filter():
    updates = [{"update_id": 10, "message": {"message_id": 1}}]
    gateway, requests = _gateway(_ok(updates))

    assert await gateway.get_updates(10, timeout=5) == updates

    payload = json.loads(requests[0].content)
    assert payload == {"timeout": 5, "allowed_updates": ["message"], "offset": 10}
