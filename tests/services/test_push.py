import json

import httpx
import pytest

from player_dashboard.core.errors import ConfigurationError
from player_dashboard.services.push import (
    FcmPushSender,
    NullPushSender,
    build_fcm_message,
    build_fcm_v1_url,
    load_service_account_info,
)

NOTE = {
    "title": "New Command",
    "body": "Command type: reboot",
    "data": {"commandId": "1", "attempt": 2, "payload": {"a": 1}},
}


def test_build_fcm_message_stringifies_data():
    message = build_fcm_message("tok", NOTE)["message"]
    assert message["token"] == "tok"
    assert message["notification"] == {"title": "New Command", "body": "Command type: reboot"}
    assert message["android"] == {"priority": "high"}
    assert message["data"] == {"commandId": "1", "attempt": "2", "payload": '{"a": 1}'}


def test_build_fcm_message_without_data():
    message = build_fcm_message("tok", {"title": "t", "body": "b"})["message"]
    assert "data" not in message


def test_fcm_url():
    assert build_fcm_v1_url("proj") == "https://fcm.googleapis.com/v1/projects/proj/messages:send"


def test_load_service_account_info_validates_json():
    assert load_service_account_info('{"project_id": "p"}') == {"project_id": "p"}
    with pytest.raises(ConfigurationError):
        load_service_account_info("{oops")
    with pytest.raises(ConfigurationError):
        load_service_account_info("[]")


def test_fcm_sender_requires_project_id():
    with pytest.raises(ConfigurationError):
        FcmPushSender({"type": "service_account"})


@pytest.mark.asyncio
async def test_fcm_sender_posts_one_message_per_token(mocker):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"name": f"projects/p/messages/{len(requests)}"})

    sender = FcmPushSender(
        {"project_id": "p"},
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    mocker.patch.object(sender, "_access_token", mocker.AsyncMock(return_value="access"))

    result = await sender.send(["a", "b"], NOTE)

    assert result.success is True
    assert result.result == {"sent": ["projects/p/messages/1", "projects/p/messages/2"]}
    assert [json.loads(r.content)["message"]["token"] for r in requests] == ["a", "b"]
    assert requests[0].headers["Authorization"] == "Bearer access"
    await sender.aclose()


@pytest.mark.asyncio
async def test_fcm_sender_reports_partial_failure(mocker):
    statuses = iter([200, 404])
    sender = FcmPushSender(
        {"project_id": "p"},
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(next(statuses), json={}))
        ),
    )
    mocker.patch.object(sender, "_access_token", mocker.AsyncMock(return_value="access"))

    result = await sender.send(["a", "b"], NOTE)

    assert result.success is False
    assert "HTTP 404" in result.error
    await sender.aclose()


@pytest.mark.asyncio
async def test_fcm_sender_reports_auth_failure(mocker):
    sender = FcmPushSender({"project_id": "p"}, client=httpx.AsyncClient())
    mocker.patch.object(
        sender, "_access_token", mocker.AsyncMock(side_effect=ValueError("bad key"))
    )
    result = await sender.send(["a"], NOTE)
    assert result.success is False
    assert result.error.startswith("auth:")
    await sender.aclose()


@pytest.mark.asyncio
async def test_fcm_sender_without_recipients():
    sender = FcmPushSender({"project_id": "p"}, client=httpx.AsyncClient())
    result = await sender.send([], NOTE)
    assert result.success is False
    await sender.aclose()


@pytest.mark.asyncio
async def test_null_sender_accepts_everything():
    result = await NullPushSender().send(["a"], NOTE)
    assert result.success is True
