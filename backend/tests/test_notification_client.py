"""
WellnessApiClient against an httpx.MockTransport.
"""

import asyncio

import httpx
import pytest

from notification_client import ApiError, NotFoundError, WellnessApiClient

NOTIFICATIONS = [
    {"id": 2, "user_id": 1, "title": "Welcome", "message": "Hi", "type": "tip",
     "read": False, "created_at": "2024-06-01T09:00:00+00:00"},
]


def client_for(handler, token="tok"):
    return WellnessApiClient("http://api.test/", token=token, transport=httpx.MockTransport(handler))


def run(coro_factory, handler):
    async def go():
        async with client_for(handler) as client:
            return await coro_factory(client)

    return asyncio.run(go())


def test_list_notifications_parses_and_authenticates():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json=NOTIFICATIONS)

    result = run(lambda c: c.list_notifications(1), handler)
    assert seen == {"path": "/api/notifications/1", "auth": "Bearer tok"}
    assert result[0].id == 2
    assert result[0].type == "tip"


def test_read_all_404_means_nothing_to_update():
    def handler(request):
        assert request.method == "PATCH"
        assert request.url.path == "/api/notifications/1/read-all"
        return httpx.Response(404, json={"detail": "Could not update notifications"})

    assert run(lambda c: c.mark_all_notifications_read(1), handler) is False


def test_read_all_204():
    assert run(lambda c: c.mark_all_notifications_read(1), lambda r: httpx.Response(204)) is True


def test_server_error_raises_api_error():
    with pytest.raises(ApiError) as excinfo:
        run(lambda c: c.list_schedules(1), lambda r: httpx.Response(500, text="boom"))
    assert excinfo.value.status_code == 500


def test_mark_read_404_raises_not_found():
    with pytest.raises(NotFoundError):
        run(lambda c: c.mark_notification_read(9), lambda r: httpx.Response(404))


def test_connection_error_raises_api_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ApiError) as excinfo:
        run(lambda c: c.list_medicines(1), handler)
    assert excinfo.value.status_code is None


def test_list_medicines_ignores_extra_fields():
    payload = [{"id": 3, "user_id": 1, "name": "Aspirin", "dosage": "81mg", "time": "08:00",
                "created_at": "2024-06-01T00:00:00+00:00"}]
    result = run(lambda c: c.list_medicines(1), lambda r: httpx.Response(200, json=payload))
    assert result[0].name == "Aspirin"
    assert result[0].frequency == "daily"


def test_non_json_body_raises_api_error():
    html = lambda r: httpx.Response(200, text="<html>proxy error</html>")
    with pytest.raises(ApiError, match="invalid body"):
        run(lambda c: c.list_notifications(1), html)


def test_mismatched_body_raises_api_error():
    wrong_shape = lambda r: httpx.Response(200, json=[{"id": "abc", "title": 3}])
    with pytest.raises(ApiError, match="invalid body"):
        run(lambda c: c.list_schedules(1), wrong_shape)
