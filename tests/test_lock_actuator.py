import base64
import random

import httpx

from infrastructure.locks import HttpLockActuator, SimulatedLockActuator
from infrastructure.rendering import qr_data_url


def actuator_with(handler) -> HttpLockActuator:
    return HttpLockActuator(
        "http://controller.local/",
        username="admin",
        password="secret",
        transport=httpx.MockTransport(handler),
    )


async def test_http_unlock_success():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    result = await actuator_with(handler).unlock("2")

    assert result.success
    assert result.method == "remote_control"
    assert len(seen) == 1
    assert seen[0].method == "PUT"
    assert seen[0].url.path == "/ISAPI/AccessControl/RemoteControl/door/2"
    assert b"<cmd>open</cmd>" in seen[0].content


async def test_http_unlock_falls_back_to_v2_body():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content)
        return httpx.Response(400 if len(bodies) == 1 else 200)

    result = await actuator_with(handler).unlock("1")

    assert result.success
    assert result.method == "remote_control_v2"
    assert b"isapi.org/ver20" in bodies[1]


async def test_http_unlock_reports_status_on_failure():
    result = await actuator_with(lambda request: httpx.Response(403)).unlock("1")

    assert not result.success
    assert result.error == "http_status=403"


async def test_http_unlock_transport_error_is_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route to host", request=request)

    result = await actuator_with(handler).unlock("1")

    assert not result.success
    assert "no route to host" in result.error


async def test_simulated_actuator_outcomes():
    ok = await SimulatedLockActuator(latency_seconds=0, success_rate=1.0).unlock("1")
    failed = await SimulatedLockActuator(latency_seconds=0, success_rate=0.0, rng=random.Random(7)).unlock("1")

    assert ok.success and ok.method == "simulated"
    assert not failed.success and failed.error == "Smart lock communication timeout"


def test_qr_data_url_is_png():
    url = qr_data_url("some-opaque-token")
    prefix = "data:image/png;base64,"

    assert url.startswith(prefix)
    assert base64.b64decode(url[len(prefix):]).startswith(b"\x89PNG")
