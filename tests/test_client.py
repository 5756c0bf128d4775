"""Tests for the JasperReports REST transport client."""

import base64
import json
from urllib.parse import parse_qs

import httpx
import pytest

from jasper_reports_mcp.config import JasperConfig
from jasper_reports_mcp.core.clients.jasper import JasperClient
from jasper_reports_mcp.core.errors import JasperHTTPError
from tests.fake_server import BASE_URL

REPORT = {"uri": "/reports/r", "resourceType": "reportUnit"}


def _config(**overrides) -> JasperConfig:
    values = {"url": BASE_URL, "username": "jasperadmin", "password": "pw"}
    values.update(overrides)
    return JasperConfig(**values)


class Recorder:
    """Handler that records requests and replays queued responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0) if self.responses else httpx.Response(200, json=REPORT)


class TestAuthentication:
    """basic, argument and login authentication."""

    @pytest.mark.asyncio
    async def test_basic_auth_with_organization(self):
        recorder = Recorder()
        client = JasperClient(_config(organization="organization_1"), transport=httpx.MockTransport(recorder))
        await client.get_resource("/reports/r")

        request = recorder.requests[0]
        expected = base64.b64encode(b"jasperadmin|organization_1:pw").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert request.url.path == "/jasperserver/rest_v2/resources/reports/r"
        assert request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_argument_auth(self):
        recorder = Recorder()
        client = JasperClient(_config(auth_type="argument"), transport=httpx.MockTransport(recorder))
        await client.get_resource("/reports/r")

        request = recorder.requests[0]
        assert "Authorization" not in request.headers
        assert request.url.params["j_username"] == "jasperadmin"
        assert request.url.params["j_password"] == "pw"

    @pytest.mark.asyncio
    async def test_login_before_first_request(self):
        recorder = Recorder(httpx.Response(200))
        client = JasperClient(_config(auth_type="login"), transport=httpx.MockTransport(recorder))
        await client.get_resource("/reports/r")
        await client.get_resource("/reports/r")

        login, first, second = recorder.requests
        assert login.method == "POST"
        assert login.url.path.endswith("/rest_v2/login")
        assert parse_qs(login.content.decode()) == {"j_username": ["jasperadmin"], "j_password": ["pw"]}
        assert first.url.path.endswith("/resources/reports/r")
        assert second.url.path.endswith("/resources/reports/r")

    @pytest.mark.asyncio
    async def test_relogin_once_after_session_expiry(self):
        recorder = Recorder(httpx.Response(200), httpx.Response(401), httpx.Response(200))
        client = JasperClient(_config(auth_type="login"), transport=httpx.MockTransport(recorder))
        assert await client.get_resource("/reports/r") == REPORT

        logins = [r for r in recorder.requests if r.url.path.endswith("/login")]
        assert len(logins) == 2

    @pytest.mark.asyncio
    async def test_failed_login_raises(self):
        recorder = Recorder(httpx.Response(401, text="Invalid credentials"))
        client = JasperClient(_config(auth_type="login"), transport=httpx.MockTransport(recorder))
        with pytest.raises(JasperHTTPError) as exc_info:
            await client.get_resource("/reports/r")
        assert exc_info.value.status_code == 401
        assert exc_info.value.server_message == "Invalid credentials"


class TestResponses:
    @pytest.mark.asyncio
    async def test_error_body_decoded(self):
        recorder = Recorder(httpx.Response(404, json={"errorCode": "resource.not.found", "message": "gone"}))
        client = JasperClient(_config(), transport=httpx.MockTransport(recorder))
        with pytest.raises(JasperHTTPError) as exc_info:
            await client.get_resource("/reports/missing")
        error = exc_info.value
        assert error.body["errorCode"] == "resource.not.found"
        assert error.method == "GET"
        assert error.server_message == "gone"

    @pytest.mark.asyncio
    async def test_no_content_input_controls(self):
        client = JasperClient(_config(), transport=httpx.MockTransport(Recorder(httpx.Response(204))))
        assert await client.get_input_controls("/reports/r") == []

    @pytest.mark.asyncio
    async def test_cancel_sends_cancelled_status(self):
        recorder = Recorder(httpx.Response(200, json={"value": "cancelled"}))
        client = JasperClient(_config(), transport=httpx.MockTransport(recorder))
        await client.cancel_execution("req-9")

        request = recorder.requests[0]
        assert request.method == "PUT"
        assert request.url.path.endswith("/rest_v2/reportExecutions/req-9/status")
        assert json.loads(request.content) == {"value": "cancelled"}

    @pytest.mark.asyncio
    async def test_context_manager_closes(self):
        async with JasperClient(_config(), transport=httpx.MockTransport(Recorder())) as client:
            await client.get_resource("/reports/r")
        assert client._client.is_closed
