"""Shared fixtures: engine and client wired to an in-process JasperReports Server."""

import httpx
import pytest

from jasper_reports_mcp.config import JasperConfig
from jasper_reports_mcp.core.clients.jasper import JasperClient
from jasper_reports_mcp.core.engine import ReportExecutionEngine
from tests.fake_server import BASE_URL, FakeJasperServer


@pytest.fixture
def config() -> JasperConfig:
    return JasperConfig(
        url=BASE_URL,
        username="jasperadmin",
        password="jasperadmin",
        poll_interval_seconds=0,
    )


@pytest.fixture
def fake_server() -> FakeJasperServer:
    server = FakeJasperServer()
    server.add_report(
        "/reports/test_report",
        controls=[{"id": "Country", "label": "Country", "type": "singleSelect", "mandatory": True}],
    )
    return server


@pytest.fixture
def client(config, fake_server) -> JasperClient:
    return JasperClient(config, transport=httpx.MockTransport(fake_server.handler))


@pytest.fixture
def engine(client) -> ReportExecutionEngine:
    return ReportExecutionEngine(client)
