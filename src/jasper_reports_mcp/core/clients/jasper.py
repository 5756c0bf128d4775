"""JasperReports Server REST v2 client.

API docs: https://community.jaspersoft.com/documentation/ (REST API reference)
Authentication: HTTP basic, login service (session cookie), or j_username /
j_password query arguments. Non-2xx responses raise JasperHTTPError.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import httpx

from ...config import JasperConfig
from ..errors import JasperHTTPError

logger = logging.getLogger(__name__)

API_PREFIX = "/rest_v2"
JSON_HEADERS = {"Accept": "application/json"}


class JasperClient:
    """Authenticated async HTTP client bound to one server."""

    def __init__(self, config: JasperConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.url,
            timeout=httpx.Timeout(config.timeout_seconds, connect=min(10.0, config.timeout_seconds)),
            verify=config.ssl_verify,
            follow_redirects=True,
            auth=httpx.BasicAuth(config.qualified_username, config.password) if config.auth_type == "basic" else None,
            transport=transport,
        )
        self._logged_in = False
        self._login_lock = asyncio.Lock()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "JasperClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ─── Authentication ──────────────────────────────────────────────────────

    async def login(self) -> None:
        """Open a session through the login service; cookies stay on the client."""
        async with self._login_lock:
            response = await self._client.post(
                f"{API_PREFIX}/login",
                data={"j_username": self.config.qualified_username, "j_password": self.config.password},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            if response.status_code >= 400:
                raise JasperHTTPError(response.status_code, _decode_body(response), str(response.request.url), "POST")
            self._logged_in = True
            logger.info("Logged in to %s as %s", self.config.url, self.config.qualified_username)

    def _auth_params(self) -> dict[str, str]:
        if self.config.auth_type == "argument":
            return {"j_username": self.config.qualified_username, "j_password": self.config.password}
        return {}

    # ─── Requests ────────────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        if self.config.auth_type == "login" and not self._logged_in:
            await self.login()

        response = await self._send(method, path, json_body, params, headers)

        if response.status_code == 401 and self.config.auth_type == "login":
            logger.info("Session expired, logging in again")
            self._logged_in = False
            await self.login()
            response = await self._send(method, path, json_body, params, headers)

        if response.status_code >= 400:
            raise JasperHTTPError(response.status_code, _decode_body(response), path, method)
        return response

    async def _send(
        self,
        method: str,
        path: str,
        json_body: Any,
        params: Optional[dict[str, Any]],
        headers: Optional[dict[str, str]],
    ) -> httpx.Response:
        query = {**(params or {}), **self._auth_params()}
        logger.debug("%s %s params=%s", method, path, sorted((params or {}).keys()))
        return await self._client.request(
            method,
            path,
            json=json_body,
            params=query or None,
            headers=headers,
        )

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, json_body: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, json_body=json_body, **kwargs)

    async def put(self, path: str, json_body: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", path, json_body=json_body, **kwargs)

    # ─── Endpoints ───────────────────────────────────────────────────────────

    async def get_resource(self, uri: str) -> dict:
        """Fetch a resource descriptor, e.g. ``/reports/samples/AllAccounts``."""
        response = await self.get(f"{API_PREFIX}/resources{uri}", headers=JSON_HEADERS)
        return _json_or_empty(response)

    async def get_input_controls(self, report_uri: str) -> list[dict]:
        response = await self.get(f"{API_PREFIX}/reports{report_uri}/inputControls", headers=JSON_HEADERS)
        return _json_or_empty(response).get("inputControl", []) or []

    async def start_execution(self, body: dict[str, Any], accept: str = "application/json") -> httpx.Response:
        return await self.post(f"{API_PREFIX}/reportExecutions", body, headers={"Accept": accept})

    async def get_execution_status(self, request_id: str) -> dict:
        response = await self.get(f"{API_PREFIX}/reportExecutions/{request_id}/status", headers=JSON_HEADERS)
        return _json_or_empty(response)

    async def get_execution_details(self, request_id: str) -> dict:
        response = await self.get(f"{API_PREFIX}/reportExecutions/{request_id}", headers=JSON_HEADERS)
        return _json_or_empty(response)

    async def cancel_execution(self, request_id: str) -> httpx.Response:
        return await self.put(
            f"{API_PREFIX}/reportExecutions/{request_id}/status",
            {"value": "cancelled"},
            headers=JSON_HEADERS,
        )

    async def get_export_output(self, request_id: str, export_id: str) -> httpx.Response:
        return await self.get(f"{API_PREFIX}/reportExecutions/{request_id}/exports/{export_id}/outputResource")


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text


def _json_or_empty(response: httpx.Response) -> dict:
    """Decode a JSON object body; 204 and empty bodies become ``{}``."""
    if response.status_code == 204 or not response.content:
        return {}
    data = response.json()
    return data if isinstance(data, dict) else {}
