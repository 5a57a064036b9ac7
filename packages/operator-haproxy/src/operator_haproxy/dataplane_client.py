"""
Low-level transport to the HAProxy Data Plane API.

DataplaneClient receives an injected httpx.AsyncClient with base_url (and
timeout) set to the Data Plane API server, and adds Basic-Auth credentials
to every request. It does not retry and does not interpret status codes:
callers get status, headers and body back and decide for themselves.

The only translation done here is for requests that never produced a
response: httpx transport errors (DNS, connection refused, timeouts)
surface as TransportError so callers can tell them apart from HTTP-level
failures.
"""

import json
from dataclasses import dataclass
from typing import Any

import httpx

from operator_haproxy.exceptions import ParseError, TransportError, UpstreamError


@dataclass(frozen=True)
class DataplaneResponse:
    """
    Raw result of a Data Plane API call.

    Attributes:
        status: HTTP status code.
        headers: Response headers (lower-cased names).
        body: Response body as text.
        path: Request path, kept for error messages.
    """

    status: int
    headers: dict[str, str]
    body: str
    path: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """
        Decode the body as JSON.

        Raises:
            ParseError: If the body is not valid JSON.
        """
        try:
            return json.loads(self.body) if self.body else None
        except json.JSONDecodeError as e:
            raise ParseError(f"invalid JSON from {self.path}: {e.msg}") from e

    def raise_for_status(self) -> None:
        """
        Raise UpstreamError for non-2xx responses.

        Used on read paths; mutations translate status codes themselves.
        """
        if not self.ok:
            raise UpstreamError(self.status, self.body, self.path)


@dataclass
class DataplaneClient:
    """
    Authenticated Data Plane API transport with injected httpx client.

    Attributes:
        http: Pre-configured httpx.AsyncClient with base_url set to the
            Data Plane API server.
        username: Basic-Auth user.
        password: Basic-Auth password.

    Example:
        async with httpx.AsyncClient(base_url="http://lb:5555", timeout=5.0) as http:
            client = DataplaneClient(http=http, username="admin", password="secret")
            response = await client.call("/v3/services/haproxy/configuration/version")
            print(response.status, response.json())
    """

    http: httpx.AsyncClient
    username: str = "admin"
    password: str = ""

    async def call(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> DataplaneResponse:
        """
        Perform one request against the Data Plane API.

        Args:
            path: Path relative to the base URL (e.g. "/v3/info").
            method: HTTP method.
            body: JSON-serialisable request body, or None.
            params: Query string parameters.

        Returns:
            DataplaneResponse with the status passed through untouched.

        Raises:
            TransportError: If no response was received (DNS, refused, timeout).
        """
        try:
            response = await self.http.request(
                method,
                path,
                json=body,
                params=params,
                auth=httpx.BasicAuth(self.username, self.password),
            )
        except httpx.TransportError as e:
            raise TransportError(method, path, str(e) or type(e).__name__) from e

        return DataplaneResponse(
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=response.text,
            path=path,
        )

    async def get_json(
        self, path: str, params: dict[str, Any] | None = None
    ) -> Any:
        """
        GET a path and decode its JSON body.

        Raises:
            TransportError: If no response was received.
            UpstreamError: On non-2xx responses.
            ParseError: If the body is not valid JSON.
        """
        response = await self.call(path, params=params)
        response.raise_for_status()
        return response.json()
