"""REST transport for the backend's PostgREST interface."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from icewatch._constants import NIL_UUID, REST_PATH, USER_AGENT
from icewatch._redact import redact_for_log
from icewatch.config import IcewatchConfig
from icewatch.exceptions import IcewatchBackendError, IcewatchTransportError

_logger = logging.getLogger(__name__)

Row = dict[str, Any]


class RecordStore(Protocol):
    """Structural interface over the backend's tables.

    The client, the live view and the harness only talk to this protocol,
    so tests can pass in-memory doubles while production uses
    :class:`RestTransport`.
    """

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[Row]: ...

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

    async def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> Row | None: ...

    async def delete(self, table: str, record_id: str) -> None: ...

    async def delete_all(self, table: str) -> None: ...


def eq(value: Any) -> str:
    """PostgREST equality filter value."""
    return f"eq.{value}"


class RestTransport:
    """HTTP transport that speaks PostgREST's query conventions."""

    def __init__(self, config: IcewatchConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self, *, write: bool) -> dict[str, str]:
        headers = {
            "apikey": self._config.api_key,
            "authorization": f"Bearer {self._config.api_key}",
            "accept": "application/json",
            "accept-profile": self._config.schema,
            "user-agent": USER_AGENT,
        }
        if write:
            headers["content-type"] = "application/json"
            headers["content-profile"] = self._config.schema
            headers["prefer"] = "return=representation"
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> Any:
        endpoint = f"{REST_PATH}/{table}"
        url = f"{self._config.url}{endpoint}"
        data = json.dumps(body, separators=(",", ":")) if body is not None else None

        _logger.debug(
            "%s %s params=%s body=%s",
            method,
            url,
            dict(params or {}),
            redact_for_log(body),
        )

        try:
            async with self._http.request(
                method,
                url,
                params=dict(params or {}),
                data=data,
                headers=self._headers(write=method != "GET"),
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except TimeoutError as exc:
            raise IcewatchTransportError(
                f"Request to {endpoint} timed out after {self._config.request_timeout}s",
                endpoint=endpoint,
            ) from exc
        except aiohttp.ClientError as exc:
            raise IcewatchTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        if status >= 400:
            raise _backend_error(status, text, endpoint)

        if not text.strip():
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise IcewatchTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from exc

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[Row]:
        params: dict[str, str] = {"select": "*"}
        if filters:
            params.update(filters)
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        result = await self._request("GET", table, params=params)
        return _expect_rows(result, table)

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        result = await self._request("POST", table, body=dict(row))
        rows = _expect_rows(result, table)
        if not rows:
            raise IcewatchTransportError(
                f"Insert into {table} returned no representation",
                endpoint=f"{REST_PATH}/{table}",
            )
        return rows[0]

    async def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> Row | None:
        result = await self._request("PATCH", table, params={"id": eq(record_id)}, body=dict(patch))
        rows = _expect_rows(result, table)
        return rows[0] if rows else None

    async def delete(self, table: str, record_id: str) -> None:
        await self._request("DELETE", table, params={"id": eq(record_id)})

    async def delete_all(self, table: str) -> None:
        await self._request("DELETE", table, params={"id": f"neq.{NIL_UUID}"})


def _expect_rows(result: Any, table: str) -> list[Row]:
    if result is None:
        return []
    if not isinstance(result, list) or not all(isinstance(row, dict) for row in result):
        raise IcewatchTransportError(
            f"Expected a list of rows from {table}",
            endpoint=f"{REST_PATH}/{table}",
        )
    return result


def _backend_error(status: int, text: str, endpoint: str) -> IcewatchTransportError:
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        body = None

    if isinstance(body, dict) and ("code" in body or "message" in body):
        code = str(body.get("code") or "")
        message = str(body.get("message") or "")
        details = body.get("details")
        suffix = f" ({details})" if details else ""
        return IcewatchBackendError(
            f"HTTP {status} from {endpoint}: code={code} message={message}{suffix}",
            code=code,
            status_code=status,
            endpoint=endpoint,
        )
    return IcewatchTransportError(
        f"HTTP {status} from {endpoint}: {text[:200]}",
        status_code=status,
        endpoint=endpoint,
    )
