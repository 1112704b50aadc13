from __future__ import annotations

import logging
import ssl
from collections.abc import Mapping
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from rtprobe.domain.resources import (
    DEFAULT_PUBLICATION_STATUS_RPC,
    DEFAULT_REMEDIATION_RPC,
    DEFAULT_WATCHED_SCHEMA,
)
from rtprobe.domain.models import RemediationResult, RemediationStatus
from rtprobe.infrastructure.errors import RemediationError, TransportError, WriteFailedError
from rtprobe.infrastructure.logging import BoundLogger, get_logger, log_event
from rtprobe.integrations.supabase.models import PublicationStatus, RemediationResponse

REST_PATH = "/rest/v1"
DEFAULT_HTTP_TIMEOUT = 10.0
# undefined_table from Postgres and the PostgREST schema-cache miss.
_MISSING_TABLE_CODES = frozenset({"42P01", "PGRST205"})


def _create_http_client(
    base_url: str,
    api_key: str,
    *,
    access_token: Optional[str] = None,
    verify: bool | ssl.SSLContext = True,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    client_kwargs: dict[str, Any] = {
        "base_url": f"{base_url.rstrip('/')}{REST_PATH}",
        "headers": {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Accept": "application/json",
        },
        "timeout": timeout,
        "verify": verify,
    }
    if transport is not None:
        client_kwargs["transport"] = transport
    return httpx.AsyncClient(**client_kwargs)


def _error_details(response: httpx.Response) -> tuple[str, Optional[str]]:
    """Return the backend's error message and code, as reported."""

    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping):
        message = body.get("message") or body.get("error") or body.get("msg")
        code = body.get("code")
        if isinstance(message, str) and message:
            return message, str(code) if code is not None else None
    text = response.text.strip()
    return text or f"HTTP {response.status_code}", None


class SupabaseRestClient:
    """Minimal PostgREST client: probe records, table checks and the publication RPCs."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        access_token: Optional[str] = None,
        verify: bool | ssl.SSLContext = True,
        remediation_rpc: str = DEFAULT_REMEDIATION_RPC,
        status_rpc: str = DEFAULT_PUBLICATION_STATUS_RPC,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[BoundLogger] = None,
    ) -> None:
        self._http = _create_http_client(
            base_url,
            api_key,
            access_token=access_token,
            verify=verify,
            transport=transport,
        )
        self.remediation_rpc = remediation_rpc
        self.status_rpc = status_rpc
        self._logger = logger or get_logger("rtprobe.supabase.rest")

    async def aclose(self) -> None:
        await self._http.aclose()

    async def insert(
        self,
        table: str,
        record: Mapping[str, Any],
        *,
        schema: str = DEFAULT_WATCHED_SCHEMA,
    ) -> None:
        headers = {"Prefer": "return=minimal"}
        if schema != DEFAULT_WATCHED_SCHEMA:
            headers["Content-Profile"] = schema
        try:
            response = await self._http.post(f"/{table}", json=dict(record), headers=headers)
        except httpx.HTTPError as exc:
            raise WriteFailedError(str(exc) or exc.__class__.__name__) from exc

        if response.is_success:
            return
        message, code = _error_details(response)
        log_event(
            self._logger,
            "supabase.insert_failed",
            level=logging.WARNING,
            table=table,
            status_code=response.status_code,
            error=message,
        )
        raise WriteFailedError(
            message,
            status_code=response.status_code,
            error_code=code,
            context={"table": table, "schema": schema},
        )

    async def table_exists(self, table: str, *, schema: str = DEFAULT_WATCHED_SCHEMA) -> bool:
        """Whether PostgREST exposes ``table``; other failures raise."""

        headers: dict[str, str] = {}
        if schema != DEFAULT_WATCHED_SCHEMA:
            headers["Accept-Profile"] = schema
        try:
            response = await self._http.get(
                f"/{table}", params={"select": "*", "limit": "1"}, headers=headers
            )
        except httpx.HTTPError as exc:
            raise TransportError(
                str(exc) or exc.__class__.__name__, context={"table": table}
            ) from exc

        if response.is_success:
            return True
        message, code = _error_details(response)
        if response.status_code == 404 or code in _MISSING_TABLE_CODES:
            return False
        raise TransportError(
            message,
            context={"table": table, "schema": schema, "status_code": response.status_code},
        )

    async def delete_rows(
        self,
        table: str,
        *,
        column: str,
        value: str,
        schema: str = DEFAULT_WATCHED_SCHEMA,
    ) -> None:
        headers = {"Prefer": "return=minimal"}
        if schema != DEFAULT_WATCHED_SCHEMA:
            headers["Content-Profile"] = schema
        try:
            response = await self._http.delete(
                f"/{table}", params={column: f"eq.{value}"}, headers=headers
            )
        except httpx.HTTPError as exc:
            raise WriteFailedError(str(exc) or exc.__class__.__name__) from exc

        if response.is_success:
            return
        message, code = _error_details(response)
        raise WriteFailedError(
            message,
            status_code=response.status_code,
            error_code=code,
            context={"table": table, "schema": schema},
        )

    async def rpc(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        try:
            response = await self._http.post(f"/rpc/{name}", json=dict(params or {}))
        except httpx.HTTPError as exc:
            raise RemediationError(
                str(exc) or exc.__class__.__name__, context={"rpc": name}
            ) from exc
        if not response.is_success:
            message, _ = _error_details(response)
            raise RemediationError(
                message, context={"rpc": name, "status_code": response.status_code}
            )
        if not response.content:
            return None
        return response.json()

    async def ensure_realtime_publication(self) -> RemediationResult:
        """Ask the backend to (re)configure the realtime publication."""

        data = await self.rpc(self.remediation_rpc)
        try:
            parsed = RemediationResponse.model_validate(data or {})
        except ValidationError as exc:
            raise RemediationError(
                f"unexpected {self.remediation_rpc} response",
                context={"rpc": self.remediation_rpc, "errors": exc.errors()},
            ) from exc

        if parsed.status != RemediationStatus.OK.value:
            return RemediationResult(
                status=RemediationStatus.ERROR,
                error=parsed.error or parsed.message or f"status {parsed.status}",
                details=parsed.model_dump(),
            )
        return RemediationResult(
            status=RemediationStatus.OK,
            added_count=parsed.added_count,
            ensured_count=parsed.ensured_count,
            details=parsed.model_dump(),
        )

    async def check_realtime_publication(self) -> PublicationStatus:
        data = await self.rpc(self.status_rpc)
        try:
            return PublicationStatus.model_validate(data or {})
        except ValidationError as exc:
            raise RemediationError(
                f"unexpected {self.status_rpc} response",
                context={"rpc": self.status_rpc, "errors": exc.errors()},
            ) from exc


__all__ = ["SupabaseRestClient", "REST_PATH"]
