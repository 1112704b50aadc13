from __future__ import annotations

import ssl
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

from rtprobe.config.settings import RuntimeSettings
from rtprobe.domain.models import RemediationResult
from rtprobe.domain.resources import DEFAULT_WATCHED_SCHEMA
from rtprobe.infrastructure.logging import BoundLogger, get_logger
from rtprobe.integrations.supabase.models import PublicationStatus
from rtprobe.integrations.supabase.realtime import PhoenixChannel, RealtimeSocket
from rtprobe.integrations.supabase.rest import SupabaseRestClient


class SupabaseRealtimeClient:
    """Client handle handed to the diagnostics engine.

    Channels travel over one realtime websocket; probe records and the
    publication RPCs go through PostgREST. Every channel handed out counts as
    live until it is removed, whether or not its join has finished. The socket
    closes once no live channel is left, so runs sharing this handle keep
    their connection.
    """

    def __init__(
        self,
        socket: RealtimeSocket,
        rest: SupabaseRestClient,
        *,
        access_token: Optional[str] = None,
        logger: Optional[BoundLogger] = None,
    ) -> None:
        self.socket = socket
        self.rest = rest
        self._access_token = access_token
        self._logger = logger or get_logger("rtprobe.supabase")
        self._live: set[PhoenixChannel] = set()

    @property
    def live_channels(self) -> int:
        return len(self._live)

    def channel(
        self,
        name: str,
        *,
        broadcast_self: bool = False,
        broadcast_ack: bool = False,
    ) -> PhoenixChannel:
        channel = PhoenixChannel(
            self.socket,
            name,
            broadcast_self=broadcast_self,
            broadcast_ack=broadcast_ack,
            access_token=self._access_token,
            logger=self._logger,
        )
        self._live.add(channel)
        return channel

    async def remove_channel(self, channel: PhoenixChannel) -> None:
        self._live.discard(channel)
        await channel.leave()
        if not self._live and self.socket.connected:
            await self.socket.close()

    async def insert(
        self,
        table: str,
        record: Mapping[str, Any],
        *,
        schema: str = DEFAULT_WATCHED_SCHEMA,
    ) -> None:
        await self.rest.insert(table, record, schema=schema)

    async def table_exists(self, table: str, *, schema: str = DEFAULT_WATCHED_SCHEMA) -> bool:
        return await self.rest.table_exists(table, schema=schema)

    async def delete_rows(
        self,
        table: str,
        *,
        column: str,
        value: str,
        schema: str = DEFAULT_WATCHED_SCHEMA,
    ) -> None:
        await self.rest.delete_rows(table, column=column, value=value, schema=schema)

    async def ensure_realtime_publication(self) -> RemediationResult:
        return await self.rest.ensure_realtime_publication()

    async def check_realtime_publication(self) -> PublicationStatus:
        return await self.rest.check_realtime_publication()

    async def aclose(self) -> None:
        self._live.clear()
        await self.socket.close()
        await self.rest.aclose()

    async def __aenter__(self) -> "SupabaseRealtimeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def build_ssl_context(settings: RuntimeSettings) -> Optional[ssl.SSLContext]:
    """TLS context for both transports, or ``None`` for library defaults."""

    if settings.allow_insecure_tls:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context
    if settings.ca_bundle_path:
        return ssl.create_default_context(cafile=str(Path(settings.ca_bundle_path).expanduser()))
    return None


def create_supabase_client(
    settings: RuntimeSettings,
    *,
    logger: Optional[BoundLogger] = None,
) -> SupabaseRealtimeClient:
    """Build the Supabase client handle described by ``settings``."""

    if not settings.supabase_url or not settings.anon_key:
        raise ValueError("Supabase URL and anon key are required")

    log = logger or get_logger("rtprobe.supabase")
    context = build_ssl_context(settings)
    socket = RealtimeSocket(
        settings.supabase_url,
        settings.anon_key,
        ssl_context=context,
        logger=log,
    )
    rest = SupabaseRestClient(
        settings.supabase_url,
        settings.anon_key,
        access_token=settings.access_token,
        verify=context if context is not None else True,
        remediation_rpc=settings.remediation_rpc,
        logger=log,
    )
    return SupabaseRealtimeClient(
        socket, rest, access_token=settings.access_token, logger=log
    )


__all__ = ["SupabaseRealtimeClient", "build_ssl_context", "create_supabase_client"]
