"""Client-handle protocol the diagnostics engine is written against.

Any realtime backend that can open named channels, confirm subscriptions,
echo broadcasts and emit change notifications for inserted records can be
diagnosed by implementing these protocols. The Supabase adapter lives in
:mod:`rtprobe.integrations.supabase`; tests use an in-memory fake.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from rtprobe.domain.models import RemediationResult


class SubscribeStatus(str, Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class ChangeNotification:
    """A change event delivered for a watched resource."""

    event_type: str
    schema: str
    table: str
    record: Mapping[str, Any] = field(default_factory=dict)
    commit_timestamp: Optional[str] = None


StatusCallback = Callable[[SubscribeStatus, Optional[BaseException]], None]
BroadcastHandler = Callable[[Mapping[str, Any]], None]
ChangeHandler = Callable[[ChangeNotification], None]


@runtime_checkable
class RealtimeChannel(Protocol):
    name: str

    def on_broadcast(self, event: str, handler: BroadcastHandler) -> "RealtimeChannel":
        ...

    def on_postgres_changes(
        self,
        event: str,
        *,
        schema: str,
        table: str,
        handler: ChangeHandler,
    ) -> "RealtimeChannel":
        ...

    async def subscribe(self, callback: Optional[StatusCallback] = None) -> None:
        """Start joining; terminal statuses are reported through ``callback``."""
        ...

    async def send_broadcast(
        self, event: str, payload: Mapping[str, Any], *, ack: bool = True
    ) -> str:
        """Send a broadcast; returns ``"ok"`` when delivered/acknowledged."""
        ...


@runtime_checkable
class RealtimeClient(Protocol):
    def channel(
        self,
        name: str,
        *,
        broadcast_self: bool = False,
        broadcast_ack: bool = False,
    ) -> RealtimeChannel:
        ...

    async def remove_channel(self, channel: RealtimeChannel) -> None:
        ...

    async def insert(
        self, table: str, record: Mapping[str, Any], *, schema: str = "public"
    ) -> None:
        """Insert ``record``; raises on failure with the backend's message."""
        ...


@runtime_checkable
class PreflightClient(Protocol):
    """Database access used by the optional pre-flight checks."""

    async def table_exists(self, table: str, *, schema: str = "public") -> bool:
        ...

    async def insert(
        self, table: str, record: Mapping[str, Any], *, schema: str = "public"
    ) -> None:
        ...

    async def delete_rows(
        self, table: str, *, column: str, value: str, schema: str = "public"
    ) -> None:
        ...

    async def check_realtime_publication(self) -> Any:
        """Publication status exposing ``complete``, ``status`` and ``missing_tables``."""
        ...


RemediationTrigger = Callable[[], Awaitable[RemediationResult]]


__all__ = [
    "SubscribeStatus",
    "ChangeNotification",
    "StatusCallback",
    "BroadcastHandler",
    "ChangeHandler",
    "RealtimeChannel",
    "RealtimeClient",
    "PreflightClient",
    "RemediationTrigger",
]
