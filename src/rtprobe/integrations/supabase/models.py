"""Pydantic models for Supabase wire payloads."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

PHOENIX_TOPIC = "phoenix"
EVENT_JOIN = "phx_join"
EVENT_LEAVE = "phx_leave"
EVENT_REPLY = "phx_reply"
EVENT_CLOSE = "phx_close"
EVENT_ERROR = "phx_error"
EVENT_HEARTBEAT = "heartbeat"
EVENT_BROADCAST = "broadcast"
EVENT_POSTGRES_CHANGES = "postgres_changes"
EVENT_SYSTEM = "system"


class PhoenixMessage(BaseModel):
    """One frame of the Phoenix v1 JSON serializer."""

    model_config = ConfigDict(extra="ignore")

    topic: str
    event: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    ref: Optional[str] = None
    join_ref: Optional[str] = None

    @property
    def reply_status(self) -> Optional[str]:
        if self.event != EVENT_REPLY:
            return None
        status = self.payload.get("status")
        return status if isinstance(status, str) else None

    @property
    def reply_response(self) -> Dict[str, Any]:
        response = self.payload.get("response")
        return response if isinstance(response, dict) else {}


class BroadcastConfig(BaseModel):
    self_: bool = Field(default=False, serialization_alias="self")
    ack: bool = False


class PresenceConfig(BaseModel):
    key: str = ""


class PostgresChangesFilter(BaseModel):
    event: str
    schema_: str = Field(serialization_alias="schema")
    table: str


class JoinConfig(BaseModel):
    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
    presence: PresenceConfig = Field(default_factory=PresenceConfig)
    postgres_changes: List[PostgresChangesFilter] = Field(default_factory=list)
    private: bool = False


class JoinPayload(BaseModel):
    config: JoinConfig
    access_token: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PostgresChangeData(BaseModel):
    """``data`` member of a ``postgres_changes`` frame."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(validation_alias=AliasChoices("type", "eventType"))
    schema_: str = Field(validation_alias=AliasChoices("schema", "schema_"))
    table: str
    record: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("record", "new")
    )
    commit_timestamp: Optional[str] = None


class RemediationResponse(BaseModel):
    """Return value of the ``ensure_realtime_publication`` RPC."""

    model_config = ConfigDict(extra="allow")

    status: str = "ok"
    added_count: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("added_count", "addedCount", "added_tables"),
    )
    ensured_count: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("ensured_count", "ensuredCount", "ensured_identity"),
    )
    error: Optional[str] = None
    message: Optional[str] = None


class PublicationStatus(BaseModel):
    """Return value of the ``check_realtime_publication_status`` RPC."""

    model_config = ConfigDict(extra="allow")

    exists: bool = False
    status: str = "missing"
    tables_count: int = 0
    expected_count: int = 0
    missing_tables: List[str] = Field(default_factory=list)
    message: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.exists and self.status == "complete"


__all__ = [
    "PHOENIX_TOPIC",
    "EVENT_JOIN",
    "EVENT_LEAVE",
    "EVENT_REPLY",
    "EVENT_CLOSE",
    "EVENT_ERROR",
    "EVENT_HEARTBEAT",
    "EVENT_BROADCAST",
    "EVENT_POSTGRES_CHANGES",
    "EVENT_SYSTEM",
    "PhoenixMessage",
    "BroadcastConfig",
    "PresenceConfig",
    "PostgresChangesFilter",
    "JoinConfig",
    "JoinPayload",
    "PostgresChangeData",
    "RemediationResponse",
    "PublicationStatus",
]
