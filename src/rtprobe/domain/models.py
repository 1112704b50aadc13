"""Result model for realtime connectivity diagnostics."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from rtprobe.domain.resources import (
    DEFAULT_TOKEN_COLUMN,
    DEFAULT_WATCHED_SCHEMA,
    DEFAULT_WATCHED_TABLE,
    REALTIME_PUBLICATION,
)
from rtprobe.infrastructure.errors import ErrorCode


class Stage(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"

    @classmethod
    def from_bool(cls, value: bool) -> "Stage":
        return cls.PASS if value else cls.FAIL


class DiagnosticPath(str, Enum):
    SELF_ECHO = "self-echo"
    CHANGE_NOTIFICATION = "change-notification"


class SubscriptionState(str, Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CLOSED = "closed"
    TIMED_OUT = "timed_out"


class SendMode(str, Enum):
    WITH_ACK = "with_ack"
    WITHOUT_ACK = "without_ack"


class RemediationStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class ProbeTimeouts:
    """Upper bounds (seconds) for every suspension point of a run."""

    handshake: float = 4.0
    self_echo_subscribe: float = 4.0
    settle: float = 0.12
    echo_wait: float = 4.0
    change_subscribe: float = 5.0
    notification_wait: float = 6.0

    def __post_init__(self) -> None:
        for name in (
            "handshake",
            "self_echo_subscribe",
            "settle",
            "echo_wait",
            "change_subscribe",
            "notification_wait",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} timeout must not be negative")


DEFAULT_TIMEOUTS = ProbeTimeouts()


@dataclass(frozen=True)
class WatchedResource:
    schema: str = DEFAULT_WATCHED_SCHEMA
    table: str = DEFAULT_WATCHED_TABLE
    token_column: str = DEFAULT_TOKEN_COLUMN

    @property
    def channel_name(self) -> str:
        return f"realtime:{self.schema}:{self.table}"


@dataclass(frozen=True)
class ProbeToken:
    """Single-use correlation value for one round-trip attempt."""

    value: str
    created_at: float

    @classmethod
    def generate(cls, prefix: str) -> "ProbeToken":
        now = time.time()
        return cls(
            value=f"{prefix}_{int(now * 1000)}_{secrets.token_hex(4)}",
            created_at=now,
        )

    def matches(self, candidate: Any) -> bool:
        return isinstance(candidate, str) and candidate == self.value

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SubscriptionOutcome:
    state: SubscriptionState
    reason: Optional[str] = None
    elapsed: float = 0.0

    @property
    def confirmed(self) -> bool:
        return self.state is SubscriptionState.CONFIRMED

    @property
    def stage(self) -> Stage:
        return Stage.from_bool(self.confirmed)


@dataclass(frozen=True)
class StrategyAttempt:
    """What one round-trip strategy observed."""

    path: DiagnosticPath
    subscribe: Stage = Stage.FAIL
    roundtrip: Stage = Stage.FAIL
    detail: str = ""
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    latency: Optional[float] = None
    subscription: Optional[SubscriptionOutcome] = None
    token: Optional[str] = None
    send_result: Optional[str] = None
    send_mode: Optional[SendMode] = None

    @property
    def ok(self) -> bool:
        return self.subscribe is Stage.PASS and self.roundtrip is Stage.PASS

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "path": self.path.value,
            "subscribe": self.subscribe.value,
            "roundtrip": self.roundtrip.value,
            "detail": self.detail,
            "error": self.error,
            "error_code": self.error_code.value if self.error_code else None,
            "latency_ms": round(self.latency * 1000, 1) if self.latency is not None else None,
            "token": self.token,
        }
        if self.subscription is not None:
            payload["subscription"] = {
                "state": self.subscription.state.value,
                "reason": self.subscription.reason,
            }
        if self.send_mode is not None:
            payload["send_mode"] = self.send_mode.value
            payload["send_result"] = self.send_result
        return payload


@dataclass(frozen=True)
class DiagnosticRun:
    """Immutable verdict of one diagnostics invocation.

    Stages that were never reached stay ``FAIL``; ``path`` is ``None`` when the
    handshake failed and no strategy ran.
    """

    started_at: datetime
    finished_at: datetime
    handshake: Stage = Stage.FAIL
    subscribe: Stage = Stage.FAIL
    roundtrip: Stage = Stage.FAIL
    path: Optional[DiagnosticPath] = None
    detail: str = ""
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    ok: bool = False
    attempts: tuple[StrategyAttempt, ...] = ()

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def needs_remediation(self) -> bool:
        """True when the change-notification path saw no notification in time."""
        return (
            not self.ok
            and self.path is DiagnosticPath.CHANGE_NOTIFICATION
            and self.error_code is ErrorCode.ROUND_TRIP_TIMEOUT
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "handshake": self.handshake.value,
            "subscribe": self.subscribe.value,
            "roundtrip": self.roundtrip.value,
            "path": self.path.value if self.path else None,
            "detail": self.detail,
            "error": self.error,
            "error_code": self.error_code.value if self.error_code else None,
            "started_at": self.started_at.isoformat(),
            "duration_s": round(self.duration, 3),
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }


class DiagnosticRunBuilder:
    """Collects stage results in order and freezes them into a DiagnosticRun."""

    def __init__(self) -> None:
        self.started_at = datetime.now(timezone.utc)
        self.handshake = Stage.FAIL
        self.attempts: list[StrategyAttempt] = []
        self.detail = ""
        self.error: Optional[str] = None
        self.error_code: Optional[ErrorCode] = None

    def fail_handshake(self, error_code: ErrorCode, detail: str) -> None:
        self.handshake = Stage.FAIL
        self.detail = detail
        self.error = "handshake failed"
        self.error_code = error_code

    def pass_handshake(self) -> None:
        self.handshake = Stage.PASS

    def record(self, attempt: StrategyAttempt) -> None:
        self.attempts.append(attempt)

    def build(self) -> DiagnosticRun:
        finished_at = datetime.now(timezone.utc)
        if self.handshake is Stage.FAIL or not self.attempts:
            return DiagnosticRun(
                started_at=self.started_at,
                finished_at=finished_at,
                handshake=self.handshake,
                detail=self.detail,
                error=self.error,
                error_code=self.error_code,
                attempts=tuple(self.attempts),
            )

        final = self.attempts[-1]
        return DiagnosticRun(
            started_at=self.started_at,
            finished_at=finished_at,
            handshake=self.handshake,
            subscribe=final.subscribe,
            roundtrip=final.roundtrip,
            path=final.path,
            detail=_compose_detail(self.attempts),
            error=None if final.ok else final.error,
            error_code=None if final.ok else final.error_code,
            ok=final.ok,
            attempts=tuple(self.attempts),
        )


def _compose_detail(attempts: list[StrategyAttempt]) -> str:
    if len(attempts) == 1:
        return attempts[0].detail
    earlier = "; ".join(f"{a.path.value}: {a.detail}" for a in attempts[:-1])
    return f"{attempts[-1].detail} (after {earlier})"


@dataclass(frozen=True)
class RemediationResult:
    status: RemediationStatus
    added_count: int = 0
    ensured_count: int = 0
    error: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is RemediationStatus.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "added_count": self.added_count,
            "ensured_count": self.ensured_count,
            "error": self.error,
        }


@dataclass(frozen=True)
class PreflightReport:
    """Database checks made before a run; ``None`` means the check did not finish."""

    table: str
    table_exists: Optional[bool] = None
    insert_allowed: Optional[bool] = None
    publication: Optional[bool] = None
    replica_identity: Optional[bool] = None
    publication_status: Optional[str] = None
    missing_tables: tuple[str, ...] = ()
    errors: Mapping[str, str] = field(default_factory=dict)

    @property
    def warnings(self) -> list[str]:
        found: list[str] = []
        if self.table_exists is False:
            found.append(f"Table {self.table} does not exist")
        if self.insert_allowed is False:
            found.append(f"Inserts into {self.table} are rejected")
        if self.publication is False:
            found.append(f"Table not included in {REALTIME_PUBLICATION} publication")
        found.extend(f"{check}: {message}" for check, message in self.errors.items())
        return found

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "table_exists": self.table_exists,
            "insert_allowed": self.insert_allowed,
            "publication": self.publication,
            "replica_identity": self.replica_identity,
            "publication_status": self.publication_status,
            "missing_tables": list(self.missing_tables),
            "warnings": self.warnings,
        }


__all__ = [
    "Stage",
    "DiagnosticPath",
    "SubscriptionState",
    "SendMode",
    "RemediationStatus",
    "ProbeTimeouts",
    "DEFAULT_TIMEOUTS",
    "WatchedResource",
    "ProbeToken",
    "SubscriptionOutcome",
    "StrategyAttempt",
    "DiagnosticRun",
    "DiagnosticRunBuilder",
    "RemediationResult",
    "PreflightReport",
]
