"""Caller-driven remediation loop around the diagnostics engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from rtprobe.application.diagnostics import run_diagnostics
from rtprobe.domain.models import (
    DEFAULT_TIMEOUTS,
    DiagnosticRun,
    ProbeTimeouts,
    RemediationResult,
    RemediationStatus,
    WatchedResource,
)
from rtprobe.domain.transport import RealtimeClient, RemediationTrigger
from rtprobe.infrastructure.errors import error_message
from rtprobe.infrastructure.logging import BoundLogger, get_logger, log_event

_default_logger = get_logger("rtprobe.remediation")


@dataclass(frozen=True)
class RemediationReport:
    initial: DiagnosticRun
    final: DiagnosticRun
    remediations: tuple[RemediationResult, ...] = ()

    @property
    def ok(self) -> bool:
        return self.final.ok

    @property
    def remediated(self) -> bool:
        return bool(self.remediations)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": self.ok, "final": self.final.to_dict()}
        if self.remediated:
            payload["initial"] = self.initial.to_dict()
            payload["remediations"] = [result.to_dict() for result in self.remediations]
        return payload


async def invoke_remediation(
    remediate: RemediationTrigger, *, logger: Optional[BoundLogger] = None
) -> RemediationResult:
    """Call the trigger once; failures come back as an ``error`` result."""

    log = logger or _default_logger
    log_event(log, "remediation.started")
    try:
        result = await remediate()
    except Exception as exc:
        message = error_message(exc)
        log_event(log, "remediation.failed", level=logging.ERROR, error=message)
        return RemediationResult(status=RemediationStatus.ERROR, error=message)

    log_event(
        log,
        "remediation.completed" if result.ok else "remediation.failed",
        level=logging.INFO if result.ok else logging.ERROR,
        status=result.status.value,
        added_count=result.added_count,
        ensured_count=result.ensured_count,
        error=result.error,
    )
    return result


async def diagnose_with_remediation(
    client: RealtimeClient,
    remediate: RemediationTrigger,
    *,
    timeouts: ProbeTimeouts = DEFAULT_TIMEOUTS,
    watched: Optional[WatchedResource] = None,
    max_rounds: int = 1,
    logger: Optional[BoundLogger] = None,
) -> RemediationReport:
    """Diagnose, remediate on the missing-notification signature, re-verify.

    The trigger is only called when the change-notification path timed out
    waiting for its notification; every other failure is returned as is.
    """

    if max_rounds < 0:
        raise ValueError("max_rounds must not be negative")

    log = logger or _default_logger
    initial = await run_diagnostics(client, timeouts=timeouts, watched=watched, logger=log)
    run = initial
    results: list[RemediationResult] = []

    for round_number in range(1, max_rounds + 1):
        if not run.needs_remediation:
            break
        log_event(log, "remediation.triggered", round=round_number, error=run.error)
        result = await invoke_remediation(remediate, logger=log)
        results.append(result)
        if not result.ok:
            break
        run = await run_diagnostics(client, timeouts=timeouts, watched=watched, logger=log)

    return RemediationReport(initial=initial, final=run, remediations=tuple(results))


__all__ = ["RemediationReport", "invoke_remediation", "diagnose_with_remediation"]
