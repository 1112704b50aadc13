"""Caller-side wrapper: kill switches, pre-flight checks, remediation and the latest run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from rtprobe.application.diagnostics import run_diagnostics
from rtprobe.application.preflight import run_preflight
from rtprobe.application.remediation import RemediationReport, diagnose_with_remediation
from rtprobe.config.settings import RuntimeSettings
from rtprobe.domain.models import (
    DEFAULT_TIMEOUTS,
    DiagnosticRun,
    PreflightReport,
    ProbeTimeouts,
    WatchedResource,
)
from rtprobe.domain.transport import PreflightClient, RealtimeClient, RemediationTrigger
from rtprobe.infrastructure.errors import ErrorCode
from rtprobe.infrastructure.logging import BoundLogger, get_logger, log_event

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SKIPPED = 3


@dataclass(frozen=True)
class KillSwitches:
    disable_realtime: bool = False
    safe_boot: bool = False

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "KillSwitches":
        return cls(disable_realtime=settings.disable_realtime, safe_boot=settings.safe_boot)

    @property
    def reason(self) -> Optional[str]:
        if self.disable_realtime:
            return "realtime disabled by circuit breaker"
        if self.safe_boot:
            return "realtime disabled by safe boot"
        return None


@dataclass(frozen=True)
class RunnerOutcome:
    report: Optional[RemediationReport] = None
    skipped_reason: Optional[str] = None
    preflight: Optional[PreflightReport] = None

    @property
    def skipped(self) -> bool:
        return self.report is None

    @property
    def run(self) -> Optional[DiagnosticRun]:
        return self.report.final if self.report is not None else None

    @property
    def ok(self) -> bool:
        return self.report is not None and self.report.ok

    def exit_code(self) -> int:
        if self.skipped:
            return EXIT_SKIPPED
        return EXIT_OK if self.ok else EXIT_FAILED

    def to_dict(self) -> dict[str, Any]:
        if self.report is None:
            return {
                "ok": False,
                "skipped": True,
                "reason": self.skipped_reason,
                "error_code": ErrorCode.REALTIME_DISABLED.value,
            }
        payload: dict[str, Any] = {"skipped": False, **self.report.to_dict()}
        if self.preflight is not None:
            payload["preflight"] = self.preflight.to_dict()
        return payload


class DiagnosticsRunner:
    """Runs the engine on behalf of an application and remembers the last verdict."""

    def __init__(
        self,
        client: RealtimeClient,
        *,
        kill_switches: Optional[KillSwitches] = None,
        remediate: Optional[RemediationTrigger] = None,
        timeouts: ProbeTimeouts = DEFAULT_TIMEOUTS,
        watched: Optional[WatchedResource] = None,
        preflight: bool = False,
        logger: Optional[BoundLogger] = None,
    ) -> None:
        self._client = client
        self._kill_switches = kill_switches or KillSwitches()
        self._remediate = remediate
        self._timeouts = timeouts
        self._watched = watched
        self._preflight = preflight
        self._logger = logger or get_logger("rtprobe.runner")
        self.latest: Optional[DiagnosticRun] = None

    async def run(self, *, remediate: bool = False) -> RunnerOutcome:
        reason = self._kill_switches.reason
        if reason is not None:
            log_event(self._logger, "runner.skipped", level=logging.WARNING, reason=reason)
            return RunnerOutcome(skipped_reason=reason)

        preflight: Optional[PreflightReport] = None
        if self._preflight:
            if isinstance(self._client, PreflightClient):
                preflight = await run_preflight(
                    self._client, self._watched, logger=self._logger
                )
            else:
                log_event(self._logger, "runner.preflight_unsupported", level=logging.WARNING)

        if remediate and self._remediate is not None:
            report = await diagnose_with_remediation(
                self._client,
                self._remediate,
                timeouts=self._timeouts,
                watched=self._watched,
                logger=self._logger,
            )
        else:
            run = await run_diagnostics(
                self._client,
                timeouts=self._timeouts,
                watched=self._watched,
                logger=self._logger,
            )
            report = RemediationReport(initial=run, final=run)

        self.latest = report.final
        return RunnerOutcome(report=report, preflight=preflight)


__all__ = [
    "EXIT_OK",
    "EXIT_FAILED",
    "EXIT_SKIPPED",
    "KillSwitches",
    "RunnerOutcome",
    "DiagnosticsRunner",
]
