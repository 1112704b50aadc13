"""Top-level rtprobe package API."""

from rtprobe.application.diagnostics import run_diagnostics
from rtprobe.application.remediation import RemediationReport, diagnose_with_remediation
from rtprobe.application.runner import DiagnosticsRunner, KillSwitches, RunnerOutcome
from rtprobe.domain.models import (
    DiagnosticPath,
    DiagnosticRun,
    ProbeTimeouts,
    RemediationResult,
    Stage,
    WatchedResource,
)

__all__ = [
    "run_diagnostics",
    "diagnose_with_remediation",
    "RemediationReport",
    "DiagnosticsRunner",
    "KillSwitches",
    "RunnerOutcome",
    "DiagnosticPath",
    "DiagnosticRun",
    "ProbeTimeouts",
    "RemediationResult",
    "Stage",
    "WatchedResource",
]
