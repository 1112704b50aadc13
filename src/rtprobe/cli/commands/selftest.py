"""``rtprobe selftest``: run the realtime diagnostics against a project."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from rtprobe.application.runner import DiagnosticsRunner, KillSwitches, RunnerOutcome
from rtprobe.cli import options as cli_options
from rtprobe.cli.helpers import (
    build_invocation,
    initialize_logging,
    require_credentials,
    resolve_runtime_and_logging,
    watched_resource,
)
from rtprobe.cli.sync_bridge import await_sync
from rtprobe.config.settings import RuntimeSettings
from rtprobe.domain.models import DiagnosticRun, PreflightReport, Stage
from rtprobe.infrastructure.logging import BoundLogger, log_event
from rtprobe.integrations.supabase import create_supabase_client

ClientFactory = Callable[..., Any]

_STAGE_STYLES = {Stage.PASS: "green", Stage.FAIL: "red"}


def _stage_cell(stage: Stage) -> str:
    return f"[{_STAGE_STYLES[stage]}]{stage.value}[/{_STAGE_STYLES[stage]}]"


def render_run(console: Console, run: DiagnosticRun, *, title: str) -> None:
    summary = Table(title=title, box=box.SIMPLE_HEAVY, show_lines=False)
    summary.add_column("Stage", style="bold")
    summary.add_column("Status")
    summary.add_column("Detail", overflow="fold")
    summary.add_row("Handshake", _stage_cell(run.handshake), "")
    summary.add_row("Subscribe", _stage_cell(run.subscribe), "")
    summary.add_row("Round trip", _stage_cell(run.roundtrip), run.detail)
    summary.add_row("Path", run.path.value if run.path else "-", "")
    if run.error:
        summary.add_row("Error", run.error_code.value if run.error_code else "-", run.error)
    console.print(summary)

    if not run.attempts:
        return
    attempts = Table(title="Strategy attempts", box=box.SIMPLE)
    attempts.add_column("Path")
    attempts.add_column("Subscribe")
    attempts.add_column("Round trip")
    attempts.add_column("Latency", justify="right")
    attempts.add_column("Detail", overflow="fold")
    for attempt in run.attempts:
        latency = f"{attempt.latency * 1000:.0f} ms" if attempt.latency is not None else "-"
        attempts.add_row(
            attempt.path.value,
            _stage_cell(attempt.subscribe),
            _stage_cell(attempt.roundtrip),
            latency,
            attempt.detail,
        )
    console.print(attempts)


def _check_cell(value: bool | None) -> str:
    if value is None:
        return "[yellow]UNKNOWN[/yellow]"
    return _stage_cell(Stage.from_bool(value))


def render_preflight(console: Console, report: PreflightReport) -> None:
    checks = Table(title="Pre-flight checks", box=box.SIMPLE)
    checks.add_column("Check", style="bold")
    checks.add_column("Status")
    checks.add_column("Detail", overflow="fold")
    checks.add_row(
        "Table exists", _check_cell(report.table_exists), report.errors.get("table_exists", "")
    )
    checks.add_row(
        "Insert allowed",
        _check_cell(report.insert_allowed),
        report.errors.get("insert_allowed", ""),
    )
    publication_detail = report.errors.get("publication") or report.publication_status or ""
    if report.missing_tables:
        publication_detail = f"{publication_detail}; missing {', '.join(report.missing_tables)}"
    checks.add_row("Publication", _check_cell(report.publication), publication_detail)
    checks.add_row("Replica identity", _check_cell(report.replica_identity), "")
    console.print(checks)
    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def render_outcome(console: Console, outcome: RunnerOutcome) -> None:
    if outcome.report is None:
        console.print(f"[yellow]Realtime diagnostics skipped:[/yellow] {outcome.skipped_reason}")
        return
    if outcome.preflight is not None:
        render_preflight(console, outcome.preflight)
    report = outcome.report
    if report.remediated:
        render_run(console, report.initial, title="Before remediation")
        for result in report.remediations:
            if result.ok:
                console.print(
                    f"Remediation ok: added {result.added_count} table(s), "
                    f"ensured {result.ensured_count} replica identities"
                )
            else:
                console.print(f"[red]Remediation failed:[/red] {result.error}")
        render_run(console, report.final, title="After remediation")
    else:
        render_run(console, report.final, title="Realtime diagnostics")
    verdict = "[green]realtime OK[/green]" if outcome.ok else "[red]realtime FAILED[/red]"
    console.print(verdict)


async def _run_selftest(
    runtime_settings: RuntimeSettings,
    logger: BoundLogger,
    *,
    remediate: bool,
    preflight: bool = False,
    client_factory: ClientFactory,
) -> RunnerOutcome:
    async with client_factory(runtime_settings, logger=logger) as client:
        runner = DiagnosticsRunner(
            client,
            kill_switches=KillSwitches.from_settings(runtime_settings),
            remediate=client.ensure_realtime_publication,
            watched=watched_resource(runtime_settings),
            preflight=preflight,
            logger=logger,
        )
        return await runner.run(remediate=remediate)


def register(
    app: typer.Typer,
    *,
    stdout_console: Console,
    stderr_console: Console,
    client_factory: ClientFactory = create_supabase_client,
) -> None:
    @app.command(help="Diagnose realtime connectivity: handshake, subscription and round trip.")
    def selftest(
        config_path: cli_options.ConfigPathOption = cli_options.DEFAULT_CONFIG_PATH,
        supabase_url: cli_options.SupabaseUrlOption = None,
        anon_key: cli_options.AnonKeyOption = None,
        access_token: cli_options.AccessTokenOption = None,
        watched_schema: cli_options.WatchedSchemaOption = None,
        watched_table: cli_options.WatchedTableOption = None,
        token_column: cli_options.TokenColumnOption = None,
        remediation_rpc: cli_options.RemediationRpcOption = None,
        disable_realtime: cli_options.DisableRealtimeOption = None,
        safe_boot: cli_options.SafeBootOption = None,
        debug: cli_options.DebugOption = None,
        allow_insecure_tls: cli_options.AllowInsecureTlsOption = None,
        ca_bundle: cli_options.CaBundleOption = None,
        log_level: cli_options.LogLevelOption = None,
        log_format: cli_options.LogFormatOption = None,
        log_file: cli_options.LogFileOption = None,
        log_max_bytes: cli_options.LogMaxBytesOption = None,
        log_backup_count: cli_options.LogBackupCountOption = None,
        remediate: cli_options.RemediateOption = False,
        preflight: cli_options.PreflightOption = False,
        json_output: cli_options.JsonOutputOption = False,
    ) -> None:
        invocation = build_invocation(
            config_path=config_path,
            supabase_url=supabase_url,
            anon_key=anon_key,
            access_token=access_token,
            watched_schema=watched_schema,
            watched_table=watched_table,
            token_column=token_column,
            remediation_rpc=remediation_rpc,
            disable_realtime=disable_realtime,
            safe_boot=safe_boot,
            debug=debug,
            allow_insecure_tls=allow_insecure_tls,
            ca_bundle=ca_bundle,
            log_level=log_level,
            log_format=log_format,
            log_file=log_file,
            log_max_bytes=log_max_bytes,
            log_backup_count=log_backup_count,
        )
        runtime_settings, logging_settings = resolve_runtime_and_logging(invocation)
        logger = initialize_logging(runtime_settings, logging_settings)

        kill_switches = KillSwitches.from_settings(runtime_settings)
        if kill_switches.reason is not None:
            log_event(
                logger,
                "selftest.skipped",
                level=logging.WARNING,
                reason=kill_switches.reason,
            )
            outcome = RunnerOutcome(skipped_reason=kill_switches.reason)
        else:
            require_credentials(runtime_settings)
            outcome = await_sync(
                _run_selftest(
                    runtime_settings,
                    logger,
                    remediate=remediate,
                    preflight=preflight,
                    client_factory=client_factory,
                )
            )

        if json_output:
            typer.echo(json.dumps(outcome.to_dict(), indent=2))
        else:
            render_outcome(stderr_console if outcome.skipped else stdout_console, outcome)
        raise typer.Exit(code=outcome.exit_code())


__all__ = ["register", "render_outcome", "render_preflight", "render_run"]
