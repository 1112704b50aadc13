"""``rtprobe remediate``: (re)configure the realtime publication once."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from rtprobe.application.remediation import invoke_remediation
from rtprobe.cli import options as cli_options
from rtprobe.cli.helpers import (
    build_invocation,
    initialize_logging,
    require_credentials,
    resolve_runtime_and_logging,
)
from rtprobe.cli.sync_bridge import await_sync
from rtprobe.config.settings import RuntimeSettings
from rtprobe.domain.models import RemediationResult
from rtprobe.infrastructure.errors import RtprobeError
from rtprobe.infrastructure.logging import BoundLogger, log_event
from rtprobe.integrations.supabase import create_supabase_client
from rtprobe.integrations.supabase.models import PublicationStatus

ClientFactory = Callable[..., Any]


async def _remediate(
    runtime_settings: RuntimeSettings,
    logger: BoundLogger,
    *,
    status_only: bool,
    client_factory: ClientFactory,
) -> tuple[RemediationResult | None, PublicationStatus | None, str | None]:
    """Run the remediation (unless ``status_only``) then read the publication status.

    A status read that fails after the remediation ran comes back as an error
    message so the remediation result is still reported.
    """

    async with client_factory(runtime_settings, logger=logger) as client:
        result = None
        if not status_only:
            result = await invoke_remediation(client.ensure_realtime_publication, logger=logger)
        try:
            status = await client.check_realtime_publication()
        except RtprobeError as exc:
            log_event(
                logger,
                "remediate.status_unavailable",
                level=logging.WARNING,
                error=exc.message,
            )
            return result, None, exc.message
        return result, status, None


def _render(
    console: Console,
    result: RemediationResult | None,
    status: PublicationStatus | None,
    status_error: str | None = None,
) -> None:
    if result is not None:
        if result.ok:
            console.print(
                f"[green]Remediation ok[/green]: added {result.added_count} table(s), "
                f"ensured {result.ensured_count} replica identities"
            )
        else:
            console.print(f"[red]Remediation failed[/red]: {result.error}")

    if status is None:
        console.print(f"[yellow]Publication status unavailable[/yellow]: {status_error}")
        return

    table = Table(title="Realtime publication", box=box.SIMPLE)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("exists", str(status.exists))
    table.add_row("status", status.status)
    table.add_row("tables", f"{status.tables_count}/{status.expected_count}")
    if status.missing_tables:
        table.add_row("missing", ", ".join(status.missing_tables))
    if status.message:
        table.add_row("message", status.message)
    console.print(table)


def register(
    app: typer.Typer,
    *,
    stdout_console: Console,
    client_factory: ClientFactory = create_supabase_client,
) -> None:
    @app.command(help="Run the realtime publication remediation RPC and report the publication status.")
    def remediate(
        config_path: cli_options.ConfigPathOption = cli_options.DEFAULT_CONFIG_PATH,
        supabase_url: cli_options.SupabaseUrlOption = None,
        anon_key: cli_options.AnonKeyOption = None,
        access_token: cli_options.AccessTokenOption = None,
        remediation_rpc: cli_options.RemediationRpcOption = None,
        allow_insecure_tls: cli_options.AllowInsecureTlsOption = None,
        ca_bundle: cli_options.CaBundleOption = None,
        debug: cli_options.DebugOption = None,
        log_level: cli_options.LogLevelOption = None,
        log_format: cli_options.LogFormatOption = None,
        status_only: cli_options.StatusOnlyOption = False,
        json_output: cli_options.JsonOutputOption = False,
    ) -> None:
        invocation = build_invocation(
            config_path=config_path,
            supabase_url=supabase_url,
            anon_key=anon_key,
            access_token=access_token,
            remediation_rpc=remediation_rpc,
            allow_insecure_tls=allow_insecure_tls,
            ca_bundle=ca_bundle,
            debug=debug,
            log_level=log_level,
            log_format=log_format,
        )
        runtime_settings, logging_settings = resolve_runtime_and_logging(invocation)
        logger = initialize_logging(runtime_settings, logging_settings)
        require_credentials(runtime_settings)

        result, status, status_error = await_sync(
            _remediate(
                runtime_settings,
                logger,
                status_only=status_only,
                client_factory=client_factory,
            )
        )

        if json_output:
            payload: dict[str, Any] = {
                "remediation": result.to_dict() if result is not None else None,
                "publication": status.model_dump() if status is not None else None,
            }
            if status_error is not None:
                payload["publication_error"] = status_error
            typer.echo(json.dumps(payload, indent=2))
        else:
            _render(stdout_console, result, status, status_error)

        # The exit code follows the remediation; status-only runs follow the status read.
        failed = status is None if result is None else not result.ok
        if failed:
            raise typer.Exit(code=1)


__all__ = ["register"]
