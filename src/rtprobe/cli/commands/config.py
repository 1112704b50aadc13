"""Config inspection commands for the rtprobe CLI."""

from __future__ import annotations

from typing import Final

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from rtprobe.cli import options as cli_options
from rtprobe.cli.helpers import build_invocation, mask_secret, resolve_runtime_and_logging
from rtprobe.config.settings import (
    LOGGING_BACKUP_COUNT_KEY,
    LOGGING_FILE_KEY,
    LOGGING_FORMAT_KEY,
    LOGGING_LEVEL_KEY,
    LOGGING_MAX_BYTES_KEY,
    PROBE_REMEDIATION_RPC_KEY,
    PROBE_TOKEN_COLUMN_KEY,
    PROBE_WATCHED_SCHEMA_KEY,
    PROBE_WATCHED_TABLE_KEY,
    RUNTIME_ALLOW_INSECURE_TLS_KEY,
    RUNTIME_CA_BUNDLE_PATH_KEY,
    RUNTIME_DEBUG_KEY,
    RUNTIME_DISABLE_REALTIME_KEY,
    RUNTIME_SAFE_BOOT_KEY,
    SUPABASE_ACCESS_TOKEN_KEY,
    SUPABASE_ANON_KEY_KEY,
    SUPABASE_URL_KEY,
    LoggingSettings,
    RuntimeSettings,
)

UNSET: Final = "<unset>"


def effective_rows(
    runtime: RuntimeSettings, logging_settings: LoggingSettings
) -> list[tuple[str, str]]:
    """Flatten the resolved configuration into display rows, secrets masked."""

    def _text(value: object) -> str:
        if value is None or value == "":
            return UNSET
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    return [
        (SUPABASE_URL_KEY, _text(runtime.supabase_url)),
        (SUPABASE_ANON_KEY_KEY, mask_secret(runtime.anon_key)),
        (SUPABASE_ACCESS_TOKEN_KEY, mask_secret(runtime.access_token)),
        (PROBE_WATCHED_SCHEMA_KEY, runtime.watched_schema),
        (PROBE_WATCHED_TABLE_KEY, runtime.watched_table),
        (PROBE_TOKEN_COLUMN_KEY, runtime.token_column),
        (PROBE_REMEDIATION_RPC_KEY, runtime.remediation_rpc),
        (RUNTIME_DISABLE_REALTIME_KEY, _text(runtime.disable_realtime)),
        (RUNTIME_SAFE_BOOT_KEY, _text(runtime.safe_boot)),
        (RUNTIME_DEBUG_KEY, _text(runtime.debug)),
        (RUNTIME_ALLOW_INSECURE_TLS_KEY, _text(runtime.allow_insecure_tls)),
        (RUNTIME_CA_BUNDLE_PATH_KEY, _text(runtime.ca_bundle_path)),
        (LOGGING_LEVEL_KEY, logging_settings.level_name),
        (LOGGING_FORMAT_KEY, logging_settings.format),
        (LOGGING_FILE_KEY, _text(logging_settings.file_path)),
        (LOGGING_MAX_BYTES_KEY, _text(logging_settings.max_bytes)),
        (LOGGING_BACKUP_COUNT_KEY, _text(logging_settings.backup_count)),
    ]


def register(
    app: typer.Typer,
    *,
    stdout_console: Console,
) -> None:
    """Register config commands with the app."""

    config_app = typer.Typer(
        help="Inspect rtprobe configuration.",
        invoke_without_command=True,
        no_args_is_help=True,
    )
    app.add_typer(config_app, name="config")

    @config_app.callback(invoke_without_command=True)
    def config_group_callback(ctx: typer.Context) -> None:
        if ctx.invoked_subcommand is None:
            typer.echo(ctx.get_help())
            raise typer.Exit()

    @config_app.command("show", help="Show the effective configuration after files, env and flags.")
    def config_show(
        config_path: cli_options.ConfigPathOption = cli_options.DEFAULT_CONFIG_PATH,
        supabase_url: cli_options.SupabaseUrlOption = None,
        anon_key: cli_options.AnonKeyOption = None,
        access_token: cli_options.AccessTokenOption = None,
        watched_schema: cli_options.WatchedSchemaOption = None,
        watched_table: cli_options.WatchedTableOption = None,
        token_column: cli_options.TokenColumnOption = None,
        disable_realtime: cli_options.DisableRealtimeOption = None,
        safe_boot: cli_options.SafeBootOption = None,
        debug: cli_options.DebugOption = None,
        log_level: cli_options.LogLevelOption = None,
        log_format: cli_options.LogFormatOption = None,
    ) -> None:
        invocation = build_invocation(
            config_path=config_path,
            supabase_url=supabase_url,
            anon_key=anon_key,
            access_token=access_token,
            watched_schema=watched_schema,
            watched_table=watched_table,
            token_column=token_column,
            disable_realtime=disable_realtime,
            safe_boot=safe_boot,
            debug=debug,
            log_level=log_level,
            log_format=log_format,
        )
        runtime_settings, logging_settings = resolve_runtime_and_logging(invocation)

        table = Table(title="Effective configuration", box=box.SIMPLE_HEAVY)
        table.add_column("Key", style="bold")
        table.add_column("Value", overflow="fold")
        for key, value in effective_rows(runtime_settings, logging_settings):
            table.add_row(key, value)
        stdout_console.print(table)

        for message in runtime_settings.warnings:
            stdout_console.print(f"[yellow]warning:[/yellow] {message}")


__all__ = ["register", "effective_rows"]
